"""File helpers for crash-safe persistence."""
import logging
import os
import tempfile
from typing import Optional

logger = logging.getLogger(__name__)


def atomic_write_text(path: str, content: str) -> None:
    """Write content to path so readers only ever see the old or new file.

    The data goes to a temp file in the destination directory, is flushed and
    fsynced, then renamed over the destination. On any failure the temp file
    is removed and the previous file is left untouched.

    Raises:
        OSError: If the temp file cannot be created, written or renamed
    """
    directory = os.path.dirname(os.path.abspath(path))
    base = os.path.basename(path)

    tmp = tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=directory,
        prefix=f"{base}.tmp.",
        delete=False,
    )
    tmp_name = tmp.name
    try:
        with tmp:
            tmp.write(content)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.remove(tmp_name)
        except OSError:
            logger.debug(f"Could not remove temp file {tmp_name}")
        raise


def read_text(path: str) -> Optional[str]:
    """Read a UTF-8 file, returning None if it does not exist."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except FileNotFoundError:
        return None
