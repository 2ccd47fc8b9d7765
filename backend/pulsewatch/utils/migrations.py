"""Version migrations for persisted JSON documents.

Every document written to disk carries a ``version`` field. On load the raw
dict is passed through here before pydantic validation so older files keep
working after a schema change.
"""
import logging
from typing import Any, Callable, Dict

logger = logging.getLogger(__name__)

CURRENT_CONFIG_VERSION = 1
CURRENT_HISTORY_VERSION = 1

Migration = Callable[[Dict[str, Any]], Dict[str, Any]]


def _stamp_v1(raw: Dict[str, Any]) -> Dict[str, Any]:
    # v0 files only lacked the version field; legacy embedded incidents are
    # split out by the history store on load.
    raw["version"] = 1
    return raw


# Keyed by the version a migration upgrades FROM
_CONFIG_MIGRATIONS: Dict[int, Migration] = {0: _stamp_v1}
_HISTORY_MIGRATIONS: Dict[int, Migration] = {0: _stamp_v1}


def _get_version(raw: Dict[str, Any]) -> int:
    try:
        return int(raw.get("version") or 0)
    except (TypeError, ValueError):
        return 0


def _migrate(raw: Dict[str, Any], name: str, current: int, chain: Dict[int, Migration]) -> Dict[str, Any]:
    version = _get_version(raw)
    if version >= current:
        return raw

    logger.info(f"Migrating {name} from version {version} to {current}")
    while version < current:
        step = chain.get(version)
        if step is None:
            raise ValueError(f"No migration for {name} version {version}")
        raw = step(raw)
        version = _get_version(raw)
    logger.info(f"{name} migration complete")
    return raw


def migrate_config(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Upgrade a raw config.json dict to the current schema."""
    return _migrate(raw, "config", CURRENT_CONFIG_VERSION, _CONFIG_MIGRATIONS)


def migrate_history(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Upgrade a raw history.json / incidents.json dict to the current schema."""
    return _migrate(raw, "history", CURRENT_HISTORY_VERSION, _HISTORY_MIGRATIONS)
