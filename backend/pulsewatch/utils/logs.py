"""Logging setup."""
import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def to_level(name: str) -> int:
    """Map a config log level name to a logging level, INFO if unknown."""
    return _LEVELS.get((name or "").lower(), logging.INFO)


def configure_logging(level_name: str) -> None:
    """Configure root logging once at startup."""
    logging.basicConfig(level=to_level(level_name), format=LOG_FORMAT)


def set_log_level(level_name: str) -> None:
    """Change the root log level at runtime."""
    logging.getLogger().setLevel(to_level(level_name))
