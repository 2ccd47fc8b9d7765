"""Utility helpers."""
from .fileio import atomic_write_text, read_text
from .migrations import migrate_config, migrate_history

__all__ = ["atomic_write_text", "read_text", "migrate_config", "migrate_history"]
