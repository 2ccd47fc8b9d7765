"""Services for probing, analysis, history, notification and scheduling."""
from .checker import CheckerService
from .config_manager import ConfigManager
from .history import HistoryStore
from .analyzer import Analyzer
from .notifier import NotificationRouter
from .scheduler import SchedulerService

__all__ = [
    "CheckerService",
    "ConfigManager",
    "HistoryStore",
    "Analyzer",
    "NotificationRouter",
    "SchedulerService",
]
