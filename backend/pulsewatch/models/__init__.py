"""Data models."""
from .monitor import Monitor
from .settings import AppConfig, SystemConfig, NotifierConfig, ContactGroup, ConfigValidationError
from .history import LatencyPoint, Incident, MonitorHistory, HistoryData, IncidentsData

__all__ = [
    "Monitor",
    "AppConfig",
    "SystemConfig",
    "NotifierConfig",
    "ContactGroup",
    "ConfigValidationError",
    "LatencyPoint",
    "Incident",
    "MonitorHistory",
    "HistoryData",
    "IncidentsData",
]
