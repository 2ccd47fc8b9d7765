"""Application configuration from environment variables."""
import os
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Deployment settings loaded from environment variables.

    Monitored targets, notifiers and system tuning live in config.json and are
    handled by the config manager. This only covers where files live and how
    the process is exposed.
    """

    # Directory holding config.json, history.json and incidents.json
    data_path: str = "./data"

    # File names inside data_path
    config_file: str = "config.json"
    history_file: str = "history.json"
    incidents_file: str = "incidents.json"

    # Web server bind
    web_host: str = "0.0.0.0"
    web_port: int = 8080

    # Overrides system.log_level from config.json when set
    log_level: Optional[str] = None

    class Config:
        env_prefix = ""
        case_sensitive = False


settings = Settings()


def get_config_path() -> str:
    """Path of the monitor configuration document."""
    return os.path.join(settings.data_path, settings.config_file)


def get_history_path() -> str:
    """Path of the latency/uptime document."""
    return os.path.join(settings.data_path, settings.history_file)


def get_incidents_path() -> str:
    """Path of the incident document."""
    return os.path.join(settings.data_path, settings.incidents_file)
