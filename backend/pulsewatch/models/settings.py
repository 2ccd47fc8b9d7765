"""Configuration document models - system settings, notifiers and contact groups."""
import os
import secrets
from typing import Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from ..utils.migrations import CURRENT_CONFIG_VERSION
from .monitor import MONITOR_TYPES, Monitor

VALID_LOG_LEVELS = ("debug", "info", "warn", "error")

# Default settings
DEFAULT_CHECK_INTERVAL = 60
DEFAULT_MAX_HISTORY_POINTS = 1440
DEFAULT_DUMP_INTERVAL = 300
DEFAULT_LOG_LEVEL = "info"
DEFAULT_MAX_MONITORS = 500
MIN_CHECK_INTERVAL = 5


class ConfigValidationError(ValueError):
    """Raised when a configuration is rejected. Carries every problem found."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("config validation failed:\n  " + "\n  ".join(self.errors))


def detect_timezone() -> str:
    """Return the local IANA timezone name, falling back to UTC."""
    name = os.environ.get("TZ", "").lstrip(":")
    if not name:
        try:
            link = os.readlink("/etc/localtime")
        except OSError:
            link = ""
        if "zoneinfo/" in link:
            name = link.split("zoneinfo/", 1)[1]
    return name or "UTC"


def generate_id() -> str:
    return secrets.token_hex(4)


class SystemConfig(BaseModel):
    """Process-wide monitoring settings."""
    check_interval: int = DEFAULT_CHECK_INTERVAL  # seconds
    max_history_points: int = DEFAULT_MAX_HISTORY_POINTS
    dump_interval: int = DEFAULT_DUMP_INTERVAL  # seconds
    log_level: str = DEFAULT_LOG_LEVEL
    max_monitors: int = DEFAULT_MAX_MONITORS
    timezone: str = ""


class NotifierConfig(BaseModel):
    """A notification channel definition. Fields used depend on type."""
    id: str = ""
    type: str  # webhook, telegram, email
    remark: str = ""

    # telegram
    bot_token: str = ""
    chat_id: str = ""

    # webhook
    url: str = ""
    method: str = ""

    # email
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    email_from: str = ""
    email_to: str = ""  # comma-separated


class ContactGroup(BaseModel):
    """Visual grouping of monitors."""
    id: str
    name: str = ""
    # Deprecated: moved to the top-level notifier list on load
    notifiers: List[NotifierConfig] = Field(default_factory=list)


class AppConfig(BaseModel):
    """Root of config.json."""
    version: int = CURRENT_CONFIG_VERSION
    system: SystemConfig = Field(default_factory=SystemConfig)
    contact_groups: Dict[str, ContactGroup] = Field(default_factory=dict)
    notifiers: List[NotifierConfig] = Field(default_factory=list)
    monitors: List[Monitor] = Field(default_factory=list)

    def get_monitor(self, monitor_id: str) -> Optional[Monitor]:
        for monitor in self.monitors:
            if monitor.id == monitor_id:
                return monitor
        return None

    def get_notifier(self, notifier_id: str) -> Optional[NotifierConfig]:
        for notifier in self.notifiers:
            if notifier.id == notifier_id:
                return notifier
        return None


def default_config() -> AppConfig:
    """Config used when no config.json exists yet."""
    return AppConfig(system=SystemConfig(timezone=detect_timezone()))


def apply_defaults(cfg: AppConfig) -> AppConfig:
    """Return a copy of cfg with zero-value settings filled in and legacy data moved.

    - Non-positive system numbers and an empty log level/timezone get defaults.
    - Notifiers stored under contact groups (old format) move to the
      top-level list, and the old "_default" holder group is dropped.
    - Notifiers without an id get a random one.
    """
    cfg = cfg.model_copy(deep=True)
    system = cfg.system

    if system.check_interval <= 0:
        system.check_interval = DEFAULT_CHECK_INTERVAL
    if system.max_history_points <= 0:
        system.max_history_points = DEFAULT_MAX_HISTORY_POINTS
    if system.dump_interval <= 0:
        system.dump_interval = DEFAULT_DUMP_INTERVAL
    if not system.log_level:
        system.log_level = DEFAULT_LOG_LEVEL
    if system.max_monitors <= 0:
        system.max_monitors = DEFAULT_MAX_MONITORS
    if not system.timezone:
        system.timezone = detect_timezone()

    for group in cfg.contact_groups.values():
        if group.notifiers:
            cfg.notifiers.extend(group.notifiers)
            group.notifiers = []
    cfg.contact_groups.pop("_default", None)

    for notifier in cfg.notifiers:
        if not notifier.id:
            notifier.id = generate_id()

    return cfg


def validate_config(cfg: AppConfig) -> List[str]:
    """Check a config for logical errors. Returns every problem found."""
    errors: List[str] = []
    system = cfg.system

    if system.check_interval < MIN_CHECK_INTERVAL:
        errors.append(f"system.check_interval must be >= {MIN_CHECK_INTERVAL} seconds")

    if system.log_level not in VALID_LOG_LEVELS:
        errors.append(
            f"system.log_level must be one of: {', '.join(VALID_LOG_LEVELS)} (got {system.log_level!r})"
        )

    if len(cfg.monitors) > system.max_monitors:
        errors.append(
            f"monitors count ({len(cfg.monitors)}) exceeds max_monitors ({system.max_monitors})"
        )

    seen = set()
    for i, m in enumerate(cfg.monitors):
        prefix = f"monitors[{i}]"
        if not m.id:
            errors.append(f"{prefix}.id is required")
        elif m.id in seen:
            errors.append(f"{prefix}.id is duplicate: {m.id}")
        seen.add(m.id)

        if not m.name:
            errors.append(f"{prefix}.name is required")

        if m.type not in MONITOR_TYPES:
            errors.append(f"{prefix}.type must be http, tcp, or ping (got {m.type!r})")

        if not m.target:
            errors.append(f"{prefix}.target is required")
        elif m.type == "http":
            parsed = urlparse(m.target)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                errors.append(f"{prefix}.target must be a valid http(s) URL")

        if m.group_id and m.group_id not in cfg.contact_groups:
            errors.append(f"{prefix}.group_id references unknown contact group {m.group_id!r}")

        interval = m.effective_interval(system.check_interval)
        if m.timeout <= 0:
            errors.append(f"{prefix}.timeout must be > 0")
        elif m.timeout >= interval:
            errors.append(f"{prefix}.timeout ({m.timeout}) must be < interval ({interval})")

        if m.max_retries < 0:
            errors.append(f"{prefix}.max_retries must be >= 0")
        if m.retry_interval < 0:
            errors.append(f"{prefix}.retry_interval must be >= 0")
        if m.reminder_interval < 0:
            errors.append(f"{prefix}.reminder_interval must be >= 0")

    return errors
