"""Notification router - fans alert events out to configured channels.

Delivery is best effort: each channel is tried once with its own timeout,
failures are logged, and nothing is raised back to the caller.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx

from ..models.settings import NotifierConfig
from .email_sender import SmtpSettings, email_sender_service, parse_recipients

logger = logging.getLogger(__name__)

# Upper bound for a single channel delivery, in seconds
SEND_TIMEOUT = 10


@dataclass(frozen=True)
class AlertEvent:
    """A monitor status change, handed from the analyzer to the router."""
    monitor_id: str
    monitor_name: str
    type: str  # "down" or "up"
    target: str
    reason: str = ""
    timestamp: int = 0
    timezone: str = ""  # IANA name, empty = UTC


class NotificationError(Exception):
    """Raised by a channel when delivery fails."""


def format_event_time(event: AlertEvent) -> str:
    """Event time rendered in the event timezone, e.g. "2024-01-02 03:04:05 UTC"."""
    label = "UTC"
    tz = timezone.utc
    if event.timezone:
        try:
            tz = ZoneInfo(event.timezone)
            label = event.timezone
        except (ZoneInfoNotFoundError, ValueError):
            pass
    return datetime.fromtimestamp(event.timestamp, tz).strftime("%Y-%m-%d %H:%M:%S") + f" {label}"


class Notifier:
    """Base class for notification channels."""

    type = ""

    def __init__(self, config: NotifierConfig):
        self.config = config

    def validate(self) -> List[str]:
        """Return configuration problems, empty if usable."""
        return []

    async def send(self, event: AlertEvent) -> None:
        """Deliver an event.

        Raises:
            NotificationError: If delivery failed
        """
        raise NotImplementedError


class WebhookNotifier(Notifier):
    """JSON payload to an HTTP endpoint."""

    type = "webhook"

    def validate(self) -> List[str]:
        errors = []
        if not self.config.url:
            errors.append("webhook: url is required")
        return errors

    def build_payload(self, event: AlertEvent) -> dict:
        payload = {
            "monitor_id": event.monitor_id,
            "monitor_name": event.monitor_name,
            "type": event.type,
            "target": event.target,
            "reason": event.reason,
            "timestamp": event.timestamp,
        }
        if self.config.remark:
            payload["remark"] = self.config.remark
        return payload

    async def send(self, event: AlertEvent) -> None:
        method = (self.config.method or "POST").upper()
        try:
            async with httpx.AsyncClient(timeout=SEND_TIMEOUT) as client:
                response = await client.request(method, self.config.url, json=self.build_payload(event))
        except httpx.HTTPError as e:
            raise NotificationError(f"webhook: send request: {e}") from e

        if not 200 <= response.status_code < 300:
            raise NotificationError(f"webhook: unexpected status {response.status_code}")


class TelegramNotifier(Notifier):
    """Message through the Telegram Bot API."""

    type = "telegram"
    api_base = "https://api.telegram.org"

    def validate(self) -> List[str]:
        errors = []
        if not self.config.bot_token:
            errors.append("telegram: bot_token is required")
        if not self.config.chat_id:
            errors.append("telegram: chat_id is required")
        return errors

    def format_message(self, event: AlertEvent) -> str:
        if event.type == "down":
            icon, status = "🔴", "DOWN"
        else:
            icon, status = "🟢", "UP"

        lines = []
        if self.config.remark:
            lines.append(f"📌 <b>[{self.config.remark}]</b>")
        lines.append(f"{icon} <b>[{status}] {event.monitor_name}</b>")
        lines.append(f"Target: <code>{event.target}</code>")
        if event.reason:
            lines.append(f"Reason: {event.reason}")
        lines.append(f"Time: {format_event_time(event)}")
        return "\n".join(lines)

    async def send(self, event: AlertEvent) -> None:
        url = f"{self.api_base}/bot{self.config.bot_token}/sendMessage"
        payload = {
            "chat_id": self.config.chat_id,
            "text": self.format_message(event),
            "parse_mode": "HTML",
        }
        try:
            async with httpx.AsyncClient(timeout=SEND_TIMEOUT) as client:
                response = await client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise NotificationError(f"telegram: send request: {e}") from e

        if response.status_code != 200:
            raise NotificationError(f"telegram: unexpected status {response.status_code}")


class EmailNotifier(Notifier):
    """Plain-text email over SMTP."""

    type = "email"

    def validate(self) -> List[str]:
        errors = []
        if not self.config.smtp_host:
            errors.append("email: smtp_host is required")
        if not parse_recipients(self.config.email_to):
            errors.append("email: email_to is required")
        return errors

    def build_subject(self, event: AlertEvent) -> str:
        return f"{event.type.upper()} - {event.monitor_name}"

    def build_body(self, event: AlertEvent) -> str:
        lines = [
            f"PulseWatch {event.type.upper()} Report",
            "=" * 40,
            "",
            f"Monitor: {event.monitor_name}",
            f"Target: {event.target}",
            f"Status: {event.type.upper()}",
            f"Time: {format_event_time(event)}",
        ]
        if event.reason:
            lines.append(f"Reason: {event.reason}")
        if self.config.remark:
            lines.append(f"Remark: {self.config.remark}")
        return "\n".join(lines)

    async def send(self, event: AlertEvent) -> None:
        smtp = SmtpSettings.from_notifier(self.config, timeout=SEND_TIMEOUT)
        ok = await email_sender_service.send_email(smtp, self.build_subject(event), self.build_body(event))
        if not ok:
            raise NotificationError("email: delivery failed")


NOTIFIER_TYPES = {
    WebhookNotifier.type: WebhookNotifier,
    TelegramNotifier.type: TelegramNotifier,
    EmailNotifier.type: EmailNotifier,
}


def build_notifier(config: NotifierConfig) -> Optional[Notifier]:
    """Construct the channel for a notifier definition, None for unknown types."""
    cls = NOTIFIER_TYPES.get(config.type)
    if cls is None:
        return None
    return cls(config)


class NotificationRouter:
    """Routes alert events to the notifiers listed on the monitor."""

    def __init__(self, config_manager):
        self.config_manager = config_manager

    async def notify(self, event: AlertEvent) -> Dict[str, bool]:
        """Send an event to every notifier in the monitor's notifier_ids.

        Returns notifier id -> delivered, for the notifiers that were tried.
        """
        cfg = self.config_manager.get_snapshot()

        monitor = cfg.get_monitor(event.monitor_id)
        notifier_ids = monitor.notifier_ids if monitor else []
        if not notifier_ids:
            logger.debug(f"Monitor {event.monitor_id} has no notifier_ids, skipping notification")
            return {}

        if not event.timestamp:
            event = replace(event, timestamp=int(time.time()))
        event = replace(event, timezone=cfg.system.timezone)

        channels: Dict[str, Notifier] = {}
        for notifier_id in notifier_ids:
            nc = cfg.get_notifier(notifier_id)
            if nc is None:
                logger.warning(f"Notifier {notifier_id} not found for monitor {event.monitor_id}")
                continue
            notifier = build_notifier(nc)
            if notifier is None:
                logger.error(f"Unknown notifier type {nc.type!r} for notifier {notifier_id}")
                continue
            problems = notifier.validate()
            if problems:
                logger.error(f"Notifier {notifier_id} is misconfigured: {'; '.join(problems)}")
                continue
            channels[notifier_id] = notifier

        ids = list(channels)
        results = await asyncio.gather(*[self._deliver(nid, channels[nid], event) for nid in ids])
        return dict(zip(ids, results))

    async def _deliver(self, notifier_id: str, notifier: Notifier, event: AlertEvent) -> bool:
        try:
            await asyncio.wait_for(notifier.send(event), timeout=SEND_TIMEOUT)
        except asyncio.TimeoutError:
            logger.error(
                f"Notification to {notifier.type} notifier {notifier_id} timed out "
                f"(monitor {event.monitor_id})"
            )
            return False
        except Exception as e:
            logger.error(
                f"Notification to {notifier.type} notifier {notifier_id} failed "
                f"(monitor {event.monitor_id}): {e}"
            )
            return False

        logger.info(f"Notification sent via {notifier.type} notifier {notifier_id}: {event.type} for {event.monitor_name}")
        return True
