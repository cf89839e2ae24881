"""Notification collaborators for scheduled backup outcomes."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

import requests

from core.logging_utils import redact_secret

from .config import NotificationSettings

LOGGER = logging.getLogger("backupengine.notify")

EVENT_SUCCESS = "success"
EVENT_FAILURE = "failure"


class Notifier(Protocol):
    def notify(self, event_type: str, job_name: str, summary: Mapping[str, Any]) -> None:
        ...


class LoggingNotifier:
    """Record notifications in the log; email delivery is left to the host."""

    def __init__(self, email: Optional[str] = None) -> None:
        self.email = email

    def notify(self, event_type: str, job_name: str, summary: Mapping[str, Any]) -> None:
        level = logging.ERROR if event_type == EVENT_FAILURE else logging.INFO
        LOGGER.log(
            level,
            "backup notification: %s %s",
            job_name,
            event_type,
            extra={"job": job_name, "event_type": event_type, "recipient": self.email, "summary": dict(summary)},
        )


class WebhookNotifier:
    """POST a JSON payload describing the outcome to a webhook URL."""

    def __init__(self, url: str, *, timeout: float = 10.0, session: Optional[requests.Session] = None) -> None:
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()

    def notify(self, event_type: str, job_name: str, summary: Mapping[str, Any]) -> None:
        payload = {"event": event_type, "job": job_name, "summary": dict(summary)}
        response = self._session.post(self.url, json=payload, timeout=self.timeout)
        response.raise_for_status()
        LOGGER.info("webhook notification sent to %s", redact_secret(self.url), extra={"status_code": response.status_code})


class CompositeNotifier:
    """Fan out to several notifiers; a failing notifier never affects the others."""

    def __init__(self, notifiers: Sequence[Notifier]) -> None:
        self.notifiers: List[Notifier] = list(notifiers)

    def notify(self, event_type: str, job_name: str, summary: Mapping[str, Any]) -> None:
        for notifier in self.notifiers:
            try:
                notifier.notify(event_type, job_name, summary)
            except (requests.RequestException, OSError, ValueError) as exc:
                LOGGER.error("backup notification failed: %s", exc, extra={"notifier": type(notifier).__name__})


def should_notify(settings: NotificationSettings, ok: bool) -> bool:
    if not settings.enabled:
        return False
    return settings.on_success if ok else settings.on_failure


def build_notifier(settings: NotificationSettings) -> CompositeNotifier:
    notifiers: List[Notifier] = [LoggingNotifier(settings.email)]
    if settings.webhook:
        notifiers.append(WebhookNotifier(settings.webhook))
    return CompositeNotifier(notifiers)


def summarize(result: Any) -> Dict[str, Any]:
    if result is None:
        return {}
    if hasattr(result, "to_json"):
        return dict(result.to_json())
    if isinstance(result, Mapping):
        return dict(result)
    return {"result": str(result)}


__all__ = [
    "CompositeNotifier",
    "EVENT_FAILURE",
    "EVENT_SUCCESS",
    "LoggingNotifier",
    "Notifier",
    "WebhookNotifier",
    "build_notifier",
    "should_notify",
    "summarize",
]
