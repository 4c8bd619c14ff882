"""Notification channels used by send_notification actions and reminders."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from ..core.logger import get_logger
from ..core.store import TabularStore
from .models import Clock, isoformat, utc_now

logger = get_logger("automation.channels")


@runtime_checkable
class NotificationChannel(Protocol):
    """Delivers a rendered notification to one recipient."""

    def send(
        self,
        recipient: str,
        subject: str | None,
        body: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> Any: ...


class LoggingChannel:
    """Channel that only logs what it would deliver.

    Stands in for email and SMS transports in demos and single-node setups.
    """

    def __init__(self, name: str = "log"):
        self.name = name
        self.sent: list[dict[str, Any]] = []

    def send(
        self,
        recipient: str,
        subject: str | None,
        body: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        message = {
            "channel": self.name,
            "recipient": recipient,
            "subject": subject,
            "body": body,
            "metadata": dict(metadata or {}),
        }
        self.sent.append(message)
        logger.info("[%s] -> %s: %s", self.name, recipient, subject or body[:60])
        return message


class InAppChannel:
    """Channel that writes a row to the in_app_notifications collection."""

    COLLECTION = "in_app_notifications"

    def __init__(self, store: TabularStore, clock: Clock | None = None):
        self.store = store
        self.clock = clock or utc_now

    def send(
        self,
        recipient: str,
        subject: str | None,
        body: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        meta = dict(metadata or {})
        row_id = self.store.create(
            self.COLLECTION,
            {
                "user_id": recipient,
                "title": subject or "",
                "message": body,
                "type": meta.get("type", "automation"),
                "priority": meta.get("priority", "medium"),
                "read": False,
                "created_at": isoformat(self.clock()),
            },
        )
        return {"id": row_id, "channel": "in_app", "recipient": recipient}


def default_channels(store: TabularStore, clock: Clock | None = None) -> dict[str, NotificationChannel]:
    """Channels available when the host application registers none."""
    return {
        "email": LoggingChannel("email"),
        "sms": LoggingChannel("sms"),
        "in_app": InAppChannel(store, clock),
    }
