"""Narrow interfaces the engine consumes from outside systems."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from slotbook.app.domain.models import UserRole


@dataclass(frozen=True)
class Identity:
    user_id: int
    role: UserRole = UserRole.CLIENT

    @property
    def is_owner(self) -> bool:
        return self.role is UserRole.OWNER


@dataclass(frozen=True)
class NotificationEvent:
    """What happened to which appointment; delivery wording is the notifier's job."""

    kind: str  # booking_created | booking_canceled | booking_status_changed
    appointment_id: int
    payload: dict[str, Any] = field(default_factory=dict)


class IdentityResolver(Protocol):
    def resolve_user(self, token: str) -> Identity: ...


class Notifier(Protocol):
    async def notify(self, user_id: int, event: NotificationEvent) -> None: ...


class LoggingNotifier:
    """Default notifier: records events in the log only."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger("slotbook.notifications")

    async def notify(self, user_id: int, event: NotificationEvent) -> None:
        self.logger.info(
            "notify user=%s event=%s appointment=%s", user_id, event.kind, event.appointment_id
        )


__all__ = [
    "Identity",
    "NotificationEvent",
    "IdentityResolver",
    "Notifier",
    "LoggingNotifier",
]
