"""Engine configuration.

A single ``EngineSettings`` instance is built at process start (usually via
``EngineSettings.from_env()``) and handed to every component. Algorithmic
code receives the settings object and never looks at the environment.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from slotbook.app.core import constants
from slotbook.app.domain.models import AppointmentKind


@dataclass(frozen=True)
class EngineSettings:
    business_timezone: str = "America/Los_Angeles"
    slot_duration_minutes: int = 30
    same_day_lead_minutes: int = 0
    booking_points_cost: int = 5
    price_cents: dict[AppointmentKind, int] = field(
        default_factory=lambda: {
            AppointmentKind.STANDARD: 4500,
            AppointmentKind.TRIAL_FREE: 0,
            AppointmentKind.DISCOUNT_SECOND: 1000,
        }
    )
    cache_ttl_seconds: int = 60
    cache_timeout_seconds: float = 0.5
    store_timeout_seconds: float = 10.0
    notify_workers: int = 4
    notify_queue_size: int = 1000
    database_url: str = "sqlite+aiosqlite:///slotbook.db"
    redis_url: str | None = None

    def __post_init__(self) -> None:
        try:
            ZoneInfo(self.business_timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown business timezone: {self.business_timezone!r}") from exc
        if self.slot_duration_minutes <= 0 or self.slot_duration_minutes > 24 * 60:
            raise ValueError("slot_duration_minutes must be within 1..1440")
        if self.booking_points_cost < 0:
            raise ValueError("booking_points_cost must not be negative")
        if self.same_day_lead_minutes < 0:
            raise ValueError("same_day_lead_minutes must not be negative")

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.business_timezone)

    def points_cost(self, kind: AppointmentKind) -> int:
        """Points a client must hold to book ``kind``; free trials cost nothing."""
        if kind is AppointmentKind.TRIAL_FREE:
            return 0
        return self.booking_points_cost

    def price_for(self, kind: AppointmentKind) -> int:
        return int(self.price_cents.get(kind, 0))

    @classmethod
    def from_env(cls) -> "EngineSettings":
        return cls(
            business_timezone=constants.DEFAULT_BUSINESS_TIMEZONE,
            slot_duration_minutes=constants.DEFAULT_SLOT_DURATION_MINUTES,
            same_day_lead_minutes=max(0, constants.DEFAULT_SAME_DAY_LEAD_MINUTES),
            booking_points_cost=max(0, constants.DEFAULT_BOOKING_POINTS_COST),
            price_cents={
                AppointmentKind.STANDARD: constants.DEFAULT_STANDARD_PRICE_CENTS,
                AppointmentKind.TRIAL_FREE: 0,
                AppointmentKind.DISCOUNT_SECOND: constants.DEFAULT_SECOND_CUT_PRICE_CENTS,
            },
            cache_ttl_seconds=constants.AVAILABILITY_CACHE_TTL_SECONDS,
            cache_timeout_seconds=constants.CACHE_TIMEOUT_SECONDS,
            store_timeout_seconds=constants.STORE_TIMEOUT_SECONDS,
            notify_workers=max(1, constants.NOTIFY_WORKERS),
            notify_queue_size=max(1, constants.NOTIFY_QUEUE_SIZE),
            database_url=constants.DEFAULT_DATABASE_URL,
            redis_url=constants.DEFAULT_REDIS_URL,
        )


__all__ = ["EngineSettings"]
