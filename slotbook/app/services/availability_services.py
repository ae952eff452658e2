"""Availability: weekly hours, slot generation and conflict filtering.

Pure helpers (``generate_slots_from_range``, ``intervals_overlap``,
``filter_conflicting_slots``) hold the arithmetic; the async functions load
the provider's weekly row and booked intervals through a caller-provided
session and apply the helpers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from typing import Iterable, Mapping, Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from slotbook.app.domain.errors import InvalidArgument
from slotbook.app.domain.models import (
    BLOCKING_STATUSES,
    Appointment,
    WeeklyAvailability,
)
from slotbook.app.services.shared_services import (
    TimezoneConverter,
    ensure_utc,
    format_time_hm,
    parse_local_date,
    parse_local_time,
    utc_now,
    weekday_index,
)
from slotbook.config import EngineSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Opening:
    """A bookable start found by the next-openings search."""

    local_date: date
    local_time: time
    starts_at: datetime


# ---------------- Pure helpers ---------------- #
def _minutes(t: time) -> int:
    return t.hour * 60 + t.minute


def generate_slots_from_range(start: time | str, end: time | str, step_minutes: int) -> list[time]:
    """Slot starts from ``start`` stepping by ``step_minutes``, strictly before ``end``."""
    if step_minutes <= 0:
        raise InvalidArgument("invalid_step", "slot step must be positive")
    start_t = parse_local_time(start)
    end_t = parse_local_time(end)
    out: list[time] = []
    current = _minutes(start_t)
    stop = _minutes(end_t)
    while current < stop:
        out.append(time(current // 60, current % 60))
        current += step_minutes
    return out


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open overlap test: touching intervals do not overlap."""
    return a_start < b_end and b_start < a_end


def filter_conflicting_slots(
    converter: TimezoneConverter,
    day: date,
    candidates: Iterable[time],
    busy: Sequence[tuple[datetime, datetime]],
    duration_minutes: int,
) -> list[time]:
    step = timedelta(minutes=duration_minutes)
    out: list[time] = []
    for slot in candidates:
        slot_start = converter.to_utc(day, slot)
        slot_end = slot_start + step
        if any(intervals_overlap(slot_start, slot_end, b_start, b_end) for b_start, b_end in busy):
            continue
        out.append(slot)
    return out


# ---------------- Weekly availability store ---------------- #
class WeeklyAvailabilityRepo:
    """Read/write access to ``weekly_availability`` rows.

    The engine only reads; ``replace_week`` serves provider-management
    tooling and seeding.
    """

    @staticmethod
    async def get_for_day(session: AsyncSession, provider_id: int, day_of_week: int) -> WeeklyAvailability | None:
        stmt = select(WeeklyAvailability).where(
            WeeklyAvailability.provider_id == provider_id,
            WeeklyAvailability.day_of_week == day_of_week,
        )
        return (await session.execute(stmt)).scalars().first()

    @staticmethod
    async def list_week(session: AsyncSession, provider_id: int) -> list[WeeklyAvailability]:
        stmt = (
            select(WeeklyAvailability)
            .where(WeeklyAvailability.provider_id == provider_id)
            .order_by(WeeklyAvailability.day_of_week)
        )
        return list((await session.execute(stmt)).scalars().all())

    @staticmethod
    async def replace_week(
        session: AsyncSession,
        provider_id: int,
        week: Mapping[int, tuple[str | time, str | time]],
    ) -> list[WeeklyAvailability]:
        """Replace the provider's week with ``{day_of_week: (start, end)}``.

        Days missing from ``week`` become days off. Does not commit.
        """
        rows: list[WeeklyAvailability] = []
        for dow, (start, end) in sorted(week.items()):
            if not isinstance(dow, int) or not 0 <= dow <= 6:
                raise InvalidArgument("invalid_day_of_week", f"day_of_week out of range: {dow!r}")
            start_t, end_t = parse_local_time(start), parse_local_time(end)
            if start_t >= end_t:
                raise InvalidArgument("invalid_range", f"start must be before end for day {dow}")
            rows.append(
                WeeklyAvailability(
                    provider_id=provider_id,
                    day_of_week=dow,
                    start_local=format_time_hm(start_t),
                    end_local=format_time_hm(end_t),
                    updated_at=utc_now(),
                )
            )
        await session.execute(delete(WeeklyAvailability).where(WeeklyAvailability.provider_id == provider_id))
        session.add_all(rows)
        await session.flush()
        logger.info("WeeklyAvailabilityRepo.replace_week: %d day(s) set for provider %s", len(rows), provider_id)
        return rows


async def fetch_busy_intervals(
    session: AsyncSession,
    provider_id: int,
    window_start: datetime,
    window_end: datetime,
) -> list[tuple[datetime, datetime]]:
    """Non-canceled appointment intervals of ``provider_id`` intersecting the window."""
    stmt = (
        select(Appointment.starts_at, Appointment.ends_at)
        .where(
            Appointment.provider_id == provider_id,
            Appointment.status.in_(tuple(BLOCKING_STATUSES)),
            Appointment.starts_at < window_end,
            Appointment.ends_at > window_start,
        )
        .order_by(Appointment.starts_at)
    )
    rows = (await session.execute(stmt)).all()
    return [(ensure_utc(s), ensure_utc(e)) for s, e in rows]


# ---------------- Slot generator / conflict resolver ---------------- #
async def generate_slots(
    session: AsyncSession,
    settings: EngineSettings,
    provider_id: int,
    day: date | str,
    *,
    now: datetime | None = None,
) -> list[time]:
    """Candidate slot starts (business wall clock) for ``provider_id`` on ``day``.

    Always aligned to the provider's declared start. On the current business
    day starts earlier than ``now + same_day_lead_minutes`` are dropped; past
    days yield nothing.
    """
    d = parse_local_date(day)
    converter = TimezoneConverter(settings.tz)
    now_utc = ensure_utc(now) or utc_now()
    today = converter.today(now_utc)
    if d < today:
        return []

    row = await WeeklyAvailabilityRepo.get_for_day(session, provider_id, weekday_index(d))
    if row is None:
        return []
    slots = generate_slots_from_range(row.start_local, row.end_local, settings.slot_duration_minutes)

    if d == today:
        cutoff = now_utc + timedelta(minutes=settings.same_day_lead_minutes)
        slots = [s for s in slots if converter.to_utc(d, s) >= cutoff]
    return slots


async def remove_conflicts(
    session: AsyncSession,
    settings: EngineSettings,
    provider_id: int,
    day: date | str,
    candidate_slots: Sequence[time],
) -> list[time]:
    """Drop candidates overlapping a non-canceled appointment of the provider."""
    if not candidate_slots:
        return []
    d = parse_local_date(day)
    converter = TimezoneConverter(settings.tz)
    window_start, window_end = converter.local_day_bounds_utc(d)
    busy = await fetch_busy_intervals(session, provider_id, window_start, window_end)
    return filter_conflicting_slots(converter, d, candidate_slots, busy, settings.slot_duration_minutes)


async def available_slots(
    session: AsyncSession,
    settings: EngineSettings,
    provider_id: int,
    day: date | str,
    *,
    now: datetime | None = None,
) -> list[time]:
    candidates = await generate_slots(session, settings, provider_id, day, now=now)
    return await remove_conflicts(session, settings, provider_id, day, candidates)


async def next_openings(
    session: AsyncSession,
    settings: EngineSettings,
    provider_id: int,
    *,
    limit: int = 3,
    max_days: int = 30,
    now: datetime | None = None,
) -> list[Opening]:
    """First ``limit`` free slots from today on, searching at most ``max_days`` days."""
    if limit <= 0 or max_days <= 0:
        return []
    converter = TimezoneConverter(settings.tz)
    now_utc = ensure_utc(now) or utc_now()
    start_day = converter.today(now_utc)
    found: list[Opening] = []
    for offset in range(max_days):
        d = start_day + timedelta(days=offset)
        for slot in await available_slots(session, settings, provider_id, d, now=now_utc):
            found.append(Opening(local_date=d, local_time=slot, starts_at=converter.to_utc(d, slot).astimezone(UTC)))
            if len(found) >= limit:
                return found
    return found


__all__ = [
    "Opening",
    "WeeklyAvailabilityRepo",
    "generate_slots_from_range",
    "intervals_overlap",
    "filter_conflicting_slots",
    "fetch_busy_intervals",
    "generate_slots",
    "remove_conflicts",
    "available_slots",
    "next_openings",
]
