"""BookingEngine: the facade front ends (API, CLI) talk to.

Wires settings, the session factory, the availability cache and the
notification dispatcher together. Reads go cache-first; writes delegate to
``booking_services`` and, once committed, invalidate the affected day and
submit notifications.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from slotbook.app.core.cache import AvailabilityCache, MemoryBackend, build_availability_key
from slotbook.app.core.collaborators import Identity, NotificationEvent
from slotbook.app.domain.errors import NotFound
from slotbook.app.domain.models import (
    Appointment,
    AppointmentKind,
    AppointmentStatus,
    PointsLedgerEntry,
    User,
    UserRole,
    normalize_appointment_status,
)
from slotbook.app.services import availability_services, booking_services, points_services
from slotbook.app.services.availability_services import Opening
from slotbook.app.services.shared_services import (
    TimezoneConverter,
    ensure_utc,
    parse_local_date,
    utc_now,
)
from slotbook.app.workers.notifications import NotificationDispatcher
from slotbook.config import EngineSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilityResult:
    slots: list[time]
    from_cache: bool


class BookingEngine:
    def __init__(
        self,
        settings: EngineSettings,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        cache: AvailabilityCache | None = None,
        dispatcher: NotificationDispatcher | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings
        self.session_factory = session_factory
        self.cache = cache or AvailabilityCache(
            MemoryBackend(),
            ttl_seconds=settings.cache_ttl_seconds,
            timeout_seconds=settings.cache_timeout_seconds,
        )
        self.dispatcher = dispatcher
        self.clock = clock
        self.converter = TimezoneConverter(settings.tz)

    # ---------------- Reads ---------------- #
    async def get_available_slots(
        self, provider_id: int, day: date | str, plan: str | None = None
    ) -> AvailabilityResult:
        """Free slot starts for ``provider_id`` on ``day`` (business wall clock).

        ``plan`` only partitions the cache key; all plans share the same hours.
        """
        d = parse_local_date(day)
        key = build_availability_key(provider_id, d, plan)
        cached = await self.cache.get(key)
        if cached is not None:
            return AvailabilityResult(slots=cached, from_cache=True)

        now = self.clock()

        async def _work(session: AsyncSession) -> list[time]:
            provider = await session.get(User, provider_id)
            if provider is None or provider.role is not UserRole.BARBER:
                raise NotFound("provider_not_found", f"no provider with id {provider_id}")
            return await availability_services.available_slots(session, self.settings, provider_id, d, now=now)

        slots = await booking_services.run_in_transaction(
            self.session_factory, self.settings, _work, op="get_available_slots", read_only=True
        )
        await self.cache.set(key, slots, self.settings.cache_ttl_seconds)
        return AvailabilityResult(slots=slots, from_cache=False)

    async def get_points_balance(self, user_id: int) -> int:
        async def _work(session: AsyncSession) -> int:
            return await points_services.balance(session, user_id)

        return await booking_services.run_in_transaction(
            self.session_factory, self.settings, _work, op="get_points_balance", read_only=True
        )

    async def get_points_entries(self, user_id: int, limit: int | None = 50) -> list[PointsLedgerEntry]:
        async def _work(session: AsyncSession) -> list[PointsLedgerEntry]:
            return await points_services.entries(session, user_id, limit=limit)

        return await booking_services.run_in_transaction(
            self.session_factory, self.settings, _work, op="get_points_entries", read_only=True
        )

    async def next_openings(self, provider_id: int, limit: int = 3, max_days: int = 30) -> list[Opening]:
        now = self.clock()

        async def _work(session: AsyncSession) -> list[Opening]:
            provider = await session.get(User, provider_id)
            if provider is None or provider.role is not UserRole.BARBER:
                raise NotFound("provider_not_found", f"no provider with id {provider_id}")
            return await availability_services.next_openings(
                session, self.settings, provider_id, limit=limit, max_days=max_days, now=now
            )

        return await booking_services.run_in_transaction(
            self.session_factory, self.settings, _work, op="next_openings", read_only=True
        )

    # ---------------- Writes ---------------- #
    async def book(
        self,
        client_id: int,
        provider_id: int,
        day: date | str,
        at: time | str,
        kind: AppointmentKind | str = AppointmentKind.STANDARD,
        idempotency_key: str | None = None,
    ) -> Appointment:
        outcome = await booking_services.book(
            self.session_factory,
            self.settings,
            client_id=client_id,
            provider_id=provider_id,
            local_date=day,
            local_time=at,
            kind=kind,
            idempotency_key=idempotency_key,
            now=self.clock(),
        )
        appt = outcome.appointment
        if outcome.created:
            await self._invalidate(appt)
            self._notify(appt, "booking_created")
        return appt

    async def cancel(
        self,
        appointment_id: int,
        actor: Identity,
        reason: str | None = None,
        hard_delete: bool = False,
    ) -> None:
        outcome = await booking_services.cancel(
            self.session_factory,
            self.settings,
            appointment_id=appointment_id,
            actor=actor,
            reason=reason,
            hard_delete=hard_delete,
            now=self.clock(),
        )
        if outcome.changed:
            await self._invalidate(outcome.appointment)
            self._notify(outcome.appointment, "booking_canceled", reason=reason)

    async def update_status(
        self, appointment_id: int, actor: Identity, status: AppointmentStatus | str
    ) -> Appointment | None:
        """Provider-side status change; CANCELED is handled as a cancellation."""
        if normalize_appointment_status(status) is AppointmentStatus.CANCELED:
            await self.cancel(appointment_id, actor)
            return None
        outcome = await booking_services.update_status(
            self.session_factory, self.settings, appointment_id=appointment_id, actor=actor, status=status
        )
        if outcome.changed:
            self._notify(outcome.appointment, "booking_status_changed", previous=outcome.previous.value)
        return outcome.appointment

    async def grant_points(
        self,
        user_id: int,
        delta: int,
        reason: str,
        ref_type: str | None = None,
        ref_id: str | None = None,
    ) -> PointsLedgerEntry:
        return await booking_services.grant_points(
            self.session_factory,
            self.settings,
            user_id=user_id,
            delta=delta,
            reason=reason,
            ref_type=ref_type,
            ref_id=ref_id,
            now=self.clock(),
        )

    # ---------------- Side effects ---------------- #
    async def _invalidate(self, appt: Appointment) -> None:
        day, _ = self.converter.to_local(ensure_utc(appt.starts_at))
        await self.cache.invalidate_day(appt.provider_id, day)

    def _notify(self, appt: Appointment, kind: str, **payload) -> None:
        if self.dispatcher is None:
            return
        day, at = self.converter.to_local(ensure_utc(appt.starts_at))
        event = NotificationEvent(
            kind=kind,
            appointment_id=appt.id,
            payload={"date": day.isoformat(), "time": at.strftime("%H:%M"), **payload},
        )
        for user_id in {appt.client_id, appt.provider_id}:
            self.dispatcher.submit(user_id, event)


__all__ = ["AvailabilityResult", "BookingEngine"]
