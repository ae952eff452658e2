"""Booking transactions: create, cancel, status changes and ledger writes.

Every public function runs its work inside one store transaction bounded by
``EngineSettings.store_timeout_seconds`` and maps store faults onto the error
taxonomy in ``slotbook.app.domain.errors``. Cache invalidation and
notifications are the caller's business (see ``services.engine``); these
functions only report what changed.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Awaitable, Callable, TypeVar

from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from slotbook.app.core.collaborators import Identity
from slotbook.app.core.db import READ_ONLY_OPTION
from slotbook.app.domain.errors import (
    BookingError,
    InsufficientPoints,
    Internal,
    InvalidArgument,
    NotFound,
    PermissionDenied,
    SlotUnavailable,
    TrialAlreadyUsed,
    Unavailable,
)
from slotbook.app.domain.models import (
    ACTIVE_STATUSES,
    BLOCKING_STATUSES,
    FREE_KINDS,
    Appointment,
    AppointmentKind,
    AppointmentStatus,
    PaymentStatus,
    PointsLedgerEntry,
    User,
    UserRole,
    normalize_appointment_kind,
    normalize_appointment_status,
)
from slotbook.app.services import points_services
from slotbook.app.services.availability_services import fetch_busy_intervals, generate_slots
from slotbook.app.services.shared_services import (
    TimezoneConverter,
    ensure_utc,
    parse_local_date,
    parse_local_time,
    utc_now,
)
from slotbook.config import EngineSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Status changes a provider (or owner) may apply; CANCELED goes through cancel().
ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.BOOKED: frozenset(
        {AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW}
    ),
    AppointmentStatus.CONFIRMED: frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW}),
}


@dataclass
class BookingOutcome:
    appointment: Appointment
    created: bool


@dataclass
class CancelOutcome:
    appointment: Appointment
    changed: bool
    refunded_points: int = 0
    hard_deleted: bool = False


@dataclass
class StatusOutcome:
    appointment: Appointment
    previous: AppointmentStatus
    changed: bool


# ---------------- Transaction plumbing ---------------- #
async def run_in_transaction(
    session_factory: async_sessionmaker[AsyncSession],
    settings: EngineSettings,
    work: Callable[[AsyncSession], Awaitable[T]],
    *,
    op: str,
    read_only: bool = False,
) -> T:
    """Run ``work`` in one transaction and translate store faults.

    IntegrityError -> SlotUnavailable (original error kept as ``__cause__``),
    timeouts and driver errors -> Unavailable, anything unexpected -> Internal.
    ``read_only`` transactions skip the SQLite write lock.
    """

    async def _tx() -> T:
        async with session_factory() as session:
            async with session.begin():
                if read_only:
                    await session.connection(execution_options={READ_ONLY_OPTION: True})
                return await work(session)

    try:
        return await asyncio.wait_for(_tx(), timeout=settings.store_timeout_seconds)
    except BookingError:
        raise
    except IntegrityError as e:
        logger.info("%s: integrity violation (slot likely taken): %s", op, e.orig)
        raise SlotUnavailable() from e
    except asyncio.TimeoutError as e:
        logger.warning("%s: store timed out after %ss", op, settings.store_timeout_seconds)
        raise Unavailable("store_timeout") from e
    except (OperationalError, DBAPIError) as e:
        logger.warning("%s: store unavailable: %s", op, e)
        raise Unavailable() from e
    except Exception as e:
        logger.exception("%s failed unexpectedly: %s", op, e)
        raise Internal() from e


def _is_postgres(session: AsyncSession) -> bool:
    return session.bind is not None and session.bind.dialect.name == "postgresql"


async def _advisory_lock(session: AsyncSession, provider_id: int, starts_at: datetime) -> None:
    # Serializes concurrent bookings of the same (provider, start) on PostgreSQL.
    k1 = int(provider_id) % 2147483647
    k2 = int(starts_at.timestamp()) % 2147483647
    await session.execute(text("SELECT pg_advisory_xact_lock(:k1, :k2)"), {"k1": k1, "k2": k2})


def derive_idempotency_key(client_id: int, provider_id: int, starts_at: datetime) -> str:
    raw = f"{client_id}|{provider_id}|{ensure_utc(starts_at).isoformat()}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _is_idempotency_violation(exc: BaseException | None) -> bool:
    return isinstance(exc, IntegrityError) and "idempotency_key" in str(exc.orig)


async def _find_by_key(session: AsyncSession, key: str) -> Appointment | None:
    stmt = select(Appointment).where(Appointment.idempotency_key == key)
    return (await session.execute(stmt)).scalars().first()


def _matches(appt: Appointment, client_id: int, provider_id: int, starts_at: datetime) -> bool:
    return (
        appt.client_id == client_id
        and appt.provider_id == provider_id
        and ensure_utc(appt.starts_at) == starts_at
    )


def _replay(appt: Appointment, client_id: int, provider_id: int, starts_at: datetime) -> BookingOutcome:
    if appt.status is AppointmentStatus.CANCELED:
        raise InvalidArgument("idempotency_key_reused", "idempotency key belongs to a canceled appointment")
    if not _matches(appt, client_id, provider_id, starts_at):
        logger.warning(
            "Idempotency key of appointment %s reused with different arguments (client=%s provider=%s)",
            appt.id,
            client_id,
            provider_id,
        )
        raise InvalidArgument("idempotency_key_reused", "idempotency key was used for a different booking")
    logger.info("Idempotent replay of appointment %s", appt.id)
    return BookingOutcome(appointment=appt, created=False)


# ---------------- Booking ---------------- #
async def _resolve_key(
    session: AsyncSession,
    supplied: str | None,
    client_id: int,
    provider_id: int,
    starts_at: datetime,
) -> tuple[str, Appointment | None]:
    """Return the key to use and the appointment already holding it (if any).

    A derived key that points at a canceled appointment is chained with that
    appointment's id so the same client can book the slot again.
    """
    if supplied:
        return supplied, await _find_by_key(session, supplied)
    base = derive_idempotency_key(client_id, provider_id, starts_at)
    key = base
    while True:
        existing = await _find_by_key(session, key)
        if existing is None or existing.status is not AppointmentStatus.CANCELED:
            return key, existing
        key = f"{base}:{existing.id}"


async def _client_has_overlap(
    session: AsyncSession, client_id: int, starts_at: datetime, ends_at: datetime
) -> bool:
    stmt = select(Appointment.id).where(
        Appointment.client_id == client_id,
        Appointment.status.in_(tuple(BLOCKING_STATUSES)),
        Appointment.starts_at < ends_at,
        Appointment.ends_at > starts_at,
    )
    return (await session.execute(stmt.limit(1))).first() is not None


async def _trial_used(session: AsyncSession, client_id: int) -> bool:
    stmt = select(Appointment.id).where(
        Appointment.client_id == client_id,
        Appointment.kind.in_(tuple(FREE_KINDS)),
        Appointment.status != AppointmentStatus.CANCELED,
    )
    return (await session.execute(stmt.limit(1))).first() is not None


async def book(
    session_factory: async_sessionmaker[AsyncSession],
    settings: EngineSettings,
    *,
    client_id: int,
    provider_id: int,
    local_date: date | str,
    local_time: time | str,
    kind: AppointmentKind | str = AppointmentKind.STANDARD,
    idempotency_key: str | None = None,
    now: datetime | None = None,
) -> BookingOutcome:
    """Create an appointment and debit its points in one transaction.

    Replays return the existing appointment with ``created=False``.
    """
    d = parse_local_date(local_date)
    t = parse_local_time(local_time)
    kind_enum = normalize_appointment_kind(kind)
    if kind_enum is None:
        raise InvalidArgument("invalid_kind", f"unknown appointment kind: {kind!r}")
    supplied_key = (idempotency_key or "").strip() or None
    if supplied_key and len(supplied_key) > 128:
        raise InvalidArgument("invalid_idempotency_key", "idempotency key longer than 128 characters")

    converter = TimezoneConverter(settings.tz)
    starts_at = converter.to_utc(d, t)
    ends_at = starts_at + timedelta(minutes=settings.slot_duration_minutes)
    now_utc = ensure_utc(now) or utc_now()
    cost = settings.points_cost(kind_enum)

    async def _conflict(session: AsyncSession, key: str, code: str | None = None) -> BookingOutcome:
        # The key may have been committed by a concurrent request since it was looked up.
        winner = await _find_by_key(session, key)
        if winner is not None:
            return _replay(winner, client_id, provider_id, starts_at)
        raise SlotUnavailable(code)

    async def _work(session: AsyncSession) -> BookingOutcome:
        # Lock before the key lookup so a retry waiting here sees the first request's row.
        if _is_postgres(session):
            await _advisory_lock(session, provider_id, starts_at)
        key, existing = await _resolve_key(session, supplied_key, client_id, provider_id, starts_at)
        if existing is not None:
            return _replay(existing, client_id, provider_id, starts_at)

        provider = await session.get(User, provider_id)
        if provider is None or provider.role is not UserRole.BARBER:
            raise NotFound("provider_not_found", f"no provider with id {provider_id}")

        # Row lock on the client serializes their concurrent debits (no-op on SQLite).
        client = (
            await session.execute(select(User).where(User.id == client_id).with_for_update())
        ).scalars().first()
        if client is None:
            raise NotFound("client_not_found", f"no client with id {client_id}")

        slots = await generate_slots(session, settings, provider_id, d, now=now_utc)
        if t not in slots:
            raise SlotUnavailable("outside_availability", "requested time is not an offered slot")

        if await fetch_busy_intervals(session, provider_id, starts_at, ends_at):
            return await _conflict(session, key)
        if await _client_has_overlap(session, client_id, starts_at, ends_at):
            return await _conflict(session, key, "client_already_has_booking_at_this_time")
        if kind_enum in FREE_KINDS and await _trial_used(session, client_id):
            raise TrialAlreadyUsed()

        if cost > 0:
            available = await points_services.balance(session, client_id)
            if available < cost:
                raise InsufficientPoints(required=cost, available=available)

        appt = Appointment(
            client_id=client_id,
            provider_id=provider_id,
            starts_at=starts_at,
            ends_at=ends_at,
            status=AppointmentStatus.BOOKED,
            kind=kind_enum,
            price_cents=settings.price_for(kind_enum),
            payment_status=PaymentStatus.WAIVED if kind_enum in FREE_KINDS else PaymentStatus.PENDING,
            idempotency_key=key,
            created_at=now_utc,
        )
        session.add(appt)
        await session.flush()

        if cost > 0:
            session.add(
                PointsLedgerEntry(
                    user_id=client_id,
                    delta=-cost,
                    reason=points_services.REASON_BOOKING_DEBIT,
                    ref_type=points_services.BOOKING_REF_TYPE,
                    ref_id=str(appt.id),
                    created_at=now_utc,
                )
            )
            await session.flush()
        return BookingOutcome(appointment=appt, created=True)

    try:
        outcome = await run_in_transaction(session_factory, settings, _work, op="book")
    except SlotUnavailable as e:
        if not _is_idempotency_violation(e.__cause__):
            raise
        # Lost an insert race on the same key: the winner's row is the answer.
        async def _reread(session: AsyncSession) -> BookingOutcome:
            key, existing = await _resolve_key(session, supplied_key, client_id, provider_id, starts_at)
            if existing is None:
                raise SlotUnavailable()
            return _replay(existing, client_id, provider_id, starts_at)

        return await run_in_transaction(session_factory, settings, _reread, op="book.replay")

    if outcome.created:
        logger.info(
            "Appointment %s booked: client=%s provider=%s starts_at=%s kind=%s",
            outcome.appointment.id,
            client_id,
            provider_id,
            starts_at.isoformat(),
            kind_enum.value,
        )
    return outcome


# ---------------- Cancellation ---------------- #
async def cancel(
    session_factory: async_sessionmaker[AsyncSession],
    settings: EngineSettings,
    *,
    appointment_id: int,
    actor: Identity,
    reason: str | None = None,
    hard_delete: bool = False,
    now: datetime | None = None,
) -> CancelOutcome:
    """Cancel (or, for owners, delete) an appointment and refund its net debit."""
    now_utc = ensure_utc(now) or utc_now()

    async def _work(session: AsyncSession) -> CancelOutcome:
        stmt = select(Appointment).where(Appointment.id == appointment_id).with_for_update()
        appt = (await session.execute(stmt)).scalars().first()
        if appt is None:
            raise NotFound("appointment_not_found", f"no appointment with id {appointment_id}")

        is_client = actor.user_id == appt.client_id
        is_provider = actor.user_id == appt.provider_id
        if not (is_client or is_provider or actor.is_owner):
            raise PermissionDenied()
        if hard_delete and not actor.is_owner:
            raise PermissionDenied("owner_only", "only owners may delete appointments")

        if appt.status is AppointmentStatus.CANCELED:
            if hard_delete:
                await session.delete(appt)
                return CancelOutcome(appointment=appt, changed=True, hard_deleted=True)
            return CancelOutcome(appointment=appt, changed=False)
        if appt.status not in ACTIVE_STATUSES:
            raise InvalidArgument("appointment_not_active", f"appointment is {appt.status.value}")
        if is_client and not (is_provider or actor.is_owner) and ensure_utc(appt.starts_at) < now_utc:
            raise InvalidArgument("appointment_in_past", "past appointments cannot be canceled")

        refund = -await points_services.net_for_reference(
            session, appt.client_id, points_services.BOOKING_REF_TYPE, str(appt.id)
        )
        if refund > 0:
            session.add(
                PointsLedgerEntry(
                    user_id=appt.client_id,
                    delta=refund,
                    reason=points_services.REASON_BOOKING_CANCEL_CREDIT,
                    ref_type=points_services.BOOKING_REF_TYPE,
                    ref_id=str(appt.id),
                    created_at=now_utc,
                )
            )

        if hard_delete:
            await session.delete(appt)
        else:
            appt.status = AppointmentStatus.CANCELED
            appt.cancel_reason = (reason or "").strip() or None
            appt.canceled_at = now_utc
        await session.flush()
        return CancelOutcome(
            appointment=appt, changed=True, refunded_points=max(refund, 0), hard_deleted=hard_delete
        )

    outcome = await run_in_transaction(session_factory, settings, _work, op="cancel")
    if outcome.changed:
        logger.info(
            "Appointment %s %s by user %s (refund=%s)",
            appointment_id,
            "deleted" if outcome.hard_deleted else "canceled",
            actor.user_id,
            outcome.refunded_points,
        )
    return outcome


# ---------------- Status transitions ---------------- #
async def update_status(
    session_factory: async_sessionmaker[AsyncSession],
    settings: EngineSettings,
    *,
    appointment_id: int,
    actor: Identity,
    status: AppointmentStatus | str,
) -> StatusOutcome:
    target = normalize_appointment_status(status)
    if target is None:
        raise InvalidArgument("invalid_status", f"unknown status: {status!r}")
    if target is AppointmentStatus.CANCELED:
        raise InvalidArgument("use_cancel", "cancellation goes through cancel()")

    async def _work(session: AsyncSession) -> StatusOutcome:
        stmt = select(Appointment).where(Appointment.id == appointment_id).with_for_update()
        appt = (await session.execute(stmt)).scalars().first()
        if appt is None:
            raise NotFound("appointment_not_found", f"no appointment with id {appointment_id}")
        if not (actor.user_id == appt.provider_id or actor.is_owner):
            raise PermissionDenied()
        previous = appt.status
        if previous is target:
            return StatusOutcome(appointment=appt, previous=previous, changed=False)
        if target not in ALLOWED_TRANSITIONS.get(previous, frozenset()):
            raise InvalidArgument(
                "invalid_transition", f"cannot move appointment from {previous.value} to {target.value}"
            )
        appt.status = target
        await session.flush()
        return StatusOutcome(appointment=appt, previous=previous, changed=True)

    outcome = await run_in_transaction(session_factory, settings, _work, op="update_status")
    if outcome.changed:
        logger.info(
            "Appointment %s status %s -> %s by user %s",
            appointment_id,
            outcome.previous.value,
            target.value,
            actor.user_id,
        )
    return outcome


# ---------------- Ledger writes ---------------- #
async def grant_points(
    session_factory: async_sessionmaker[AsyncSession],
    settings: EngineSettings,
    *,
    user_id: int,
    delta: int,
    reason: str,
    ref_type: str | None = None,
    ref_id: str | None = None,
    now: datetime | None = None,
) -> PointsLedgerEntry:
    """Append a positive ledger entry (membership renewals, manual credits)."""
    if int(delta) <= 0:
        raise InvalidArgument("invalid_delta", "granted points must be positive")
    reason_clean = (reason or "").strip()
    if not reason_clean:
        raise InvalidArgument("invalid_reason", "a reason is required")

    async def _work(session: AsyncSession) -> PointsLedgerEntry:
        if await session.get(User, user_id) is None:
            raise NotFound("user_not_found", f"no user with id {user_id}")
        entry = PointsLedgerEntry(
            user_id=user_id,
            delta=int(delta),
            reason=reason_clean[:64],
            ref_type=ref_type,
            ref_id=str(ref_id) if ref_id is not None else None,
            created_at=ensure_utc(now) or utc_now(),
        )
        session.add(entry)
        await session.flush()
        return entry

    entry = await run_in_transaction(session_factory, settings, _work, op="grant_points")
    logger.info("Granted %s point(s) to user %s (%s)", delta, user_id, reason_clean)
    return entry


__all__ = [
    "ALLOWED_TRANSITIONS",
    "BookingOutcome",
    "CancelOutcome",
    "StatusOutcome",
    "run_in_transaction",
    "derive_idempotency_key",
    "book",
    "cancel",
    "update_status",
    "grant_points",
]
