"""Points ledger reads.

Balances are derived from the append-only ledger every time; nothing stores a
running total. Writes go through ``booking_services`` only.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from slotbook.app.domain.models import PointsLedgerEntry

logger = logging.getLogger(__name__)

BOOKING_REF_TYPE = "BOOKING"
REASON_BOOKING_DEBIT = "BOOKING_DEBIT"
REASON_BOOKING_CANCEL_CREDIT = "BOOKING_CANCEL_CREDIT"


async def balance(session: AsyncSession, user_id: int) -> int:
    """Sum of all ledger deltas for ``user_id`` (0 without entries)."""
    stmt = select(func.coalesce(func.sum(PointsLedgerEntry.delta), 0)).where(
        PointsLedgerEntry.user_id == user_id
    )
    return int((await session.execute(stmt)).scalar() or 0)


async def entries(session: AsyncSession, user_id: int, *, limit: int | None = None) -> list[PointsLedgerEntry]:
    """Ledger entries of ``user_id``, newest first."""
    stmt = (
        select(PointsLedgerEntry)
        .where(PointsLedgerEntry.user_id == user_id)
        .order_by(PointsLedgerEntry.created_at.desc(), PointsLedgerEntry.id.desc())
    )
    if limit:
        stmt = stmt.limit(limit)
    return list((await session.execute(stmt)).scalars().all())


async def net_for_reference(session: AsyncSession, user_id: int, ref_type: str, ref_id: str) -> int:
    """Net delta recorded for one referenced object (e.g. an appointment)."""
    stmt = select(func.coalesce(func.sum(PointsLedgerEntry.delta), 0)).where(
        PointsLedgerEntry.user_id == user_id,
        PointsLedgerEntry.ref_type == ref_type,
        PointsLedgerEntry.ref_id == ref_id,
    )
    return int((await session.execute(stmt)).scalar() or 0)


__all__ = [
    "BOOKING_REF_TYPE",
    "REASON_BOOKING_DEBIT",
    "REASON_BOOKING_CANCEL_CREDIT",
    "balance",
    "entries",
    "net_for_reference",
]
