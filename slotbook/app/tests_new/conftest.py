"""Test configuration to ensure project package import resolution.

Adds the repository root to sys.path so `import slotbook` works in CI where the
checkout directory may not be on PYTHONPATH by default, and provides a
``world_factory`` fixture: a fresh file-backed SQLite store seeded with one
barber (Monday 09:00-17:00), two clients and an owner.
"""

from __future__ import annotations

import sys
from datetime import UTC, datetime
from pathlib import Path
from types import SimpleNamespace

import pytest

ROOT = Path(__file__).resolve().parents[3]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy.pool import NullPool  # noqa: E402

from slotbook.app.core.db import init_db, make_session_factory  # noqa: E402
from slotbook.app.domain.models import User, UserRole  # noqa: E402
from slotbook.app.services.availability_services import WeeklyAvailabilityRepo  # noqa: E402
from slotbook.app.services.engine import BookingEngine  # noqa: E402
from slotbook.config import EngineSettings  # noqa: E402

# Monday 2026-10-12 08:00 in Los Angeles; the scenario day 2026-10-19 is a week later.
FIXED_NOW = datetime(2026, 10, 12, 15, 0, tzinfo=UTC)
MONDAY = "2026-10-19"


@pytest.fixture
def world_factory(tmp_path):
    counter = {"n": 0}

    async def _make(*, now: datetime = FIXED_NOW, week: dict | None = None, **overrides) -> SimpleNamespace:
        counter["n"] += 1
        db_file = tmp_path / "slotbook-{}.db".format(counter["n"])
        url = f"sqlite+aiosqlite:///{db_file}"
        settings = EngineSettings(database_url=url, **overrides)
        session_factory = make_session_factory(url, poolclass=NullPool)
        await init_db(engine=session_factory.kw["bind"])

        async with session_factory() as session:
            async with session.begin():
                barber = User(email="barber@example.com", name="Barber", role=UserRole.BARBER)
                client = User(email="client@example.com", name="Client", role=UserRole.CLIENT)
                other = User(email="other@example.com", name="Other", role=UserRole.CLIENT)
                owner = User(email="owner@example.com", name="Owner", role=UserRole.OWNER)
                session.add_all([barber, client, other, owner])
                await session.flush()
                await WeeklyAvailabilityRepo.replace_week(
                    session, barber.id, week if week is not None else {1: ("09:00", "17:00")}
                )

        clock = SimpleNamespace(now=now)
        engine = BookingEngine(settings, session_factory, clock=lambda: clock.now)

        async def dispose() -> None:
            await session_factory.kw["bind"].dispose()

        return SimpleNamespace(
            settings=settings,
            session_factory=session_factory,
            engine=engine,
            clock=clock,
            barber_id=barber.id,
            client_id=client.id,
            other_id=other.id,
            owner_id=owner.id,
            dispose=dispose,
        )

    return _make
