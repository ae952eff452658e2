import asyncio
from contextlib import asynccontextmanager

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from slotbook.app.domain.errors import Internal, InvalidArgument, SlotUnavailable, Unavailable
from slotbook.app.services.booking_services import run_in_transaction
from slotbook.config import EngineSettings


class _FakeSession:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    @asynccontextmanager
    async def begin(self):
        yield self


def _run(work, store_timeout_seconds=1.0):
    cfg = EngineSettings(store_timeout_seconds=store_timeout_seconds)
    return asyncio.run(run_in_transaction(_FakeSession, cfg, work, op="test"))


def test_returns_work_result():
    async def work(session):
        assert isinstance(session, _FakeSession)
        return 42

    assert _run(work) == 42


def test_slow_store_maps_to_store_timeout():
    async def work(session):
        await asyncio.sleep(1)

    with pytest.raises(Unavailable) as exc:
        _run(work, store_timeout_seconds=0.05)
    assert exc.value.code == "store_timeout"
    assert exc.value.retryable is True


def test_driver_error_maps_to_unavailable():
    async def work(session):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    with pytest.raises(Unavailable) as exc:
        _run(work)
    assert exc.value.code == "unavailable"


def test_unexpected_error_maps_to_internal(caplog):
    async def work(session):
        raise KeyError("boom")

    with pytest.raises(Internal) as exc:
        _run(work)
    assert exc.value.code == "internal"
    assert isinstance(exc.value.__cause__, KeyError)
    assert "test failed unexpectedly" in caplog.text


def test_integrity_error_maps_to_slot_unavailable():
    original = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

    async def work(session):
        raise original

    with pytest.raises(SlotUnavailable) as exc:
        _run(work)
    assert exc.value.__cause__ is original


def test_booking_errors_pass_through():
    async def work(session):
        raise InvalidArgument("invalid_date", "bad date")

    with pytest.raises(InvalidArgument) as exc:
        _run(work)
    assert exc.value.code == "invalid_date"
