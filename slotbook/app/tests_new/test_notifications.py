import asyncio

from slotbook.app.core.collaborators import LoggingNotifier, NotificationEvent
from slotbook.app.workers.notifications import NotificationDispatcher, start_notification_dispatcher

from .conftest import MONDAY


class RecordingNotifier:
    def __init__(self, fail_for: set[int] | None = None) -> None:
        self.calls: list[tuple[int, NotificationEvent]] = []
        self.fail_for = fail_for or set()

    async def notify(self, user_id, event):
        if user_id in self.fail_for:
            raise RuntimeError("gateway down")
        self.calls.append((user_id, event))


def _event(appointment_id=1):
    return NotificationEvent(kind="booking_created", appointment_id=appointment_id)


def test_full_queue_drops_with_warning(caplog):
    notifier = RecordingNotifier()
    dispatcher = NotificationDispatcher(notifier, workers=1, queue_size=2)

    async def scenario():
        accepted = [dispatcher.submit(uid, _event()) for uid in (1, 2, 3)]
        await dispatcher.drain()
        return accepted

    accepted = asyncio.run(scenario())
    assert accepted == [True, True, False]
    assert dispatcher.dropped == 1
    assert [uid for uid, _ in notifier.calls] == [1, 2]
    assert "queue full" in caplog.text


def test_failing_notifier_is_counted_not_raised():
    notifier = RecordingNotifier(fail_for={2})

    async def scenario():
        dispatcher, stop = await start_notification_dispatcher(notifier, workers=2, queue_size=10)
        for uid in (1, 2, 3):
            dispatcher.submit(uid, _event())
        await dispatcher.drain()
        await stop()
        return dispatcher

    dispatcher = asyncio.run(scenario())
    assert dispatcher.delivered == 2
    assert dispatcher.failed == 1
    assert dispatcher.running is False
    assert sorted(uid for uid, _ in notifier.calls) == [1, 3]


def test_stop_delivers_pending_events():
    notifier = RecordingNotifier()

    async def scenario():
        dispatcher, stop = await start_notification_dispatcher(notifier, workers=1, queue_size=10)
        for i in range(5):
            dispatcher.submit(10, _event(i))
        await stop()
        return dispatcher

    dispatcher = asyncio.run(scenario())
    assert dispatcher.delivered == 5
    assert [e.appointment_id for _, e in notifier.calls] == [0, 1, 2, 3, 4]


def test_logging_notifier_writes_a_line(caplog):
    caplog.set_level("INFO", logger="slotbook.notifications")
    asyncio.run(LoggingNotifier().notify(5, _event(9)))
    assert "event=booking_created appointment=9" in caplog.text


def test_engine_notifies_client_and_provider_after_commit(world_factory):
    notifier = RecordingNotifier()

    async def scenario():
        w = await world_factory()
        try:
            dispatcher = NotificationDispatcher(notifier, workers=1, queue_size=10)
            w.engine.dispatcher = dispatcher
            await w.engine.grant_points(w.client_id, 10, "signup_bonus")
            appt = await w.engine.book(w.client_id, w.barber_id, MONDAY, "10:00")
            # replay: nothing new to announce
            await w.engine.book(w.client_id, w.barber_id, MONDAY, "10:00")
            await dispatcher.drain()
            return w, appt
        finally:
            await w.dispose()

    w, appt = asyncio.run(scenario())
    assert sorted(uid for uid, _ in notifier.calls) == sorted([w.client_id, w.barber_id])
    event = notifier.calls[0][1]
    assert event.kind == "booking_created"
    assert event.appointment_id == appt.id
    assert event.payload == {"date": MONDAY, "time": "10:00"}
