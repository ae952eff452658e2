"""Bounded notification dispatcher.

Bookings submit (user_id, event) pairs; a fixed pool of worker tasks drains
the queue and calls the configured ``Notifier``. A full queue drops the event
with a warning, and delivery failures are logged only, so a notification
problem never affects a committed booking.

``start_notification_dispatcher`` returns an async callable that stops the
workers gracefully.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from slotbook.app.core.collaborators import NotificationEvent, Notifier

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    def __init__(self, notifier: Notifier, *, workers: int = 4, queue_size: int = 1000) -> None:
        self.notifier = notifier
        self.workers = max(1, int(workers))
        self.queue: asyncio.Queue[tuple[int, NotificationEvent]] = asyncio.Queue(maxsize=max(1, int(queue_size)))
        self._tasks: list[asyncio.Task] = []
        self.dropped = 0
        self.delivered = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def submit(self, user_id: int, event: NotificationEvent) -> bool:
        """Enqueue without waiting; False when the event was dropped."""
        try:
            self.queue.put_nowait((user_id, event))
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Notification queue full, dropping %s for user %s (appointment %s)",
                event.kind,
                user_id,
                event.appointment_id,
            )
            return False

    async def _deliver(self, user_id: int, event: NotificationEvent) -> None:
        try:
            await self.notifier.notify(user_id, event)
            self.delivered += 1
        except Exception as e:
            self.failed += 1
            logger.warning("Notification %s to user %s failed: %s", event.kind, user_id, e)

    async def _worker(self, idx: int) -> None:
        while True:
            user_id, event = await self.queue.get()
            try:
                await self._deliver(user_id, event)
            finally:
                self.queue.task_done()

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"notify-worker-{i}") for i in range(self.workers)
        ]
        logger.info("Notification dispatcher started (workers=%s, queue=%s)", self.workers, self.queue.maxsize)

    async def drain(self) -> None:
        """Wait until everything submitted so far has been handled."""
        if not self._tasks:
            # No workers: deliver inline so nothing is lost on shutdown.
            while not self.queue.empty():
                user_id, event = self.queue.get_nowait()
                await self._deliver(user_id, event)
                self.queue.task_done()
            return
        await self.queue.join()

    async def stop(self, timeout: float = 5.0) -> None:
        try:
            await asyncio.wait_for(self.drain(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Notification dispatcher stopped with %d event(s) pending", self.queue.qsize())
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []


async def start_notification_dispatcher(
    notifier: Notifier, *, workers: int = 4, queue_size: int = 1000
) -> tuple[NotificationDispatcher, Callable[[], Awaitable[None]]]:
    """Start the dispatcher and return it together with an async stop() function."""
    dispatcher = NotificationDispatcher(notifier, workers=workers, queue_size=queue_size)
    dispatcher.start()

    async def _stop() -> None:
        try:
            await dispatcher.stop()
        except Exception:
            logger.exception("notifications: stop failed")

    return dispatcher, _stop


__all__ = ["NotificationDispatcher", "start_notification_dispatcher"]
