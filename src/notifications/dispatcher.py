"""
Notification dispatcher - fire-and-forget delivery through background workers.

Services never talk to a channel directly. They hand an event to the
dispatcher and carry on; delivery happens later on a worker coroutine with
its own database session, so a slow SMTP server or a failing webhook can
neither block nor fail the operation that triggered it.

Key features:
- notify(): non-blocking enqueue; the queue is unbounded so no event is ever
  dropped, a backlog above backlog_warning is logged
- notify_on_commit(): defer the enqueue until the caller's session commits,
  discard on rollback
- Bounded retries per channel, then a dead letter list
- Graceful shutdown with queue draining

Design:
- asyncio.Queue for work distribution, one long-running coroutine per worker
- Dead letters are kept in memory (inspect via dead_letters)
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from src.notifications.channels import Channel, LogChannel, NotificationEvent

log = structlog.get_logger(__name__)

_PENDING_KEY = "pending_notifications"
_HOOKED_KEY = "notification_hooks_installed"


@dataclass
class DeadLetter:
    event: NotificationEvent
    channel: str
    error: str
    attempts: int


class NotificationDispatcher:
    """
    Queue plus worker pool delivering NotificationEvents to every channel.

    Example usage:
        dispatcher = NotificationDispatcher(channels=[InAppChannel(factory)])
        await dispatcher.start()

        dispatcher.notify(user_id, NotificationKind.MESSAGE_RECEIVED, {...})

        await dispatcher.shutdown()
    """

    def __init__(
        self,
        channels: Sequence[Channel] | None = None,
        *,
        workers: int = 2,
        backlog_warning: int = 1000,
        max_retries: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        self._channels: list[Channel] = list(channels) if channels else [LogChannel()]
        self._worker_count = workers
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._backlog_warning = backlog_warning
        self._queue: asyncio.Queue[NotificationEvent] = asyncio.Queue()
        # per instance so two dispatchers on one session keep their events apart
        self._pending_key = f"{_PENDING_KEY}:{id(self)}"
        self._hooked_key = f"{_HOOKED_KEY}:{id(self)}"
        self._workers: list[asyncio.Task[None]] = []
        self._dead_letters: list[DeadLetter] = []
        self._shutdown_event = asyncio.Event()
        self._running = False
        self.delivered = 0
        self.backlog_warnings = 0

    @property
    def channels(self) -> list[Channel]:
        return list(self._channels)

    @property
    def dead_letters(self) -> list[DeadLetter]:
        return list(self._dead_letters)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        """Start worker coroutines."""
        if self._running:
            log.warning("notification.dispatcher_already_running")
            return

        self._running = True
        self._shutdown_event.clear()
        for i in range(self._worker_count):
            self._workers.append(asyncio.create_task(self._worker_loop(worker_id=i)))

        log.info(
            "notification.dispatcher_started",
            workers=self._worker_count,
            channels=[c.name for c in self._channels],
        )

    async def shutdown(self, *, drain: bool = True, timeout: float = 10.0) -> None:
        """Stop the workers, by default after delivering what is queued."""
        if not self._running:
            return

        log.info("notification.dispatcher_shutdown_initiated", drain=drain, pending=self.pending)
        if drain:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=timeout)
            except TimeoutError:
                log.warning("notification.dispatcher_drain_timeout", pending=self.pending)

        self._running = False
        self._shutdown_event.set()
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()

        log.info(
            "notification.dispatcher_stopped",
            delivered=self.delivered,
            backlog_warnings=self.backlog_warnings,
            dead_letters=len(self._dead_letters),
        )

    async def join(self) -> None:
        """Wait until every queued event has been processed."""
        await self._queue.join()

    def notify(self, user_id: uuid.UUID, kind: str, payload: dict[str, Any] | None = None) -> None:
        """Enqueue a notification and return immediately. Never raises."""
        self._enqueue(NotificationEvent(user_id=user_id, kind=kind, payload=dict(payload or {})))

    def notify_on_commit(
        self,
        session: AsyncSession,
        user_id: uuid.UUID,
        kind: str,
        payload: dict[str, Any] | None = None,
    ) -> None:
        """Enqueue the notification once ``session`` commits.

        If the transaction rolls back the event is discarded, so nobody is
        told about a change that never happened.
        """
        sync_session = session.sync_session
        self._install_hooks(sync_session)
        sync_session.info.setdefault(self._pending_key, []).append(
            NotificationEvent(user_id=user_id, kind=kind, payload=dict(payload or {}))
        )

    def _install_hooks(self, sync_session: Session) -> None:
        if sync_session.info.get(self._hooked_key):
            return

        def _after_commit(sess: Session) -> None:
            for pending in sess.info.pop(self._pending_key, []):
                self._enqueue(pending)

        def _after_rollback(sess: Session) -> None:
            discarded = sess.info.pop(self._pending_key, [])
            if discarded:
                log.debug("notification.discarded_on_rollback", count=len(discarded))

        event.listen(sync_session, "after_commit", _after_commit)
        event.listen(sync_session, "after_rollback", _after_rollback)
        sync_session.info[self._hooked_key] = True

    def _enqueue(self, notification: NotificationEvent) -> None:
        self._queue.put_nowait(notification)
        backlog = self._queue.qsize()
        if backlog > self._backlog_warning:
            self.backlog_warnings += 1
            log.warning(
                "notification.backlog_high",
                backlog=backlog,
                threshold=self._backlog_warning,
                kind=notification.kind,
            )
            return
        log.debug(
            "notification.enqueued",
            event_id=notification.id,
            kind=notification.kind,
            queue_size=backlog,
        )

    async def _worker_loop(self, worker_id: int) -> None:
        log.debug("notification.worker_started", worker_id=worker_id)

        while not self._shutdown_event.is_set():
            try:
                # Wait with timeout to check shutdown periodically
                notification = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except TimeoutError:
                continue

            try:
                await self._deliver(notification, worker_id=worker_id)
            finally:
                self._queue.task_done()

        log.debug("notification.worker_stopped", worker_id=worker_id)

    async def _deliver(self, notification: NotificationEvent, worker_id: int) -> None:
        for channel in self._channels:
            await self._deliver_to(channel, notification, worker_id)
        self.delivered += 1

    async def _deliver_to(
        self,
        channel: Channel,
        notification: NotificationEvent,
        worker_id: int,
    ) -> None:
        attempts = 0
        while True:
            attempts += 1
            try:
                await channel.deliver(notification)
                return
            except Exception as exc:
                log.error(
                    "notification.delivery_failed",
                    worker_id=worker_id,
                    event_id=notification.id,
                    channel=channel.name,
                    kind=notification.kind,
                    attempt=attempts,
                    error=str(exc),
                )
                if attempts > self._max_retries:
                    self._dead_letters.append(
                        DeadLetter(
                            event=notification,
                            channel=channel.name,
                            error=str(exc),
                            attempts=attempts,
                        )
                    )
                    log.error(
                        "notification.dead_letter",
                        event_id=notification.id,
                        channel=channel.name,
                    )
                    return
                await asyncio.sleep(self._retry_delay * attempts)


_dispatcher: NotificationDispatcher | None = None


def set_dispatcher(dispatcher: NotificationDispatcher | None) -> None:
    global _dispatcher
    _dispatcher = dispatcher


def get_dispatcher() -> NotificationDispatcher:
    """Return the process-wide dispatcher (raises if not configured)."""
    if _dispatcher is None:
        raise RuntimeError("Notification dispatcher not configured. Call set_dispatcher() first.")
    return _dispatcher
