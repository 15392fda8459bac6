"""Notifications: what the engine tells users, and how it gets out the door.

The engine only decides *that* a user should hear about something and
*what kind* of message it is. Delivery is queued: `NotificationDispatcher.notify`
returns immediately and a background worker hands each message to a
`Notifier` through a circuit breaker. Messages that still fail land in the
dead letter queue for a later `retry_dead_letters()`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from core.integrations.webhooks import WebhookClient
from core.models.base import utcnow
from core.resilience import CircuitBreaker, DeadLetterQueue

logger = logging.getLogger(__name__)

DLQ_NAME = "notifications"


class NotificationKind(str, Enum):
    OVERDUE = "overdue"
    HOLD_READY = "hold-ready"
    HOLD_EXPIRED = "hold-expired"


@dataclass
class Notification:
    user_email: str
    kind: NotificationKind
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_email": self.user_email,
            "kind": self.kind.value,
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Notification":
        return cls(
            user_email=data["user_email"],
            kind=NotificationKind(data["kind"]),
            payload=dict(data.get("payload") or {}),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


class Notifier(Protocol):
    """Transport for a single notification. Raise on failure."""

    async def send(self, notification: Notification) -> None: ...


# ---------------------------------------------------------------------------
# Transports
# ---------------------------------------------------------------------------

class LoggingNotifier:
    """Writes notifications to the log. Used when no provider is configured."""

    async def send(self, notification: Notification) -> None:
        logger.info(
            "notification %s -> %s: %s",
            notification.kind.value,
            notification.user_email,
            notification.payload,
        )


class WebhookNotifier:
    """Posts each notification as a signed JSON webhook."""

    def __init__(self, client: WebhookClient):
        self.client = client

    async def send(self, notification: Notification) -> None:
        await self.client.post(notification.kind.value, notification.to_dict())


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

class NotificationDispatcher:
    """Queues notifications and delivers them off the request path."""

    def __init__(
        self,
        notifier: Notifier,
        breaker: CircuitBreaker | None = None,
        dead_letters: DeadLetterQueue | None = None,
        queue_size: int = 1000,
        max_retries: int = 3,
    ):
        self.notifier = notifier
        self.breaker = breaker or CircuitBreaker()
        self.dead_letters = dead_letters or DeadLetterQueue()
        self.max_retries = max_retries
        self._queue: asyncio.Queue[Notification] = asyncio.Queue(maxsize=queue_size)
        self._worker: asyncio.Task | None = None
        self.delivered = 0

    def notify(
        self,
        user_email: str,
        kind: NotificationKind,
        payload: dict[str, Any] | None = None,
    ) -> Notification:
        """Enqueue a notification; never blocks and never raises on delivery."""
        notification = Notification(user_email=user_email, kind=kind, payload=payload or {})
        try:
            self._queue.put_nowait(notification)
        except asyncio.QueueFull:
            logger.warning("notification queue full, dead-lettering %s for %s", kind.value, user_email)
            self._dead_letter(notification, "notification queue full")
        return notification

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if not self.running:
            self._worker = asyncio.create_task(self._run(), name="notification-dispatcher")

    async def stop(self, drain: bool = True) -> None:
        if drain and self.running:
            await self._queue.join()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    async def join(self) -> None:
        """Wait until everything queued so far has been handled."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            notification = await self._queue.get()
            try:
                await self._deliver(notification)
            finally:
                self._queue.task_done()

    async def _deliver(self, notification: Notification) -> bool:
        try:
            await self.breaker.call(self.notifier.send, notification)
        except Exception as exc:
            logger.warning(
                "delivery of %s to %s failed: %s",
                notification.kind.value,
                notification.user_email,
                exc,
            )
            self._dead_letter(notification, str(exc))
            return False
        self.delivered += 1
        return True

    def _dead_letter(self, notification: Notification, error: str) -> None:
        self.dead_letters.enqueue(
            queue_name=DLQ_NAME,
            event_type=notification.kind.value,
            payload=notification.to_dict(),
            error=error,
            max_retries=self.max_retries,
        )

    async def retry_dead_letters(self, limit: int = 50) -> int:
        """Re-attempt pending dead letters once each. Returns count resolved.

        Resolved letters are purged at the end of the pass; exhausted ones
        are logged and dropped.
        """
        resolved = 0
        for letter in self.dead_letters.list_pending(DLQ_NAME, limit=limit):
            if not self.dead_letters.mark_retrying(letter.id):
                continue
            notification = Notification.from_dict(letter.payload)
            try:
                await self.breaker.call(self.notifier.send, notification)
            except Exception as exc:
                self.dead_letters.mark_failed(letter.id, str(exc))
                continue
            self.dead_letters.mark_resolved(letter.id)
            self.delivered += 1
            resolved += 1
        if resolved:
            logger.info("re-delivered %d dead-lettered notifications", resolved)
        self.dead_letters.purge_resolved(DLQ_NAME)
        for letter in self.dead_letters.purge_discarded(DLQ_NAME):
            logger.error(
                "dropping %s notification for %s after %d retries: %s",
                letter.event_type,
                letter.payload.get("user_email"),
                letter.retry_count,
                letter.error,
            )
        return resolved
