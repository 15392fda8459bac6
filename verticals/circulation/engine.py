"""CirculationEngine: the operation surface consumed by the request layer.

Wires the Inventory Controller, Circulation State Machine, Holds Queue
Manager and Overdue Sweeper over one unit of work, and turns their typed
failures into OperationResult values:

    result = await engine.approve(txn_id)
    if not result.ok:
        ...  # result.error is an ErrorKind, result.message is user-safe

InvariantViolation is the exception: it is logged at ERROR and re-raised,
after the unit of work has rolled back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.integrations.webhooks import WebhookClient
from core.locks import KeyedLock
from core.models.base import as_utc_naive, utcnow
from core.observability.otel_setup import get_tracer
from core.resilience import CircuitBreaker, DeadLetterQueue
from patterns.domain_config import CirculationConfig
from verticals.circulation.circulation import CirculationStateMachine
from verticals.circulation.errors import CirculationError, ErrorKind, InvariantViolation, NotFound
from verticals.circulation.holds import HoldsQueueManager
from verticals.circulation.inventory import InventoryController
from verticals.circulation.notifier import (
    LoggingNotifier,
    NotificationDispatcher,
    Notifier,
    WebhookNotifier,
)
from verticals.circulation.repository import BookRepository
from verticals.circulation.states import HoldStatus, ReturnCondition, TransactionType
from verticals.circulation.sweeper import OverdueSweeper
from verticals.circulation.unit_of_work import CirculationUnit

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """Outcome of one engine operation: a value, or a typed failure."""

    ok: bool
    operation: str
    value: Any = None
    error: Optional[ErrorKind] = None
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, operation: str, value: Any) -> "OperationResult":
        return cls(ok=True, operation=operation, value=value)

    @classmethod
    def failure(cls, operation: str, exc: CirculationError) -> "OperationResult":
        return cls(
            ok=False,
            operation=operation,
            error=exc.kind,
            message=exc.message,
            details=dict(exc.details),
        )


class CirculationEngine:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: NotificationDispatcher,
        config: CirculationConfig | None = None,
        locks: KeyedLock | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or CirculationConfig.default()
        self.dispatcher = dispatcher
        self.clock = clock
        self.unit = CirculationUnit(session_factory, dispatcher, locks)
        self.inventory = InventoryController()
        self.holds = HoldsQueueManager(self.unit, self.config)
        self.circulation = CirculationStateMachine(self.unit, self.config, self.inventory, self.holds)
        self.sweeper = OverdueSweeper(self.unit)
        self.tracer = get_tracer(__name__)

    # -- Catalog ------------------------------------------------------------

    async def register_book(self, title: str, total_stock: int) -> OperationResult:
        async def op():
            async with self.unit.session() as session:
                return await self.inventory.register(session, title, total_stock)

        return await self._run("register_book", op)

    async def get_book(self, book_id: str) -> OperationResult:
        async def op():
            async with self.unit.session() as session:
                book = await BookRepository(session).get(book_id)
            if book is None:
                raise NotFound(f"Book {book_id} not found", {"book_id": book_id})
            return book

        return await self._run("get_book", op, {"book.id": book_id})

    async def adjust_total_stock(
        self,
        book_id: str,
        total_stock: int,
        now: datetime | None = None,
    ) -> OperationResult:
        """Change a title's copy count; added copies go to waiting holders first."""
        async def op():
            when = self._now(now)
            async with self.unit.for_book(book_id) as scope:
                delta = await self.inventory.set_total_stock(scope, total_stock)
                if delta > 0:
                    await self.holds.promote_while_free(scope, when)
                return scope.book

        return await self._run("adjust_total_stock", op, {"book.id": book_id})

    # -- Transactions -------------------------------------------------------

    async def request_borrow(self, book_id: str, user_email: str, now: datetime | None = None) -> OperationResult:
        return await self._run(
            "request_borrow",
            lambda: self.circulation.request_borrow(book_id, user_email, self._now(now)),
            {"book.id": book_id},
        )

    async def request_reserve(self, book_id: str, user_email: str, now: datetime | None = None) -> OperationResult:
        return await self._run(
            "request_reserve",
            lambda: self.circulation.request_reserve(book_id, user_email, self._now(now)),
            {"book.id": book_id},
        )

    async def approve(self, transaction_id: str, now: datetime | None = None) -> OperationResult:
        return await self._run(
            "approve",
            lambda: self.circulation.approve(transaction_id, self._now(now)),
            {"transaction.id": transaction_id},
        )

    async def reject(
        self,
        transaction_id: str,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> OperationResult:
        return await self._run(
            "reject",
            lambda: self.circulation.reject(transaction_id, reason, self._now(now)),
            {"transaction.id": transaction_id},
        )

    async def cancel(self, transaction_id: str, user_email: str, now: datetime | None = None) -> OperationResult:
        return await self._run(
            "cancel",
            lambda: self.circulation.cancel(transaction_id, user_email, self._now(now)),
            {"transaction.id": transaction_id},
        )

    async def request_return(
        self,
        transaction_id: str,
        condition: ReturnCondition = ReturnCondition.GOOD,
        now: datetime | None = None,
    ) -> OperationResult:
        return await self._run(
            "request_return",
            lambda: self.circulation.request_return(transaction_id, condition, self._now(now)),
            {"transaction.id": transaction_id},
        )

    async def reject_return(
        self,
        transaction_id: str,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> OperationResult:
        return await self._run(
            "reject_return",
            lambda: self.circulation.reject_return(transaction_id, reason, self._now(now)),
            {"transaction.id": transaction_id},
        )

    async def complete_return(
        self,
        transaction_id: str,
        condition: ReturnCondition | None = None,
        now: datetime | None = None,
    ) -> OperationResult:
        return await self._run(
            "complete_return",
            lambda: self.circulation.complete_return(transaction_id, self._now(now), condition),
            {"transaction.id": transaction_id},
        )

    async def get_transaction(self, transaction_id: str) -> OperationResult:
        return await self._run(
            "get_transaction",
            lambda: self.circulation.get(transaction_id),
            {"transaction.id": transaction_id},
        )

    async def user_transactions(self, user_email: str) -> OperationResult:
        return await self._run("user_transactions", lambda: self.circulation.for_user(user_email))

    async def pending_requests(self, txn_type: TransactionType | None = None) -> OperationResult:
        """The librarian's worklist: pending borrows and reserves, or one type."""
        return await self._run(
            "pending_requests",
            lambda: self.circulation.pending(txn_type),
            {"transaction.type": txn_type.value if txn_type else "any"},
        )

    async def pending_returns(self) -> OperationResult:
        return await self._run("pending_returns", self.circulation.pending_returns)

    # -- Holds --------------------------------------------------------------

    async def place_hold(self, book_id: str, user_email: str, now: datetime | None = None) -> OperationResult:
        return await self._run(
            "place_hold",
            lambda: self.holds.place_hold(book_id, user_email, self._now(now)),
            {"book.id": book_id},
        )

    async def cancel_hold(
        self,
        hold_id: str,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> OperationResult:
        return await self._run(
            "cancel_hold",
            lambda: self.holds.cancel_hold(hold_id, reason, self._now(now)),
            {"hold.id": hold_id},
        )

    async def get_hold(self, hold_id: str) -> OperationResult:
        return await self._run("get_hold", lambda: self.holds.get(hold_id), {"hold.id": hold_id})

    async def hold_queue(self, book_id: str) -> OperationResult:
        return await self._run("hold_queue", lambda: self.holds.queue_for(book_id), {"book.id": book_id})

    async def user_holds(self, user_email: str, status: HoldStatus | None = None) -> OperationResult:
        return await self._run("user_holds", lambda: self.holds.for_user(user_email, status))

    async def queue_position(self, book_id: str, user_email: str) -> OperationResult:
        return await self._run(
            "queue_position",
            lambda: self.holds.position(book_id, user_email),
            {"book.id": book_id},
        )

    # -- Sweeps -------------------------------------------------------------

    async def expire_sweep(self, now: datetime | None = None) -> OperationResult:
        return await self._run("expire_sweep", lambda: self.holds.expire_sweep(self._now(now)))

    async def overdue_sweep(
        self,
        now: datetime | None = None,
        dry_run: bool = True,
        minimum_days: int | None = None,
        force: bool = False,
        maximum_days: int | None = None,
    ) -> OperationResult:
        if minimum_days is None:
            minimum_days = self.config.sweeps.overdue_minimum_days
        return await self._run(
            "overdue_sweep",
            lambda: self.sweeper.run(
                self._now(now),
                minimum_days,
                dry_run=dry_run,
                force=force,
                maximum_days=maximum_days,
            ),
            {"sweep.dry_run": dry_run, "sweep.minimum_days": minimum_days},
        )

    # -- Internals ----------------------------------------------------------

    def _now(self, now: datetime | None) -> datetime:
        return as_utc_naive(now) if now is not None else self.clock()

    async def _run(
        self,
        operation: str,
        call: Callable[[], Awaitable[Any]],
        attributes: dict[str, Any] | None = None,
    ) -> OperationResult:
        with self.tracer.start_as_current_span(f"circulation.{operation}") as span:
            for key, value in (attributes or {}).items():
                span.set_attribute(key, value)
            try:
                value = await call()
            except InvariantViolation as exc:
                span.set_attribute("circulation.error", exc.kind.value)
                logger.error("invariant violation in %s: %s %s", operation, exc.message, exc.details)
                raise
            except CirculationError as exc:
                span.set_attribute("circulation.error", exc.kind.value)
                logger.info("%s refused (%s): %s", operation, exc.kind.value, exc.message)
                return OperationResult.failure(operation, exc)
            return OperationResult.success(operation, value)


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------

def build_dispatcher(
    config: CirculationConfig,
    notifier: Notifier | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> NotificationDispatcher:
    """Dispatcher with breaker and dead letters sized from config.

    Without an explicit notifier, posts to the configured webhook if any,
    otherwise logs.
    """
    policy = config.notifications
    if notifier is None:
        if policy.webhook_url:
            notifier = WebhookNotifier(
                WebhookClient(policy.webhook_url, secret=policy.webhook_secret, client=http_client)
            )
        else:
            notifier = LoggingNotifier()
    breaker = CircuitBreaker(
        failure_threshold=policy.failure_threshold,
        recovery_timeout=policy.recovery_timeout,
        max_retries=policy.max_retries,
        backoff_base=policy.backoff_base,
    )
    return NotificationDispatcher(
        notifier,
        breaker=breaker,
        dead_letters=DeadLetterQueue(),
        queue_size=policy.queue_size,
        max_retries=policy.max_retries,
    )


def build_engine(
    session_factory: async_sessionmaker[AsyncSession],
    config: CirculationConfig | None = None,
    notifier: Notifier | None = None,
) -> CirculationEngine:
    config = config or CirculationConfig.default()
    return CirculationEngine(session_factory, build_dispatcher(config, notifier), config=config)
