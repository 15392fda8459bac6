"""Holds Queue Manager: the per-book FIFO wait-list.

Queue positions are stored and kept contiguous: every change to the set of
active holds for a book renumbers the survivors 1..N in their existing
order, inside the same unit of work as the change itself.

A hold moves to READY when a copy frees up. That copy stays on the shelf
(available_stock is untouched) but is set aside for the holder: other
borrowers see it as unavailable until the holder's borrow is approved or
the pickup window lapses.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from patterns.domain_config import CirculationConfig
from patterns.rules_engine import check_copies_free
from verticals.circulation.errors import (
    AlreadyOnHold,
    DuplicateRequest,
    InvariantViolation,
    NotFound,
    StockAvailable,
)
from verticals.circulation.models.db_models import Hold
from verticals.circulation.notifier import NotificationKind
from verticals.circulation.repository import HoldRepository
from verticals.circulation.states import (
    HoldStatus,
    OPEN_HOLD_STATUSES,
    TransactionStatus,
    TransactionType,
    advance_hold,
)
from verticals.circulation.unit_of_work import BookScope, CirculationUnit

logger = logging.getLogger(__name__)


@dataclass
class HoldSweepReport:
    ran_at: datetime
    expired: list[str] = field(default_factory=list)
    promoted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "ran_at": self.ran_at.isoformat(),
            "expired": list(self.expired),
            "promoted": list(self.promoted),
            "skipped": list(self.skipped),
        }


@dataclass(frozen=True)
class QueuePosition:
    hold_id: str
    book_id: str
    user_email: str
    queue_position: int
    queue_length: int

    def to_dict(self) -> dict:
        return {
            "hold_id": self.hold_id,
            "book_id": self.book_id,
            "user_email": self.user_email,
            "queue_position": self.queue_position,
            "queue_length": self.queue_length,
        }


class HoldsQueueManager:

    def __init__(self, unit: CirculationUnit, config: CirculationConfig):
        self.unit = unit
        self.config = config

    # -- Operations ---------------------------------------------------------

    async def place_hold(self, book_id: str, user_email: str, now: datetime) -> Hold:
        async with self.unit.for_book(book_id) as scope:
            book = scope.book
            if book.archived:
                raise NotFound(f"Book {book_id} is archived", {"book_id": book_id})

            existing = await scope.holds.find_open(book_id, user_email)
            if existing is not None:
                raise AlreadyOnHold(
                    f"{user_email} already has a hold on '{book.title}'",
                    {
                        "hold_id": existing.id,
                        "status": existing.status.value,
                        "queue_position": existing.queue_position,
                    },
                )

            borrowed = await scope.transactions.count({
                "book_id": book_id,
                "user_email": user_email,
                "type": TransactionType.BORROW,
                "status": TransactionStatus.ACTIVE,
            })
            if borrowed:
                raise DuplicateRequest(
                    f"{user_email} already borrowed '{book.title}'; return it before placing a hold",
                    {"book_id": book_id},
                )

            copies = check_copies_free(book.available_stock, await scope.holds.count_ready(book_id))
            if copies.passed:
                raise StockAvailable(
                    f"'{book.title}' has copies available; borrow it instead",
                    copies.details,
                )

            hold = Hold(
                book_id=book_id,
                book_title=book.title,
                user_email=user_email,
                status=HoldStatus.ACTIVE,
                hold_date=now,
                queue_position=await scope.holds.max_position(book_id) + 1,
                expiry_date=now + timedelta(days=self.config.holds.hold_expiry_days),
            )
            await scope.holds.add(hold)
            logger.info(
                "hold %s placed by %s on book %s at position %d",
                hold.id, user_email, book_id, hold.queue_position,
            )
            return hold

    async def cancel_hold(self, hold_id: str, reason: str | None, now: datetime) -> Hold:
        book_id = await self._book_of(hold_id)
        async with self.unit.for_book(book_id) as scope:
            hold = await scope.holds.get_for_update(hold_id)
            was = hold.status
            advance_hold(hold, HoldStatus.CANCELLED)
            hold.queue_position = None
            hold.cancelled_at = now
            hold.cancelled_reason = reason or "User cancelled"

            if was == HoldStatus.ACTIVE:
                await self.compact(scope)
            else:
                # A ready hold gave up its set-aside copy.
                await self.promote_while_free(scope, now)
            logger.info("hold %s cancelled (%s): %s", hold_id, was.value, hold.cancelled_reason)
            return hold

    async def expire_sweep(self, now: datetime) -> HoldSweepReport:
        """Expire lapsed holds; each lapsed pickup passes its copy down the queue."""
        report = HoldSweepReport(ran_at=now)
        async with self.unit.session() as session:
            lapsed = await HoldRepository(session).lapsed(now)

        by_book: dict[str, list[str]] = defaultdict(list)
        for hold in lapsed:
            by_book[hold.book_id].append(hold.id)

        for book_id, hold_ids in by_book.items():
            async with self.unit.for_book(book_id) as scope:
                released = False
                left_queue = False
                for hold_id in hold_ids:
                    hold = await scope.holds.get_for_update(hold_id)
                    # Re-check: the row may have moved on since the scan.
                    if hold is None or hold.status not in OPEN_HOLD_STATUSES or hold.expiry_date >= now:
                        logger.debug("hold %s no longer lapsed, skipping", hold_id)
                        report.skipped.append(hold_id)
                        continue

                    was = hold.status
                    advance_hold(hold, HoldStatus.EXPIRED)
                    hold.queue_position = None
                    report.expired.append(hold.id)
                    scope.notify(hold.user_email, NotificationKind.HOLD_EXPIRED, {
                        "hold_id": hold.id,
                        "book_id": hold.book_id,
                        "book_title": hold.book_title,
                        "previous_status": was.value,
                        "expired_at": now.isoformat(),
                    })
                    if was == HoldStatus.READY:
                        released = True
                    else:
                        left_queue = True

                if left_queue:
                    await self.compact(scope)
                if released:
                    promoted = await self.promote_while_free(scope, now)
                    report.promoted.extend(h.id for h in promoted)

        if report.expired:
            logger.info(
                "hold sweep expired %d holds, promoted %d",
                len(report.expired), len(report.promoted),
            )
        return report

    # -- Scope-level building blocks ---------------------------------------

    async def promote_next(self, scope: BookScope, now: datetime) -> Hold | None:
        """Offer a free copy to the head of the queue. No-op if there is none."""
        book = scope.book
        copies = check_copies_free(book.available_stock, await scope.holds.count_ready(book.id))
        if not copies.passed:
            return None

        queue = await scope.holds.queue(book.id)
        if not queue:
            return None

        head = queue[0]
        if head.queue_position != 1:
            raise InvariantViolation(
                f"Hold queue for book {book.id} starts at position {head.queue_position}",
                {"book_id": book.id, "positions": [h.queue_position for h in queue]},
            )

        advance_hold(head, HoldStatus.READY)
        head.queue_position = None
        head.ready_pickup_date = now
        head.expiry_date = now + timedelta(days=self.config.holds.pickup_window_days)
        for position, hold in enumerate(queue[1:], start=1):
            hold.queue_position = position
        await scope.session.flush()

        scope.notify(head.user_email, NotificationKind.HOLD_READY, {
            "hold_id": head.id,
            "book_id": book.id,
            "book_title": book.title,
            "hold_date": head.hold_date.isoformat(),
            "pickup_by": head.expiry_date.isoformat(),
        })
        logger.info("hold %s promoted to ready for %s", head.id, head.user_email)
        return head

    async def promote_while_free(self, scope: BookScope, now: datetime) -> list[Hold]:
        promoted = []
        while (hold := await self.promote_next(scope, now)) is not None:
            promoted.append(hold)
        return promoted

    async def compact(self, scope: BookScope) -> list[Hold]:
        """Renumber active holds 1..N, preserving order."""
        await scope.session.flush()
        queue = await scope.holds.queue(scope.book_id)
        for position, hold in enumerate(queue, start=1):
            if hold.queue_position != position:
                hold.queue_position = position
        await scope.session.flush()
        return queue

    async def held_for_pickup(self, scope: BookScope, exclude_user: str | None = None) -> int:
        return await scope.holds.count_ready(scope.book_id, exclude_user=exclude_user)

    async def fulfil(self, scope: BookScope, user_email: str, now: datetime) -> Hold | None:
        """Close the user's ready hold once their borrow is approved."""
        hold = await scope.holds.ready_for(scope.book_id, user_email)
        if hold is None:
            return None
        advance_hold(hold, HoldStatus.EXPIRED)
        hold.picked_up_at = now
        logger.info("hold %s picked up by %s", hold.id, user_email)
        return hold

    # -- Reads --------------------------------------------------------------

    async def queue_for(self, book_id: str) -> list[Hold]:
        async with self.unit.session() as session:
            return await HoldRepository(session).queue(book_id)

    async def get(self, hold_id: str) -> Hold:
        async with self.unit.session() as session:
            hold = await HoldRepository(session).get(hold_id)
        if hold is None:
            raise NotFound(f"Hold {hold_id} not found", {"hold_id": hold_id})
        return hold

    async def for_user(self, user_email: str, status: HoldStatus | None = None) -> list[Hold]:
        async with self.unit.session() as session:
            return await HoldRepository(session).for_user(user_email, status)

    async def position(self, book_id: str, user_email: str) -> QueuePosition:
        """Where the user's active hold stands in the book's queue."""
        async with self.unit.session() as session:
            repo = HoldRepository(session)
            hold = await repo.find_open(book_id, user_email)
            if hold is None or hold.status != HoldStatus.ACTIVE:
                raise NotFound(
                    f"{user_email} has no queued hold on book {book_id}",
                    {"book_id": book_id, "user_email": user_email},
                )
            length = await repo.count({"book_id": book_id, "status": HoldStatus.ACTIVE})
        return QueuePosition(
            hold_id=hold.id,
            book_id=book_id,
            user_email=user_email,
            queue_position=hold.queue_position,
            queue_length=length,
        )

    async def _book_of(self, hold_id: str) -> str:
        return (await self.get(hold_id)).book_id
