"""Circulation State Machine: borrow and reserve transactions.

pending -> active | rejected | cancelled; active -> completed. Overdue is a
read-time property of an active loan, not a state.

Every operation re-loads the transaction under its book's lock, so two
racing decisions on the same row resolve to one success and one
InvalidStateTransition.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from patterns.domain_config import CirculationConfig
from patterns.rules_engine import (
    check_borrow_limit,
    check_copies_free,
    check_no_open_request,
    evaluate_rules,
)
from verticals.circulation.errors import (
    DuplicateRequest,
    InvalidStateTransition,
    LimitExceeded,
    NotFound,
    OutOfStock,
)
from verticals.circulation.holds import HoldsQueueManager
from verticals.circulation.inventory import InventoryController
from verticals.circulation.models.db_models import Transaction
from verticals.circulation.repository import TransactionRepository
from verticals.circulation.states import (
    ReturnCondition,
    TransactionStatus,
    TransactionType,
    advance_transaction,
    require_transaction,
)
from verticals.circulation.unit_of_work import BookScope, CirculationUnit

logger = logging.getLogger(__name__)


class CirculationStateMachine:

    def __init__(
        self,
        unit: CirculationUnit,
        config: CirculationConfig,
        inventory: InventoryController,
        holds: HoldsQueueManager,
    ):
        self.unit = unit
        self.config = config
        self.inventory = inventory
        self.holds = holds

    # -- Requests -----------------------------------------------------------

    async def request_borrow(self, book_id: str, user_email: str, now: datetime) -> Transaction:
        """Create a pending borrow. No stock effect until approval."""
        return await self._request(book_id, user_email, TransactionType.BORROW, now)

    async def request_reserve(self, book_id: str, user_email: str, now: datetime) -> Transaction:
        """Create a pending reserve. Reserves do not count toward the borrow limit."""
        return await self._request(book_id, user_email, TransactionType.RESERVE, now)

    async def _request(
        self,
        book_id: str,
        user_email: str,
        txn_type: TransactionType,
        now: datetime,
    ) -> Transaction:
        async with self.unit.for_book(book_id) as scope:
            book = scope.book
            if book.archived:
                raise NotFound(f"Book {book_id} is archived", {"book_id": book_id})

            rules = []
            if txn_type == TransactionType.BORROW:
                active = await scope.transactions.count_active_borrows(user_email)
                rules.append(check_borrow_limit(active, self.config.loans.max_active_borrows))
            open_requests = await scope.transactions.count_open(book_id, user_email, txn_type)
            rules.append(check_no_open_request(open_requests, txn_type.value))

            outcome = evaluate_rules(*rules)
            if not outcome.all_passed:
                failed = outcome.failed[0]
                error = LimitExceeded if failed.rule_name == "borrow_limit" else DuplicateRequest
                raise error(failed.message, failed.details)

            txn = Transaction(
                book_id=book_id,
                book_title=book.title,
                user_email=user_email,
                type=txn_type,
                status=TransactionStatus.PENDING,
                requested_at=now,
            )
            await scope.transactions.add(txn)
            logger.info("%s request %s by %s for book %s", txn_type.value, txn.id, user_email, book_id)
            return txn

    # -- Decisions ----------------------------------------------------------

    async def approve(self, transaction_id: str, now: datetime) -> Transaction:
        """pending -> active, taking one copy off the shelf.

        Never queues the user: with no free copy the approval fails with
        OutOfStock and the request stays pending.

        The user's key is locked after the book's, so approvals for one user
        on different titles cannot both pass the borrow limit.
        """
        pending = await self.get(transaction_id)
        async with self.unit.for_book(pending.book_id, f"user:{pending.user_email}") as scope:
            txn = await self._load(scope, transaction_id)
            require_transaction(txn, TransactionStatus.ACTIVE)

            if txn.type == TransactionType.BORROW:
                active = await scope.transactions.count_active_borrows(txn.user_email)
                limit = check_borrow_limit(active, self.config.loans.max_active_borrows)
                if not limit.passed:
                    raise LimitExceeded(limit.message, limit.details)

            # Copies promoted to other users' ready holds are spoken for.
            held = await self.holds.held_for_pickup(scope, exclude_user=txn.user_email)
            copies = check_copies_free(scope.book.available_stock, held)
            if not copies.passed:
                raise OutOfStock(copies.message, {"book_id": txn.book_id, **copies.details})

            await self.inventory.decrement(scope)
            await self.holds.fulfil(scope, txn.user_email, now)

            if txn.type == TransactionType.BORROW:
                period = self.config.loans.loan_period_days
            else:
                period = self.config.loans.reservation_period_days
            advance_transaction(txn, TransactionStatus.ACTIVE)
            txn.start_date = now
            txn.end_date = now + timedelta(days=period)
            txn.reminder_sent = False
            txn.decided_at = now
            logger.info("transaction %s approved, due %s", txn.id, txn.end_date.isoformat())
            return txn

    async def reject(self, transaction_id: str, reason: str | None, now: datetime) -> Transaction:
        book_id = await self._book_of(transaction_id)
        async with self.unit.for_book(book_id) as scope:
            txn = await self._load(scope, transaction_id)
            advance_transaction(txn, TransactionStatus.REJECTED)
            txn.rejection_reason = reason
            txn.decided_at = now
            logger.info("transaction %s rejected: %s", txn.id, reason)
            return txn

    async def cancel(self, transaction_id: str, user_email: str, now: datetime) -> Transaction:
        """Withdraw a pending request. Only the requester may cancel."""
        book_id = await self._book_of(transaction_id)
        async with self.unit.for_book(book_id) as scope:
            txn = await self._load(scope, transaction_id)
            if txn.user_email != user_email:
                raise NotFound(
                    f"Transaction {transaction_id} not found for {user_email}",
                    {"transaction_id": transaction_id},
                )
            advance_transaction(txn, TransactionStatus.CANCELLED)
            txn.decided_at = now
            logger.info("transaction %s cancelled by %s", txn.id, user_email)
            return txn

    # -- Returns ------------------------------------------------------------

    async def request_return(
        self,
        transaction_id: str,
        condition: ReturnCondition,
        now: datetime,
    ) -> Transaction:
        """Flag an active loan as awaiting librarian confirmation of the return."""
        book_id = await self._book_of(transaction_id)
        async with self.unit.for_book(book_id) as scope:
            txn = await self._load(scope, transaction_id)
            self._require_active(txn, "request a return")
            if txn.return_pending:
                raise DuplicateRequest(
                    f"A return for transaction {txn.id} is already awaiting approval",
                    {"transaction_id": txn.id, "return_requested_at": txn.return_requested_at.isoformat()},
                )
            txn.return_condition = condition
            txn.return_requested_at = now
            logger.info("return requested for %s (%s)", txn.id, condition.value)
            return txn

    async def reject_return(self, transaction_id: str, reason: str | None, now: datetime) -> Transaction:
        book_id = await self._book_of(transaction_id)
        async with self.unit.for_book(book_id) as scope:
            txn = await self._load(scope, transaction_id)
            self._require_active(txn, "reject a return")
            if not txn.return_pending:
                raise InvalidStateTransition(
                    f"Transaction {txn.id} has no return awaiting approval",
                    {"transaction_id": txn.id},
                )
            txn.return_requested_at = None
            txn.return_condition = None
            txn.rejection_reason = reason
            logger.info("return for %s rejected at %s: %s", txn.id, now.isoformat(), reason)
            return txn

    async def complete_return(
        self,
        transaction_id: str,
        now: datetime,
        condition: ReturnCondition | None = None,
    ) -> Transaction:
        """active -> completed, copy back on the shelf, then offered to the queue.

        The increment and the promotion share one unit of work, so nobody
        outside it ever sees the copy as free before the head holder does.
        A lost copy closes the loan but is written off instead of shelved.
        """
        book_id = await self._book_of(transaction_id)
        async with self.unit.for_book(book_id) as scope:
            txn = await self._load(scope, transaction_id)
            advance_transaction(txn, TransactionStatus.COMPLETED)
            txn.return_date = now
            txn.return_condition = condition or txn.return_condition or ReturnCondition.GOOD

            promoted = None
            if txn.return_condition == ReturnCondition.LOST:
                await self.inventory.write_off(scope)
            else:
                await self.inventory.increment(scope)
                promoted = await self.holds.promote_next(scope, now)
            logger.info(
                "transaction %s returned (%s)%s",
                txn.id,
                txn.return_condition.value,
                f", hold {promoted.id} now ready" if promoted else "",
            )
            return txn

    # -- Reads --------------------------------------------------------------

    async def get(self, transaction_id: str) -> Transaction:
        async with self.unit.session() as session:
            txn = await TransactionRepository(session).get(transaction_id)
        if txn is None:
            raise NotFound(f"Transaction {transaction_id} not found", {"transaction_id": transaction_id})
        return txn

    async def for_user(self, user_email: str) -> list[Transaction]:
        async with self.unit.session() as session:
            return await TransactionRepository(session).for_user(user_email)

    async def pending(self, txn_type: TransactionType | None = None) -> list[Transaction]:
        """Requests awaiting a librarian decision, newest first."""
        async with self.unit.session() as session:
            return await TransactionRepository(session).pending(txn_type)

    async def pending_returns(self) -> list[Transaction]:
        """Active loans with a return awaiting confirmation, oldest request first."""
        async with self.unit.session() as session:
            return await TransactionRepository(session).pending_returns()

    # -- Helpers ------------------------------------------------------------

    async def _book_of(self, transaction_id: str) -> str:
        return (await self.get(transaction_id)).book_id

    async def _load(self, scope: BookScope, transaction_id: str) -> Transaction:
        txn = await scope.transactions.get_for_update(transaction_id)
        if txn is None:
            raise NotFound(f"Transaction {transaction_id} not found", {"transaction_id": transaction_id})
        return txn

    @staticmethod
    def _require_active(txn: Transaction, action: str) -> None:
        if txn.status != TransactionStatus.ACTIVE:
            raise InvalidStateTransition(
                f"Cannot {action} for a {txn.status.value} transaction",
                {"transaction_id": txn.id, "status": txn.status.value},
            )
