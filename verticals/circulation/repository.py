"""Circulation repositories: the Catalog and Ledger stores.

Extends BaseRepository with the queries the engine needs: guarded stock
updates, open-request lookups, the ordered hold queue, and the overdue
scan. Nothing here commits; the caller's unit of work does.
"""

from datetime import datetime

from sqlalchemy import func, select, update

from patterns.repository import BaseRepository
from verticals.circulation.models.db_models import Book, Hold, Transaction
from verticals.circulation.states import (
    HoldStatus,
    OPEN_HOLD_STATUSES,
    OPEN_TRANSACTION_STATUSES,
    TransactionStatus,
    TransactionType,
)


# ---------------------------------------------------------------------------
# Catalog store
# ---------------------------------------------------------------------------

class BookRepository(BaseRepository[Book]):
    """Books and their copy counters."""

    model = Book

    async def decrement_available(self, book_id: str) -> bool:
        """UPDATE ... SET available_stock = available_stock - 1 WHERE available_stock > 0."""
        stmt = (
            update(Book)
            .where(Book.id == book_id, Book.available_stock > 0)
            .values(available_stock=Book.available_stock - 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def increment_available(self, book_id: str) -> bool:
        """UPDATE ... SET available_stock = available_stock + 1 WHERE available_stock < total_stock."""
        stmt = (
            update(Book)
            .where(Book.id == book_id, Book.available_stock < Book.total_stock)
            .values(available_stock=Book.available_stock + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def write_off(self, book_id: str) -> bool:
        """UPDATE ... SET total_stock = total_stock - 1 WHERE total_stock > available_stock."""
        stmt = (
            update(Book)
            .where(Book.id == book_id, Book.total_stock > Book.available_stock)
            .values(total_stock=Book.total_stock - 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def shift_stock(self, book_id: str, total_stock: int, delta: int) -> bool:
        """Set total_stock and move available_stock by delta, if it stays >= 0."""
        stmt = (
            update(Book)
            .where(Book.id == book_id, Book.available_stock + delta >= 0)
            .values(
                total_stock=total_stock,
                available_stock=Book.available_stock + delta,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1


# ---------------------------------------------------------------------------
# Ledger store: transactions
# ---------------------------------------------------------------------------

class TransactionRepository(BaseRepository[Transaction]):
    """Borrow/reserve transactions."""

    model = Transaction

    async def count_active_borrows(self, user_email: str) -> int:
        return await self.count({
            "user_email": user_email,
            "type": TransactionType.BORROW,
            "status": TransactionStatus.ACTIVE,
        })

    async def count_open(self, book_id: str, user_email: str, txn_type: TransactionType) -> int:
        """Pending or active transactions of one type for a (user, book) pair."""
        stmt = select(func.count()).select_from(Transaction).where(
            Transaction.book_id == book_id,
            Transaction.user_email == user_email,
            Transaction.type == txn_type,
            Transaction.status.in_(OPEN_TRANSACTION_STATUSES),
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def for_user(self, user_email: str) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_email == user_email)
            .order_by(Transaction.requested_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def pending(self, txn_type: TransactionType | None = None) -> list[Transaction]:
        stmt = select(Transaction).where(Transaction.status == TransactionStatus.PENDING)
        if txn_type is not None:
            stmt = stmt.where(Transaction.type == txn_type)
        stmt = stmt.order_by(Transaction.requested_at.desc(), Transaction.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def pending_returns(self) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.status == TransactionStatus.ACTIVE,
                Transaction.return_requested_at.is_not(None),
            )
            .order_by(Transaction.return_requested_at, Transaction.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def overdue_borrows(self, cutoff: datetime) -> list[Transaction]:
        """Active borrows with end_date < cutoff, oldest due date first."""
        stmt = (
            select(Transaction)
            .where(
                Transaction.type == TransactionType.BORROW,
                Transaction.status == TransactionStatus.ACTIVE,
                Transaction.end_date.is_not(None),
                Transaction.end_date < cutoff,
            )
            .order_by(Transaction.end_date, Transaction.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def mark_reminder_sent(self, transaction_id: str, force: bool = False) -> bool:
        """Flag a reminder on a still-active loan. False if the row moved on."""
        conditions = [
            Transaction.id == transaction_id,
            Transaction.status == TransactionStatus.ACTIVE,
        ]
        if not force:
            conditions.append(Transaction.reminder_sent.is_(False))
        stmt = (
            update(Transaction)
            .where(*conditions)
            .values(reminder_sent=True)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1


# ---------------------------------------------------------------------------
# Ledger store: holds
# ---------------------------------------------------------------------------

class HoldRepository(BaseRepository[Hold]):
    """Holds and the per-book queue."""

    model = Hold

    async def find_open(self, book_id: str, user_email: str) -> Hold | None:
        """The user's active or ready hold on a book, if any."""
        stmt = select(Hold).where(
            Hold.book_id == book_id,
            Hold.user_email == user_email,
            Hold.status.in_(OPEN_HOLD_STATUSES),
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def queue(self, book_id: str) -> list[Hold]:
        """Active holds in queue order."""
        stmt = (
            select(Hold)
            .where(Hold.book_id == book_id, Hold.status == HoldStatus.ACTIVE)
            .order_by(Hold.queue_position, Hold.hold_date, Hold.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def max_position(self, book_id: str) -> int:
        stmt = select(func.max(Hold.queue_position)).where(
            Hold.book_id == book_id,
            Hold.status == HoldStatus.ACTIVE,
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def count_ready(self, book_id: str, exclude_user: str | None = None) -> int:
        """Copies set aside for ready holds, optionally not counting one user's."""
        stmt = select(func.count()).select_from(Hold).where(
            Hold.book_id == book_id,
            Hold.status == HoldStatus.READY,
        )
        if exclude_user is not None:
            stmt = stmt.where(Hold.user_email != exclude_user)
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def ready_for(self, book_id: str, user_email: str) -> Hold | None:
        stmt = select(Hold).where(
            Hold.book_id == book_id,
            Hold.user_email == user_email,
            Hold.status == HoldStatus.READY,
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def lapsed(self, now: datetime) -> list[Hold]:
        """Active or ready holds whose expiry_date has passed."""
        stmt = (
            select(Hold)
            .where(
                Hold.status.in_(OPEN_HOLD_STATUSES),
                Hold.expiry_date < now,
            )
            .order_by(Hold.book_id, Hold.expiry_date)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def for_user(self, user_email: str, status: HoldStatus | None = None) -> list[Hold]:
        stmt = select(Hold).where(Hold.user_email == user_email)
        if status is not None:
            stmt = stmt.where(Hold.status == status)
        stmt = stmt.order_by(Hold.hold_date.desc(), Hold.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
