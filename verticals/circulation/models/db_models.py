"""SQLAlchemy models for the circulation engine.

Each model inherits from Base and uses RecordMixin for ids and audit
columns. The to_dict() method provides a standard serialisation interface
used by notifications and logs.
"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from core.models.base import Base, RecordMixin
from verticals.circulation.states import (
    HoldStatus,
    ReturnCondition,
    TransactionStatus,
    TransactionType,
)


def _enum(enum_cls, name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class Book(RecordMixin, Base):
    """A title in the catalog and its copy counters."""

    __tablename__ = "books"
    __table_args__ = (
        CheckConstraint("total_stock >= 0", name="ck_books_total_stock"),
        CheckConstraint(
            "available_stock >= 0 AND available_stock <= total_stock",
            name="ck_books_available_stock",
        ),
    )

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    total_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Written only by InventoryController.
    available_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "total_stock": self.total_stock,
            "available_stock": self.available_stock,
            "archived": self.archived,
        }


class Transaction(RecordMixin, Base):
    """A borrow or reserve request and, once approved, the loan itself."""

    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_user_status", "user_email", "status"),
        Index("ix_transactions_book_status", "book_id", "status"),
    )

    book_id: Mapped[str] = mapped_column(String(36), ForeignKey("books.id"), nullable=False)
    book_title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    user_email: Mapped[str] = mapped_column(String(320), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        _enum(TransactionType, "transaction_type"), nullable=False
    )
    status: Mapped[TransactionStatus] = mapped_column(
        _enum(TransactionStatus, "transaction_status"),
        nullable=False,
        default=TransactionStatus.PENDING,
    )
    requested_at: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True, index=True)
    return_date: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    return_condition: Mapped[ReturnCondition | None] = mapped_column(
        _enum(ReturnCondition, "return_condition"), nullable=True
    )
    return_requested_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    reminder_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def return_pending(self) -> bool:
        return self.return_requested_at is not None

    def is_overdue(self, now: datetime) -> bool:
        """Derived, never stored: an active loan past its due date."""
        return (
            self.status == TransactionStatus.ACTIVE
            and self.end_date is not None
            and now > self.end_date
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "book_title": self.book_title,
            "user_email": self.user_email,
            "type": self.type.value,
            "status": self.status.value,
            "requested_at": _iso(self.requested_at),
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "return_date": _iso(self.return_date),
            "return_condition": self.return_condition.value if self.return_condition else None,
            "return_requested_at": _iso(self.return_requested_at),
            "reminder_sent": self.reminder_sent,
        }


class Hold(RecordMixin, Base):
    """A place in the wait-list for a title whose copies are all out."""

    __tablename__ = "holds"
    __table_args__ = (
        Index("ix_holds_book_status", "book_id", "status"),
        Index("ix_holds_user_status", "user_email", "status"),
        Index("ix_holds_expiry", "expiry_date"),
    )

    book_id: Mapped[str] = mapped_column(String(36), ForeignKey("books.id"), nullable=False)
    book_title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    user_email: Mapped[str] = mapped_column(String(320), nullable=False)
    status: Mapped[HoldStatus] = mapped_column(
        _enum(HoldStatus, "hold_status"), nullable=False, default=HoldStatus.ACTIVE
    )
    hold_date: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    # Set only while status is ACTIVE; 1..N per book.
    queue_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ready_pickup_date: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    expiry_date: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    picked_up_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    cancelled_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "book_title": self.book_title,
            "user_email": self.user_email,
            "status": self.status.value,
            "hold_date": _iso(self.hold_date),
            "queue_position": self.queue_position,
            "ready_pickup_date": _iso(self.ready_pickup_date),
            "expiry_date": _iso(self.expiry_date),
            "picked_up_at": _iso(self.picked_up_at),
            "cancelled_at": _iso(self.cancelled_at),
            "cancelled_reason": self.cancelled_reason,
        }
