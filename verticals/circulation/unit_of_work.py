"""Per-book unit of work.

Every stock- or queue-affecting operation runs inside `CirculationUnit.for_book`:

1. take the in-process lock for the book id, then any extra keys,
2. open a session (commit on success, rollback on any error),
3. load the book row FOR UPDATE,
4. collect notifications in an outbox,
5. after the commit succeeds, hand the outbox to the dispatcher.

A failed operation therefore leaves no partial writes and sends nothing.
"""

from __future__ import annotations

from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.database import session_scope
from core.locks import KeyedLock
from verticals.circulation.errors import NotFound
from verticals.circulation.models.db_models import Book
from verticals.circulation.notifier import Notification, NotificationDispatcher, NotificationKind
from verticals.circulation.repository import (
    BookRepository,
    HoldRepository,
    TransactionRepository,
)


@dataclass
class BookScope:
    """Session, repositories and outbox for one book's critical section."""

    session: AsyncSession
    book: Book
    outbox: list[Notification] = field(default_factory=list)

    @property
    def book_id(self) -> str:
        return self.book.id

    @property
    def books(self) -> BookRepository:
        return BookRepository(self.session)

    @property
    def transactions(self) -> TransactionRepository:
        return TransactionRepository(self.session)

    @property
    def holds(self) -> HoldRepository:
        return HoldRepository(self.session)

    async def reload_book(self) -> Book:
        """Re-read counters after a guarded UPDATE."""
        await self.session.refresh(self.book)
        return self.book

    def notify(self, user_email: str, kind: NotificationKind, payload: dict[str, Any]) -> None:
        self.outbox.append(Notification(user_email=user_email, kind=kind, payload=payload))


class CirculationUnit:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: NotificationDispatcher,
        locks: KeyedLock | None = None,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.locks = locks or KeyedLock()

    @asynccontextmanager
    async def for_book(self, book_id: str, *keys: str) -> AsyncIterator[BookScope]:
        """Enter the book's critical section.

        Extra keys (such as a user key) are locked after the book, in the
        order given, and held until the commit has finished.
        """
        async with AsyncExitStack() as stack:
            await stack.enter_async_context(self.locks.hold(book_id))
            for key in keys:
                await stack.enter_async_context(self.locks.hold(key))
            async with session_scope(self.session_factory) as session:
                book = await BookRepository(session).get_for_update(book_id)
                if book is None:
                    raise NotFound(f"Book {book_id} not found", {"book_id": book_id})
                scope = BookScope(session=session, book=book)
                yield scope
        for notification in scope.outbox:
            self.dispatcher.notify(notification.user_email, notification.kind, notification.payload)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """A session outside any book lock: lookups, catalog inserts, reminder flags."""
        async with session_scope(self.session_factory) as session:
            yield session

