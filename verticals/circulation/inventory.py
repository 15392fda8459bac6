"""Inventory Controller: the only writer of `Book.available_stock`.

Each change is a guarded UPDATE issued inside the book's unit of work, so a
stale read can never push the counter below zero or above the total, even
across processes. A guard that matches no row is reported, never clamped.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from verticals.circulation.errors import InvariantViolation, OutOfStock
from verticals.circulation.models.db_models import Book
from verticals.circulation.repository import BookRepository
from verticals.circulation.unit_of_work import BookScope

logger = logging.getLogger(__name__)


class InventoryController:

    async def decrement(self, scope: BookScope) -> int:
        """Take one copy off the shelf. Returns the new available count.

        Raises OutOfStock when no copy is available.
        """
        if not await scope.books.decrement_available(scope.book_id):
            book = await scope.reload_book()
            raise OutOfStock(
                f"No copies of '{book.title}' available",
                {"book_id": book.id, "available_stock": book.available_stock},
            )
        book = await scope.reload_book()
        logger.debug("book %s available_stock -> %d", book.id, book.available_stock)
        return book.available_stock

    async def increment(self, scope: BookScope) -> int:
        """Put one copy back. Returns the new available count.

        Raises InvariantViolation if every copy is already on the shelf.
        """
        if not await scope.books.increment_available(scope.book_id):
            book = await scope.reload_book()
            raise InvariantViolation(
                f"Returning a copy of '{book.title}' would exceed its total stock",
                {
                    "book_id": book.id,
                    "available_stock": book.available_stock,
                    "total_stock": book.total_stock,
                },
            )
        book = await scope.reload_book()
        logger.debug("book %s available_stock -> %d", book.id, book.available_stock)
        return book.available_stock

    async def write_off(self, scope: BookScope) -> int:
        """Drop a copy that is out on loan and will not come back. Returns the new total."""
        if not await scope.books.write_off(scope.book_id):
            book = await scope.reload_book()
            raise InvariantViolation(
                f"No copy of '{book.title}' is on loan to write off",
                {
                    "book_id": book.id,
                    "available_stock": book.available_stock,
                    "total_stock": book.total_stock,
                },
            )
        book = await scope.reload_book()
        logger.info("book %s lost a copy, total_stock -> %d", book.id, book.total_stock)
        return book.total_stock

    async def set_total_stock(self, scope: BookScope, total_stock: int) -> int:
        """Catalog edit: change total_stock, moving available_stock by the same delta.

        Returns the delta. Raises InvariantViolation if more copies are on
        loan than the new total allows.
        """
        book = scope.book
        delta = total_stock - book.total_stock
        if total_stock < 0 or not await scope.books.shift_stock(book.id, total_stock, delta):
            on_loan = book.total_stock - book.available_stock
            raise InvariantViolation(
                f"Cannot set total stock of '{book.title}' to {total_stock}: {on_loan} copies on loan",
                {"book_id": book.id, "total_stock": total_stock, "on_loan": on_loan},
            )
        await scope.reload_book()
        logger.info("book %s total_stock %+d -> %d", book.id, delta, total_stock)
        return delta

    async def register(self, session: AsyncSession, title: str, total_stock: int) -> Book:
        """Add a title to the catalog with every copy on the shelf."""
        if total_stock < 0:
            raise InvariantViolation(
                f"Cannot register '{title}' with negative stock",
                {"total_stock": total_stock},
            )
        book = Book(title=title, total_stock=total_stock, available_stock=total_stock)
        await BookRepository(session).add(book)
        logger.info("book %s registered: '%s' x%d", book.id, title, total_stock)
        return book
