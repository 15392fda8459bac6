"""Async repository pattern for database access.

Provides a generic base repository bound to one AsyncSession. Repositories
never commit: the caller's unit of work owns the transaction boundary, so
several repository calls commit or roll back together.

Example: BookRepository extending BaseRepository.
"""

from typing import Any, Generic, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.models.base import Base

# ---------------------------------------------------------------------------
# Type variable for model classes
# ---------------------------------------------------------------------------

ModelT = TypeVar("ModelT", bound=Base)


# ---------------------------------------------------------------------------
# Base repository
# ---------------------------------------------------------------------------

class BaseRepository(Generic[ModelT]):
    """Generic async repository with lookups, locking reads and filters.

    Subclass and set `model` to your SQLAlchemy model::

        class BookRepository(BaseRepository[Book]):
            model = Book

            async def search_by_title(self, query: str):
                stmt = select(self.model).where(self.model.title.ilike(f"%{query}%"))
                result = await self.session.execute(stmt)
                return list(result.scalars().all())
    """

    model: type[ModelT]

    def __init__(self, session: AsyncSession):
        self.session = session

    # -- Get by ID --

    async def get(self, item_id: str) -> ModelT | None:
        """Get a single item by ID."""
        return await self.session.get(self.model, item_id)

    async def get_for_update(self, item_id: str) -> ModelT | None:
        """Get a row locked for the rest of the transaction, refreshed from the DB.

        SELECT ... FOR UPDATE where supported; SQLite ignores the clause.
        """
        stmt = (
            select(self.model)
            .where(self.model.id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    # -- Count with filters --

    async def count(self, filters: dict[str, Any] | None = None) -> int:
        stmt = select(func.count()).select_from(self.model)
        for col_name, value in (filters or {}).items():
            if hasattr(self.model, col_name) and value is not None:
                stmt = stmt.where(getattr(self.model, col_name) == value)
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    # -- Create --

    async def add(self, item: ModelT) -> ModelT:
        """Stage a new item and flush so generated columns are populated."""
        self.session.add(item)
        await self.session.flush()
        return item
