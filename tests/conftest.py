"""Shared fixtures: a throwaway SQLite database and an engine wired to it."""
from datetime import datetime

import pytest
import pytest_asyncio

from core.database import create_engine, create_session_factory, init_db
from patterns.domain_config import CirculationConfig, NotificationPolicy
from verticals.circulation.engine import CirculationEngine, build_dispatcher
from verticals.circulation.notifier import NotificationKind

NOW = datetime(2026, 3, 2, 9, 0, 0)


class RecordingNotifier:
    """Keeps every delivered notification; can be told to fail."""

    def __init__(self):
        self.sent = []
        self.failing = False

    async def send(self, notification):
        if self.failing:
            raise RuntimeError("provider unavailable")
        self.sent.append(notification)

    def of_kind(self, kind: NotificationKind):
        return [n for n in self.sent if n.kind == kind]


class Desk:
    """Librarian shortcuts for arranging test state through the engine."""

    def __init__(self, engine: CirculationEngine):
        self.engine = engine

    async def book(self, total_stock: int = 1, title: str = "Dune"):
        result = await self.engine.register_book(title, total_stock)
        assert result.ok, result.message
        return result.value

    async def stock(self, book_id: str) -> int:
        return (await self.engine.get_book(book_id)).value.available_stock

    async def lend(self, book_id: str, user_email: str, now: datetime = NOW):
        requested = await self.engine.request_borrow(book_id, user_email, now=now)
        assert requested.ok, requested.message
        approved = await self.engine.approve(requested.value.id, now=now)
        assert approved.ok, approved.message
        return approved.value

    async def hold(self, book_id: str, user_email: str, now: datetime = NOW):
        result = await self.engine.place_hold(book_id, user_email, now=now)
        assert result.ok, result.message
        return result.value

    async def positions(self, book_id: str) -> list[tuple[str, int]]:
        queue = (await self.engine.hold_queue(book_id)).value
        return [(h.user_email, h.queue_position) for h in queue]

    async def settle(self) -> None:
        await self.engine.dispatcher.join()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def config():
    return CirculationConfig(
        notifications=NotificationPolicy(max_retries=1, backoff_base=0.0, failure_threshold=100),
    )


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'circulation.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def engine(db_engine, config, notifier):
    dispatcher = build_dispatcher(config, notifier)
    dispatcher.start()
    engine = CirculationEngine(
        create_session_factory(db_engine),
        dispatcher,
        config=config,
        clock=lambda: NOW,
    )
    yield engine
    await dispatcher.stop()


@pytest.fixture
def desk(engine):
    return Desk(engine)
