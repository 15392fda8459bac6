"""
Per-key async lock table.

Serialises work on a single key (a book id or a user key) inside one process while
leaving unrelated keys free to run concurrently. Entries are reference
counted and dropped once no task holds or waits on them, so the table
does not grow with the catalog.

Cross-process safety is the database's job (row locks and conditional
updates); this table only removes in-process check-then-act races.
"""
from __future__ import annotations
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator
import asyncio


@dataclass
class _Entry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class KeyedLock:
    """Mutual exclusion scoped to a key."""

    def __init__(self):
        self._entries: dict[str, _Entry] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._entries.pop(key, None)

    def locked(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    @property
    def active_keys(self) -> int:
        return len(self._entries)
