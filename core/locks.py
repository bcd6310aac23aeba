import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator


@dataclass
class _Entry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class KeyedLocks:
    """One :class:`asyncio.Lock` per key (user id, chat id, …), held via ``async with``.

    Two coroutines holding different keys never block each other; waiters on
    the same key share one lock and are served in arrival order.  A key's
    entry is dropped as soon as nobody holds or waits on it, so the table only
    tracks keys with work in flight.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}

    @asynccontextmanager
    async def __call__(self, key: object) -> AsyncIterator[None]:
        name = str(key)
        entry = self._entries.get(name)
        if entry is None:
            entry = self._entries[name] = _Entry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[name]

    def __len__(self) -> int:
        return len(self._entries)
