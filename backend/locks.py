# locks.py — Per-key asyncio locks for serialising writers in this process
import asyncio
import weakref
from contextlib import AsyncExitStack, asynccontextmanager


class KeyedLocks:
    """Registry of asyncio locks keyed by record id.

    Locks are created on demand and dropped once no coroutine holds a
    reference to them. `hold` takes several keys in sorted order so two
    holders of overlapping key sets cannot deadlock.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, *keys: str):
        locks = [self.get(key) for key in sorted(set(keys))]
        async with AsyncExitStack() as stack:
            for lock in locks:
                await stack.enter_async_context(lock)
            yield
