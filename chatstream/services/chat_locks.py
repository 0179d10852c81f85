"""Per-chat mutual exclusion for turns."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from weakref import WeakValueDictionary

from chatstream.utils.logging import get_logger

logger = get_logger(__name__)


class ChatLocks:
    """Serializes turns on the same chat; turns on different chats never wait.

    A second turn on a busy chat queues behind the first. Locks are dropped
    once nobody holds or waits on them.
    """

    def __init__(self):
        self._locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()

    def _lock_for(self, chat_id: str) -> asyncio.Lock:
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[chat_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, chat_id: str) -> AsyncIterator[None]:
        lock = self._lock_for(chat_id)
        if lock.locked():
            logger.info(f"Chat {chat_id} has a turn in flight, queueing")
        async with lock:
            yield
