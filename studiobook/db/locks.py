"""
Per-session mutual exclusion for seat allocation and waitlist writes.

Two layers: striped asyncio locks serialize coroutines of this process,
and ``SELECT ... FOR UPDATE`` on the session row serializes concurrent
processes against the same database.
"""
import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studiobook.core.config import settings
from studiobook.models import ClassSession


class SessionLockRegistry:
    """Striped asyncio locks keyed by session id."""

    def __init__(self, shards: int):
        self.shards = max(1, shards)
        # asyncio primitives bind to the loop that first waits on them
        self._by_loop: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, List[asyncio.Lock]]" = (
            weakref.WeakKeyDictionary()
        )

    def _locks(self) -> List[asyncio.Lock]:
        loop = asyncio.get_running_loop()
        locks = self._by_loop.get(loop)
        if locks is None:
            locks = [asyncio.Lock() for _ in range(self.shards)]
            self._by_loop[loop] = locks
        return locks

    def shard_for(self, session_id: int) -> int:
        return session_id % self.shards

    @asynccontextmanager
    async def hold(self, *session_ids: int) -> AsyncIterator[None]:
        """Hold the locks of every given session; always acquired in shard order."""
        locks = self._locks()
        shards = sorted({self.shard_for(sid) for sid in session_ids})
        acquired: List[asyncio.Lock] = []
        try:
            for shard in shards:
                await locks[shard].acquire()
                acquired.append(locks[shard])
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


session_locks = SessionLockRegistry(settings.SESSION_LOCK_SHARDS)


async def lock_session_row(db: AsyncSession, session_id: int) -> Optional[ClassSession]:
    """Re-read a session row under a row lock for the rest of the transaction."""
    result = await db.execute(
        select(ClassSession)
        .where(ClassSession.id == session_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def lock_session_rows(db: AsyncSession, *session_ids: int) -> List[Optional[ClassSession]]:
    """Lock several session rows in id order, returned in argument order."""
    locked = {}
    for session_id in sorted(set(session_ids)):
        locked[session_id] = await lock_session_row(db, session_id)
    return [locked[session_id] for session_id in session_ids]
