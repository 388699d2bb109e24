"""Local cache of case threads.

Holds the last-known-good replies/notes for each case so the discussion can be
shown while the backend is unreachable. Caching is an optimization: every
storage failure is logged and degrades to a miss or a no-op, never raised.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from helpdesk_core.models import CachedThreadSnapshot, ThreadItem

logger = logging.getLogger(__name__)


class ThreadCacheStore(ABC):
    """Per-case snapshot store with a freshness window.

    Stale snapshots are still returned by ``get``; the caller decides how
    to flag them (see ``CachedThreadSnapshot.is_stale``).
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    @abstractmethod
    async def get(self, case_id: str) -> Optional[CachedThreadSnapshot]:
        """Return the snapshot for ``case_id`` or None"""

    @abstractmethod
    async def set(self, case_id: str, items: Iterable[ThreadItem]) -> None:
        """Overwrite the snapshot for ``case_id`` with ``items`` captured now"""

    @abstractmethod
    async def delete(self, case_id: str) -> None:
        """Forget the snapshot for ``case_id``"""

    def _snapshot(self, case_id: str, items: Iterable[ThreadItem]) -> CachedThreadSnapshot:
        # Unconfirmed items belong to the outbox, not the cache
        confirmed = [item.model_copy(deep=True) for item in items if not item.is_optimistic]
        return CachedThreadSnapshot(
            case_id=case_id,
            items=confirmed,
            captured_at=self._clock(),
            ttl_seconds=self.ttl_seconds,
        )


class InMemoryThreadCache(ThreadCacheStore):
    """Process-local cache, shared by every synchronizer in the process"""

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.time):
        super().__init__(ttl_seconds=ttl_seconds, clock=clock)
        self._snapshots: Dict[str, CachedThreadSnapshot] = {}

    async def get(self, case_id: str) -> Optional[CachedThreadSnapshot]:
        snapshot = self._snapshots.get(case_id)
        return snapshot.model_copy(deep=True) if snapshot else None

    async def set(self, case_id: str, items: Iterable[ThreadItem]) -> None:
        self._snapshots[case_id] = self._snapshot(case_id, items)

    async def delete(self, case_id: str) -> None:
        self._snapshots.pop(case_id, None)

    def __len__(self) -> int:
        return len(self._snapshots)


class RedisThreadCache(ThreadCacheStore):
    """Snapshots stored as JSON under ``{namespace}:thread:{case_id}``.

    ``retention_seconds`` only bounds how long Redis keeps a key around; it is
    not the freshness window.
    """

    def __init__(
        self,
        redis: Redis,
        ttl_seconds: float = 300.0,
        namespace: str = "helpdesk",
        retention_seconds: Optional[int] = 7 * 24 * 3600,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(ttl_seconds=ttl_seconds, clock=clock)
        self.redis = redis
        self.namespace = namespace
        self.retention_seconds = retention_seconds

    def _key(self, case_id: str) -> str:
        return f"{self.namespace}:thread:{case_id}"

    async def get(self, case_id: str) -> Optional[CachedThreadSnapshot]:
        try:
            raw = await self.redis.get(self._key(case_id))
            if raw is None:
                return None
            return CachedThreadSnapshot.model_validate_json(raw)
        except (RedisError, OSError, ValueError) as e:
            logger.warning(f"[ThreadCache] Read failed for case {case_id}, treating as miss: {e}")
            return None

    async def set(self, case_id: str, items: Iterable[ThreadItem]) -> None:
        try:
            payload = self._snapshot(case_id, items).model_dump_json()
            await self.redis.set(self._key(case_id), payload, ex=self.retention_seconds)
        except (RedisError, OSError, ValueError) as e:
            logger.warning(f"[ThreadCache] Unable to cache thread for case {case_id}: {e}")

    async def delete(self, case_id: str) -> None:
        try:
            await self.redis.delete(self._key(case_id))
        except (RedisError, OSError) as e:
            logger.warning(f"[ThreadCache] Unable to delete cached thread for case {case_id}: {e}")


