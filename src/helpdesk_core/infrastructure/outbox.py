"""Durable outbox for user messages that could not be delivered.

Unlike the thread cache, the outbox holds user input that exists nowhere else:
failures to read or write it raise ``OutboxError`` so the caller can tell the
user instead of dropping the message.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from helpdesk_core.errors import OutboxError
from helpdesk_core.models import PendingMessage

logger = logging.getLogger(__name__)


class PendingOutbox(ABC):
    """Queue of ``PendingMessage`` records keyed by ``client_id``"""

    @abstractmethod
    async def enqueue(self, message: PendingMessage) -> None:
        """Persist ``message``; replaces any record with the same client id"""

    @abstractmethod
    async def list(self, case_id: Optional[str] = None) -> List[PendingMessage]:
        """Pending messages oldest first, optionally for one case"""

    @abstractmethod
    async def remove(self, client_id: str) -> None:
        """Delete a delivered message"""

    async def update(self, message: PendingMessage) -> None:
        """Store new attempt bookkeeping for an existing message"""
        await self.enqueue(message)


def _oldest_first(messages, case_id: Optional[str]) -> List[PendingMessage]:
    selected = [m for m in messages if case_id is None or m.case_id == case_id]
    return sorted(selected, key=lambda m: m.queued_at)


class InMemoryOutbox(PendingOutbox):
    """Outbox kept in process memory (tests, single-process tools)"""

    def __init__(self):
        self._messages: Dict[str, PendingMessage] = {}

    async def enqueue(self, message: PendingMessage) -> None:
        self._messages[message.client_id] = message.model_copy()

    async def list(self, case_id: Optional[str] = None) -> List[PendingMessage]:
        return [m.model_copy() for m in _oldest_first(self._messages.values(), case_id)]

    async def remove(self, client_id: str) -> None:
        self._messages.pop(client_id, None)


class RedisOutbox(PendingOutbox):
    """Outbox stored in the Redis hash ``{namespace}:outbox``"""

    def __init__(self, redis: Redis, namespace: str = "helpdesk"):
        self.redis = redis
        self.key = f"{namespace}:outbox"

    async def enqueue(self, message: PendingMessage) -> None:
        try:
            await self.redis.hset(self.key, message.client_id, message.model_dump_json())
        except (RedisError, OSError) as e:
            logger.error(f"[Outbox] Failed to persist pending {message.kind} {message.client_id}: {e}")
            raise OutboxError(
                "Unable to save message locally",
                details={"client_id": message.client_id, "case_id": message.case_id},
            ) from e

    async def list(self, case_id: Optional[str] = None) -> List[PendingMessage]:
        try:
            raw = await self.redis.hgetall(self.key)
        except (RedisError, OSError) as e:
            raise OutboxError("Unable to read pending messages") from e

        messages = []
        for client_id, payload in raw.items():
            try:
                messages.append(PendingMessage.model_validate_json(payload))
            except ValueError:
                logger.error(f"[Outbox] Undecodable pending message {client_id}, leaving it in place")
        return _oldest_first(messages, case_id)

    async def remove(self, client_id: str) -> None:
        try:
            await self.redis.hdel(self.key, client_id)
        except (RedisError, OSError) as e:
            raise OutboxError(
                "Unable to remove delivered message", details={"client_id": client_id}
            ) from e
