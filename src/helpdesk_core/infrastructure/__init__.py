"""Persistence backends: thread cache, durable outbox, local metadata storage."""

from helpdesk_core.infrastructure.local_storage import (
    JsonFileLocalStorage,
    LocalStorage,
    MemoryLocalStorage,
)
from helpdesk_core.infrastructure.outbox import InMemoryOutbox, PendingOutbox, RedisOutbox
from helpdesk_core.infrastructure.thread_cache import (
    InMemoryThreadCache,
    RedisThreadCache,
    ThreadCacheStore,
)

__all__ = [
    "ThreadCacheStore", "InMemoryThreadCache", "RedisThreadCache",
    "PendingOutbox", "InMemoryOutbox", "RedisOutbox",
    "LocalStorage", "MemoryLocalStorage", "JsonFileLocalStorage",
]
