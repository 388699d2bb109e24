"""Composition root.

Builds the shared collaborators once per process so every synchronizer uses
the same circuit breaker, cache and outbox.
"""

import logging
import time
from typing import Callable, Optional

import httpx
from redis.asyncio import Redis

from helpdesk_core.auth.session_guard import AuthSessionGuard, CircuitBreaker
from helpdesk_core.auth.session_provider import SessionProvider
from helpdesk_core.clients import NotificationClient, StorageClient, ThreadDataClient
from helpdesk_core.config import HelpdeskSettings, get_settings
from helpdesk_core.infrastructure import (
    InMemoryOutbox,
    InMemoryThreadCache,
    JsonFileLocalStorage,
    LocalStorage,
    MemoryLocalStorage,
    PendingOutbox,
    RedisOutbox,
    RedisThreadCache,
    ThreadCacheStore,
)
from helpdesk_core.models import Viewer
from helpdesk_core.notifications import NotificationDispatcher
from helpdesk_core.services import AttachmentUploader
from helpdesk_core.sync import ThreadSynchronizer
from helpdesk_core.utils import RetryPolicy

logger = logging.getLogger(__name__)


class HelpdeskContext:
    """Everything a thread view needs, wired from ``HelpdeskSettings``.

    Usage:
        context = HelpdeskContext.create(HelpdeskSettings.from_env())
        await context.session_provider.sign_in(email, password)
        sync = context.synchronizer("case-123", viewer)
        await sync.start()
    """

    def __init__(
        self,
        settings: HelpdeskSettings,
        breaker: CircuitBreaker,
        guard: AuthSessionGuard,
        session_provider: SessionProvider,
        retry_policy: RetryPolicy,
        cache: ThreadCacheStore,
        outbox: PendingOutbox,
        data_client: ThreadDataClient,
        storage_client: StorageClient,
        notification_client: NotificationClient,
        uploader: AttachmentUploader,
        notifier: NotificationDispatcher,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.breaker = breaker
        self.guard = guard
        self.session_provider = session_provider
        self.retry_policy = retry_policy
        self.cache = cache
        self.outbox = outbox
        self.data_client = data_client
        self.storage_client = storage_client
        self.notification_client = notification_client
        self.uploader = uploader
        self.notifier = notifier
        self._clock = clock

    @classmethod
    def create(
        cls,
        settings: Optional[HelpdeskSettings] = None,
        redis: Optional[Redis] = None,
        local_storage: Optional[LocalStorage] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ) -> "HelpdeskContext":
        """Wire the collaborators.

        With ``redis`` the cache and outbox live in Redis; otherwise they are
        process-local. Auth health metadata goes to ``local_storage``, a JSON
        file at ``settings.local_state_path`` or memory, in that order.
        """
        settings = settings or get_settings()

        if local_storage is None:
            local_storage = (
                JsonFileLocalStorage(settings.local_state_path)
                if settings.local_state_path
                else MemoryLocalStorage()
            )

        breaker = CircuitBreaker(clock=clock)
        guard = AuthSessionGuard.from_settings(settings, breaker, storage=local_storage, clock=clock)
        session_provider = SessionProvider(
            auth_url=settings.auth_url,
            api_key=settings.anon_key,
            guard=guard,
            refresh_buffer_seconds=settings.session_refresh_buffer_seconds,
            timeout_seconds=settings.request_timeout,
            transport=transport,
            clock=clock,
        )
        retry_policy = RetryPolicy.from_settings(settings)

        if redis is not None:
            cache = RedisThreadCache(
                redis, ttl_seconds=settings.cache_ttl_seconds, namespace=settings.cache_namespace, clock=clock
            )
            outbox = RedisOutbox(redis, namespace=settings.cache_namespace)
        else:
            cache = InMemoryThreadCache(ttl_seconds=settings.cache_ttl_seconds, clock=clock)
            outbox = InMemoryOutbox()

        client_kwargs = dict(
            api_key=settings.anon_key,
            session_provider=session_provider,
            timeout=settings.request_timeout,
            transport=transport,
        )
        data_client = ThreadDataClient(base_url=settings.rest_url, **client_kwargs)
        storage_client = StorageClient(
            base_url=settings.storage_url, bucket=settings.attachments_bucket, **client_kwargs
        )
        notification_client = NotificationClient(
            base_url=settings.functions_url, function_name=settings.notification_function, **client_kwargs
        )

        uploader = AttachmentUploader(
            storage_client,
            data_client,
            retry_policy=retry_policy,
            max_bytes=settings.max_upload_bytes,
            allowed_types=settings.allowed_content_types,
            signed_url_ttl=settings.signed_url_ttl_seconds,
            clock=clock,
        )

        logger.info(
            f"Helpdesk context created for {settings.backend_url} "
            f"(cache={'redis' if redis is not None else 'memory'})"
        )
        return cls(
            settings=settings,
            breaker=breaker,
            guard=guard,
            session_provider=session_provider,
            retry_policy=retry_policy,
            cache=cache,
            outbox=outbox,
            data_client=data_client,
            storage_client=storage_client,
            notification_client=notification_client,
            uploader=uploader,
            notifier=NotificationDispatcher(notification_client),
            clock=clock,
        )

    def synchronizer(self, case_id: str, viewer: Viewer, **kwargs) -> ThreadSynchronizer:
        """New synchronizer for ``case_id`` sharing this context's stores."""
        params = dict(
            retry_policy=self.retry_policy,
            uploader=self.uploader,
            notifier=self.notifier,
            debounce_seconds=self.settings.debounce_seconds,
            max_replay_attempts=self.settings.max_replay_attempts,
            clock=self._clock,
        )
        params.update(kwargs)
        return ThreadSynchronizer(case_id, viewer, self.data_client, self.cache, self.outbox, **params)

    async def close(self) -> None:
        for client in (self.data_client, self.storage_client, self.notification_client):
            await client.close()
