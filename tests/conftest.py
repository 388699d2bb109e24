"""Pytest configuration and fixtures."""

import itertools
from datetime import datetime, timezone
from typing import List, Optional

import pytest

from helpdesk_core.clients import FetchedThread
from helpdesk_core.errors import TransientBackendError
from helpdesk_core.infrastructure import InMemoryOutbox, InMemoryThreadCache
from helpdesk_core.models import Attachment, Note, Reply, UserRole, Viewer
from helpdesk_core.utils import RetryPolicy


class FakeClock:
    """Manually advanced wall clock (seconds since the epoch)."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeThreadBackend:
    """In-memory stand-in for ThreadDataClient.

    ``fail_fetches`` / ``fail_creates`` make the next N calls raise a
    transient error; ``offline`` makes every call fail.
    """

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.replies: List[Reply] = []
        self.notes: List[Note] = []
        self.attachments: List[Attachment] = []
        self.offline = False
        self.fail_fetches = 0
        self.fail_creates = 0
        self.fetch_calls = 0
        self.create_calls = 0
        self._ids = itertools.count(1)

    def _timestamp(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc)

    def _maybe_fail(self, counter: str) -> None:
        if self.offline:
            raise TransientBackendError("backend offline")
        remaining = getattr(self, counter)
        if remaining > 0:
            setattr(self, counter, remaining - 1)
            raise TransientBackendError("backend hiccup")

    async def fetch_thread(self, case_id: str, include_notes: bool = True) -> FetchedThread:
        self.fetch_calls += 1
        self._maybe_fail("fail_fetches")
        return FetchedThread(
            replies=[r for r in self.replies if r.case_id == case_id],
            notes=[n for n in self.notes if n.case_id == case_id] if include_notes else [],
            attachments=[a for a in self.attachments if a.case_id == case_id],
        )

    async def create_reply(
        self, case_id, user_id, content, is_internal=False, client_id: Optional[str] = None
    ) -> Reply:
        self.create_calls += 1
        self._maybe_fail("fail_creates")
        for existing in self.replies:
            if client_id and existing.client_id == client_id:
                return existing
        reply = Reply(
            id=f"reply-{next(self._ids)}",
            case_id=case_id,
            user_id=user_id,
            content=content,
            is_internal=is_internal,
            client_id=client_id,
            created_at=self._timestamp(),
        )
        self.replies.append(reply)
        return reply

    async def create_note(self, case_id, user_id, content, client_id: Optional[str] = None) -> Note:
        self.create_calls += 1
        self._maybe_fail("fail_creates")
        note = Note(
            id=f"note-{next(self._ids)}",
            case_id=case_id,
            user_id=user_id,
            content=content,
            client_id=client_id,
            created_at=self._timestamp(),
        )
        self.notes.append(note)
        return note

    async def create_attachment(self, case_id, file_name, file_path, content_type, size, created_by, reply_id=None):
        attachment = Attachment(
            id=f"att-{next(self._ids)}",
            case_id=case_id,
            reply_id=reply_id,
            file_name=file_name,
            file_path=file_path,
            content_type=content_type,
            size=size,
            created_by=created_by,
            created_at=self._timestamp(),
        )
        self.attachments.append(attachment)
        return attachment


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def retry_policy(recording_sleep):
    """Deterministic policy: no jitter, no real sleeping."""
    return RetryPolicy(max_attempts=3, initial_delay=0.3, max_jitter=0.3, sleep=recording_sleep, rng=lambda: 0.0)


@pytest.fixture
def backend(clock):
    return FakeThreadBackend(clock)


@pytest.fixture
def cache(clock):
    return InMemoryThreadCache(ttl_seconds=300, clock=clock)


@pytest.fixture
def outbox():
    return InMemoryOutbox()


@pytest.fixture
def user():
    return Viewer(user_id="user-1", role=UserRole.USER)


@pytest.fixture
def consultant():
    return Viewer(user_id="consultant-1", role=UserRole.CONSULTANT)
