"""Per-case thread synchronizer.

Keeps one case's discussion consistent across an unreliable backend:

- shows the cached snapshot immediately, then fetches with retry
- renders the viewer's own messages optimistically and reconciles them with
  the stored rows
- falls back to the cache (flagged offline/stale) when the backend is gone
- parks undelivered messages in the outbox and replays them once the
  backend answers again

Every mutation happens on the event loop thread between awaits; a fetch
carries a generation number and its result is dropped when a newer fetch,
a case switch or ``close()`` has happened in the meantime.
"""

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set

from helpdesk_core.errors import (
    AccessDeniedError,
    OutboxError,
    PartialUploadError,
    ThreadValidationError,
    is_retryable,
)
from helpdesk_core.infrastructure.outbox import PendingOutbox
from helpdesk_core.infrastructure.thread_cache import ThreadCacheStore
from helpdesk_core.models import Note, PendingMessage, Profile, Reply, ThreadItem, Viewer
from helpdesk_core.services.attachments import FileUpload, validate_upload
from helpdesk_core.sync.debounce import Debouncer
from helpdesk_core.sync.entries import (
    ConfirmedEntry,
    PendingEntry,
    ThreadEntry,
    confirmed_items,
    find_entry,
    mark_pending_local,
    new_temp_id,
    rebase,
    reconcile,
    replace_item,
)
from helpdesk_core.sync.view import RenderedItem, assemble_thread, render_thread, visible_items
from helpdesk_core.utils import RetryPolicy

logger = logging.getLogger(__name__)

EMPTY_MESSAGE_ERROR = "Please enter some text or attach a file before sending."
FILE_ONLY_CONTENT = "📎 File attachment"


class SyncState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    LIVE = "live"
    OFFLINE = "offline"
    EMPTY = "empty"


@dataclass(frozen=True)
class SyncNotice:
    """Dismissible message for the person looking at the thread"""

    level: str  # "success" | "info" | "error"
    title: str
    description: str = ""


class ThreadSynchronizer:
    """Keeps the discussion of one case in sync for one viewer.

    Args:
        case_id: Case whose thread is shown
        viewer: Who the thread is rendered for; decides note visibility and
            which actions are allowed
        data_client: ``ThreadDataClient`` or anything with the same coroutines
        cache: Shared ``ThreadCacheStore``
        outbox: Shared ``PendingOutbox``
        retry_policy: Wraps every backend call
        uploader: ``AttachmentUploader``; replies with files need one
        notifier: ``NotificationDispatcher``; optional
        on_notice: Called with every ``SyncNotice``

    Usage:
        sync = ThreadSynchronizer("case-1", viewer, client, cache, outbox)
        await sync.start()
        entry = sync.submit_reply("Hello")   # rendered immediately
        rows = sync.render(profiles)
    """

    def __init__(
        self,
        case_id: str,
        viewer: Viewer,
        data_client,
        cache: ThreadCacheStore,
        outbox: PendingOutbox,
        retry_policy: Optional[RetryPolicy] = None,
        uploader=None,
        notifier=None,
        debounce_seconds: float = 0.5,
        max_replay_attempts: int = 5,
        on_notice: Optional[Callable[[SyncNotice], None]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.viewer = viewer
        self.data_client = data_client
        self.cache = cache
        self.outbox = outbox
        self.retry_policy = retry_policy or RetryPolicy()
        self.uploader = uploader
        self.notifier = notifier
        self.max_replay_attempts = max_replay_attempts
        self.on_notice = on_notice
        self._clock = clock

        self._case_id = case_id
        self._state = SyncState.IDLE
        self._settled_state = SyncState.IDLE
        self._entries: List[ThreadEntry] = []
        self.case_attachments = []
        self.is_stale = False
        self.showing_cached = False
        self.last_upload_report = None
        self.notices: List[SyncNotice] = []

        self._generation = 0
        self._fetch_task: Optional[asyncio.Task] = None
        self._confirmations: Dict[str, asyncio.Task] = {}
        self._payloads: Dict[str, PendingMessage] = {}
        self._delivered: Set[str] = set()
        self._background: Set[asyncio.Task] = set()
        self._replaying = False
        self._debouncer = Debouncer(debounce_seconds, lambda: self.refresh(user_initiated=True))

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def case_id(self) -> str:
        return self._case_id

    @property
    def entries(self) -> List[ThreadEntry]:
        return list(self._entries)

    @property
    def items(self) -> List[ThreadItem]:
        """Items the viewer may see, oldest first"""
        ordered = sorted((e.item for e in self._entries), key=lambda item: item.created_at)
        return visible_items(ordered, self.viewer)

    def render(
        self, profiles: Optional[Mapping[str, Profile]] = None, now: Optional[datetime] = None
    ) -> List[RenderedItem]:
        return render_thread(self._entries, self.viewer, profiles, now)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def start(self) -> SyncState:
        """Show cached and queued content for the case, then fetch."""
        case_id = self._case_id
        snapshot = await self.cache.get(case_id)
        if case_id != self._case_id:
            return self._state

        if snapshot is not None:
            self._entries = rebase(self._entries, snapshot.items)
            self.showing_cached = True
            self.is_stale = snapshot.is_stale(self._clock())
            logger.debug(
                f"[ThreadSync] Showing {len(snapshot.items)} cached item(s) for case {case_id}"
                f"{' (stale)' if self.is_stale else ''}"
            )

        await self._restore_queued(case_id)
        return await self.refresh()

    async def _restore_queued(self, case_id: str) -> None:
        try:
            queued = await self.outbox.list(case_id)
        except OutboxError as e:
            logger.error(f"[ThreadSync] Unable to read queued messages for case {case_id}: {e.message}")
            return
        if case_id != self._case_id:
            return

        for message in queued:
            if not self._owns(message) or find_entry(self._entries, message.client_id) is not None:
                continue
            item = self._item_from_message(message)
            self._entries = [
                *self._entries,
                PendingEntry(message.client_id, item, failed=True, error=message.last_error),
            ]

    async def refresh(self, user_initiated: bool = False) -> SyncState:
        """Fetch the thread now, replacing any fetch already in flight."""
        self._cancel_fetch()
        self._generation += 1
        task = asyncio.get_running_loop().create_task(
            self._fetch(self._generation, self._case_id, user_initiated)
        )
        self._fetch_task = task
        await asyncio.wait({task})
        if not task.cancelled():
            task.result()
        return self._state

    def request_refresh(self) -> None:
        """Debounced user refresh; a burst of calls results in one fetch."""
        self._debouncer.trigger()

    async def _fetch(self, generation: int, case_id: str, user_initiated: bool) -> None:
        self._set_state(SyncState.FETCHING)
        try:
            thread = await self.retry_policy.call(
                self.data_client.fetch_thread, case_id, include_notes=self.viewer.is_privileged
            )
        except Exception as e:
            if generation == self._generation:
                await self._fall_back(generation, case_id, e, user_initiated)
            return

        if generation != self._generation:
            logger.debug(f"[ThreadSync] Discarding superseded response for case {case_id}")
            return

        items, case_attachments = assemble_thread(thread.replies, thread.notes, thread.attachments)
        came_back = self._settled_state != SyncState.LIVE
        self._entries = rebase(self._entries, items)
        self.case_attachments = case_attachments
        self.showing_cached = False
        self.is_stale = False
        self._set_state(SyncState.LIVE)

        await self.cache.set(case_id, items)
        if user_initiated:
            self._notify("success", "Refreshed", "Messages are up to date")
        if came_back:
            self._spawn(self.retry_pending_messages())

    async def _fall_back(
        self, generation: int, case_id: str, error: Exception, user_initiated: bool
    ) -> None:
        logger.warning(f"[ThreadSync] Fetch failed for case {case_id}, falling back to cache: {error}")
        snapshot = await self.cache.get(case_id)
        if generation != self._generation:
            return

        if snapshot is not None:
            self._entries = rebase(self._entries, snapshot.items)
            self.showing_cached = True
            self.is_stale = snapshot.is_stale(self._clock())
            self._set_state(SyncState.OFFLINE)
        elif confirmed_items(self._entries):
            self.showing_cached = True
            self.is_stale = True
            self._set_state(SyncState.OFFLINE)
        else:
            self._set_state(SyncState.EMPTY)

        if user_initiated:
            if self._state == SyncState.OFFLINE:
                self._notify(
                    "error", "Connection issue", "Unable to refresh messages. Showing cached content."
                )
            else:
                self._notify("error", "Connection issue", "Unable to load messages. Please try again.")

    async def switch_case(self, case_id: str) -> SyncState:
        """Show another case; nothing from the previous one leaks into the new view."""
        self._debouncer.cancel()
        self._cancel_fetch()
        self._generation += 1
        self._case_id = case_id
        self._entries = []
        self.case_attachments = []
        self.showing_cached = False
        self.is_stale = False
        self._set_state(SyncState.IDLE)
        self._settled_state = SyncState.IDLE
        return await self.start()

    async def close(self) -> None:
        """Cancel timers and background work.

        Messages whose delivery was still in progress are parked in the outbox.
        """
        self._debouncer.cancel()
        self._cancel_fetch()
        self._generation += 1

        for temp_id, task in list(self._confirmations.items()):
            if task.done() or temp_id in self._delivered or temp_id not in self._payloads:
                continue
            try:
                await self.outbox.enqueue(self._payloads[temp_id])
            except OutboxError as e:
                logger.error(f"[ThreadSync] Could not park message {temp_id} on close: {e.message}")

        tasks = [*self._confirmations.values(), *self._background]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._set_state(SyncState.IDLE)

    def _cancel_fetch(self) -> None:
        if self._fetch_task is not None and not self._fetch_task.done():
            self._fetch_task.cancel()
        self._fetch_task = None

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    def submit_reply(
        self, content: str, is_internal: bool = False, files: Iterable[FileUpload] = ()
    ) -> PendingEntry:
        """Validate and show a reply immediately; delivery continues in the background.

        Raises:
            ThreadValidationError: nothing to send, or a file is rejected
            AccessDeniedError: internal reply by a non-consultant
        """
        content = (content or "").strip()
        files = tuple(files)
        if not content and not files:
            raise ThreadValidationError(EMPTY_MESSAGE_ERROR)
        if is_internal and not self.viewer.is_privileged:
            raise AccessDeniedError("Only consultants can post internal replies")
        if files:
            self._validate_files(files)

        temp_id = new_temp_id()
        item = Reply(
            id=temp_id,
            case_id=self._case_id,
            user_id=self.viewer.user_id,
            content=content or FILE_ONLY_CONTENT,
            is_internal=is_internal,
            created_at=self._now(),
            client_id=temp_id,
            is_optimistic=True,
        )
        return self._submit(item, files)

    def submit_note(self, content: str) -> PendingEntry:
        """Validate and show an internal note immediately.

        Raises:
            AccessDeniedError: the viewer is not a consultant
            ThreadValidationError: empty note
        """
        if not self.viewer.is_privileged:
            raise AccessDeniedError("Only consultants can add internal notes")
        content = (content or "").strip()
        if not content:
            raise ThreadValidationError("Please enter a note before saving.")

        temp_id = new_temp_id()
        item = Note(
            id=temp_id,
            case_id=self._case_id,
            user_id=self.viewer.user_id,
            content=content,
            created_at=self._now(),
            client_id=temp_id,
            is_optimistic=True,
        )
        return self._submit(item, ())

    async def send_reply(
        self, content: str, is_internal: bool = False, files: Iterable[FileUpload] = ()
    ) -> ThreadEntry:
        """Submit a reply and wait until it is confirmed or parked locally."""
        entry = self.submit_reply(content, is_internal=is_internal, files=files)
        return await self._confirmations[entry.temp_id]

    async def add_note(self, content: str) -> ThreadEntry:
        entry = self.submit_note(content)
        return await self._confirmations[entry.temp_id]

    def _validate_files(self, files) -> None:
        if self.uploader is None:
            raise ThreadValidationError("Attachments are not available for this thread")
        for upload in files:
            problem = validate_upload(upload, self.uploader.max_bytes, self.uploader.allowed_types)
            if problem:
                raise ThreadValidationError(
                    f"{upload.file_name}: {problem}", details={"file_name": upload.file_name}
                )

    def _submit(self, item: ThreadItem, files) -> PendingEntry:
        entry = PendingEntry(temp_id=item.id, item=item, files=files)
        self._entries = [*self._entries, entry]
        self._payloads[entry.temp_id] = self._pending_message(item)

        task = asyncio.get_running_loop().create_task(self._confirm(entry))
        self._confirmations[entry.temp_id] = task
        task.add_done_callback(lambda t, temp_id=entry.temp_id: self._forget(temp_id))
        task.add_done_callback(self._log_task_failure)
        return entry

    def _forget(self, temp_id: str) -> None:
        self._confirmations.pop(temp_id, None)
        self._payloads.pop(temp_id, None)
        self._delivered.discard(temp_id)

    async def _confirm(self, entry: PendingEntry) -> ThreadEntry:
        item = entry.item
        try:
            server_item = await self.retry_policy.call(self._create, item)
        except Exception as e:
            return await self._keep_locally(entry, e)

        self._delivered.add(entry.temp_id)
        logger.info(f"[ThreadSync] {item.kind} {server_item.id} stored for case {item.case_id}")
        if item.case_id == self._case_id:
            self._entries = reconcile(self._entries, entry.temp_id, server_item)
            await self._write_cache()

        if entry.files:
            server_item = await self._attach_files(server_item, entry.files)

        if isinstance(server_item, Note):
            self._notify("success", "Note added", "Internal note has been saved")
        else:
            self._notify("success", "Reply sent", "Your reply has been posted")
            await self._dispatch(server_item)

        return find_entry(self._entries, server_item.id) or ConfirmedEntry(server_item)

    async def _create(self, item: ThreadItem) -> ThreadItem:
        if isinstance(item, Note):
            return await self.data_client.create_note(
                item.case_id, item.user_id, item.content, client_id=item.client_id
            )
        return await self.data_client.create_reply(
            item.case_id,
            item.user_id,
            item.content,
            is_internal=item.is_internal,
            client_id=item.client_id,
        )

    async def _attach_files(self, reply: Reply, files) -> Reply:
        report = await self.uploader.upload_all(
            files, owner_id=self.viewer.user_id, case_id=reply.case_id, reply_id=reply.id
        )
        self.last_upload_report = report
        if report.failed:
            error = PartialUploadError(report)
            self._notify(
                "error",
                "Some attachments failed",
                f"{error.message}: {', '.join(error.details['failed'])}",
            )

        if report.succeeded:
            reply = reply.model_copy(update={"attachments": [*reply.attachments, *report.succeeded]})
            if reply.case_id == self._case_id:
                self._entries = replace_item(self._entries, reply)
                await self._write_cache()
        return reply

    async def _dispatch(self, reply: Reply) -> None:
        if self.notifier is not None:
            await self.notifier.notify_reply(reply, self.viewer.role)

    async def _keep_locally(self, entry: PendingEntry, error: Exception) -> ThreadEntry:
        reason = getattr(error, "message", str(error))
        logger.warning(f"[ThreadSync] Could not deliver {entry.item.kind} {entry.temp_id}: {reason}")

        message = self._payloads.get(entry.temp_id) or self._pending_message(entry.item)
        message = message.model_copy(update={"attempts": message.attempts + 1, "last_error": reason})
        if entry.item.case_id == self._case_id:
            self._entries = mark_pending_local(self._entries, entry.temp_id, reason)

        try:
            await self.outbox.enqueue(message)
        except OutboxError as e:
            logger.error(f"[ThreadSync] Message {entry.temp_id} is only held in memory: {e.message}")
            self._notify(
                "error",
                "Message not sent",
                "Your message could not be sent and could not be saved locally. "
                "Please copy it before leaving this page.",
            )
        else:
            self._notify(
                "error",
                "Message not sent",
                "Your message is saved locally and will be sent when connection is restored",
            )
        self._delivered.discard(entry.temp_id)
        return find_entry(self._entries, entry.temp_id) or dataclasses.replace(
            entry, failed=True, error=reason
        )

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    async def retry_pending_messages(self, force: bool = False) -> int:
        """Send queued messages for the current case, oldest first.

        A message that already failed ``max_replay_attempts`` times is left
        alone unless ``force`` is set. The sweep stops at the first retryable
        failure since the rest would fail the same way.

        Returns the number of messages delivered.
        """
        if self._replaying:
            return 0
        self._replaying = True
        case_id = self._case_id
        sent = failed = 0
        try:
            try:
                queued = await self.outbox.list(case_id)
            except OutboxError as e:
                logger.error(f"[ThreadSync] Unable to read queued messages: {e.message}")
                return 0

            for message in queued:
                if not self._owns(message):
                    continue
                if message.attempts >= self.max_replay_attempts and not force:
                    logger.warning(
                        f"[ThreadSync] Skipping {message.client_id} after {message.attempts} attempts"
                    )
                    continue

                try:
                    server_item = await self.retry_policy.call(
                        self._create, self._item_from_message(message)
                    )
                except Exception as e:
                    failed += 1
                    reason = getattr(e, "message", str(e))
                    await self._record_replay_failure(message, reason)
                    if case_id == self._case_id:
                        self._entries = mark_pending_local(self._entries, message.client_id, reason)
                    if is_retryable(e):
                        break
                    continue

                sent += 1
                try:
                    await self.outbox.remove(message.client_id)
                except OutboxError as e:
                    logger.error(
                        f"[ThreadSync] Delivered {message.client_id} but could not dequeue it: {e.message}"
                    )
                if case_id == self._case_id:
                    self._entries = reconcile(
                        self._entries, message.client_id, server_item, append_missing=True
                    )
                if isinstance(server_item, Reply):
                    await self._dispatch(server_item)
        finally:
            self._replaying = False

        if sent:
            await self._write_cache()
        if failed:
            self._notify("error", "Sync failed", f"{failed} message(s) could not be sent")
        elif sent:
            self._notify("success", "Sync completed", f"{sent} pending message(s) sent")
        if sent or failed:
            logger.info(f"[ThreadSync] Replay for case {case_id}: {sent} sent, {failed} failed")
        return sent

    async def _record_replay_failure(self, message: PendingMessage, reason: str) -> None:
        updated = message.model_copy(update={"attempts": message.attempts + 1, "last_error": reason})
        try:
            await self.outbox.update(updated)
        except OutboxError as e:
            logger.error(f"[ThreadSync] Unable to update attempts for {message.client_id}: {e.message}")

    # ------------------------------------------------------------------
    # Notices
    # ------------------------------------------------------------------

    def dismiss_notice(self, notice: SyncNotice) -> None:
        if notice in self.notices:
            self.notices.remove(notice)

    def clear_notices(self) -> None:
        self.notices.clear()

    def _notify(self, level: str, title: str, description: str = "") -> None:
        notice = SyncNotice(level, title, description)
        self.notices.append(notice)
        if self.on_notice is not None:
            try:
                self.on_notice(notice)
            except Exception:
                logger.exception("[ThreadSync] Notice callback failed")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def _set_state(self, state: SyncState) -> None:
        if state != self._state:
            logger.debug(f"[ThreadSync] case {self._case_id}: {self._state.value} -> {state.value}")
            self._state = state
        if state != SyncState.FETCHING:
            self._settled_state = state

    async def _write_cache(self) -> None:
        # Only a live view is authoritative enough to refresh the snapshot
        if self._state == SyncState.LIVE:
            await self.cache.set(self._case_id, confirmed_items(self._entries))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        task.add_done_callback(self._log_task_failure)
        return task

    @staticmethod
    def _log_task_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[ThreadSync] Background task failed: {exc}", exc_info=exc)

    def _owns(self, message: PendingMessage) -> bool:
        """Queued messages are only shown and replayed for the viewer who wrote them."""
        if message.user_id != self.viewer.user_id:
            return False
        internal = message.kind == "note" or message.is_internal
        return self.viewer.is_privileged or not internal

    @staticmethod
    def _pending_message(item: ThreadItem) -> PendingMessage:
        return PendingMessage(
            client_id=item.id,
            kind=item.kind,
            case_id=item.case_id,
            user_id=item.user_id,
            content=item.content,
            is_internal=item.is_internal,
            queued_at=item.created_at,
        )

    @staticmethod
    def _item_from_message(message: PendingMessage) -> ThreadItem:
        fields = dict(
            id=message.client_id,
            case_id=message.case_id,
            user_id=message.user_id,
            content=message.content,
            created_at=message.queued_at,
            client_id=message.client_id,
            is_optimistic=True,
        )
        if message.kind == "note":
            return Note(**fields)
        return Reply(is_internal=message.is_internal, **fields)
