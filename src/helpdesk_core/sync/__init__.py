"""Case thread synchronization: optimistic posting, cache fallback and replay."""

from helpdesk_core.sync.debounce import Debouncer
from helpdesk_core.sync.entries import (
    ConfirmedEntry,
    PendingEntry,
    ThreadEntry,
    mark_pending_local,
    new_temp_id,
    reconcile,
    remove_entry,
)
from helpdesk_core.sync.synchronizer import SyncNotice, SyncState, ThreadSynchronizer
from helpdesk_core.sync.view import (
    RenderedItem,
    assemble_thread,
    format_relative_time,
    merge_thread,
    render_thread,
    visible_items,
)

__all__ = [
    "ThreadSynchronizer",
    "SyncState",
    "SyncNotice",
    "Debouncer",
    "PendingEntry",
    "ConfirmedEntry",
    "ThreadEntry",
    "new_temp_id",
    "reconcile",
    "mark_pending_local",
    "remove_entry",
    "RenderedItem",
    "assemble_thread",
    "format_relative_time",
    "merge_thread",
    "render_thread",
    "visible_items",
]
