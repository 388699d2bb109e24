"""Thread entries: optimistic (pending) versus server-confirmed items.

The synchronizer never mutates its entry list in place; every transition
goes through one of the functions below and produces a new list.
"""

import dataclasses
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union
from uuid import uuid4

from helpdesk_core.models import ThreadItem


def new_temp_id() -> str:
    return f"temp-{uuid4().hex}"


@dataclass(frozen=True)
class PendingEntry:
    """Rendered immediately, not yet acknowledged by the server.

    ``failed`` marks a "pending local" entry whose payload sits in the
    outbox waiting for replay.
    """

    temp_id: str
    item: ThreadItem
    failed: bool = False
    error: Optional[str] = None
    files: Tuple = ()

    @property
    def id(self) -> str:
        return self.temp_id


@dataclass(frozen=True)
class ConfirmedEntry:
    """Item as stored by the server"""

    item: ThreadItem

    @property
    def id(self) -> str:
        return self.item.id


ThreadEntry = Union[PendingEntry, ConfirmedEntry]


def _confirmed(item: ThreadItem) -> ConfirmedEntry:
    if item.is_optimistic:
        item = item.model_copy(update={"is_optimistic": False})
    return ConfirmedEntry(item)


def reconcile(
    entries: Iterable[ThreadEntry],
    temp_id: str,
    server_item: ThreadItem,
    append_missing: bool = False,
) -> List[ThreadEntry]:
    """Replace the pending entry ``temp_id`` with ``server_item`` in place.

    If the server item is already present (a fetch delivered it first) the
    pending entry is dropped instead, so the item never appears twice.
    With ``append_missing`` the server item is added at the end when no
    pending entry matches.
    """
    entries = list(entries)
    already_present = any(
        isinstance(e, ConfirmedEntry) and e.item.id == server_item.id for e in entries
    )

    result: List[ThreadEntry] = []
    matched = False
    for entry in entries:
        if isinstance(entry, PendingEntry) and entry.temp_id == temp_id:
            matched = True
            if not already_present:
                result.append(_confirmed(server_item))
            continue
        result.append(entry)

    if not matched and not already_present and append_missing:
        result.append(_confirmed(server_item))
    return result


def replace_item(entries: Iterable[ThreadEntry], item: ThreadItem) -> List[ThreadEntry]:
    """Swap the confirmed entry with the same id for ``item``."""
    return [
        _confirmed(item) if isinstance(e, ConfirmedEntry) and e.item.id == item.id else e
        for e in entries
    ]


def mark_pending_local(
    entries: Iterable[ThreadEntry], temp_id: str, error: Optional[str] = None
) -> List[ThreadEntry]:
    """Flag the pending entry ``temp_id`` as failed and queued locally."""
    return [
        dataclasses.replace(e, failed=True, error=error)
        if isinstance(e, PendingEntry) and e.temp_id == temp_id
        else e
        for e in entries
    ]


def remove_entry(entries: Iterable[ThreadEntry], entry_id: str) -> List[ThreadEntry]:
    return [e for e in entries if e.id != entry_id]


def rebase(entries: Iterable[ThreadEntry], items: Iterable[ThreadItem]) -> List[ThreadEntry]:
    """New confirmed list from ``items`` plus pending entries still unanswered.

    A pending entry is dropped when a fetched item carries its temp id as
    ``client_id``.
    """
    confirmed = [_confirmed(item) for item in items]
    delivered = {e.item.client_id for e in confirmed if e.item.client_id}
    pending = [
        e for e in entries if isinstance(e, PendingEntry) and e.temp_id not in delivered
    ]
    return confirmed + pending


def confirmed_items(entries: Iterable[ThreadEntry]) -> List[ThreadItem]:
    return [e.item for e in entries if isinstance(e, ConfirmedEntry)]


def find_entry(entries: Iterable[ThreadEntry], entry_id: str) -> Optional[ThreadEntry]:
    for entry in entries:
        if entry.id == entry_id:
            return entry
    return None
