"""Pure functions turning fetched rows into what a viewer sees.

Ordering and visibility are recomputed on every render: the same fetched
set backs consultants and users, and optimistic items are spliced in out of
order.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from helpdesk_core.models import Attachment, Note, Profile, Reply, ThreadItem, Viewer, utc_now
from helpdesk_core.sync.entries import PendingEntry, ThreadEntry


def merge_thread(replies: Iterable[Reply], notes: Iterable[Note]) -> List[ThreadItem]:
    """Replies and notes in one list, ascending by ``created_at``."""
    return sorted([*replies, *notes], key=lambda item: item.created_at)


def visible_items(items: Iterable[ThreadItem], viewer: Viewer) -> List[ThreadItem]:
    """Drop notes and internal replies for non-privileged viewers.

    This is a display filter only; the backend's row-level security is the
    authoritative boundary.
    """
    return [item for item in items if item.visible_to(viewer)]


def assemble_thread(
    replies: Iterable[Reply], notes: Iterable[Note], attachments: Iterable[Attachment]
) -> Tuple[List[ThreadItem], List[Attachment]]:
    """Attach files to their replies.

    Returns the merged thread and the attachments that belong directly to
    the case (no ``reply_id``).
    """
    by_reply: Dict[str, List[Attachment]] = defaultdict(list)
    case_level: List[Attachment] = []
    for attachment in attachments:
        if attachment.is_case_level:
            case_level.append(attachment)
        else:
            by_reply[attachment.reply_id].append(attachment)

    linked = [
        reply.model_copy(update={"attachments": by_reply[reply.id]}) if reply.id in by_reply else reply
        for reply in replies
    ]
    return merge_thread(linked, notes), case_level


def format_relative_time(created_at: datetime, now: Optional[datetime] = None) -> str:
    """Distance from ``created_at`` to ``now`` in words, e.g. "5 minutes ago"."""
    now = now or utc_now()
    seconds = max(0.0, (now - created_at).total_seconds())
    minutes = round(seconds / 60)

    if seconds < 30:
        phrase = "less than a minute"
    elif seconds < 90:
        phrase = "1 minute"
    elif minutes < 45:
        phrase = f"{minutes} minutes"
    elif minutes < 90:
        phrase = "about 1 hour"
    elif minutes < 1440:
        phrase = f"about {round(minutes / 60)} hours"
    elif minutes < 2520:
        phrase = "1 day"
    elif minutes < 43200:
        phrase = f"{round(minutes / 1440)} days"
    elif minutes < 86400:
        months = round(minutes / 43200)
        phrase = "about 1 month" if months == 1 else f"about {months} months"
    else:
        months = round(minutes / 43200)
        if months < 12:
            phrase = f"{months} months"
        else:
            years, remainder = divmod(months, 12)
            if remainder < 3:
                phrase = f"about {years} year{'s' if years > 1 else ''}"
            elif remainder < 9:
                phrase = f"over {years} year{'s' if years > 1 else ''}"
            else:
                phrase = f"almost {years + 1} years"
    return f"{phrase} ago"


@dataclass(frozen=True)
class RenderedItem:
    """One row of the discussion as shown to a viewer"""

    id: str
    kind: str
    author_id: str
    author_name: str
    content: str
    created_at: datetime
    relative_time: str
    is_internal: bool
    is_pending: bool = False
    is_failed: bool = False
    attachments: List[Attachment] = field(default_factory=list)


def render_thread(
    entries: Iterable[ThreadEntry],
    viewer: Viewer,
    profiles: Optional[Mapping[str, Profile]] = None,
    now: Optional[datetime] = None,
) -> List[RenderedItem]:
    """Filter, order and attribute entries for ``viewer``."""
    profiles = profiles or {}
    now = now or utc_now()

    visible = [e for e in entries if e.item.visible_to(viewer)]
    visible.sort(key=lambda e: e.item.created_at)

    rendered = []
    for entry in visible:
        item = entry.item
        profile = profiles.get(item.user_id)
        rendered.append(
            RenderedItem(
                id=entry.id,
                kind=item.kind,
                author_id=item.user_id,
                author_name=profile.display_name if profile else "Unknown user",
                content=item.content,
                created_at=item.created_at,
                relative_time=format_relative_time(item.created_at, now),
                is_internal=item.is_internal,
                is_pending=isinstance(entry, PendingEntry),
                is_failed=isinstance(entry, PendingEntry) and entry.failed,
                attachments=list(getattr(item, "attachments", [])),
            )
        )
    return rendered
