"""
Shared data models for the helpdesk core.

Pydantic models for thread items, attachments, cached snapshots and the
read models used for attribution and notifications.
"""

from helpdesk_core.models.common import (
    CasePriority,
    CaseStatus,
    CaseSummary,
    Profile,
    UserRole,
    Viewer,
    parse_utc_timestamp,
    utc_now,
)
from helpdesk_core.models.thread import (
    Attachment,
    CachedThreadSnapshot,
    Note,
    PendingMessage,
    Reply,
    ThreadItem,
    thread_items_adapter,
)

__all__ = [
    # Enums
    "CasePriority", "CaseStatus", "UserRole",
    # People and cases
    "Viewer", "Profile", "CaseSummary",
    # Thread
    "Attachment", "Reply", "Note", "ThreadItem", "thread_items_adapter",
    "CachedThreadSnapshot", "PendingMessage",
    # Utilities
    "utc_now", "parse_utc_timestamp",
]
