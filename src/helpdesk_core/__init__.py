"""Helpdesk Core Library

Resilient case discussion threads for the helpdesk: retry policy, local
cache, optimistic posting with an outbox, attachments, auth session guard
and reply notifications.
"""

__version__ = "0.1.0"

# Export shared models and errors first (no dependencies)
from helpdesk_core.models import (
    Attachment, CaseStatus, Note, PendingMessage, Profile, Reply, ThreadItem,
    UserRole, Viewer,
)
from helpdesk_core.errors import HelpdeskError

from helpdesk_core.config import (
    HelpdeskSettings,
    get_settings,
    reset_settings,
)

# Lazy imports for the heavier layers (clients, redis, synchronizer)
_LAZY = {
    "HelpdeskContext": "helpdesk_core.app",
    "ThreadSynchronizer": "helpdesk_core.sync",
    "SyncState": "helpdesk_core.sync",
    "ThreadDataClient": "helpdesk_core.clients",
}


def __getattr__(name):
    """Lazy import for the context, synchronizer and clients."""
    if name in _LAZY:
        import importlib

        return getattr(importlib.import_module(_LAZY[name]), name)
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
    # Models
    "Attachment", "CaseStatus", "Note", "PendingMessage", "Profile", "Reply",
    "ThreadItem", "UserRole", "Viewer",
    # Errors
    "HelpdeskError",
    # Configuration
    "HelpdeskSettings", "get_settings", "reset_settings",
    # Lazy loaded
    "HelpdeskContext", "ThreadSynchronizer", "SyncState", "ThreadDataClient",
]
