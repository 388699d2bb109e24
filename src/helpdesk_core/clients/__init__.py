"""HTTP clients for the hosted backend (REST tables, storage, edge functions)."""

from helpdesk_core.clients.base import BaseBackendClient
from helpdesk_core.clients.notification_client import NotificationClient
from helpdesk_core.clients.storage_client import StorageClient
from helpdesk_core.clients.thread_client import FetchedThread, ThreadDataClient

__all__ = [
    "BaseBackendClient",
    "FetchedThread",
    "NotificationClient",
    "StorageClient",
    "ThreadDataClient",
]
