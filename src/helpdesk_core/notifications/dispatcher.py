"""Decides who hears about a new reply and asks the notification function to tell them."""

import logging

from helpdesk_core.errors import HelpdeskError
from helpdesk_core.models import Reply, UserRole

logger = logging.getLogger(__name__)


def recipient_for(author_role: UserRole) -> UserRole:
    """A user's reply notifies consultants; a consultant's reply notifies the user."""
    return UserRole.CONSULTANT if UserRole(author_role) == UserRole.USER else UserRole.USER


class NotificationDispatcher:
    """Best-effort reply notifications.

    Failures are logged and reported as ``False``; a notification problem
    never fails the reply that triggered it.
    """

    def __init__(self, client):
        self.client = client

    async def notify_reply(self, reply: Reply, author_role: UserRole) -> bool:
        recipient = recipient_for(author_role)
        if reply.is_internal and recipient == UserRole.USER:
            logger.debug(f"Skipping notification for internal reply {reply.id}")
            return False

        try:
            await self.client.send_case_notification(reply.case_id, reply.id, recipient)
            return True
        except HelpdeskError as e:
            logger.warning(f"Failed to send notification for reply {reply.id}: {e.message}")
            return False
