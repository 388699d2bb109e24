"""HTTP client for the email notification edge function."""

import logging
from typing import Any, Dict

from helpdesk_core.clients.base import BaseBackendClient
from helpdesk_core.models import UserRole

logger = logging.getLogger(__name__)


class NotificationClient(BaseBackendClient):
    """Invokes the case notification function.

    The function resolves the case, reply and recipient itself, fills in the
    configured template and delivers through the configured provider.

    Usage:
        client = NotificationClient(base_url=settings.functions_url, api_key=settings.anon_key,
                                    session_provider=provider)
        await client.send_case_notification("case-1", "reply-9", UserRole.USER)
    """

    def __init__(self, base_url: str, api_key: str, function_name: str = "send-case-notification", **kwargs):
        super().__init__(base_url=base_url, api_key=api_key, **kwargs)
        self.function_name = function_name

    async def send_case_notification(
        self, case_id: str, reply_id: str, recipient_type: UserRole
    ) -> Dict[str, Any]:
        """Ask the function to notify ``recipient_type`` about a reply."""
        body = await self._request(
            "POST",
            f"/{self.function_name}",
            json={
                "caseId": case_id,
                "replyId": reply_id,
                "recipientType": UserRole(recipient_type).value,
            },
        )
        logger.info(f"Notification requested for case {case_id}, reply {reply_id} -> {recipient_type}")
        return body or {}
