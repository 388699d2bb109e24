"""HTTP client for case discussion tables (replies, notes, case_attachments)."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from helpdesk_core.clients.base import BaseBackendClient
from helpdesk_core.errors import BackendRequestError
from helpdesk_core.models import Attachment, Note, Reply

logger = logging.getLogger(__name__)

RETURN_REPRESENTATION = {"Prefer": "return=representation"}


@dataclass
class FetchedThread:
    """Raw result of one thread fetch"""

    replies: List[Reply] = field(default_factory=list)
    notes: List[Note] = field(default_factory=list)
    attachments: List[Attachment] = field(default_factory=list)


class ThreadDataClient(BaseBackendClient):
    """Async client for the REST interface of the discussion tables.

    Rows are filtered by ``case_id`` and ordered by ``created_at``; row-level
    security on the backend decides what the signed-in user may read.

    Usage:
        client = ThreadDataClient(base_url=settings.rest_url, api_key=settings.anon_key,
                                  session_provider=provider)
        thread = await client.fetch_thread("case-123", include_notes=True)
    """

    async def _select(self, table: str, case_id: str, **filters: str) -> List[Dict[str, Any]]:
        params = {"select": "*", "case_id": f"eq.{case_id}", "order": "created_at.asc"}
        params.update(filters)
        rows = await self._request("GET", f"/{table}", params=params)
        return rows or []

    async def _insert(self, table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._request("POST", f"/{table}", json=payload, headers=RETURN_REPRESENTATION)
        if isinstance(rows, list):
            rows = rows[0] if rows else None
        if not rows:
            raise BackendRequestError(f"Insert into {table} returned no row", details={"table": table})
        return rows

    async def fetch_replies(self, case_id: str) -> List[Reply]:
        return [Reply(**row) for row in await self._select("replies", case_id)]

    async def fetch_notes(self, case_id: str) -> List[Note]:
        return [Note(**row) for row in await self._select("notes", case_id)]

    async def fetch_attachments(self, case_id: str, reply_id: Optional[str] = None) -> List[Attachment]:
        """Attachments of a case, or of one reply when ``reply_id`` is given."""
        filters = {"reply_id": f"eq.{reply_id}"} if reply_id else {}
        return [Attachment(**row) for row in await self._select("case_attachments", case_id, **filters)]

    async def fetch_thread(self, case_id: str, include_notes: bool = True) -> FetchedThread:
        """Fetch replies, notes and attachments of a case concurrently.

        Notes are only requested for privileged viewers.
        """
        if include_notes:
            replies, notes, attachments = await asyncio.gather(
                self.fetch_replies(case_id),
                self.fetch_notes(case_id),
                self.fetch_attachments(case_id),
            )
        else:
            replies, attachments = await asyncio.gather(
                self.fetch_replies(case_id),
                self.fetch_attachments(case_id),
            )
            notes = []
        logger.debug(
            f"Fetched thread for case {case_id}: {len(replies)} replies, "
            f"{len(notes)} notes, {len(attachments)} attachments"
        )
        return FetchedThread(replies=replies, notes=notes, attachments=attachments)

    async def create_reply(
        self,
        case_id: str,
        user_id: str,
        content: str,
        is_internal: bool = False,
        client_id: Optional[str] = None,
    ) -> Reply:
        """Insert a reply and return the stored row.

        ``client_id`` is the temporary id shown while the reply was pending;
        a unique constraint on it lets the backend reject replayed duplicates.
        """
        payload = {
            "case_id": case_id,
            "user_id": user_id,
            "content": content,
            "is_internal": is_internal,
        }
        if client_id:
            payload["client_id"] = client_id
        return Reply(**await self._insert("replies", payload))

    async def create_note(
        self, case_id: str, user_id: str, content: str, client_id: Optional[str] = None
    ) -> Note:
        payload = {"case_id": case_id, "user_id": user_id, "content": content}
        if client_id:
            payload["client_id"] = client_id
        return Note(**await self._insert("notes", payload))

    async def create_attachment(
        self,
        case_id: str,
        file_name: str,
        file_path: str,
        content_type: str,
        size: int,
        created_by: str,
        reply_id: Optional[str] = None,
    ) -> Attachment:
        payload = {
            "case_id": case_id,
            "reply_id": reply_id,
            "file_name": file_name,
            "file_path": file_path,
            "content_type": content_type,
            "size": size,
            "created_by": created_by,
        }
        return Attachment(**await self._insert("case_attachments", payload))
