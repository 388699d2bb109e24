"""Case discussion thread models.

Key Models:
- Attachment: file stored in object storage, owned by a case or a reply
- Reply / Note: the two kinds of thread item (discriminated on ``kind``)
- CachedThreadSnapshot: last-known-good thread for a case with a freshness window
- PendingMessage: unsent user input held in the durable outbox

Row field names follow the backend columns (``case_id``, ``user_id``,
``is_internal``, ``created_at``) so rows validate without mapping.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from typing_extensions import Annotated

from helpdesk_core.models.common import Viewer, utc_now


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class Attachment(BaseModel):
    """Row of the ``case_attachments`` table.

    An attachment without ``reply_id`` belongs directly to the case
    (e.g. files sent with the initial submission).
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    case_id: str
    reply_id: Optional[str] = None
    file_name: str
    file_path: str = Field(..., description="Opaque object storage path")
    content_type: str = "application/octet-stream"
    size: int = 0
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("content_type", mode="before")
    @classmethod
    def _default_content_type(cls, value):
        return value or "application/octet-stream"

    @field_validator("size", mode="before")
    @classmethod
    def _default_size(cls, value):
        return value or 0

    @field_validator("created_at")
    @classmethod
    def _utc_created_at(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @property
    def is_case_level(self) -> bool:
        return self.reply_id is None


class _ThreadItemBase(BaseModel):
    """Fields shared by replies and notes"""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="Server id, or temporary client id while optimistic")
    case_id: str
    user_id: str = Field(..., description="Author profile id")
    content: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    client_id: Optional[str] = Field(None, description="Temporary id the item was submitted under")
    is_optimistic: bool = Field(False, exclude=True, description="Client-only, never persisted")

    @field_validator("created_at")
    @classmethod
    def _utc_created_at(cls, value: datetime) -> datetime:
        return _as_utc(value)


class Reply(_ThreadItemBase):
    """Message in a case discussion, optionally internal to consultants"""

    kind: Literal["reply"] = "reply"
    is_internal: bool = False
    attachments: List[Attachment] = Field(default_factory=list)

    def visible_to(self, viewer: Viewer) -> bool:
        return viewer.is_privileged or not self.is_internal


class Note(_ThreadItemBase):
    """Internal annotation on a case; never shown to the submitter"""

    kind: Literal["note"] = "note"

    @property
    def is_internal(self) -> bool:
        return True

    def visible_to(self, viewer: Viewer) -> bool:
        return viewer.is_privileged


ThreadItem = Annotated[Union[Reply, Note], Field(discriminator="kind")]

thread_items_adapter = TypeAdapter(List[ThreadItem])


class CachedThreadSnapshot(BaseModel):
    """Last successfully fetched thread for one case.

    A snapshot older than ``ttl_seconds`` is still usable but must be shown
    as offline/cached, never as authoritative.
    """

    case_id: str
    items: List[ThreadItem] = Field(default_factory=list)
    captured_at: float = Field(..., description="Unix timestamp of the fetch")
    ttl_seconds: float = Field(..., gt=0)

    def age(self, now: float) -> float:
        return now - self.captured_at

    def is_stale(self, now: float) -> bool:
        return self.age(now) > self.ttl_seconds

    def is_fresh(self, now: float) -> bool:
        return not self.is_stale(now)


class PendingMessage(BaseModel):
    """User input that could not be delivered and awaits replay.

    ``client_id`` is the temporary id shown in the UI; it is sent with the
    replay so a backend unique constraint can discard duplicates.
    """

    client_id: str
    kind: Literal["reply", "note"]
    case_id: str
    user_id: str
    content: str
    is_internal: bool = False
    queued_at: datetime = Field(default_factory=utc_now)
    attempts: int = 0
    last_error: Optional[str] = None
