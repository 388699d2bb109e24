"""Common models shared across the helpdesk core.

- Enumerations mirrored from the backend schema (roles, case status/priority)
- Viewer: who is looking at a thread
- Profile / CaseSummary: read models for attribution and notifications
- Utility functions: utc_now(), parse_utc_timestamp()
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class UserRole(str, Enum):
    """Profile role (``user_role`` enum in the backend)"""

    USER = "user"
    CONSULTANT = "consultant"


class CaseStatus(str, Enum):
    """Case lifecycle status (``case_status`` enum in the backend)"""

    NEW = "new"
    ONGOING = "ongoing"
    RESOLVED = "resolved"
    COMPLETED = "completed"
    DRAFT = "draft"

    @property
    def is_open(self) -> bool:
        return self in (CaseStatus.NEW, CaseStatus.ONGOING)


class CasePriority(str, Enum):
    """Case priority (``case_priority`` enum in the backend)"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Viewer(BaseModel):
    """The authenticated person a thread is rendered for"""

    user_id: str = Field(..., description="Profile identifier")
    role: UserRole = Field(UserRole.USER, description="Role from the profile")

    @property
    def is_privileged(self) -> bool:
        """Consultants may see notes and internal replies"""
        return self.role == UserRole.CONSULTANT


class Profile(BaseModel):
    """Minimal profile row used for author attribution"""

    id: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    role: UserRole = UserRole.USER
    company_id: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or "Unknown user"


class CaseSummary(BaseModel):
    """Subset of the ``cases`` table needed by notifications"""

    id: str
    title: str
    status: CaseStatus = CaseStatus.NEW
    priority: CasePriority = CasePriority.MEDIUM
    category: Optional[str] = None
    user_id: Optional[str] = Field(None, description="Submitting user")
    company_id: Optional[str] = None


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def parse_utc_timestamp(timestamp_str: str) -> datetime:
    """Parse a backend timestamp into a timezone-aware UTC datetime.

    Handles ``...+00:00``, ``...Z`` and naive strings (assumed UTC).
    """
    if timestamp_str.endswith("Z"):
        dt = datetime.fromisoformat(timestamp_str[:-1])
    else:
        dt = datetime.fromisoformat(timestamp_str)
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt
