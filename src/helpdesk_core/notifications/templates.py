"""Email templates for case reply notifications.

Templates are stored by the backend (``notification_templates``) as plain
text with ``{variable}`` placeholders. Only the known variables below are
substituted; any other brace text is left untouched.
"""

import re
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from helpdesk_core.models import CaseSummary, Profile, Reply, UserRole

TEMPLATE_VARIABLES = (
    "case_title",
    "user_name",
    "case_id",
    "case_status",
    "case_priority",
    "category",
    "reply_content",
    "case_link",
)

_PLACEHOLDER = re.compile(r"\{(" + "|".join(TEMPLATE_VARIABLES) + r")\}")

DEFAULT_SUBJECTS: Dict[UserRole, str] = {
    UserRole.USER: "New reply on your case: {case_title}",
    UserRole.CONSULTANT: "Customer replied on case: {case_title}",
}

DEFAULT_BODY = (
    "Hello {user_name},\n\n"
    "There is a new reply on case \"{case_title}\" ({case_status}, {case_priority} priority).\n\n"
    "{reply_content}\n\n"
    "View the case: {case_link}\n"
)


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    body: str


def render_template(template: str, values: Mapping[str, object]) -> str:
    """Substitute known ``{variable}`` placeholders; missing values become ""."""

    def _replace(match: "re.Match[str]") -> str:
        value = values.get(match.group(1))
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(_replace, template)


def build_template_values(
    case: CaseSummary, reply: Reply, recipient: Profile, case_link: str
) -> Dict[str, str]:
    return {
        "case_title": case.title,
        "user_name": recipient.display_name,
        "case_id": case.id,
        "case_status": case.status.value,
        "case_priority": case.priority.value,
        "category": case.category or "Uncategorized",
        "reply_content": reply.content,
        "case_link": case_link,
    }


def compose_reply_email(
    case: CaseSummary,
    reply: Reply,
    recipient: Profile,
    case_link: str,
    subject_template: Optional[str] = None,
    body_template: Optional[str] = None,
) -> Optional[EmailMessage]:
    """Build the email telling ``recipient`` about ``reply``.

    Returns None when nothing may be sent: internal replies never go to
    non-consultants, and recipients without an email address are skipped.
    """
    if reply.is_internal and recipient.role != UserRole.CONSULTANT:
        return None
    if not recipient.email:
        return None

    values = build_template_values(case, reply, recipient, case_link)
    subject = render_template(subject_template or DEFAULT_SUBJECTS[recipient.role], values)
    body = render_template(body_template or DEFAULT_BODY, values)
    return EmailMessage(to=recipient.email, subject=subject, body=body)
