"""Reply notifications: routing and email template rendering."""

from helpdesk_core.notifications.dispatcher import NotificationDispatcher, recipient_for
from helpdesk_core.notifications.templates import (
    TEMPLATE_VARIABLES,
    EmailMessage,
    build_template_values,
    compose_reply_email,
    render_template,
)

__all__ = [
    "NotificationDispatcher",
    "recipient_for",
    "TEMPLATE_VARIABLES",
    "EmailMessage",
    "build_template_values",
    "compose_reply_email",
    "render_template",
]
