"""Tests for notification routing and email templates."""

from unittest.mock import AsyncMock, Mock

from helpdesk_core.errors import TransientBackendError
from helpdesk_core.models import CasePriority, CaseStatus, CaseSummary, Profile, Reply, UserRole
from helpdesk_core.notifications import (
    TEMPLATE_VARIABLES,
    NotificationDispatcher,
    compose_reply_email,
    recipient_for,
    render_template,
)

CASE = CaseSummary(
    id="c1", title="Printer on fire", status=CaseStatus.ONGOING, priority=CasePriority.HIGH, category=None
)


def _reply(is_internal=False):
    return Reply(id="r1", case_id="c1", user_id="u1", content="We are on it", is_internal=is_internal)


class TestRouting:
    """Tests for recipient selection and dispatch."""

    def test_recipient_for(self):
        """Test that each side notifies the other."""
        assert recipient_for(UserRole.USER) == UserRole.CONSULTANT
        assert recipient_for(UserRole.CONSULTANT) == UserRole.USER
        assert recipient_for("user") == UserRole.CONSULTANT

    async def test_notify_user_reply(self):
        client = Mock()
        client.send_case_notification = AsyncMock(return_value={})
        dispatcher = NotificationDispatcher(client)

        assert await dispatcher.notify_reply(_reply(), UserRole.USER) is True

        client.send_case_notification.assert_awaited_once_with("c1", "r1", UserRole.CONSULTANT)

    async def test_internal_reply_never_notifies_user(self):
        """Test that internal consultant replies are not announced to the submitter."""
        client = Mock()
        client.send_case_notification = AsyncMock()
        dispatcher = NotificationDispatcher(client)

        assert await dispatcher.notify_reply(_reply(is_internal=True), UserRole.CONSULTANT) is False

        client.send_case_notification.assert_not_awaited()

    async def test_failure_is_reported_not_raised(self):
        """Test that a failing notification function does not raise."""
        client = Mock()
        client.send_case_notification = AsyncMock(side_effect=TransientBackendError("function down"))

        assert await NotificationDispatcher(client).notify_reply(_reply(), UserRole.USER) is False


class TestTemplates:
    """Tests for template rendering."""

    def test_known_variables(self):
        assert set(TEMPLATE_VARIABLES) == {
            "case_title", "user_name", "case_id", "case_status",
            "case_priority", "category", "reply_content", "case_link",
        }

    def test_render_substitutes_known_and_keeps_unknown(self):
        """Test that unknown placeholders are left intact and missing values are blank."""
        rendered = render_template(
            "{case_title} / {unknown} / {category}", {"case_title": "Printer", "category": None}
        )

        assert rendered == "Printer / {unknown} / "

    def test_compose_for_user(self):
        recipient = Profile(id="u1", full_name="Ada", email="ada@example.com")

        email = compose_reply_email(CASE, _reply(), recipient, "http://app/cases/c1")

        assert email.to == "ada@example.com"
        assert email.subject == "New reply on your case: Printer on fire"
        assert "Hello Ada" in email.body
        assert "We are on it" in email.body
        assert "ongoing, high priority" in email.body
        assert "http://app/cases/c1" in email.body

    def test_compose_custom_templates(self):
        recipient = Profile(id="k1", email="k@example.com", role=UserRole.CONSULTANT)

        email = compose_reply_email(
            CASE, _reply(), recipient, "link",
            subject_template="[{case_id}] {category}", body_template="{user_name}: {reply_content}",
        )

        assert email.subject == "[c1] Uncategorized"
        assert email.body == "k@example.com: We are on it"

    def test_internal_reply_refused_for_user(self):
        recipient = Profile(id="u1", email="ada@example.com", role=UserRole.USER)

        assert compose_reply_email(CASE, _reply(is_internal=True), recipient, "link") is None

    def test_recipient_without_email(self):
        assert compose_reply_email(CASE, _reply(), Profile(id="u1"), "link") is None
