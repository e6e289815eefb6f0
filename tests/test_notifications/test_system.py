"""Tests for SystemNotificationService."""

import pytest

from equiplend.errors import NotFoundError, ValidationError
from equiplend.notifications import (
    NotificationPriority,
    NotificationType,
    SystemNotificationType,
)

ACTIVE_USERS = ["admin-1", "admin-2", "staff-1", "user-1", "user-2"]


@pytest.fixture
def announcements(services):
    return services.announcements


@pytest.fixture
def survey(announcements):
    return announcements.create(
        {
            "title": "Equipment survey",
            "content": "Tell us what to buy next term.",
            "type": "feedback_request",
            "feedbackEnabled": True,
            "feedbackQuestion": "What should we buy?",
        },
        "admin-1",
    )


class TestCreate:
    """Tests for creating announcements."""

    def test_sent_to_active_users(self, announcements, dispatcher):
        """Test that pending and suspended users are not recipients."""
        n = announcements.create(
            {"title": "Closed Friday", "content": "The office is closed on Friday."}, "admin-1"
        )

        assert sorted(n.sent_to) == ACTIVE_USERS
        assert n.type == SystemNotificationType.ANNOUNCEMENT
        delivered = dispatcher.of_type(NotificationType.SYSTEM_NOTIFICATION)
        assert sorted(d["user_id"] for d in delivered) == ACTIVE_USERS
        assert delivered[0]["data"]["systemNotificationId"] == n.id

    def test_delivery_failure_tolerated(self, announcements, dispatcher):
        """Test that one failed delivery does not stop the others."""
        dispatcher.failing_users.add("user-1")
        n = announcements.create(
            {"title": "Alert", "content": "Fire drill at noon", "priority": "high"}, "admin-1"
        )

        assert "user-1" in n.sent_to
        delivered = dispatcher.of_type(NotificationType.SYSTEM_NOTIFICATION)
        assert len(delivered) == 4
        assert delivered[0]["priority"] == NotificationPriority.HIGH

    @pytest.mark.parametrize(
        "data",
        [
            {"title": "", "content": "x"},
            {"title": "   ", "content": "x"},
            {"title": "t" * 101, "content": "x"},
            {"title": "t", "content": "c" * 1001},
            {"title": "t", "content": "c", "colour": "red"},
        ],
    )
    def test_invalid(self, announcements, data):
        with pytest.raises(ValidationError):
            announcements.create(data, "admin-1")

    def test_question_dropped_without_feedback(self, announcements):
        n = announcements.create(
            {"title": "t", "content": "c", "feedbackQuestion": "Why?"}, "admin-1"
        )
        assert n.feedback_question is None


class TestReadTracking:
    """Tests for read state."""

    def test_mark_read_idempotent(self, announcements, survey):
        """Test that marking read twice records the user once."""
        announcements.mark_read(survey.id, "user-1")
        announcements.mark_read(survey.id, "user-1")

        assert announcements.get(survey.id).read_by == ["user-1"]

    def test_unread_for(self, announcements, survey):
        assert [n.id for n in announcements.unread_for("user-2")] == [survey.id]
        announcements.mark_read(survey.id, "user-2")
        assert announcements.unread_for("user-2") == []

    def test_not_a_recipient(self, announcements, survey):
        """Test that users outside the recipient list see nothing."""
        assert announcements.unread_for("user-pending") == []

    def test_expired_hidden(self, announcements, clock):
        announcements.create(
            {"title": "t", "content": "c", "expiresAt": "2024-01-09T00:00:00Z"}, "admin-1"
        )
        assert len(announcements.unread_for("user-1")) == 1
        clock.advance(days=1)
        assert announcements.unread_for("user-1") == []

    def test_delivery_stats(self, announcements, survey):
        announcements.mark_read(survey.id, "user-1")
        announcements.submit_feedback(survey.id, "user-1", "More lenses")

        [summary] = announcements.list_notifications()
        assert summary.delivery_stats.sent == 5
        assert summary.delivery_stats.read == 1
        assert summary.delivery_stats.responded == 1

    def test_missing(self, announcements):
        with pytest.raises(NotFoundError):
            announcements.get("missing")


class TestFeedback:
    """Tests for feedback responses."""

    def test_collects_responses(self, announcements, survey, clock):
        announcements.submit_feedback(survey.id, "user-1", "  More lenses  ")
        clock.advance(minutes=1)
        announcements.submit_feedback(survey.id, "user-2", "Drones")

        summary = announcements.feedback(survey.id)
        assert summary.feedback_question == "What should we buy?"
        assert summary.total_responses == 2
        assert [r.response for r in summary.responses] == ["More lenses", "Drones"]

    def test_feedback_disabled(self, announcements):
        n = announcements.create({"title": "t", "content": "c"}, "admin-1")
        with pytest.raises(ValidationError):
            announcements.submit_feedback(n.id, "user-1", "hi")

    def test_empty_response(self, announcements, survey):
        with pytest.raises(ValidationError):
            announcements.submit_feedback(survey.id, "user-1", "   ")

    def test_filter_by_type(self, announcements, survey):
        announcements.create({"title": "t", "content": "c"}, "admin-1")
        only = announcements.list_notifications(SystemNotificationType.FEEDBACK_REQUEST)
        assert [s.notification.id for s in only] == [survey.id]
