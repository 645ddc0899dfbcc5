# =============================================================================
# tests/unit/test_notifications.py
# Unit Tests for notification feed derivation
# =============================================================================

import pytest

from conftest import make_memo, make_message


class TestMessageNotifications:
    """Test which inbox messages produce notifications"""

    def test_only_unread_urgent_or_confidential(self):
        from intramail.offline import derive

        inbox = [
            make_message("n", priority="Normal"),
            make_message("u", priority="Urgent"),
            make_message("c", priority="Confidential"),
        ]

        feed = derive(inbox, [], "u2")

        assert {n.reference_id for n in feed} == {"u", "c"}
        titles = {n.reference_id: n.title for n in feed}
        assert titles == {"u": "Urgent Message", "c": "Confidential Message"}

    def test_repeated_message_yields_one_notification(self):
        from intramail.offline import derive

        message = make_message("u", priority="Urgent")

        feed = derive([message, message], [], "u2")

        assert [n.id for n in feed] == ["notif_u"]

    def test_read_message_dropped(self):
        from intramail.models import RecipientStatus
        from intramail.offline import derive

        message = make_message("u", priority="Urgent").with_status("u2", RecipientStatus(is_read=True))

        assert derive([message], [], "u2") == []

    def test_notification_fields(self):
        from intramail.offline import derive

        feed = derive([make_message("u", priority="Urgent", subject="Ward 3 oxygen")], [], "u2")

        assert feed[0].id == "notif_u"
        assert feed[0].message == "Ward 3 oxygen"
        assert feed[0].type == "message"
        assert not feed[0].is_read

    def test_department_alias_addressing(self):
        """DEPT_ messages count only for the matching department"""
        from intramail.offline import derive

        message = make_message("d", priority="Urgent", recipient_ids=("DEPT_Pharmacy",))

        assert derive([message], [], "u2", department="Nursing Services") == []
        assert len(derive([message], [], "u2", department="Pharmacy")) == 1

    def test_message_for_someone_else_dropped(self):
        from intramail.offline import derive

        message = make_message("o", priority="Urgent", recipient_ids=("u1",))

        assert derive([message], [], "u2") == []


class TestMemoNotifications:
    """Test action-required memo notifications"""

    def test_unacknowledged_memo(self):
        from intramail.offline import derive

        feed = derive([], [make_memo("c1")], "u2")

        assert feed[0].title == "Action Required"
        assert feed[0].message == "Please acknowledge circular: Circular c1"
        assert feed[0].type == "memo"

    def test_acknowledged_memo_dropped(self):
        from intramail.offline import derive

        assert derive([], [make_memo("c1", acknowledged_by=("u2",))], "u2") == []

    def test_memo_without_ack_requirement_dropped(self):
        from intramail.offline import derive

        assert derive([], [make_memo("c1", requires_ack=False)], "u2") == []


class TestOrdering:
    """Test ordering and purity"""

    def test_newest_first(self):
        from intramail.offline import derive

        feed = derive(
            [make_message("old", priority="Urgent", minutes=0), make_message("new", priority="Urgent", minutes=30)],
            [make_memo("mid", minutes=15)],
            "u2",
        )

        assert [n.reference_id for n in feed] == ["new", "mid", "old"]

    def test_ties_keep_messages_before_memos(self):
        from intramail.offline import derive

        feed = derive([make_message("m", priority="Urgent")], [make_memo("c")], "u2")

        assert [n.type for n in feed] == ["message", "memo"]

    def test_same_input_same_output(self):
        from intramail.offline import derive

        inbox = [make_message("u", priority="Urgent")]
        memos = [make_memo("c")]

        assert derive(inbox, memos, "u2") == derive(inbox, memos, "u2")
