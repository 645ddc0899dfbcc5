# =============================================================================
# tests/unit/test_local_database.py
# Unit Tests for LocalMirrorStore
# =============================================================================

import pytest

from conftest import make_memo, make_message


class TestSeeding:
    """Test first-run seeding"""

    def test_seeded_accounts(self, mirror):
        """Three seed accounts with the expected roles"""
        admin = mirror.get_account("admin_shammah")

        assert admin.username == "shammah"
        assert admin.role == "Super Administrator"
        assert admin.department == "ICT Unit"
        assert mirror.get_account("u1").role == "Hospital Management"
        assert mirror.get_account("u2").department == "Nursing Services"

    def test_seeded_default_credential(self, mirror):
        for account_id in ("admin_shammah", "u1", "u2"):
            assert mirror.verify_credential(account_id, "12345678")

    def test_seeded_messages(self, mirror):
        """Welcome message for the admin and one circular"""
        inbox = mirror.folder("admin_shammah", "inbox")
        memos = mirror.folder("u2", "memo")

        assert [m.id for m in inbox] == ["m1"]
        assert [m.id for m in memos] == ["memo1"]
        assert memos[0].requires_acknowledgement
        assert memos[0].acknowledged_by == frozenset()

    def test_no_reseed_on_reload(self, settings, mirror):
        """A second store over the same file loads instead of seeding"""
        from intramail.offline import LocalMirrorStore

        mirror.soft_remove_account("u1")
        mirror.close()

        reloaded = LocalMirrorStore(settings.mirror_path, bcrypt_rounds=4).initialize()
        try:
            assert reloaded.get_account("u1").removed
            assert reloaded.get_message("m1") is not None
        finally:
            reloaded.close()


class TestCredentials:
    """Test the bcrypt credential map"""

    def test_plaintext_never_stored(self, mirror):
        mirror.set_credential("u2", "new-secret-1")

        rows = mirror._get_connection().execute("SELECT password_hash FROM credentials").fetchall()

        assert all("new-secret-1" not in row["password_hash"] for row in rows)
        assert mirror.verify_credential("u2", "new-secret-1")
        assert not mirror.verify_credential("u2", "12345678")

    def test_unknown_account_never_verifies(self, mirror):
        assert not mirror.verify_credential("ghost", "12345678")

    def test_account_and_credential_saved_together(self, settings, mirror):
        """upsert_account with a secret persists both in one write-back"""
        from dataclasses import replace
        from intramail.offline import LocalMirrorStore

        updated = replace(mirror.get_account("u2"), name="Sarah O.")
        mirror.upsert_account(updated, secret="changed-pass")
        mirror.close()

        reloaded = LocalMirrorStore(settings.mirror_path, bcrypt_rounds=4).initialize()
        try:
            assert reloaded.get_account("u2").name == "Sarah O."
            assert reloaded.verify_credential("u2", "changed-pass")
        finally:
            reloaded.close()

    def test_new_account_gets_default_credential(self, mirror):
        from intramail.models import Account

        mirror.upsert_account(Account(
            id="u9", name="New", username="newbie", email="n@x.io", role="Nurse", department="Nursing Services",
        ))

        assert mirror.verify_credential("u9", "12345678")


class TestAccounts:
    """Test account lookups and soft removal"""

    def test_find_by_username_case_insensitive(self, mirror):
        assert mirror.find_account_by_username("SHAMMAH").id == "admin_shammah"

    def test_soft_removed_hidden_from_directory(self, mirror):
        mirror.soft_remove_account("u1")

        assert "u1" not in [a.id for a in mirror.list_accounts()]
        assert "u1" in [a.id for a in mirror.list_accounts(include_removed=True)]
        assert mirror.find_account_by_username("cmd") is None

    def test_soft_remove_unknown_returns_none(self, mirror):
        assert mirror.soft_remove_account("ghost") is None

    def test_replace_accounts_keeps_local_removal(self, mirror):
        from intramail.models import Account

        mirror.soft_remove_account("u1")
        pulled = [
            Account(id="u1", name="Dr. Ibrahim Musa", username="cmd", email="cmd@x.io",
                    role="Hospital Management", department="Management"),
            Account(id="u3", name="Lab", username="lab", email="lab@x.io",
                    role="Laboratory Staff", department="Laboratory"),
        ]

        mirror.replace_accounts(pulled)

        assert mirror.get_account("u1").removed
        assert mirror.get_account("admin_shammah") is None
        assert mirror.verify_credential("u3", "12345678")


class TestFolders:
    """Test local folder derivation and replacement"""

    def test_inbox_includes_department_alias(self, mirror):
        mirror.add_message(make_message("d1", recipient_ids=("DEPT_Nursing Services",)))
        mirror.add_message(make_message("d2", recipient_ids=("DEPT_Pharmacy",)))

        ids = [m.id for m in mirror.folder("u2", "inbox")]

        assert "d1" in ids
        assert "d2" not in ids

    def test_inbox_includes_all_staff(self, mirror):
        mirror.add_message(make_message("b1", recipient_ids=("ALL_STAFF",)))

        assert "b1" in [m.id for m in mirror.folder("u2", "inbox")]

    def test_archive_moves_between_folders(self, mirror):
        mirror.add_message(make_message("x1"))
        mirror.set_archived("x1", "u2", True)

        assert "x1" not in [m.id for m in mirror.folder("u2", "inbox")]
        assert "x1" in [m.id for m in mirror.folder("u2", "archive")]

    def test_sent_folder(self, mirror):
        mirror.add_message(make_message("s1", sender_id="u2", recipient_ids=("u1",)))

        assert [m.id for m in mirror.folder("u2", "sent")] == ["s1"]

    def test_folder_sorted_newest_first(self, mirror):
        mirror.add_message(make_message("old", minutes=0))
        mirror.add_message(make_message("new", minutes=10))

        ids = [m.id for m in mirror.folder("u2", "inbox")]

        assert ids.index("new") < ids.index("old")

    def test_replace_folder_is_wholesale(self, mirror):
        """Messages missing from the pull leave the slice"""
        mirror.add_message(make_message("x1"))
        mirror.add_message(make_message("x2"))

        result = mirror.replace_folder("u2", "inbox", [make_message("x3")])

        assert [m.id for m in result] == ["x3"]
        assert [m.id for m in mirror.folder("u2", "inbox")] == ["x3"]
        assert mirror.get_message("x1") is None

    def test_replace_folder_keeps_first_copy_of_repeated_id(self, mirror):
        first = make_message("x1", subject="First row")
        second = make_message("x1", subject="Second row")

        result = mirror.replace_folder("u2", "inbox", [first, second])

        assert [m.subject for m in result] == ["First row"]
        assert mirror.get_message("x1").subject == "First row"

    def test_replace_memo_folder_keeps_pending_acknowledgement(self, mirror):
        """Unreplayed offline acknowledgments survive a pull"""
        mirror.acknowledge("memo1", "u2")
        mirror.enqueue_pending("acknowledge", "memo1", "u2")

        mirror.replace_folder("u2", "memo", [make_memo("memo1", acknowledged_by=())])

        assert mirror.get_message("memo1").is_acknowledged_by("u2")

    def test_replace_folder_does_not_touch_other_slices(self, mirror):
        mirror.add_message(make_message("s1", sender_id="u2", recipient_ids=("u1",)))

        mirror.replace_folder("u2", "inbox", [])

        assert mirror.get_message("s1") is not None
        assert mirror.get_message("memo1") is not None


class TestRecipientState:
    """Test idempotent read/archive/acknowledge"""

    def test_set_read_keeps_first_read_at(self, mirror):
        mirror.add_message(make_message("x1"))

        first = mirror.set_read("x1", "u2")
        second = mirror.set_read("x1", "u2")

        assert first.status_for("u2").read_at == second.status_for("u2").read_at
        assert second.is_read_by("u2")

    def test_set_read_unknown_returns_none(self, mirror):
        assert mirror.set_read("ghost", "u2") is None

    def test_set_all_read(self, mirror):
        mirror.add_message(make_message("x1"))
        mirror.add_message(make_message("x2"))

        assert mirror.set_all_read("u2") == 2
        assert mirror.set_all_read("u2") == 0

    def test_archive_idempotent(self, mirror):
        mirror.add_message(make_message("x1"))
        mirror.set_archived("x1", "u2", True)
        mirror.set_archived("x1", "u2", True)

        assert mirror.get_message("x1").is_archived_by("u2")

    def test_acknowledge_set_semantics(self, mirror):
        mirror.acknowledge("memo1", "u2")
        memo = mirror.acknowledge("memo1", "u2")

        assert memo.acknowledged_by == frozenset({"u2"})

    def test_acknowledge_non_memo_returns_none(self, mirror):
        assert mirror.acknowledge("m1", "u2") is None

    def test_read_state_persisted(self, settings, mirror):
        from intramail.offline import LocalMirrorStore

        mirror.set_read("m1", "admin_shammah")
        mirror.close()

        reloaded = LocalMirrorStore(settings.mirror_path, bcrypt_rounds=4).initialize()
        try:
            assert reloaded.get_message("m1").is_read_by("admin_shammah")
        finally:
            reloaded.close()


class TestAuditAndPending:
    """Test the audit log and pending replay writes"""

    def test_audit_append_and_read(self, mirror):
        from intramail.models import AuditEntry, utc_now

        mirror.append_audit(AuditEntry("u2", "LOGIN_SUCCESS", "User logged in", utc_now(), "host"))
        mirror.append_audit(AuditEntry("u1", "PASSWORD_CHANGE", "changed", utc_now(), "host"))

        entries = mirror.audit_entries()

        assert [e.action for e in entries] == ["PASSWORD_CHANGE", "LOGIN_SUCCESS"]
        assert [e.action for e in mirror.audit_entries(actor_id="u2")] == ["LOGIN_SUCCESS"]

    def test_pending_duplicates_collapse(self, mirror):
        mirror.enqueue_pending("mark_read", "m1", "u2")
        mirror.enqueue_pending("mark_read", "m1", "u2")

        assert mirror.pending_count == 1

    def test_discard_pending(self, mirror):
        mirror.enqueue_pending("acknowledge", "memo1", "u2")
        pending = mirror.pending_writes()

        mirror.discard_pending(pending[0].id)

        assert mirror.pending_writes() == []


class TestStats:
    """Test offline dashboard stats"""

    def test_stats_from_mirror(self, mirror):
        stats = mirror.stats()

        assert stats.active_accounts == 3
        assert stats.total_messages == 1
        assert stats.total_memos == 1
        assert stats.health == "Offline"
        roles = {r["name"]: r["value"] for r in stats.role_distribution}
        assert roles["Nurse"] == 1
