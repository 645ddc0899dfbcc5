# =============================================================================
# tests/unit/test_compose.py
# Unit Tests for ComposeSession and preview handles
# =============================================================================

import os
import pytest


def image_upload(mock_remote, attachment_id="a1", name="scan.png"):
    mock_remote.upload.return_value = {"id": attachment_id, "name": name, "url": f"uploads/{name}"}


class TestPreviewHandles:
    """Test preview lifetime"""

    def test_image_gets_preview(self, online_session, gateway, mock_remote, settings):
        from intramail.offline import ComposeSession

        image_upload(mock_remote)
        draft = ComposeSession(gateway, online_session, preview_dir=settings.preview_dir)

        attachment = draft.add_file("scan.png", b"\x89PNG", "image/png")

        assert attachment.preview_path is not None
        assert os.path.exists(attachment.preview_path)
        assert draft.open_previews == 1
        draft.discard()

    def test_pdf_has_no_preview(self, online_session, gateway, mock_remote, settings):
        from intramail.offline import ComposeSession

        mock_remote.upload.return_value = {"id": "a2", "name": "x.pdf", "url": "uploads/x.pdf"}
        draft = ComposeSession(gateway, online_session, preview_dir=settings.preview_dir)

        attachment = draft.add_file("x.pdf", b"%PDF", "application/pdf")

        assert attachment.preview_path is None
        assert draft.open_previews == 0

    def test_remove_releases_preview(self, online_session, gateway, mock_remote, settings):
        from intramail.offline import ComposeSession

        image_upload(mock_remote)
        draft = ComposeSession(gateway, online_session, preview_dir=settings.preview_dir)
        path = draft.add_file("scan.png", b"\x89PNG", "image/png").preview_path

        draft.remove("a1")

        assert not os.path.exists(path)
        assert draft.attachments == []
        assert draft.open_previews == 0

    def test_context_exit_releases_previews(self, online_session, gateway, mock_remote, settings):
        from intramail.offline import ComposeSession

        image_upload(mock_remote)
        with ComposeSession(gateway, online_session, preview_dir=settings.preview_dir) as draft:
            path = draft.add_file("scan.png", b"\x89PNG", "image/png").preview_path

        assert not os.path.exists(path)

    def test_release_twice_is_safe(self, tmp_path):
        from intramail.offline import PreviewHandle

        handle = PreviewHandle(b"data", suffix=".png", directory=tmp_path)
        handle.release()
        handle.release()

        assert handle.released


class TestBuild:
    """Test building outgoing messages"""

    def test_built_message_has_no_previews(self, online_session, gateway, mock_remote, settings):
        from intramail.offline import ComposeSession

        image_upload(mock_remote)
        with ComposeSession(gateway, online_session, preview_dir=settings.preview_dir) as draft:
            draft.add_file("scan.png", b"\x89PNG", "image/png")
            message = draft.build(["u1"], "Scan", "See attached")

        assert message.attachments[0].preview_path is None
        assert message.attachments[0].id == "a1"
        assert message.sender_id == "u2"
        assert message.id.startswith("m_")

    def test_memo_defaults_to_all_staff(self, online_session, gateway):
        from intramail.models import ALL_STAFF, Memo
        from intramail.offline import ComposeSession

        message = ComposeSession(gateway, online_session).build(
            [], "Circular", "Body", as_memo=True, requires_acknowledgement=True,
        )

        assert isinstance(message, Memo)
        assert message.recipient_ids == (ALL_STAFF,)
        assert message.requires_acknowledgement
        assert message.id.startswith("memo_")

    def test_build_without_session(self, ctx, gateway):
        from intramail.errors import ValidationFailedError
        from intramail.offline import ComposeSession

        with pytest.raises(ValidationFailedError):
            ComposeSession(gateway, ctx).build(["u1"], "S", "B")

    def test_failed_upload_adds_nothing(self, offline_session, gateway):
        from intramail.errors import TransportUnavailableError
        from intramail.offline import ComposeSession

        draft = ComposeSession(gateway, offline_session)

        with pytest.raises(TransportUnavailableError):
            draft.add_file("x.pdf", b"data", "application/pdf")
        assert draft.attachments == []

    def test_new_message_id_unique(self):
        from intramail.offline.compose import new_message_id

        assert new_message_id() != new_message_id()
