# =============================================================================
# intramail/offline/compose.py
# Compose Session - pending attachments and their preview handles
# =============================================================================
"""
ComposeSession owns the attachments of one message being written.

Image attachments get a local preview file so the composer can show them
before sending. The preview file belongs to the session and is released
when the attachment is removed, when the draft is discarded, or when the
session is left as a context manager. Built messages never carry it.
"""

from __future__ import annotations
import os
import tempfile
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Sequence
import logging

from intramail.errors import ValidationFailedError
from intramail.models import ALL_STAFF, Attachment, Memo, Message, Priority, utc_now
from intramail.offline.session import SessionContext
from intramail.offline.sync_gateway import SyncGateway

logger = logging.getLogger(__name__)


def new_message_id(prefix: str = "m") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class PreviewHandle:
    """A temporary file holding the bytes of an image attachment."""

    def __init__(self, content: bytes, suffix: str = "", directory: Optional[Path] = None):
        fd, path = tempfile.mkstemp(prefix="intramail_preview_", suffix=suffix, dir=directory)
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        self.path = path
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Delete the preview file. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass


class ComposeSession:
    """
    Draft state for one composer.

    Usage:
        with ComposeSession(gateway, ctx) as draft:
            draft.add_file("scan.png", data, "image/png")
            message = draft.build(["u2"], "Subject", "Body")
            gateway.send(ctx, message)
    """

    def __init__(self, gateway: SyncGateway, ctx: SessionContext, preview_dir: Optional[Path] = None):
        self._gateway = gateway
        self._ctx = ctx
        self._preview_dir = preview_dir
        self._attachments: List[Attachment] = []
        self._previews: Dict[str, PreviewHandle] = {}

    def __enter__(self) -> ComposeSession:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.discard()

    @property
    def attachments(self) -> List[Attachment]:
        return list(self._attachments)

    @property
    def open_previews(self) -> int:
        return sum(1 for h in self._previews.values() if not h.released)

    def add_file(self, filename: str, content: bytes, mime_type: str) -> Attachment:
        """Validate and upload a file; image uploads also get a preview handle."""
        attachment = self._gateway.upload_attachment(self._ctx, filename, content, mime_type)
        if attachment.type == "image":
            if self._preview_dir is not None:
                Path(self._preview_dir).mkdir(parents=True, exist_ok=True)
            handle = PreviewHandle(content, suffix=Path(filename).suffix, directory=self._preview_dir)
            self._previews[attachment.id] = handle
            attachment = replace(attachment, preview_path=handle.path)
        self._attachments.append(attachment)
        return attachment

    def remove(self, attachment_id: str) -> None:
        self._attachments = [a for a in self._attachments if a.id != attachment_id]
        handle = self._previews.pop(attachment_id, None)
        if handle is not None:
            handle.release()

    def discard(self) -> None:
        """Drop every pending attachment and release all previews."""
        for handle in self._previews.values():
            handle.release()
        if self._previews:
            logger.debug(f"Released {len(self._previews)} preview handle(s)")
        self._previews.clear()
        self._attachments.clear()

    def build(
        self,
        recipient_ids: Sequence[str],
        subject: str,
        body: str,
        priority: Priority = Priority.NORMAL,
        cc_ids: Sequence[str] = (),
        as_memo: bool = False,
        requires_acknowledgement: bool = False,
        thread_id: Optional[str] = None,
    ) -> Message:
        """Build the outgoing message. Attachments are copied without previews."""
        sender_id = self._ctx.account_id
        if sender_id is None:
            raise ValidationFailedError("Sign in before composing.", field="sender")

        if as_memo and not recipient_ids:
            recipient_ids = (ALL_STAFF,)
        message_id = new_message_id("memo" if as_memo else "m")
        fields = dict(
            id=message_id,
            sender_id=sender_id,
            recipient_ids=tuple(recipient_ids),
            cc_ids=tuple(cc_ids),
            subject=subject,
            body=body,
            priority=Priority(priority),
            created_at=utc_now(),
            thread_id=thread_id or f"t_{message_id}",
            attachments=tuple(a.without_preview() for a in self._attachments),
        )
        if as_memo:
            return Memo(**fields, requires_acknowledgement=requires_acknowledgement)
        return Message(**fields)
