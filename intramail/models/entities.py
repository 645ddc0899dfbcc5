# =============================================================================
# intramail/models/entities.py
# Domain entities and their wire (JSON) translation
# =============================================================================
"""
Domain shapes for accounts, messages, memos, attachments, notifications
and audit entries.

Wire payloads come from the action API and may use either the camelCase
names the client sends or the raw column names the server selects
(``sender_id``, ``created_at``, ...). ``from_wire`` accepts both and raises
MalformedResponseError for anything it cannot read.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

import pandas as pd

from intramail.errors import MalformedResponseError


ALL_STAFF = "ALL_STAFF"
DEPT_PREFIX = "DEPT_"


class UserRole(str, Enum):
    SUPER_ADMIN = "Super Administrator"
    MANAGEMENT = "Hospital Management"
    DOCTOR = "Medical Doctor"
    NURSE = "Nurse"
    PHARMACIST = "Pharmacist"
    LAB_STAFF = "Laboratory Staff"
    ADMIN_STAFF = "Administrative Staff"
    RECORDS = "Records Officer"


class Department(str, Enum):
    MANAGEMENT = "Management"
    CLINICAL = "Clinical Services"
    NURSING = "Nursing Services"
    PHARMACY = "Pharmacy"
    LABORATORY = "Laboratory"
    ICT = "ICT Unit"
    ADMINISTRATION = "Administration"
    RECORDS = "Medical Records"


# Roles allowed to post circulars
MEMO_ROLES = frozenset({UserRole.SUPER_ADMIN.value, UserRole.MANAGEMENT.value, UserRole.ADMIN_STAFF.value})


class Priority(str, Enum):
    NORMAL = "Normal"
    URGENT = "Urgent"
    CONFIDENTIAL = "Confidential"


class FolderKind(str, Enum):
    INBOX = "inbox"
    SENT = "sent"
    ARCHIVE = "archive"
    MEMO = "memo"


class View(str, Enum):
    """Screens of the client. The refresh scope depends on the active one."""
    LOGIN = "login"
    DASHBOARD = "dashboard"
    DIRECTORY = "directory"
    INBOX = "inbox"
    SENT = "sent"
    ARCHIVE = "archive"
    MEMO_BOARD = "memo-board"
    COMPOSE = "compose"
    ADMIN = "admin"
    SYSTEM_DOCS = "system-docs"
    VIEW_MESSAGE = "view-message"
    SETTINGS = "settings"


def department_alias(department: str) -> str:
    return f"{DEPT_PREFIX}{department}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 or MySQL DATETIME value into an aware UTC datetime."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if value is None or value == "":
        raise ValueError("missing timestamp")
    return pd.to_datetime(value, utc=True).to_pydatetime()


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _pick(payload: Dict[str, Any], *names: str, default: Any = KeyError) -> Any:
    for name in names:
        if name in payload and payload[name] is not None:
            return payload[name]
    if default is KeyError:
        raise KeyError(names[0])
    return default


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


# =============================================================================
# ATTACHMENTS
# =============================================================================

def size_label(num_bytes: int) -> str:
    """Human size label: MB above one megabyte, KB otherwise (one decimal)."""
    if num_bytes > 1024 * 1024:
        return f"{num_bytes / (1024 * 1024):.1f} MB"
    return f"{num_bytes / 1024:.1f} KB"


def coarse_type(mime_type: str) -> str:
    """Collapse a MIME type into pdf, docx, xlsx, image or other."""
    mime_type = (mime_type or "").lower()
    if "image" in mime_type:
        return "image"
    if "pdf" in mime_type:
        return "pdf"
    if "word" in mime_type:
        return "docx"
    if "sheet" in mime_type or "excel" in mime_type:
        return "xlsx"
    return "other"


@dataclass(frozen=True)
class Attachment:
    id: str
    name: str
    size: str
    type: str
    url: str
    # Local file path for an image preview. Owned by a ComposeSession, never persisted.
    preview_path: Optional[str] = field(default=None, compare=False)

    def without_preview(self) -> Attachment:
        return replace(self, preview_path=None)

    @classmethod
    def from_wire(cls, payload: Dict[str, Any]) -> Attachment:
        try:
            return cls(
                id=str(payload["id"]),
                name=str(payload["name"]),
                size=str(payload.get("size") or ""),
                type=str(payload.get("type") or "other"),
                url=str(payload["url"]),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise MalformedResponseError(f"Malformed attachment: {e}") from e

    def to_wire(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "size": self.size, "type": self.type, "url": self.url}


# =============================================================================
# ACCOUNTS
# =============================================================================

@dataclass(frozen=True)
class Account:
    id: str
    name: str
    username: str
    email: str
    role: str
    department: str
    avatar: Optional[str] = None
    is_online: bool = False
    removed: bool = False

    @property
    def can_post_memos(self) -> bool:
        return self.role in MEMO_ROLES

    @classmethod
    def from_wire(cls, payload: Dict[str, Any]) -> Account:
        try:
            return cls(
                id=str(payload["id"]),
                name=str(payload["name"]),
                username=str(payload["username"]),
                email=str(payload.get("email") or ""),
                role=str(payload["role"]),
                department=str(payload["department"]),
                avatar=payload.get("avatar"),
                is_online=_as_bool(_pick(payload, "isOnline", "is_online", default=False)),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise MalformedResponseError(f"Malformed account: {e}") from e

    def to_wire(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "department": self.department,
            "avatar": self.avatar,
            "isOnline": self.is_online,
        }

    def to_record(self) -> Dict[str, Any]:
        """Mirror representation (wire shape plus local-only fields)."""
        record = self.to_wire()
        record["removed"] = self.removed
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> Account:
        account = cls.from_wire(record)
        return replace(account, removed=bool(record.get("removed", False)))


# =============================================================================
# MESSAGES AND MEMOS
# =============================================================================

@dataclass(frozen=True)
class RecipientStatus:
    is_read: bool = False
    read_at: Optional[datetime] = None
    is_archived: bool = False


@dataclass(frozen=True)
class Message:
    """
    An email-style message. Immutable once created except for the
    per-recipient status map, which only changes through ``with_status``.
    """
    id: str
    sender_id: str
    recipient_ids: Tuple[str, ...]
    subject: str
    body: str
    priority: Priority
    created_at: datetime
    thread_id: str
    attachments: Tuple[Attachment, ...] = ()
    cc_ids: Tuple[str, ...] = ()
    bcc_ids: Tuple[str, ...] = ()
    recipient_status: Dict[str, RecipientStatus] = field(default_factory=dict, compare=False, hash=False)

    kind = "email"

    # -------------------------------------------------------------------------
    # Addressing and per-recipient state
    # -------------------------------------------------------------------------

    def is_addressed_to(self, account_id: str, department: Optional[str] = None) -> bool:
        """Direct id, ALL_STAFF, or the account's department alias."""
        targets = set(self.recipient_ids) | set(self.cc_ids) | set(self.bcc_ids)
        if account_id in targets or ALL_STAFF in targets:
            return True
        if department is None:
            return False
        return department_alias(department) in targets

    def status_for(self, account_id: str) -> RecipientStatus:
        return self.recipient_status.get(account_id, RecipientStatus())

    def is_read_by(self, account_id: str) -> bool:
        return self.status_for(account_id).is_read

    def is_archived_by(self, account_id: str) -> bool:
        return self.status_for(account_id).is_archived

    def with_status(self, account_id: str, status: RecipientStatus) -> Message:
        statuses = dict(self.recipient_status)
        statuses[account_id] = status
        return replace(self, recipient_status=statuses)

    def without_previews(self) -> Message:
        return replace(self, attachments=tuple(a.without_preview() for a in self.attachments))

    # -------------------------------------------------------------------------
    # Wire translation
    # -------------------------------------------------------------------------

    @classmethod
    def _common_from_wire(cls, payload: Dict[str, Any], viewer_id: Optional[str], kind: Optional[FolderKind]) -> Dict[str, Any]:
        statuses: Dict[str, RecipientStatus] = {}
        for detail in payload.get("recipientDetails") or []:
            read_at = detail.get("readAt") or detail.get("read_at")
            statuses[str(detail["userId"])] = RecipientStatus(
                is_read=_as_bool(detail.get("isRead", False)),
                read_at=parse_timestamp(read_at) if read_at else None,
                is_archived=_as_bool(detail.get("isArchived", False)),
            )

        if viewer_id is not None and kind in (FolderKind.INBOX, FolderKind.ARCHIVE):
            current = statuses.get(viewer_id, RecipientStatus())
            is_read = _as_bool(_pick(payload, "isRead", "is_read", default=current.is_read))
            statuses[viewer_id] = replace(
                current,
                is_read=is_read,
                is_archived=kind == FolderKind.ARCHIVE,
            )

        created_at = parse_timestamp(_pick(payload, "createdAt", "created_at"))
        message_id = str(payload["id"])
        return {
            "id": message_id,
            "sender_id": str(_pick(payload, "senderId", "sender_id")),
            "recipient_ids": tuple(str(r) for r in payload.get("recipientIds") or ()),
            "cc_ids": tuple(str(r) for r in payload.get("ccIds") or ()),
            "bcc_ids": tuple(str(r) for r in payload.get("bccIds") or ()),
            "subject": str(payload["subject"]),
            "body": str(payload.get("body") or ""),
            "priority": Priority(_pick(payload, "priority", default=Priority.NORMAL.value)),
            "created_at": created_at,
            "thread_id": str(_pick(payload, "threadId", "thread_id", default=f"t_{message_id}")),
            "attachments": tuple(Attachment.from_wire(a) for a in payload.get("attachments") or ()),
            "recipient_status": statuses,
        }

    @classmethod
    def from_wire(
        cls,
        payload: Dict[str, Any],
        viewer_id: Optional[str] = None,
        kind: Optional[FolderKind] = None,
    ) -> Message:
        """
        Decode a message payload.

        Args:
            payload: JSON object from the API
            viewer_id: Account the folder was fetched for; its ``isRead`` flag
                and the folder kind set that account's status
            kind: Folder the payload came from
        """
        try:
            return cls(**cls._common_from_wire(payload, viewer_id, kind))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise MalformedResponseError(f"Malformed message: {e}") from e

    def to_wire(self, viewer_id: Optional[str] = None) -> Dict[str, Any]:
        payload = {
            "id": self.id,
            "senderId": self.sender_id,
            "recipientIds": list(self.recipient_ids),
            "recipientDetails": [
                {
                    "userId": account_id,
                    "isRead": status.is_read,
                    "readAt": format_timestamp(status.read_at),
                    "isArchived": status.is_archived,
                }
                for account_id, status in self.recipient_status.items()
            ],
            "ccIds": list(self.cc_ids),
            "bccIds": list(self.bcc_ids),
            "subject": self.subject,
            "body": self.body,
            "priority": self.priority.value,
            "attachments": [a.to_wire() for a in self.attachments],
            "createdAt": format_timestamp(self.created_at),
            "threadId": self.thread_id,
            "type": self.kind,
        }
        if viewer_id is not None:
            payload["isRead"] = self.is_read_by(viewer_id)
            payload["isArchived"] = self.is_archived_by(viewer_id)
        return payload


@dataclass(frozen=True)
class Memo(Message):
    """A circular. Its acknowledgment set only ever grows."""
    requires_acknowledgement: bool = False
    acknowledged_by: FrozenSet[str] = frozenset()

    kind = "memo"

    def is_acknowledged_by(self, account_id: str) -> bool:
        return account_id in self.acknowledged_by

    def with_acknowledgement(self, account_id: str) -> Memo:
        if account_id in self.acknowledged_by:
            return self
        return replace(self, acknowledged_by=self.acknowledged_by | {account_id})

    @classmethod
    def from_wire(
        cls,
        payload: Dict[str, Any],
        viewer_id: Optional[str] = None,
        kind: Optional[FolderKind] = FolderKind.MEMO,
    ) -> Memo:
        try:
            payload = dict(payload)
            payload["recipientIds"] = payload.get("recipientIds") or [ALL_STAFF]
            common = cls._common_from_wire(payload, viewer_id, kind)
            return cls(
                **common,
                requires_acknowledgement=_as_bool(
                    _pick(payload, "requiresAcknowledgement", "requires_ack", default=False)
                ),
                acknowledged_by=frozenset(str(a) for a in payload.get("acknowledgedBy") or ()),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise MalformedResponseError(f"Malformed memo: {e}") from e

    def to_wire(self, viewer_id: Optional[str] = None) -> Dict[str, Any]:
        payload = super().to_wire(viewer_id)
        payload["requiresAcknowledgement"] = self.requires_acknowledgement
        payload["acknowledgedBy"] = sorted(self.acknowledged_by)
        return payload


def message_from_record(record: Dict[str, Any]) -> Message:
    """Decode a mirror row written with ``to_wire()``."""
    if record.get("type") == "memo":
        return Memo.from_wire(record)
    return Message.from_wire(record)


# =============================================================================
# DERIVED AND AUDIT ENTITIES
# =============================================================================

@dataclass(frozen=True)
class Notification:
    id: str
    title: str
    message: str
    type: str  # "message" | "memo"
    reference_id: str
    timestamp: datetime
    is_read: bool = False


@dataclass(frozen=True)
class AuditEntry:
    actor_id: str
    action: str
    details: str
    timestamp: datetime
    origin: str
    id: Optional[int] = None


@dataclass(frozen=True)
class DashboardStats:
    active_accounts: int
    total_messages: int
    total_memos: int
    health: str
    role_distribution: List[Dict[str, Any]]

    @classmethod
    def from_wire(cls, payload: Dict[str, Any]) -> DashboardStats:
        try:
            return cls(
                active_accounts=int(payload["activeUsers"]),
                total_messages=int(payload["totalMessages"]),
                total_memos=int(payload["totalMemos"]),
                health=str(payload.get("systemHealth") or "Unknown"),
                role_distribution=[
                    {"name": str(r["name"]), "value": int(r["value"])}
                    for r in payload.get("rolesDistribution") or []
                ],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedResponseError(f"Malformed stats: {e}") from e


@dataclass(frozen=True)
class PendingWrite:
    """An offline write kept for replay once the remote is reachable again."""
    id: int
    operation: str  # "mark_read" | "acknowledge"
    target_id: str
    account_id: str
    created_at: datetime
