# =============================================================================
# intramail/models/__init__.py
# Domain Models
# =============================================================================
"""Domain entities shared by the mirror, the gateway and the UI."""

from intramail.models.entities import (
    ALL_STAFF,
    MEMO_ROLES,
    Account,
    Attachment,
    AuditEntry,
    DashboardStats,
    Department,
    FolderKind,
    Memo,
    Message,
    Notification,
    PendingWrite,
    Priority,
    RecipientStatus,
    UserRole,
    View,
    coarse_type,
    department_alias,
    message_from_record,
    parse_timestamp,
    size_label,
    utc_now,
)

__all__ = [
    "ALL_STAFF",
    "MEMO_ROLES",
    "Account",
    "Attachment",
    "AuditEntry",
    "DashboardStats",
    "Department",
    "FolderKind",
    "Memo",
    "Message",
    "Notification",
    "PendingWrite",
    "Priority",
    "RecipientStatus",
    "UserRole",
    "View",
    "coarse_type",
    "department_alias",
    "message_from_record",
    "parse_timestamp",
    "size_label",
    "utc_now",
]
