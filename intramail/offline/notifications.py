# =============================================================================
# intramail/offline/notifications.py
# Notification Feed Derivation
# =============================================================================
"""
Derives the notification list from inbox and memo-board snapshots.

Notifications are never stored; the feed is recomputed after every refresh.
"""

from __future__ import annotations
from typing import Iterable, List, Optional

from intramail.models import ALL_STAFF, Memo, Message, Notification, Priority, department_alias

PRIORITY_TITLES = {
    Priority.CONFIDENTIAL: "Confidential Message",
    Priority.URGENT: "Urgent Message",
}


def _addressed_to(message: Message, account_id: str, department: Optional[str]) -> bool:
    if department is not None:
        return message.is_addressed_to(account_id, department)
    # Department unknown: the inbox snapshot is already scoped, trust DEPT_ aliases
    targets = set(message.recipient_ids) | set(message.cc_ids) | set(message.bcc_ids)
    return (
        account_id in targets
        or ALL_STAFF in targets
        or any(t.startswith(department_alias("")) for t in targets)
    )


def derive(
    inbox: Iterable[Message],
    memos: Iterable[Memo],
    account_id: str,
    department: Optional[str] = None,
) -> List[Notification]:
    """
    Build the notification feed for one account.

    Args:
        inbox: Inbox snapshot
        memos: Memo-board snapshot
        account_id: Account the feed is for
        department: The account's department, if known

    Returns:
        Notifications, newest first. Ties keep input order, messages before memos.
    """
    notifications: List[Notification] = []
    seen = set()

    for message in inbox:
        title = PRIORITY_TITLES.get(message.priority)
        if title is None or message.id in seen or message.is_read_by(account_id):
            continue
        if not _addressed_to(message, account_id, department):
            continue
        seen.add(message.id)
        notifications.append(Notification(
            id=f"notif_{message.id}",
            title=title,
            message=message.subject,
            type="message",
            reference_id=message.id,
            timestamp=message.created_at,
        ))

    for memo in memos:
        if not memo.requires_acknowledgement or memo.id in seen or memo.is_acknowledged_by(account_id):
            continue
        seen.add(memo.id)
        notifications.append(Notification(
            id=f"notif_{memo.id}",
            title="Action Required",
            message=f"Please acknowledge circular: {memo.subject}",
            type="memo",
            reference_id=memo.id,
            timestamp=memo.created_at,
        ))

    return sorted(notifications, key=lambda n: n.timestamp, reverse=True)
