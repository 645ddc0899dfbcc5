# =============================================================================
# intramail/offline/sync_gateway.py
# Sync Gateway - Per-entity routing between the remote and the mirror
# =============================================================================
"""
SyncGateway - The single writer of the local mirror.

Every operation follows the same shape:

1. Validate. A ValidationFailedError is raised before any remote call and
   before any mirror mutation.
2. If the session is connected, ``_attempt_remote`` issues the call under an
   explicit timeout. On success the mirror is reconciled from the
   authoritative result.
3. On a transport failure (or a malformed response) the probe is marked
   unreachable immediately and the operation takes its ``_local_*`` path.
   Offline sessions go straight to the local path.

Offline writes are best-effort: sends, archive toggles and account edits
are overwritten by the next successful pull. Mark-read and acknowledge are
set additions, so they are also recorded as pending writes and replayed by
``flush_pending`` once the remote is reachable again.
"""

from __future__ import annotations
import re
import socket
from dataclasses import replace
from typing import Any, Callable, List, Optional, Tuple
import logging

from intramail.config import SyncSettings
from intramail.errors import (
    MalformedResponseError,
    NotFoundError,
    TransportUnavailableError,
    UnauthenticatedError,
    ValidationFailedError,
)
from intramail.models import (
    MEMO_ROLES,
    Account,
    Attachment,
    AuditEntry,
    DashboardStats,
    FolderKind,
    Memo,
    Message,
    coarse_type,
    size_label,
    utc_now,
)
from intramail.offline.remote_client import RemoteClient
from intramail.offline.session import SessionContext

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 8

# Audit actions
LOGIN_SUCCESS = "LOGIN_SUCCESS"
PASSWORD_CHANGE = "PASSWORD_CHANGE"
PASSWORD_RESET = "PASSWORD_RESET"
USER_UPDATE = "USER_UPDATE"

# Replayable offline writes
PENDING_MARK_READ = "mark_read"
PENDING_ACKNOWLEDGE = "acknowledge"


def _expect_list(payload: Any, action: str) -> list:
    if not isinstance(payload, list):
        raise MalformedResponseError(f"Expected a JSON list from {action}", action=action)
    return payload


def _expect_dict(payload: Any, action: str) -> dict:
    if not isinstance(payload, dict):
        raise MalformedResponseError(f"Expected a JSON object from {action}", action=action)
    return payload


def validate_password(secret: str, field: str = "password") -> None:
    if not secret or len(secret) < MIN_PASSWORD_LENGTH:
        raise ValidationFailedError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.", field=field
        )


class SyncGateway:
    """
    Per-entity read/write operations that choose the remote or the mirror.

    Usage:
        gateway = SyncGateway(remote_client, settings)
        account = gateway.login(ctx, "shammah", "12345678")
        inbox = gateway.fetch_folder(ctx, FolderKind.INBOX)
    """

    def __init__(self, remote: RemoteClient, settings: Optional[SyncSettings] = None):
        self._remote = remote
        self.settings = settings or SyncSettings()
        self._origin = socket.gethostname()

    # =========================================================================
    # ROUTING
    # =========================================================================

    def _attempt_remote(self, ctx: SessionContext, action: str, call: Callable[[], Any]) -> Tuple[bool, Any]:
        """
        Run ``call`` against the remote if the session is connected.

        Returns:
            (True, result) on success, (False, None) when the local path
            must be taken. Authentication and validation errors propagate.
        """
        if not ctx.connected:
            return False, None
        try:
            return True, call()
        except TransportUnavailableError as e:
            ctx.probe.mark_unreachable(e.message)
            logger.warning(f"Remote {action} failed, using local mirror: {e.message}")
        except NotFoundError as e:
            logger.debug(f"Remote {action} reported not found, trying local mirror: {e.message}")
        return False, None

    def _require_account_id(self, ctx: SessionContext, account_id: Optional[str] = None) -> str:
        account_id = account_id or ctx.account_id
        if not account_id:
            raise UnauthenticatedError("No active session")
        return account_id

    def _audit(self, ctx: SessionContext, actor_id: str, action: str, details: str) -> None:
        ctx.mirror.append_audit(AuditEntry(
            actor_id=actor_id,
            action=action,
            details=details,
            timestamp=utc_now(),
            origin=self._origin,
        ))

    # =========================================================================
    # AUTHENTICATION
    # =========================================================================

    def login(self, ctx: SessionContext, username: str, password: str) -> Account:
        """
        Authenticate and start a session.

        A credential mismatch reported by the remote is final; the mirror is
        only consulted when the remote cannot be reached.
        """
        if not username or not username.strip() or not password:
            raise ValidationFailedError("Username and password are required.", field="username")
        username = username.strip()

        def remote_login() -> Account:
            payload = _expect_dict(
                self._remote.post("login", {"username": username, "password": password},
                                  timeout=self.settings.read_timeout),
                "login",
            )
            if not payload.get("success"):
                raise UnauthenticatedError(str(payload.get("message") or "Invalid credentials"), username=username)
            return Account.from_wire(_expect_dict(payload.get("user"), "login"))

        ok, account = self._attempt_remote(ctx, "login", remote_login)
        if ok:
            existing = ctx.mirror.get_account(account.id)
            if existing is not None and existing.removed:
                account = replace(account, removed=True)
            ctx.mirror.upsert_account(account, secret=password)
            mode = "online"
        else:
            account = self._local_login(ctx, username, password)
            mode = "offline"

        self._audit(ctx, account.id, LOGIN_SUCCESS, f"User logged in ({mode})")
        ctx.begin(account, default_credential=password == self.settings.default_credential)
        if ctx.uses_default_credential:
            logger.info(f"{account.username} signed in with the default password")
        logger.info(f"Login succeeded for {account.username} ({mode})")
        return account

    def _local_login(self, ctx: SessionContext, username: str, password: str) -> Account:
        account = ctx.mirror.find_account_by_username(username)
        if account is None or not ctx.mirror.verify_credential(account.id, password):
            raise UnauthenticatedError(username=username)
        return account

    # =========================================================================
    # FOLDERS AND MESSAGES
    # =========================================================================

    def fetch_folder(self, ctx: SessionContext, kind: FolderKind, account_id: Optional[str] = None) -> List[Message]:
        """
        Fetch one folder, newest first.

        A successful pull replaces that folder's slice of the mirror.
        """
        kind = FolderKind(kind)
        account_id = self._require_account_id(ctx, account_id)

        def remote_fetch() -> List[Message]:
            params = {"type": kind.value, "userId": "system" if kind == FolderKind.MEMO else account_id}
            payload = _expect_list(self._remote.get("messages", params, timeout=self.settings.read_timeout), "messages")
            if kind == FolderKind.MEMO:
                return [Memo.from_wire(item) for item in payload]
            return [Message.from_wire(item, viewer_id=account_id, kind=kind) for item in payload]

        ok, pulled = self._attempt_remote(ctx, f"messages/{kind.value}", remote_fetch)
        if ok:
            return ctx.mirror.replace_folder(account_id, kind, pulled)
        return ctx.mirror.folder(account_id, kind)

    def _validate_message(self, ctx: SessionContext, message: Message) -> None:
        if not (message.recipient_ids or message.cc_ids or message.bcc_ids):
            raise ValidationFailedError("Please select at least one recipient.", field="recipients")
        if not message.subject.strip():
            raise ValidationFailedError("Subject is required.", field="subject")
        if not message.body.strip():
            raise ValidationFailedError("Message body is required.", field="body")
        if isinstance(message, Memo):
            sender = ctx.mirror.get_account(message.sender_id)
            if sender is None or sender.role not in MEMO_ROLES:
                raise ValidationFailedError("You are not allowed to post circulars.", field="type")

    def send(self, ctx: SessionContext, message: Message) -> Message:
        """Send a message or memo. Offline sends stay local until the next pull."""
        self._require_account_id(ctx)
        self._validate_message(ctx, message)
        message = message.without_previews()

        ok, _ = self._attempt_remote(
            ctx, "messages",
            lambda: self._remote.post("messages", message.to_wire(), timeout=self.settings.write_timeout),
        )
        if not ok:
            logger.info(f"Message {message.id} stored locally only")
        return ctx.mirror.add_message(message)

    def mark_read(self, ctx: SessionContext, message_id: str, account_id: Optional[str] = None) -> Optional[Message]:
        account_id = self._require_account_id(ctx, account_id)
        ok, _ = self._attempt_remote(
            ctx, "mark_read",
            lambda: self._remote.post("mark_read", {"messageId": message_id, "userId": account_id},
                                      timeout=self.settings.write_timeout),
        )
        if ok:
            return ctx.mirror.set_read(message_id, account_id)
        return self._local_mark_read(ctx, message_id, account_id)

    def _local_mark_read(self, ctx: SessionContext, message_id: str, account_id: str) -> Message:
        message = ctx.mirror.set_read(message_id, account_id)
        if message is None:
            raise NotFoundError(f"Message {message_id} not found", entity="message", entity_id=message_id)
        ctx.mirror.enqueue_pending(PENDING_MARK_READ, message_id, account_id)
        return message

    def mark_all_read(self, ctx: SessionContext, account_id: Optional[str] = None) -> int:
        """Mark the whole inbox read. Returns the number of messages changed locally."""
        account_id = self._require_account_id(ctx, account_id)
        ok, _ = self._attempt_remote(
            ctx, "mark_all_read",
            lambda: self._remote.post("mark_all_read", {"userId": account_id}, timeout=self.settings.write_timeout),
        )
        if not ok:
            for message in ctx.mirror.folder(account_id, FolderKind.INBOX):
                if not message.is_read_by(account_id):
                    ctx.mirror.enqueue_pending(PENDING_MARK_READ, message.id, account_id)
        return ctx.mirror.set_all_read(account_id)

    def toggle_archive(
        self,
        ctx: SessionContext,
        message_id: str,
        archived: bool,
        account_id: Optional[str] = None,
    ) -> Optional[Message]:
        account_id = self._require_account_id(ctx, account_id)
        ok, _ = self._attempt_remote(
            ctx, "archive_message",
            lambda: self._remote.post(
                "archive_message",
                {"messageId": message_id, "userId": account_id, "isArchived": archived},
                timeout=self.settings.write_timeout,
            ),
        )
        message = ctx.mirror.set_archived(message_id, account_id, archived)
        if message is None and not ok:
            raise NotFoundError(f"Message {message_id} not found", entity="message", entity_id=message_id)
        return message

    def acknowledge(self, ctx: SessionContext, memo_id: str, account_id: Optional[str] = None) -> Optional[Memo]:
        """Add the account to a memo's acknowledgment set. Never removes anyone."""
        account_id = self._require_account_id(ctx, account_id)
        ok, _ = self._attempt_remote(
            ctx, "acknowledge_memo",
            lambda: self._remote.post("acknowledge_memo", {"messageId": memo_id, "userId": account_id},
                                      timeout=self.settings.write_timeout),
        )
        if ok:
            return ctx.mirror.acknowledge(memo_id, account_id)

        memo = ctx.mirror.acknowledge(memo_id, account_id)
        if memo is None:
            raise NotFoundError(f"Memo {memo_id} not found", entity="memo", entity_id=memo_id)
        ctx.mirror.enqueue_pending(PENDING_ACKNOWLEDGE, memo_id, account_id)
        return memo

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    def list_accounts(self, ctx: SessionContext, include_removed: bool = False) -> List[Account]:
        def remote_list() -> List[Account]:
            payload = _expect_list(self._remote.get("users", timeout=self.settings.read_timeout), "users")
            return [Account.from_wire(item) for item in payload]

        ok, accounts = self._attempt_remote(ctx, "users", remote_list)
        if ok:
            ctx.mirror.replace_accounts(accounts)
        return ctx.mirror.list_accounts(include_removed=include_removed)

    def _validate_account(self, ctx: SessionContext, account: Account, is_new: bool) -> None:
        if not account.name.strip():
            raise ValidationFailedError("Full name is required.", field="name")
        if len(account.username.strip()) < MIN_USERNAME_LENGTH:
            raise ValidationFailedError(
                f"Username must be at least {MIN_USERNAME_LENGTH} characters.", field="username"
            )
        if not EMAIL_PATTERN.match(account.email or ""):
            raise ValidationFailedError("Please enter a valid email address.", field="email")
        clash = ctx.mirror.find_account_by_username(account.username)
        if clash is not None and (is_new or clash.id != account.id):
            raise ValidationFailedError("Username is already taken.", field="username")
        if is_new and ctx.mirror.get_account(account.id) is not None:
            raise ValidationFailedError(f"Account {account.id} already exists.", field="id")

    def add_account(self, ctx: SessionContext, account: Account) -> Account:
        """Create an account. New accounts start with the default credential."""
        self._validate_account(ctx, account, is_new=True)
        self._attempt_remote(
            ctx, "users",
            lambda: self._remote.post("users", account.to_wire(), timeout=self.settings.write_timeout),
        )
        created = ctx.mirror.upsert_account(account, secret=self.settings.default_credential)
        logger.info(f"Account {account.id} created")
        return created

    def update_account(self, ctx: SessionContext, account: Account) -> Account:
        """Update role, department and profile fields of an existing account."""
        existing = ctx.mirror.get_account(account.id)
        if existing is None:
            raise NotFoundError(f"Account {account.id} not found", entity="account", entity_id=account.id)
        self._validate_account(ctx, account, is_new=False)
        admin_id = self._require_account_id(ctx)

        self._attempt_remote(
            ctx, "update_user",
            lambda: self._remote.post(
                "update_user", {**account.to_wire(), "adminId": admin_id}, timeout=self.settings.write_timeout
            ),
        )
        updated = ctx.mirror.upsert_account(replace(account, removed=existing.removed))

        changes = []
        if existing.role != account.role:
            changes.append(f"Role: {existing.role} -> {account.role}")
        if existing.department != account.department:
            changes.append(f"Dept: {existing.department} -> {account.department}")
        if changes:
            self._audit(ctx, admin_id, USER_UPDATE, f"Updated User {account.id}: " + ", ".join(changes))

        ctx.refresh_account(updated)
        return updated

    def update_avatar(self, ctx: SessionContext, avatar_url: str, account_id: Optional[str] = None) -> Account:
        account_id = self._require_account_id(ctx, account_id)
        if not avatar_url:
            raise ValidationFailedError("An avatar image is required.", field="avatar")
        existing = ctx.mirror.get_account(account_id)
        if existing is None:
            raise NotFoundError(f"Account {account_id} not found", entity="account", entity_id=account_id)

        self._attempt_remote(
            ctx, "update_profile",
            lambda: self._remote.post("update_profile", {"userId": account_id, "avatar": avatar_url},
                                      timeout=self.settings.write_timeout),
        )
        updated = ctx.mirror.upsert_account(replace(existing, avatar=avatar_url))
        ctx.refresh_account(updated)
        return updated

    def delete_account(self, ctx: SessionContext, account_id: str) -> Account:
        """
        Soft-remove an account from the directory.

        The action API has no delete action, so this only affects the mirror.
        """
        if account_id == ctx.account_id:
            raise ValidationFailedError("You cannot remove your own account.", field="id")
        removed = ctx.mirror.soft_remove_account(account_id)
        if removed is None:
            raise NotFoundError(f"Account {account_id} not found", entity="account", entity_id=account_id)
        logger.info(f"Account {account_id} removed from directory")
        return removed

    # =========================================================================
    # CREDENTIALS
    # =========================================================================

    def change_password(
        self,
        ctx: SessionContext,
        old_password: str,
        new_password: str,
        account_id: Optional[str] = None,
    ) -> None:
        account_id = self._require_account_id(ctx, account_id)
        validate_password(new_password, field="new_password")

        ok, _ = self._attempt_remote(
            ctx, "change_password",
            lambda: self._remote.post(
                "change_password",
                {"userId": account_id, "oldPassword": old_password, "newPassword": new_password},
                timeout=self.settings.write_timeout,
            ),
        )
        if not ok and not ctx.mirror.verify_credential(account_id, old_password):
            raise UnauthenticatedError("Current password is incorrect")

        ctx.mirror.set_credential(account_id, new_password)
        if account_id == ctx.account_id:
            ctx.credential_changed()
        self._audit(ctx, account_id, PASSWORD_CHANGE, "User changed password")
        logger.info(f"Password changed for {account_id}")

    def admin_reset_password(self, ctx: SessionContext, target_id: str, new_password: str) -> None:
        admin_id = self._require_account_id(ctx)
        validate_password(new_password, field="new_password")
        if ctx.mirror.get_account(target_id) is None:
            raise NotFoundError(f"Account {target_id} not found", entity="account", entity_id=target_id)

        self._attempt_remote(
            ctx, "admin_reset_password",
            lambda: self._remote.post(
                "admin_reset_password",
                {"targetUserId": target_id, "newPassword": new_password, "adminId": admin_id},
                timeout=self.settings.write_timeout,
            ),
        )
        ctx.mirror.set_credential(target_id, new_password)
        self._audit(ctx, admin_id, PASSWORD_RESET, f"Admin ({admin_id}) reset password for User ({target_id})")
        logger.info(f"Password reset for {target_id} by {admin_id}")

    # =========================================================================
    # ATTACHMENTS
    # =========================================================================

    def validate_upload(self, filename: str, content: bytes, mime_type: str) -> None:
        if not filename:
            raise ValidationFailedError("No file selected.", field="file")
        if len(content) > self.settings.max_upload_bytes:
            limit_mb = self.settings.max_upload_bytes // (1024 * 1024)
            raise ValidationFailedError(f"File too large (Max {limit_mb}MB)", field="file")
        if mime_type not in self.settings.allowed_upload_types:
            raise ValidationFailedError(
                "Invalid file type. Allowed: PDF, Word, Excel, Images.", field="file"
            )

    def upload_attachment(self, ctx: SessionContext, filename: str, content: bytes, mime_type: str) -> Attachment:
        """
        Upload a file and return its descriptor.

        There is no local equivalent: when the remote is unreachable the
        TransportUnavailableError is raised to the caller.
        """
        self.validate_upload(filename, content, mime_type)
        if not ctx.connected:
            raise TransportUnavailableError("Uploads need the server", action="upload")

        try:
            payload = self._remote.upload(filename, content, mime_type, timeout=self.settings.upload_timeout)
            attachment = Attachment.from_wire({
                "size": size_label(len(content)),
                "type": coarse_type(mime_type),
                **{k: v for k, v in payload.items() if v},
            })
        except TransportUnavailableError as e:
            ctx.probe.mark_unreachable(e.message)
            logger.warning(f"Upload of {filename} failed: {e.message}")
            raise
        logger.info(f"Uploaded {filename} as {attachment.id}")
        return attachment

    # =========================================================================
    # STATS / AUDIT / REPLAY
    # =========================================================================

    def fetch_stats(self, ctx: SessionContext) -> DashboardStats:
        ok, stats = self._attempt_remote(
            ctx, "stats",
            lambda: DashboardStats.from_wire(
                _expect_dict(self._remote.get("stats", timeout=self.settings.read_timeout), "stats")
            ),
        )
        return stats if ok else ctx.mirror.stats()

    def audit_log(self, ctx: SessionContext, actor_id: Optional[str] = None, limit: Optional[int] = None) -> List[AuditEntry]:
        return ctx.mirror.audit_entries(actor_id=actor_id, limit=limit)

    def flush_pending(self, ctx: SessionContext) -> int:
        """
        Replay offline mark-read and acknowledge writes, oldest first.

        Stops at the first transport failure. Entries whose target has left
        the mirror are dropped; a 404 for a target the mirror still holds
        keeps the entry for the next cycle.

        Returns:
            Number of writes the remote accepted
        """
        if not ctx.connected:
            return 0

        replayed = 0
        for write in ctx.mirror.pending_writes():
            if ctx.mirror.get_message(write.target_id) is None:
                logger.warning(f"Dropping pending {write.operation} for {write.target_id}: no longer mirrored")
                ctx.mirror.discard_pending(write.id)
                continue

            action = "mark_read" if write.operation == PENDING_MARK_READ else "acknowledge_memo"
            try:
                self._remote.post(
                    action,
                    {"messageId": write.target_id, "userId": write.account_id},
                    timeout=self.settings.write_timeout,
                )
            except NotFoundError as e:
                logger.debug(f"Keeping pending {write.operation} for {write.target_id}: {e.message}")
                continue
            except TransportUnavailableError as e:
                ctx.probe.mark_unreachable(e.message)
                logger.warning(f"Replay stopped, remote unreachable: {e.message}")
                break
            else:
                replayed += 1
            ctx.mirror.discard_pending(write.id)

        if replayed:
            logger.info(f"Replayed {replayed} pending write(s)")
        return replayed
