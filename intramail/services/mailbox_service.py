# =============================================================================
# intramail/services/mailbox_service.py
# Mailbox Service - consumer-facing facade over the sync layer
# =============================================================================
"""
MailboxService wires settings, probe, mirror, remote client, gateway and
refresh scheduler together for one client and exposes every operation as
a ServiceResult.

Usage:
    service = MailboxService(load_settings())
    result = service.login("shammah", "12345678")
    if result:
        inbox = service.fetch_folder(FolderKind.INBOX).data
    else:
        st.error(result.error)
"""

from __future__ import annotations
from typing import List, Optional

from intramail.config import SyncSettings, load_settings
from intramail.errors import SystemUnavailableError, TransportUnavailableError
from intramail.models import Account, FolderKind, Message, Notification, View
from intramail.offline import (
    ComposeSession,
    ConnectivityProbe,
    LocalMirrorStore,
    RefreshScheduler,
    RemoteClient,
    SessionContext,
    SessionSnapshot,
    SyncGateway,
    derive,
)
from intramail.services.base_service import BaseService, ServiceResult


class MailboxService(BaseService):
    """One client's view of Intramail: session, folders, accounts and admin actions."""

    def __init__(
        self,
        settings: Optional[SyncSettings] = None,
        remote: Optional[RemoteClient] = None,
        mirror: Optional[LocalMirrorStore] = None,
    ):
        super().__init__()
        self.settings = settings or load_settings()
        self.remote = remote or RemoteClient(self.settings.api_url)
        self.mirror = mirror or LocalMirrorStore(
            self.settings.mirror_path,
            default_credential=self.settings.default_credential,
            bcrypt_rounds=self.settings.bcrypt_rounds,
        )
        self.mirror.initialize()

        self.probe = ConnectivityProbe(self.remote, timeout=self.settings.probe_timeout)
        self.ctx = SessionContext(self.mirror, self.probe)
        self.gateway = SyncGateway(self.remote, self.settings)
        self.scheduler = RefreshScheduler(self.gateway, self.ctx, interval=self.settings.refresh_interval)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_online(self) -> bool:
        return self.probe.is_online

    @property
    def account(self) -> Optional[Account]:
        return self.ctx.account

    @property
    def snapshot(self) -> Optional[SessionSnapshot]:
        return self.scheduler.snapshot

    @property
    def needs_password_change(self) -> bool:
        return self.ctx.uses_default_credential

    @property
    def pending_count(self) -> int:
        return self.mirror.pending_count

    def get_status_display(self) -> dict:
        status = self.probe.get_status_display()
        status["pending_writes"] = self.mirror.pending_count
        status["refresh"] = self.scheduler.get_status_display()
        return status

    # =========================================================================
    # SESSION
    # =========================================================================

    def check_connection(self) -> ServiceResult:
        return self.safe_execute("Probing remote", lambda: self.probe.probe().value)

    def login(self, username: str, password: str, start_refresh: bool = True) -> ServiceResult:
        """Probe, authenticate, then start the refresh worker."""
        def _login() -> Account:
            self.probe.probe()
            account = self.gateway.login(self.ctx, username, password)
            if start_refresh:
                self.scheduler.start(View.DASHBOARD)
            return account

        return self.safe_execute(f"Login {username}", _login)

    def logout(self) -> ServiceResult:
        return self.safe_execute("Logout", self.scheduler.stop)

    def set_view(self, view: View) -> ServiceResult:
        return self.safe_execute(f"Switching to {View(view).value}", self.scheduler.set_view, view)

    def refresh(self) -> ServiceResult:
        return self.safe_execute("Refreshing folders", self.scheduler.refresh_now)

    def notifications(self) -> List[Notification]:
        """Latest derived feed; derived from the mirror if no refresh has run yet."""
        if self.scheduler.snapshot is not None:
            return list(self.scheduler.snapshot.notifications)
        account = self.ctx.account
        if account is None:
            return []
        return derive(
            self.mirror.folder(account.id, FolderKind.INBOX),
            self.mirror.folder(account.id, FolderKind.MEMO),
            account.id,
            account.department,
        )

    def shutdown(self) -> None:
        """Stop the worker and release the HTTP session and database connection."""
        self.scheduler.stop()
        self.remote.close()
        self.mirror.close()

    # =========================================================================
    # MESSAGES
    # =========================================================================

    def fetch_folder(self, kind: FolderKind) -> ServiceResult:
        kind = FolderKind(kind)
        return self.safe_execute(f"Fetching {kind.value}", self.gateway.fetch_folder, self.ctx, kind)

    def send(self, message: Message) -> ServiceResult:
        return self.safe_execute(f"Sending {message.id}", self.gateway.send, self.ctx, message)

    def mark_read(self, message_id: str) -> ServiceResult:
        return self.safe_execute(f"Marking {message_id} read", self.gateway.mark_read, self.ctx, message_id)

    def mark_all_read(self) -> ServiceResult:
        return self.safe_execute("Marking inbox read", self.gateway.mark_all_read, self.ctx)

    def toggle_archive(self, message_id: str, archived: bool) -> ServiceResult:
        return self.safe_execute(
            f"Archive {message_id}={archived}", self.gateway.toggle_archive, self.ctx, message_id, archived
        )

    def acknowledge(self, memo_id: str) -> ServiceResult:
        return self.safe_execute(f"Acknowledging {memo_id}", self.gateway.acknowledge, self.ctx, memo_id)

    def compose(self) -> ComposeSession:
        return ComposeSession(self.gateway, self.ctx, preview_dir=self.settings.preview_dir)

    def _remote_only(self, operation: str, func, *args):
        try:
            return func(*args)
        except TransportUnavailableError as e:
            raise SystemUnavailableError(e.message, operation=operation) from e

    def upload_attachment(self, filename: str, content: bytes, mime_type: str) -> ServiceResult:
        return self.safe_execute(
            f"Uploading {filename}",
            self._remote_only, "upload", self.gateway.upload_attachment, self.ctx, filename, content, mime_type,
        )

    def add_compose_file(self, draft: ComposeSession, filename: str, content: bytes, mime_type: str) -> ServiceResult:
        return self.safe_execute(
            f"Attaching {filename}", self._remote_only, "upload", draft.add_file, filename, content, mime_type
        )

    # =========================================================================
    # ACCOUNTS / ADMIN
    # =========================================================================

    def list_accounts(self, include_removed: bool = False) -> ServiceResult:
        return self.safe_execute("Loading directory", self.gateway.list_accounts, self.ctx, include_removed)

    def add_account(self, account: Account) -> ServiceResult:
        return self.safe_execute(f"Creating account {account.username}", self.gateway.add_account, self.ctx, account)

    def update_account(self, account: Account) -> ServiceResult:
        return self.safe_execute(f"Updating account {account.id}", self.gateway.update_account, self.ctx, account)

    def update_avatar(self, avatar_url: str) -> ServiceResult:
        return self.safe_execute("Updating avatar", self.gateway.update_avatar, self.ctx, avatar_url)

    def delete_account(self, account_id: str) -> ServiceResult:
        return self.safe_execute(f"Removing account {account_id}", self.gateway.delete_account, self.ctx, account_id)

    def change_password(self, old_password: str, new_password: str) -> ServiceResult:
        return self.safe_execute(
            "Changing password", self.gateway.change_password, self.ctx, old_password, new_password
        )

    def admin_reset_password(self, target_id: str, new_password: str) -> ServiceResult:
        return self.safe_execute(
            f"Resetting password for {target_id}", self.gateway.admin_reset_password, self.ctx, target_id, new_password
        )

    def fetch_stats(self) -> ServiceResult:
        return self.safe_execute("Loading stats", self.gateway.fetch_stats, self.ctx)

    def audit_log(self, limit: Optional[int] = 100) -> ServiceResult:
        return self.safe_execute("Loading audit log", self.gateway.audit_log, self.ctx, None, limit)
