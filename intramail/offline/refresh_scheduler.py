# =============================================================================
# intramail/offline/refresh_scheduler.py
# Periodic and view-triggered folder refresh
# =============================================================================
"""
RefreshScheduler - Keeps the session's folder snapshots fresh.

Features:
- Background worker bound to the session lifetime
- Immediate pull on session start and on every view change
- Archive pulled only while the archive view is active
- Re-probe while unreachable, replay pending writes once reachable
- Late results from an ended session are discarded
"""

from __future__ import annotations
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
import logging

from intramail.errors import IntramailError
from intramail.models import FolderKind, Memo, Message, Notification, View
from intramail.offline.notifications import derive
from intramail.offline.session import SessionContext
from intramail.offline.sync_gateway import SyncGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionSnapshot:
    """Folder contents and the derived feed from one refresh."""
    account_id: str
    generation: int
    inbox: List[Message]
    sent: List[Message]
    memos: List[Memo]
    archive: Optional[List[Message]]
    notifications: List[Notification]
    connected: bool
    refreshed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def unread_count(self) -> int:
        return sum(1 for m in self.inbox if not m.is_read_by(self.account_id))


@dataclass
class RefreshState:
    """Current refresh state."""
    is_refreshing: bool = False
    last_refresh: Optional[datetime] = None
    last_success: Optional[datetime] = None
    refresh_count: int = 0
    discarded_count: int = 0
    error_message: Optional[str] = None


class RefreshScheduler:
    """
    Re-pulls what the active view needs on a fixed interval.

    Usage:
        scheduler = RefreshScheduler(gateway, ctx, interval=10.0)
        scheduler.start()                # after login
        scheduler.set_view(View.ARCHIVE) # immediate pull incl. archive
        scheduler.stop()                 # logout
    """

    join_timeout = 5.0

    def __init__(self, gateway: SyncGateway, ctx: SessionContext, interval: float = 10.0):
        self._gateway = gateway
        self._ctx = ctx
        self.interval = interval

        self._state = RefreshState()
        self._view = View.DASHBOARD
        self._snapshot: Optional[SessionSnapshot] = None
        self._callbacks: List[Callable[[SessionSnapshot], None]] = []

        self._guard = threading.Lock()
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._worker: Optional[threading.Thread] = None

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def state(self) -> RefreshState:
        return self._state

    @property
    def is_refreshing(self) -> bool:
        return self._state.is_refreshing

    @property
    def view(self) -> View:
        return self._view

    @property
    def snapshot(self) -> Optional[SessionSnapshot]:
        return self._snapshot

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self, view: View = View.DASHBOARD) -> None:
        """Start the worker for the current session. The first pull runs immediately."""
        if not self._ctx.is_active:
            raise RuntimeError("RefreshScheduler.start() needs an active session")
        if self.is_running:
            return

        self._view = View(view)
        # Fresh events per worker: a previous worker still finishing its last
        # pull keeps its own (already set) stop event and exits.
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._worker = threading.Thread(
            target=self._refresh_loop,
            args=(self._stop, self._wake),
            daemon=True,
            name="RefreshScheduler",
        )
        self._worker.start()
        logger.info(f"Refresh scheduler started (every {self.interval}s)")

    def stop(self) -> None:
        """Stop the worker, end the session and drop every snapshot."""
        self._stop.set()
        self._wake.set()
        worker = self._worker
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout=self.join_timeout)
            if worker.is_alive():
                logger.warning("Refresh worker still finishing a pull; it will exit afterwards")
        self._worker = None
        self._ctx.end()
        self._snapshot = None
        logger.info("Refresh scheduler stopped")

    def _refresh_loop(self, stop: threading.Event, wake: threading.Event) -> None:
        """Background refresh loop."""
        while not stop.is_set():
            try:
                self.refresh_now()
            except Exception as e:
                logger.error(f"Refresh error: {e}")

            wake.wait(timeout=self.interval)
            wake.clear()

    # =========================================================================
    # TRIGGERS
    # =========================================================================

    def set_view(self, view: View) -> bool:
        """Switch the active view and ask for an immediate pull."""
        self._view = View(view)
        return self.request_refresh()

    def request_refresh(self) -> bool:
        """
        Wake the worker for an immediate pull.

        Returns:
            False if a refresh is already in flight (the request is dropped)
        """
        if self._state.is_refreshing or not self.is_running:
            return False
        self._wake.set()
        return True

    def refresh_now(self) -> bool:
        """
        Run one refresh on the calling thread.

        Returns:
            True if a new snapshot was published
        """
        with self._guard:
            if self._state.is_refreshing:
                return False
            self._state.is_refreshing = True

        self._state.last_refresh = datetime.now(timezone.utc)
        try:
            return self._perform_refresh()
        except IntramailError as e:
            self._state.error_message = e.message
            logger.warning(f"Refresh failed: {e}")
            return False
        finally:
            self._state.is_refreshing = False

    def _perform_refresh(self) -> bool:
        ctx = self._ctx
        generation = ctx.generation
        account = ctx.account
        if account is None or not ctx.is_current(generation):
            return False

        if not ctx.connected:
            ctx.probe.probe()
        if ctx.connected:
            self._gateway.flush_pending(ctx)

        inbox = self._gateway.fetch_folder(ctx, FolderKind.INBOX, account.id)
        sent = self._gateway.fetch_folder(ctx, FolderKind.SENT, account.id)
        memos = self._gateway.fetch_folder(ctx, FolderKind.MEMO, account.id)
        archive = None
        if self._view == View.ARCHIVE:
            archive = self._gateway.fetch_folder(ctx, FolderKind.ARCHIVE, account.id)

        notifications = derive(inbox, memos, account.id, account.department)

        if not ctx.is_current(generation):
            self._state.discarded_count += 1
            logger.debug(f"Discarding refresh result of ended session (generation {generation})")
            return False

        self._snapshot = SessionSnapshot(
            account_id=account.id,
            generation=generation,
            inbox=inbox,
            sent=sent,
            memos=[m for m in memos if isinstance(m, Memo)],
            archive=archive,
            notifications=notifications,
            connected=ctx.connected,
        )
        self._state.refresh_count += 1
        self._state.last_success = self._snapshot.refreshed_at
        self._state.error_message = None
        logger.debug(
            f"Refreshed {account.id}: {len(inbox)} inbox, {len(sent)} sent, "
            f"{len(memos)} memos, {len(notifications)} notifications"
        )
        self._notify_callbacks(self._snapshot)
        return True

    # =========================================================================
    # CALLBACKS
    # =========================================================================

    def register_callback(self, callback: Callable[[SessionSnapshot], None]) -> None:
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[SessionSnapshot], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self, snapshot: SessionSnapshot) -> None:
        for callback in list(self._callbacks):
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Error in refresh callback: {e}")

    def get_status_display(self) -> Dict[str, Any]:
        """Get refresh information for UI display."""
        return {
            "is_refreshing": self._state.is_refreshing,
            "view": self._view.value,
            "last_refresh": self._state.last_refresh.isoformat() if self._state.last_refresh else None,
            "last_success": self._state.last_success.isoformat() if self._state.last_success else None,
            "refreshes": self._state.refresh_count,
            "error": self._state.error_message,
        }
