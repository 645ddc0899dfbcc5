# =============================================================================
# intramail/offline/connection_manager.py
# Remote Reachability Detection
# =============================================================================
"""
ConnectivityProbe - Decides whether the action API is reachable.

Features:
- Bounded-latency probe (GET ?action=users, must answer a JSON list)
- Cached state until the next explicit probe or an observed transport failure
- Event callbacks for status changes
"""

from __future__ import annotations
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Callable, List, Optional
import logging

from intramail.errors import TransportUnavailableError

if TYPE_CHECKING:
    from intramail.offline.remote_client import RemoteClient

logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    """Reachability of the remote service."""
    REACHABLE = "reachable"
    UNREACHABLE = "unreachable"
    UNKNOWN = "unknown"         # Never probed


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    last_check: Optional[datetime] = None
    last_reachable: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None


class ConnectivityProbe:
    """
    Cached reachability of the remote.

    Only ``probe()`` can turn an unreachable remote back into a reachable one.
    Gateway calls report failures through ``mark_unreachable`` and the remote
    stays unreachable until the next explicit probe.

    Usage:
        probe = ConnectivityProbe(remote_client, timeout=1.0)
        if probe.probe() is ConnectionStatus.REACHABLE:
            # Use the remote
        else:
            # Use the mirror
    """

    def __init__(self, remote: RemoteClient, timeout: float = 1.0):
        self._remote = remote
        self._timeout = timeout
        self._state = ConnectionState()
        self._callbacks: List[Callable[[ConnectionState], None]] = []
        self._lock = threading.RLock()

    @property
    def state(self) -> ConnectionState:
        """Copy of the current connection state."""
        with self._lock:
            return replace(self._state)

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def is_online(self) -> bool:
        return self._state.status == ConnectionStatus.REACHABLE

    def probe(self) -> ConnectionStatus:
        """
        Check the remote once and cache the result.

        Returns:
            REACHABLE or UNREACHABLE
        """
        try:
            payload = self._remote.get("users", timeout=self._timeout)
            if not isinstance(payload, list):
                raise TransportUnavailableError("Probe answered with a non-list payload", action="users")
        except TransportUnavailableError as e:
            logger.debug(f"Probe failed: {e.message}")
            self.mark_unreachable(e.message)
        else:
            self.mark_reachable()
        return self.status

    def mark_reachable(self) -> None:
        now = datetime.now(timezone.utc)
        with self._lock:
            old_status = self._state.status
            self._state.status = ConnectionStatus.REACHABLE
            self._state.last_check = now
            self._state.last_reachable = now
            self._state.consecutive_failures = 0
            self._state.error_message = None
        self._status_changed(old_status)

    def mark_unreachable(self, reason: Optional[str] = None) -> None:
        """Record a transport failure. Takes effect immediately, no retry."""
        with self._lock:
            old_status = self._state.status
            self._state.status = ConnectionStatus.UNREACHABLE
            self._state.last_check = datetime.now(timezone.utc)
            self._state.consecutive_failures += 1
            self._state.error_message = reason
        self._status_changed(old_status)

    def _status_changed(self, old_status: ConnectionStatus) -> None:
        if old_status == self._state.status:
            return
        logger.info(f"Connection status changed: {old_status.value} -> {self._state.status.value}")
        self._notify_callbacks()

    def register_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """
        Register a callback for connection status changes.

        Args:
            callback: Function called with ConnectionState when status changes
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        state = self.state
        for callback in list(self._callbacks):
            try:
                callback(state)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}")

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        state = self.state
        return {
            "status": state.status.value,
            "is_online": state.status == ConnectionStatus.REACHABLE,
            "last_check": state.last_check.isoformat() if state.last_check else None,
            "last_reachable": state.last_reachable.isoformat() if state.last_reachable else None,
            "failures": state.consecutive_failures,
            "error": state.error_message,
        }
