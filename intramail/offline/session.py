# =============================================================================
# intramail/offline/session.py
# Per-Client Session Context
# =============================================================================
"""
SessionContext - The state every gateway call runs against.

Holds the mirror handle, the connectivity probe and the signed-in account.
The generation counter changes whenever a session starts or ends, so work
started under an older generation can recognise that its result is stale.
"""

from __future__ import annotations
import threading
from typing import Optional
import logging

from intramail.models import Account
from intramail.offline.connection_manager import ConnectivityProbe
from intramail.offline.local_database import LocalMirrorStore

logger = logging.getLogger(__name__)


class SessionContext:
    """Explicit session state passed to every SyncGateway operation."""

    def __init__(self, mirror: LocalMirrorStore, probe: ConnectivityProbe):
        self.mirror = mirror
        self.probe = probe
        self._account: Optional[Account] = None
        self._default_credential = False
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def connected(self) -> bool:
        return self.probe.is_online

    @property
    def account(self) -> Optional[Account]:
        return self._account

    @property
    def account_id(self) -> Optional[str]:
        return self._account.id if self._account else None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_active(self) -> bool:
        return self._account is not None

    @property
    def uses_default_credential(self) -> bool:
        """True while the signed-in account still has the issued default password."""
        return self._account is not None and self._default_credential

    def begin(self, account: Account, default_credential: bool = False) -> int:
        """Start a session for ``account`` and return its generation."""
        with self._lock:
            self._account = account
            self._default_credential = default_credential
            self._generation += 1
            logger.info(f"Session started for {account.id} (generation {self._generation})")
            return self._generation

    def credential_changed(self) -> None:
        self._default_credential = False

    def refresh_account(self, account: Account) -> None:
        """Swap in an updated copy of the signed-in account (same session)."""
        with self._lock:
            if self._account is not None and self._account.id == account.id:
                self._account = account

    def end(self) -> None:
        with self._lock:
            if self._account is not None:
                logger.info(f"Session ended for {self._account.id}")
            self._account = None
            self._default_credential = False
            self._generation += 1

    def is_current(self, generation: int) -> bool:
        """True while the session that issued ``generation`` is still active."""
        return self._account is not None and generation == self._generation
