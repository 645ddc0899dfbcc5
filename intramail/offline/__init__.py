# =============================================================================
# intramail/offline/__init__.py
# Hybrid Online/Offline Sync Layer for Intramail
# =============================================================================
"""
Offline-First Sync Module

The client keeps working whether the action API is reachable or not.
Every read and write goes through the SyncGateway, which picks the remote
when the probe says it is reachable and the local mirror otherwise.

Architecture:
------------
┌─────────────────────────────────────────────────────────────────┐
│                      HYBRID SYNC LAYER                           │
├─────────────────────────────────────────────────────────────────┤
│                                                                  │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │                    MailboxService                         │  │
│   │            (ServiceResult for the Streamlit UI)           │  │
│   └──────────────────────────────────────────────────────────┘  │
│                 │                              │                 │
│                 ▼                              ▼                 │
│   ┌──────────────────────┐       ┌──────────────────────────┐   │
│   │     SyncGateway      │◄──────│    RefreshScheduler      │   │
│   │ (SessionContext per  │       │ (10s worker, view scope, │   │
│   │  call, remote/local) │       │  notification derive)    │   │
│   └──────────────────────┘       └──────────────────────────┘   │
│        │            │                                            │
│        ▼            ▼                                            │
│ ┌────────────┐  ┌──────────────────┐   ┌────────────────────┐   │
│ │RemoteClient│  │ LocalMirrorStore │   │ ConnectivityProbe  │   │
│ │(HTTP+JSON) │  │    (SQLite)      │   │ (GET ?action=users)│   │
│ └────────────┘  └──────────────────┘   └────────────────────┘   │
└─────────────────────────────────────────────────────────────────┘

Usage:
------
from intramail.offline import (
    ConnectivityProbe, LocalMirrorStore, RemoteClient, SessionContext, SyncGateway,
)

remote = RemoteClient(settings.api_url)
ctx = SessionContext(LocalMirrorStore(settings.mirror_path).initialize(),
                     ConnectivityProbe(remote, settings.probe_timeout))
gateway = SyncGateway(remote, settings)

ctx.probe.probe()
account = gateway.login(ctx, "shammah", "12345678")
inbox = gateway.fetch_folder(ctx, FolderKind.INBOX)
"""

from intramail.offline.connection_manager import (
    ConnectivityProbe,
    ConnectionState,
    ConnectionStatus,
)

from intramail.offline.local_database import LocalMirrorStore

from intramail.offline.remote_client import RemoteClient

from intramail.offline.session import SessionContext

from intramail.offline.sync_gateway import SyncGateway

from intramail.offline.notifications import derive

from intramail.offline.refresh_scheduler import (
    RefreshScheduler,
    RefreshState,
    SessionSnapshot,
)

from intramail.offline.compose import ComposeSession, PreviewHandle

__all__ = [
    # Connectivity
    "ConnectivityProbe",
    "ConnectionState",
    "ConnectionStatus",
    # Mirror
    "LocalMirrorStore",
    # Transport
    "RemoteClient",
    # Routing
    "SessionContext",
    "SyncGateway",
    # Derived state
    "derive",
    "RefreshScheduler",
    "RefreshState",
    "SessionSnapshot",
    # Compose
    "ComposeSession",
    "PreviewHandle",
]
