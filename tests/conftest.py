# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock


BASE_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


# =============================================================================
# SETTINGS / MIRROR FIXTURES
# =============================================================================

@pytest.fixture
def settings(tmp_path):
    """Settings with fast bcrypt and a throwaway mirror path"""
    from intramail.config import SyncSettings

    return SyncSettings(
        api_url="http://intramail.test/api/index.php",
        mirror_path=tmp_path / "mirror.db",
        preview_dir=tmp_path / "previews",
        bcrypt_rounds=4,
    )


@pytest.fixture
def mirror(settings):
    """Seeded mirror stored under tmp_path"""
    from intramail.offline import LocalMirrorStore

    store = LocalMirrorStore(settings.mirror_path, bcrypt_rounds=4).initialize()
    yield store
    store.close()


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def mock_remote():
    """MagicMock standing in for RemoteClient; every call succeeds with {}"""
    from intramail.offline import RemoteClient

    remote = MagicMock(spec=RemoteClient)
    remote.get.return_value = []
    remote.post.return_value = {"success": True}
    return remote


@pytest.fixture
def probe(mock_remote):
    from intramail.offline import ConnectivityProbe

    return ConnectivityProbe(mock_remote, timeout=1.0)


@pytest.fixture
def ctx(mirror, probe):
    from intramail.offline import SessionContext

    return SessionContext(mirror, probe)


@pytest.fixture
def gateway(mock_remote, settings):
    from intramail.offline import SyncGateway

    return SyncGateway(mock_remote, settings)


@pytest.fixture
def offline_session(ctx, gateway):
    """Session for u2 (Sarah Okon) with the remote unreachable"""
    ctx.probe.mark_unreachable("test")
    gateway.login(ctx, "sarah", "12345678")
    return ctx


@pytest.fixture
def online_session(ctx, mirror):
    """Session for u2 with the remote marked reachable"""
    ctx.probe.mark_reachable()
    ctx.begin(mirror.get_account("u2"))
    return ctx


@pytest.fixture
def mock_streamlit():
    """Mock Streamlit for testing"""
    import sys

    # Create mock streamlit module
    mock_st = MagicMock()
    mock_st.session_state = {}
    mock_st.cache_data = lambda f: f
    mock_st.cache_resource = lambda f: f

    # Store original and replace
    original_st = sys.modules.get('streamlit')
    sys.modules['streamlit'] = mock_st

    yield mock_st

    # Restore original
    if original_st:
        sys.modules['streamlit'] = original_st
    else:
        sys.modules.pop('streamlit', None)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def make_message(
    message_id="x1",
    sender_id="u1",
    recipient_ids=("u2",),
    priority="Normal",
    minutes=0,
    subject=None,
):
    """Build an email-style Message at BASE_TIME + minutes"""
    from intramail.models import Message, Priority

    return Message(
        id=message_id,
        sender_id=sender_id,
        recipient_ids=tuple(recipient_ids),
        subject=subject or f"Subject {message_id}",
        body="Body",
        priority=Priority(priority),
        created_at=BASE_TIME + timedelta(minutes=minutes),
        thread_id=f"t_{message_id}",
    )


def make_memo(memo_id="c1", requires_ack=True, acknowledged_by=(), minutes=0):
    from intramail.models import ALL_STAFF, Memo, Priority

    return Memo(
        id=memo_id,
        sender_id="u1",
        recipient_ids=(ALL_STAFF,),
        subject=f"Circular {memo_id}",
        body="Please read",
        priority=Priority.URGENT,
        created_at=BASE_TIME + timedelta(minutes=minutes),
        thread_id=f"t_{memo_id}",
        requires_acknowledgement=requires_ack,
        acknowledged_by=frozenset(acknowledged_by),
    )


def wire_memo(memo_id="c1", acknowledged_by=(), requires_ack=True):
    """Memo as the action API returns it (raw column names mixed in)"""
    return {
        "id": memo_id,
        "sender_id": "u1",
        "subject": f"Circular {memo_id}",
        "body": "Please read",
        "priority": "Urgent",
        "type": "memo",
        "thread_id": f"t_{memo_id}",
        "requires_ack": 1 if requires_ack else 0,
        "created_at": "2024-03-01 09:00:00",
        "recipientIds": ["ALL_STAFF"],
        "ccIds": [],
        "bccIds": [],
        "attachments": [],
        "recipientDetails": [],
        "acknowledgedBy": list(acknowledged_by),
    }


def wire_message(message_id="x1", is_read=False, priority="Normal", recipient="u2"):
    return {
        "id": message_id,
        "sender_id": "u1",
        "subject": f"Subject {message_id}",
        "body": "Body",
        "priority": priority,
        "type": "email",
        "thread_id": f"t_{message_id}",
        "created_at": "2024-03-01 09:00:00",
        "is_read": 1 if is_read else 0,
        "isRead": is_read,
        "recipientIds": [recipient],
        "ccIds": [],
        "bccIds": [],
        "attachments": [],
        "recipientDetails": [{"userId": recipient, "name": "x", "isRead": is_read, "readAt": None}],
    }
