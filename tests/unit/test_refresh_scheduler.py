# =============================================================================
# tests/unit/test_refresh_scheduler.py
# Unit Tests for RefreshScheduler
# =============================================================================

import threading
import pytest
from unittest.mock import MagicMock

from conftest import make_message, wire_memo, wire_message


@pytest.fixture
def scheduler(gateway, online_session):
    from intramail.offline import RefreshScheduler

    sched = RefreshScheduler(gateway, online_session, interval=0.05)
    yield sched
    sched.stop()


class TestRefreshNow:
    """Test a single synchronous refresh"""

    def test_snapshot_published(self, scheduler, mock_remote):
        def answer(action, params=None, timeout=None):
            if params and params["type"] == "inbox":
                return [wire_message("x1", priority="Urgent")]
            if params and params["type"] == "memo":
                return [wire_memo("c1")]
            return []

        mock_remote.get.side_effect = answer

        assert scheduler.refresh_now()

        snapshot = scheduler.snapshot
        assert [m.id for m in snapshot.inbox] == ["x1"]
        assert [m.id for m in snapshot.memos] == ["c1"]
        assert snapshot.archive is None
        assert snapshot.unread_count == 1
        assert {n.reference_id for n in snapshot.notifications} == {"x1", "c1"}
        assert snapshot.connected

    def test_archive_only_in_archive_view(self, scheduler, mock_remote):
        from intramail.models import View

        scheduler.refresh_now()
        types = [c.args[1]["type"] for c in mock_remote.get.call_args_list]
        assert "archive" not in types

        mock_remote.get.reset_mock()
        scheduler.set_view(View.ARCHIVE)
        scheduler.refresh_now()

        types = [c.args[1]["type"] for c in mock_remote.get.call_args_list]
        assert types == ["inbox", "sent", "memo", "archive"]
        assert scheduler.snapshot.archive == []

    def test_offline_refresh_reprobes_and_uses_mirror(self, scheduler, online_session, mock_remote, mirror):
        """While unreachable each refresh re-probes, then reads the mirror"""
        from intramail.errors import TransportUnavailableError

        mirror.add_message(make_message("x1"))
        online_session.probe.mark_unreachable("down")
        mock_remote.get.side_effect = TransportUnavailableError("still down")

        assert scheduler.refresh_now()

        assert mock_remote.get.call_count == 1
        assert [m.id for m in scheduler.snapshot.inbox] == ["x1"]
        assert not scheduler.snapshot.connected

    def test_reconnect_flushes_pending_first(self, scheduler, online_session, gateway, mock_remote, mirror):
        online_session.probe.mark_unreachable("down")
        gateway.acknowledge(online_session, "memo1")

        scheduler.refresh_now()

        assert mock_remote.post.call_args_list[0].args[0] == "acknowledge_memo"
        assert mirror.pending_count == 0

    def test_no_session_no_snapshot(self, gateway, ctx):
        from intramail.offline import RefreshScheduler

        sched = RefreshScheduler(gateway, ctx)

        assert not sched.refresh_now()
        assert sched.snapshot is None

    def test_result_of_ended_session_discarded(self, online_session, mirror):
        """A pull that finishes after logout never publishes"""
        from intramail.offline import RefreshScheduler

        gateway = MagicMock()

        def fetch(ctx, kind, account_id=None):
            if kind == "memo":
                ctx.end()
            return []

        gateway.fetch_folder.side_effect = fetch
        sched = RefreshScheduler(gateway, online_session)

        assert not sched.refresh_now()
        assert sched.snapshot is None
        assert sched.state.discarded_count == 1

    def test_callbacks_receive_snapshot(self, scheduler):
        callback = MagicMock()
        scheduler.register_callback(callback)

        scheduler.refresh_now()

        callback.assert_called_once_with(scheduler.snapshot)

    def test_refresh_in_flight_is_dropped(self, scheduler):
        scheduler.state.is_refreshing = True

        assert not scheduler.refresh_now()
        assert not scheduler.request_refresh()


class TestLifecycle:
    """Test the background worker"""

    def test_start_requires_session(self, gateway, ctx):
        from intramail.offline import RefreshScheduler

        with pytest.raises(RuntimeError):
            RefreshScheduler(gateway, ctx).start()

    def test_start_pulls_immediately(self, scheduler):
        published = threading.Event()
        scheduler.register_callback(lambda snapshot: published.set())

        scheduler.start()

        assert published.wait(timeout=5)
        assert scheduler.is_running

    def test_stop_ends_session_and_clears(self, scheduler, online_session):
        published = threading.Event()
        scheduler.register_callback(lambda snapshot: published.set())
        scheduler.start()
        published.wait(timeout=5)

        scheduler.stop()

        assert not scheduler.is_running
        assert scheduler.snapshot is None
        assert not online_session.is_active

    def test_restart_during_slow_pull_keeps_one_worker(self, online_session, mirror):
        """A worker still inside a pull when stop() gives up exits once it returns"""
        from intramail.offline import RefreshScheduler

        entered = threading.Event()
        release = threading.Event()
        gateway = MagicMock()

        def slow_fetch(ctx, kind, account_id=None):
            entered.set()
            release.wait(timeout=5)
            return []

        gateway.fetch_folder.side_effect = slow_fetch
        sched = RefreshScheduler(gateway, online_session, interval=0.05)
        sched.join_timeout = 0.05
        try:
            sched.start()
            assert entered.wait(timeout=5)
            old_worker = sched._worker

            sched.stop()
            assert old_worker.is_alive()

            online_session.begin(mirror.get_account("u2"))
            sched.start()
            release.set()

            old_worker.join(timeout=5)
            assert not old_worker.is_alive()
            assert sched.is_running
            assert sched._worker is not old_worker
        finally:
            release.set()
            sched.stop()

    def test_request_refresh_needs_worker(self, scheduler):
        assert not scheduler.request_refresh()

    def test_status_display(self, scheduler):
        scheduler.refresh_now()

        display = scheduler.get_status_display()

        assert display["refreshes"] == 1
        assert display["view"] == "dashboard"
        assert display["error"] is None
