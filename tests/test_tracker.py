"""Tests for the tracker tick loop and session lifecycle."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from toki.core.config import get_settings
from toki.db.store import StoreError
from toki.services.context_detector import DetectedContext
from toki.services.monitor import ActiveApp
from toki.services.session_manager import BreakState, SessionManager
from toki.services.tracker import TrackerDaemon

TICK = timedelta(seconds=5)


class ScriptedMonitor:
    """Monitor whose samples are set directly by the test."""

    def __init__(self) -> None:
        self.app: ActiveApp | None = ActiveApp(app_bundle_id="editor", app_name="Editor")
        self.idle = False

    async def get_active_app(self) -> ActiveApp | None:
        return self.app

    async def get_idle_seconds(self) -> int:
        return 600 if self.idle else 0

    async def is_idle(self, threshold_seconds: int) -> bool:
        return self.idle


@pytest.fixture
async def tracking_store(store):
    """Store with work hours covering the whole day."""
    await store.update_settings(work_hours_start=0, work_hours_end=24)
    return store


@pytest.fixture
def monitor():
    return ScriptedMonitor()


@pytest.fixture
async def daemon(tracking_store, monitor):
    tracker = TrackerDaemon(tracking_store, monitor, settings=get_settings())
    await tracker.start()
    return tracker


class TestSpans:
    """Test span opening, continuation and finalization."""

    async def test_app_switch_opens_new_span(self, daemon, tracking_store, monitor, base_time):
        """Test switching apps finalizes the previous span and opens another."""
        await daemon.tick(base_time)
        await daemon.tick(base_time + TICK)
        monitor.app = ActiveApp(app_bundle_id="browser")
        await daemon.tick(base_time + 2 * TICK)

        spans = await tracking_store.get_activity_spans(base_time, base_time + timedelta(hours=1))
        assert [s.app_bundle_id for s in spans] == ["editor", "browser"]
        assert spans[0].end_time is not None
        assert spans[0].duration_seconds == 10
        assert spans[1].end_time is None
        assert await tracking_store.count_open_spans() == 1

    async def test_project_switch_keeps_span(self, tracking_store, monitor, base_time):
        """Test a project change within one app only accrues project time."""
        alpha = await tracking_store.get_or_create_project("alpha", "/work/alpha")
        beta = await tracking_store.get_or_create_project("beta", "/work/beta")
        alpha_ctx = DetectedContext(project_id=alpha.id, project_name="alpha")
        beta_ctx = DetectedContext(project_id=beta.id, project_name="beta")
        context_detector = MagicMock()
        context_detector.detect = AsyncMock(side_effect=[alpha_ctx, alpha_ctx, beta_ctx, beta_ctx])

        daemon = TrackerDaemon(tracking_store, monitor, settings=get_settings(), context_detector=context_detector)
        await daemon.start()
        for i in range(4):
            await daemon.tick(base_time + i * TICK)

        spans = await tracking_store.get_activity_spans(base_time, base_time + timedelta(hours=1))
        assert len(spans) == 1
        assert spans[0].app_bundle_id == "editor"
        times = {project.name: seconds for project, seconds in await tracking_store.get_project_time_for_date("2026-03-10")}
        assert times["alpha"] >= 2 * daemon.tick_interval
        assert times["beta"] >= 2 * daemon.tick_interval

    async def test_idle_finalizes_span(self, daemon, tracking_store, monitor, base_time):
        """Test an idle tick closes the span at the idle tick time."""
        await daemon.tick(base_time)
        monitor.idle = True
        await daemon.tick(base_time + TICK)

        spans = await tracking_store.get_activity_spans(base_time, base_time + timedelta(hours=1))
        assert len(spans) == 1
        assert spans[0].end_time == base_time + TICK
        assert daemon.open_span is None
        assert daemon.interruption_count == 1

    async def test_no_foreground_app_closes_span(self, daemon, tracking_store, monitor, base_time):
        """Test a missing sample finalizes without opening a new span."""
        await daemon.tick(base_time)
        monitor.app = None
        await daemon.tick(base_time + TICK)

        assert await tracking_store.count_open_spans() == 0

    async def test_excluded_app_is_not_tracked(self, daemon, tracking_store, monitor, base_time):
        """Test apps on the exclusion list never get a span."""
        await tracking_store.update_settings(excluded_apps=["Slack"])
        monitor.app = ActiveApp(app_bundle_id="com.tinyspeck.slack")

        await daemon.tick(base_time)

        assert await tracking_store.count_open_spans() == 0
        status = await daemon.status()
        assert status.current_window is None

    async def test_span_classified(self, daemon, tracking_store, monitor, base_time):
        """Test new spans carry the classifier's category."""
        monitor.app = ActiveApp(app_bundle_id="com.microsoft.VSCode")

        await daemon.tick(base_time)

        assert daemon.open_span.category == "Coding"


class TestTickResilience:
    """Test tick failures and pausing."""

    async def test_failed_tick_is_retried_next_tick(self, daemon, tracking_store, monitor, base_time):
        """Test a monitor error is logged and the next tick proceeds."""
        monitor.is_idle = AsyncMock(side_effect=[RuntimeError("monitor gone"), False])

        await daemon.tick(base_time)
        assert await tracking_store.count_open_spans() == 0

        await daemon.tick(base_time + TICK)
        assert await tracking_store.count_open_spans() == 1
        assert daemon.tick_count == 2

    async def test_failed_finalize_keeps_span_open(self, daemon, tracking_store, monitor, base_time, monkeypatch):
        """Test a store error while closing a span keeps it open and the switch completes next tick."""
        await daemon.tick(base_time)
        editor_span = daemon.open_span
        finalize = tracking_store.finalize_activity_span
        monkeypatch.setattr(
            tracking_store, "finalize_activity_span", AsyncMock(side_effect=StoreError("database is locked"))
        )
        monitor.app = ActiveApp(app_bundle_id="browser")

        await daemon.tick(base_time + TICK)

        assert daemon.open_span is editor_span
        spans = await tracking_store.get_activity_spans(base_time, base_time + timedelta(hours=1))
        assert [s.app_bundle_id for s in spans] == ["editor"]

        monkeypatch.setattr(tracking_store, "finalize_activity_span", finalize)
        await daemon.tick(base_time + 2 * TICK)

        spans = await tracking_store.get_activity_spans(base_time, base_time + timedelta(hours=1))
        assert [s.app_bundle_id for s in spans] == ["editor", "browser"]
        assert spans[0].end_time == base_time + 2 * TICK
        assert await tracking_store.count_open_spans() == 1

    async def test_pause_closes_span_and_session(self, daemon, tracking_store, base_time):
        """Test pausing tracking finalizes everything open."""
        await daemon.tick(base_time)
        assert daemon.current_session is not None

        await tracking_store.update_settings(pause_tracking=True)
        await daemon.tick(base_time + TICK)

        assert await tracking_store.count_open_spans() == 0
        assert daemon.current_session is None
        assert await tracking_store.get_open_sessions() == []


class TestSessions:
    """Test session opening and idle-based ending."""

    async def test_session_opens_on_activity(self, daemon, tracking_store, base_time):
        """Test the first active tick starts a session and links the span."""
        await daemon.tick(base_time)

        status = await daemon.status()
        assert status.session_id == daemon.current_session.id
        assert daemon.open_span.session_id == daemon.current_session.id

    async def test_no_session_outside_work_hours(self, store, monitor, base_time):
        """Test spans are still recorded when no session may start."""
        await store.update_settings(work_hours_start=0, work_hours_end=0)
        daemon = TrackerDaemon(store, monitor, settings=get_settings())
        await daemon.start()

        await daemon.tick(base_time)

        assert daemon.current_session is None
        assert await store.count_open_spans() == 1

    async def test_long_idle_ends_session(self, daemon, tracking_store, monitor, base_time):
        """Test a session ends once the idle run reaches the threshold."""
        await tracking_store.update_settings(session_end_idle_seconds=10)
        await daemon.tick(base_time)
        monitor.idle = True
        await daemon.tick(base_time + TICK)
        assert daemon.current_session is not None

        await daemon.tick(base_time + 2 * TICK)

        assert daemon.current_session is None
        sessions = await tracking_store.get_sessions(base_time, base_time + timedelta(hours=1))
        assert len(sessions) == 1
        assert sessions[0].end_time == base_time + 2 * TICK
        assert sessions[0].idle_seconds == 10
        assert sessions[0].interruption_count == 1

    async def test_excluded_app_tick_persists_session_stats(self, daemon, tracking_store, monitor, base_time):
        """Test active time on an excluded-app tick reaches the stored session immediately."""
        await daemon.tick(base_time)
        await tracking_store.update_settings(excluded_apps=["Slack"])
        monitor.app = ActiveApp(app_bundle_id="com.tinyspeck.slack")

        await daemon.tick(base_time + TICK)

        [work_session] = await tracking_store.get_open_sessions()
        assert work_session.total_active_seconds == 2 * daemon.tick_interval


class TestShutdown:
    """Test graceful shutdown."""

    async def test_shutdown_finalizes_and_stops(self, daemon, tracking_store, base_time):
        """Test shutdown closes the span and session and ignores later ticks."""
        await daemon.tick(base_time)
        daemon.request_shutdown()
        assert daemon.shutdown_event.is_set()

        await daemon.shutdown(base_time + TICK)
        await daemon.tick(base_time + 2 * TICK)

        assert await tracking_store.count_open_spans() == 0
        assert await tracking_store.get_open_sessions() == []
        assert daemon.tick_count == 1
        assert not (await daemon.status()).running

    async def test_start_closes_dangling_rows(self, tracking_store, monitor, base_time):
        """Test startup recovers spans left open by a previous run."""
        await tracking_store.create_activity_span("editor", "Coding", base_time)

        daemon = TrackerDaemon(tracking_store, monitor, settings=get_settings())
        await daemon.start()

        assert await tracking_store.count_open_spans() == 0


class TestSessionManager:
    """Test work-hour and idle decisions."""

    def test_work_hours_window(self, base_time):
        """Test sessions never start when the window is empty."""
        manager = SessionManager(MagicMock(), work_hours_start=0, work_hours_end=24)
        assert manager.should_start_session(base_time)

        manager.work_hours_end = 0
        assert not manager.should_start_session(base_time)
        assert manager.should_end_session(0, base_time)

    def test_idle_threshold_ends_session(self, base_time):
        manager = SessionManager(MagicMock(), work_hours_start=0, work_hours_end=24, session_end_idle_seconds=900)

        assert not manager.should_end_session(899, base_time)
        assert manager.should_end_session(900, base_time)

    @pytest.mark.parametrize(
        "idle_seconds,expected",
        [
            (0, BreakState.ACTIVE),
            (119, BreakState.ACTIVE),
            (120, BreakState.SHORT_BREAK),
            (299, BreakState.SHORT_BREAK),
            (300, BreakState.LONG_BREAK),
            (1800, BreakState.AWAY),
        ],
    )
    def test_break_state(self, idle_seconds, expected):
        """Test idle seconds map to break states."""
        assert BreakState.from_idle_seconds(idle_seconds) is expected

    def test_break_state_flags(self):
        assert BreakState.SHORT_BREAK.is_break
        assert not BreakState.AWAY.is_break
        assert BreakState.LONG_BREAK.description == "On break"
