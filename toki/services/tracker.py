"""Tracker daemon: the tick loop that turns activity samples into spans.

One tick samples the monitor, decides idleness, opens/continues/closes the
activity span and accrues per-project daily time. The daemon object owns the
open span, the current session and the session counters; nothing else writes
spans or project time.
"""

import asyncio
import uuid
from dataclasses import dataclass, replace
from datetime import datetime

from toki.core.config import Settings, get_settings
from toki.core.datetime_utils import seconds_between, utc_now
from toki.core.logging import clear_correlation_id, get_logger, log_error, set_correlation_id
from toki.db.models import ActivitySpan, Session, UserSettings
from toki.db.store import Store
from toki.services.classifier import Classifier
from toki.services.context_detector import ContextDetector, DetectedContext
from toki.services.monitor import ActiveApp, PlatformMonitor
from toki.services.privacy import PrivacyFilter
from toki.services.session_manager import SessionManager

logger = get_logger(__name__)


@dataclass(frozen=True)
class StatusSnapshot:
    """What the IPC endpoint reports; published by the tracker after each tick."""

    running: bool = True
    current_window: str | None = None
    current_project: str | None = None
    current_issue: str | None = None
    session_id: uuid.UUID | None = None
    session_started_at: datetime | None = None

    def session_duration_seconds(self, now: datetime | None = None) -> int:
        if self.session_started_at is None:
            return 0
        return seconds_between(self.session_started_at, now or utc_now())


class TrackerDaemon:
    """Single-writer activity tracker driven by ``tick``."""

    def __init__(
        self,
        store: Store,
        monitor: PlatformMonitor,
        settings: Settings | None = None,
        classifier: Classifier | None = None,
        context_detector: ContextDetector | None = None,
        session_manager: SessionManager | None = None,
    ) -> None:
        self.store = store
        self.monitor = monitor
        self.settings = settings or get_settings()
        self.tick_interval = self.settings.tick_interval_seconds
        self.classifier = classifier or Classifier(store)
        self.context_detector = context_detector or ContextDetector(store)
        self.session_manager = session_manager or SessionManager(store)

        self.open_span: ActivitySpan | None = None
        self.current_session: Session | None = None
        self.session_active_seconds = 0
        self.session_idle_seconds = 0
        self.idle_run_seconds = 0
        self.interruption_count = 0
        self.was_idle = False
        self.tick_count = 0

        self.shutdown_event = asyncio.Event()
        self._tick_lock = asyncio.Lock()
        self._status_lock = asyncio.Lock()
        self._status = StatusSnapshot()
        self._stopped = False

    # ===========================================
    # LIFECYCLE
    # ===========================================

    async def start(self) -> None:
        """Resynchronize with the store after a crash and load classifier rules."""
        spans = await self.store.close_dangling_spans()
        sessions = await self.store.close_dangling_sessions()
        await self.classifier.load()
        logger.info(
            "Tracker started",
            extra={
                "tick_interval_seconds": self.tick_interval,
                "closed_spans": spans,
                "closed_sessions": sessions,
            },
        )

    def request_shutdown(self) -> None:
        """Set the shutdown flag; safe to call from signal handlers and IPC."""
        if not self.shutdown_event.is_set():
            logger.info("Shutdown requested")
            self.shutdown_event.set()

    async def shutdown(self, now: datetime | None = None) -> None:
        """Wait for the running tick, then close the open span and session."""
        async with self._tick_lock:
            if self._stopped:
                return
            now = now or utc_now()
            try:
                await self._finalize_span(now)
                await self._finalize_session(now)
            except Exception as e:
                log_error(logger, "Finalization on shutdown failed", error=e)
            self._stopped = True
            await self._publish(running=False)
        logger.info("Tracker stopped", extra={"ticks": self.tick_count})

    async def status(self) -> StatusSnapshot:
        async with self._status_lock:
            return self._status

    # ===========================================
    # TICK
    # ===========================================

    async def tick(self, now: datetime | None = None) -> None:
        """Run one best-effort tick; failures are logged and retried next tick."""
        async with self._tick_lock:
            if self._stopped:
                return
            self.tick_count += 1
            set_correlation_id(f"tick-{self.tick_count}")
            try:
                await self._tick(now or utc_now())
            except Exception as e:
                log_error(logger, "Tracker tick failed", error=e, extra={"tick": self.tick_count})
            finally:
                clear_correlation_id()

    async def _tick(self, now: datetime) -> None:
        settings = await self.store.get_settings()
        self.session_manager.apply_settings(settings)
        privacy = PrivacyFilter(settings)

        if privacy.is_tracking_paused:
            await self._finalize_span(now)
            await self._finalize_session(now)
            await self._publish(current_window=None, current_project=None, current_issue=None)
            return

        is_idle = await self.monitor.is_idle(settings.idle_threshold_seconds)

        if (
            self.current_session is None
            and not is_idle
            and self.session_manager.should_start_session(now)
        ):
            await self._open_session(now)

        if is_idle:
            await self._idle_tick(now)
            return

        self.idle_run_seconds = 0
        self.was_idle = False
        self.session_active_seconds += self.tick_interval

        app = await self.monitor.get_active_app()
        if app is None:
            await self._finalize_span(now)
            await self._update_session_stats()
            await self._publish(current_window=None)
            return

        if privacy.should_exclude_app(app.app_bundle_id):
            await self._finalize_span(now)
            await self._update_session_stats()
            await self._publish(current_window=None, current_project=None, current_issue=None)
            return

        context = await self.context_detector.detect(
            app.window_title,
            now,
            enable_work_item_tracking=settings.enable_work_item_tracking,
        )
        category = await self.classifier.classify(app.app_bundle_id, app.window_title)

        if self.open_span is None or self.open_span.app_bundle_id != app.app_bundle_id:
            await self._finalize_span(now)
            await self._open_span(app, category, context, now)

        if context.project_id is not None:
            await self.store.add_project_time(context.project_id, self.tick_interval, now)

        await self._update_session_stats()
        await self._publish(
            current_window=self._describe_window(app, settings),
            current_project=context.project_name,
            current_issue=context.issue_id,
        )

    async def _idle_tick(self, now: datetime) -> None:
        self.session_idle_seconds += self.tick_interval
        self.idle_run_seconds += self.tick_interval
        if not self.was_idle:
            self.interruption_count += 1
            self.was_idle = True

        await self._finalize_span(now)

        if self.current_session is not None:
            if self.session_manager.should_end_session(self.idle_run_seconds, now):
                await self._finalize_session(now)
            else:
                await self._update_session_stats()
        await self._publish(current_window=None)

    @staticmethod
    def _describe_window(app: ActiveApp, settings: UserSettings) -> str:
        name = app.app_name or app.app_bundle_id
        title = PrivacyFilter(settings).window_title(app.window_title)
        return f"{name} - {title}" if title else name

    # ===========================================
    # SPANS AND SESSIONS
    # ===========================================

    async def _open_span(
        self,
        app: ActiveApp,
        category: str,
        context: DetectedContext,
        now: datetime,
    ) -> None:
        span_context = {"git_branch": context.git_branch} if context.git_branch else None
        self.open_span = await self.store.create_activity_span(
            app_bundle_id=app.app_bundle_id,
            category=category,
            start_time=now,
            project_id=context.project_id,
            work_item_id=context.work_item_id,
            session_id=self.current_session.id if self.current_session else None,
            context=span_context,
        )
        logger.info(
            "Activity span opened",
            extra={"app": app.app_bundle_id, "category": category, "project": context.project_name},
        )

    async def _finalize_span(self, now: datetime) -> None:
        if self.open_span is None:
            return
        span_id = self.open_span.id
        finalized = await self.store.finalize_activity_span(span_id, now)
        if finalized is None:
            log_error(
                logger,
                "Open span missing from store, dropping in-memory span",
                extra={"span_id": str(span_id)},
            )
        else:
            logger.debug(
                "Activity span finalized",
                extra={"span_id": str(span_id), "duration_seconds": finalized.duration_seconds},
            )
        self.open_span = None

    async def _open_session(self, now: datetime) -> None:
        self.current_session = await self.session_manager.open_session(now)
        self.session_active_seconds = 0
        self.session_idle_seconds = 0
        self.idle_run_seconds = 0
        self.interruption_count = 0
        await self._publish(
            session_id=self.current_session.id,
            session_started_at=self.current_session.start_time,
        )

    async def _finalize_session(self, now: datetime) -> None:
        if self.current_session is None:
            return
        await self._update_session_stats()
        await self.session_manager.close_session(self.current_session.id, now)
        self.current_session = None
        self.session_active_seconds = 0
        self.session_idle_seconds = 0
        self.idle_run_seconds = 0
        self.interruption_count = 0
        await self._publish(session_id=None, session_started_at=None)

    async def _update_session_stats(self) -> None:
        if self.current_session is None:
            return
        await self.session_manager.update_stats(
            self.current_session.id,
            self.session_active_seconds,
            self.session_idle_seconds,
            self.interruption_count,
        )

    async def _publish(self, **changes: object) -> None:
        async with self._status_lock:
            self._status = replace(self._status, **changes)  # type: ignore[arg-type]
