"""Work session lifecycle based on work hours and idle time."""

import enum
import uuid
from datetime import datetime

from toki.core.datetime_utils import local_hour
from toki.core.logging import get_logger
from toki.db.models import Session, UserSettings
from toki.db.store import Store

logger = get_logger(__name__)


class BreakState(enum.StrEnum):
    """How long the user has been away, from least to most."""

    ACTIVE = "active"
    SHORT_BREAK = "short_break"
    LONG_BREAK = "long_break"
    AWAY = "away"

    @classmethod
    def from_idle_seconds(cls, idle_seconds: int) -> "BreakState":
        if idle_seconds < 120:
            return cls.ACTIVE
        if idle_seconds < 300:
            return cls.SHORT_BREAK
        if idle_seconds < 1800:
            return cls.LONG_BREAK
        return cls.AWAY

    @property
    def is_break(self) -> bool:
        return self in (BreakState.SHORT_BREAK, BreakState.LONG_BREAK)

    @property
    def description(self) -> str:
        return {
            BreakState.ACTIVE: "Working",
            BreakState.SHORT_BREAK: "Short break",
            BreakState.LONG_BREAK: "On break",
            BreakState.AWAY: "Away",
        }[self]


class SessionManager:
    """Decides when sessions open and close, and persists them."""

    DEFAULT_WORK_HOURS_START = 9
    DEFAULT_WORK_HOURS_END = 18
    DEFAULT_SESSION_END_IDLE_SECONDS = 900

    def __init__(
        self,
        store: Store,
        work_hours_start: int = DEFAULT_WORK_HOURS_START,
        work_hours_end: int = DEFAULT_WORK_HOURS_END,
        session_end_idle_seconds: int = DEFAULT_SESSION_END_IDLE_SECONDS,
    ) -> None:
        self.store = store
        self.work_hours_start = work_hours_start
        self.work_hours_end = work_hours_end
        self.session_end_idle_seconds = session_end_idle_seconds

    def apply_settings(self, settings: UserSettings) -> None:
        self.work_hours_start = settings.work_hours_start
        self.work_hours_end = settings.work_hours_end
        self.session_end_idle_seconds = settings.session_end_idle_seconds

    def within_work_hours(self, now: datetime) -> bool:
        hour = local_hour(now)
        return self.work_hours_start <= hour < self.work_hours_end

    def should_start_session(self, now: datetime) -> bool:
        return self.within_work_hours(now)

    def should_end_session(self, idle_seconds: int, now: datetime) -> bool:
        return not self.within_work_hours(now) or idle_seconds >= self.session_end_idle_seconds

    async def open_session(self, now: datetime) -> Session:
        session = await self.store.create_session(now)
        logger.info("Session started", extra={"session_id": str(session.id)})
        return session

    async def update_stats(
        self,
        session_id: uuid.UUID,
        active_seconds: int,
        idle_seconds: int,
        interruptions: int,
    ) -> None:
        await self.store.update_session_stats(session_id, active_seconds, idle_seconds, interruptions)

    async def close_session(self, session_id: uuid.UUID, now: datetime) -> Session | None:
        session = await self.store.finalize_session(session_id, now)
        if session is not None:
            logger.info(
                "Session ended",
                extra={
                    "session_id": str(session_id),
                    "active_seconds": session.total_active_seconds,
                    "categories": session.categories,
                },
            )
        return session
