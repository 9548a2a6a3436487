"""Daily standup report built from project time and spans."""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from toki.core.datetime_utils import day_bounds, seconds_between, utc_now
from toki.core.logging import get_logger
from toki.db.store import Store
from toki.services.time_estimator import format_duration

logger = get_logger(__name__)

SHORT_SPAN_SECONDS = 300
MAX_SHORT_SPANS = 5
LONG_SESSION = timedelta(hours=2)


@dataclass(frozen=True)
class ProjectStandupItem:
    project_id: uuid.UUID
    project_name: str
    total_seconds: int


@dataclass
class StandupReport:
    date: date
    yesterday_work: list[ProjectStandupItem] = field(default_factory=list)
    yesterday_total_seconds: int = 0
    today_work: list[ProjectStandupItem] = field(default_factory=list)
    today_total_seconds: int = 0
    blockers: list[str] = field(default_factory=list)

    def as_text(self) -> str:
        yesterday = ", ".join(
            f"Worked on {item.project_name} ({format_duration(item.total_seconds)})"
            for item in self.yesterday_work
        )
        today = ", ".join(f"Working on {item.project_name}" for item in self.today_work)
        return (
            f"Yesterday: {yesterday or 'No tracked activity'}\n"
            f"Today: {today or 'Will continue previous work'}\n"
            f"Blockers: {', '.join(self.blockers) or 'None'}\n"
        )


class StandupGenerator:
    def __init__(self, store: Store):
        self.store = store

    async def _project_items(self, day: date) -> list[ProjectStandupItem]:
        rows = await self.store.get_project_time_for_date(day.isoformat())
        items = [ProjectStandupItem(project.id, project.name, seconds) for project, seconds in rows]
        items.sort(key=lambda item: item.total_seconds, reverse=True)
        return items

    async def _blockers(self, yesterday: date, now: datetime) -> list[str]:
        blockers: list[str] = []

        start, end = day_bounds(yesterday)
        spans = await self.store.get_activity_spans(start, end)
        short = [s for s in spans if s.end_time is not None and s.duration_seconds < SHORT_SPAN_SECONDS]
        if len(short) > MAX_SHORT_SPANS:
            blockers.append(f"Frequent context switching ({len(short)} short activities yesterday)")

        for work_session in await self.store.get_open_sessions():
            elapsed = seconds_between(work_session.start_time, now)
            if elapsed > LONG_SESSION.total_seconds():
                blockers.append(f"Long session without a break ({format_duration(elapsed)})")
        return blockers

    async def generate(self, day: date | None = None, now: datetime | None = None) -> StandupReport:
        """Standup for ``day`` (default today, UTC) covering it and the day before."""
        now = now or utc_now()
        day = day or now.date()
        yesterday = day - timedelta(days=1)

        yesterday_work = await self._project_items(yesterday)
        today_work = await self._project_items(day)
        report = StandupReport(
            date=day,
            yesterday_work=yesterday_work,
            yesterday_total_seconds=sum(item.total_seconds for item in yesterday_work),
            today_work=today_work,
            today_total_seconds=sum(item.total_seconds for item in today_work),
            blockers=await self._blockers(yesterday, now),
        )
        logger.debug(
            "Standup generated",
            extra={"date": day.isoformat(), "blockers": len(report.blockers)},
        )
        return report
