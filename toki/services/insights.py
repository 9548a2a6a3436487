"""
Insights service.
Aggregates spans, project time and sessions into report-ready summaries.
"""

import enum
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from toki.core.datetime_utils import day_bounds, utc_now
from toki.core.logging import get_logger
from toki.db.store import Store
from toki.services.time_estimator import format_duration

logger = get_logger(__name__)


class SummaryPeriod(enum.StrEnum):
    TODAY = "today"
    YESTERDAY = "yesterday"
    WEEK = "week"
    MONTH = "month"

    def date_range(self, today: date) -> tuple[date, date]:
        """Inclusive first and last UTC date covered by the period."""
        match self:
            case SummaryPeriod.TODAY:
                return today, today
            case SummaryPeriod.YESTERDAY:
                yesterday = today - timedelta(days=1)
                return yesterday, yesterday
            case SummaryPeriod.WEEK:
                return today - timedelta(days=7), today
            case _:
                return today - timedelta(days=30), today


@dataclass(frozen=True)
class ProjectSummary:
    name: str
    total_seconds: int


@dataclass
class WorkSummary:
    period: SummaryPeriod
    start_date: date
    end_date: date
    total_seconds: int = 0
    projects: list[ProjectSummary] = field(default_factory=list)
    categories: dict[str, int] = field(default_factory=dict)
    session_count: int = 0
    insights: list[str] = field(default_factory=list)


class InsightsService:
    def __init__(self, store: Store):
        self.store = store

    async def time_per_category(self, start: datetime, end: datetime) -> dict[str, int]:
        totals = await self.store.get_category_totals(start, end)
        return dict(sorted(totals.items(), key=lambda item: item[1], reverse=True))

    async def top_applications(self, start: datetime, end: datetime, limit: int = 10) -> list[tuple[str, int]]:
        return await self.store.get_app_totals(start, end, limit)

    async def total_active_time(self, start: datetime, end: datetime) -> int:
        return sum((await self.store.get_category_totals(start, end)).values())

    async def project_breakdown(self, day: date) -> list[ProjectSummary]:
        rows = await self.store.get_project_time_for_date(day.isoformat())
        return [ProjectSummary(project.name, seconds) for project, seconds in rows]

    async def work_summary(self, period: SummaryPeriod | str, now: datetime | None = None) -> WorkSummary:
        """Per-project, per-category and session totals for a named period."""
        period = SummaryPeriod(period)
        today = (now or utc_now()).date()
        first, last = period.date_range(today)
        start, _ = day_bounds(first)
        _, end = day_bounds(last)

        rows = await self.store.get_project_time_range(first.isoformat(), last.isoformat())
        projects = [ProjectSummary(project.name, seconds) for project, seconds in rows]
        categories = await self.time_per_category(start, end)
        sessions = await self.store.get_sessions(start, end)

        summary = WorkSummary(
            period=period,
            start_date=first,
            end_date=last,
            total_seconds=sum(categories.values()),
            projects=projects,
            categories=categories,
            session_count=len(sessions),
        )
        summary.insights = self._insights(summary)
        logger.debug(
            "Work summary generated",
            extra={"period": period.value, "total_seconds": summary.total_seconds},
        )
        return summary

    @staticmethod
    def _insights(summary: WorkSummary) -> list[str]:
        insights: list[str] = []
        if summary.session_count and summary.total_seconds:
            average = summary.total_seconds // summary.session_count
            insights.append(f"Average session duration: {format_duration(average)}")

        project_total = sum(p.total_seconds for p in summary.projects)
        if summary.projects and project_total:
            top = summary.projects[0]
            share = top.total_seconds * 100 // project_total
            if share > 70:
                insights.append(f"Highly focused: {share}% of time on {top.name}")
            elif len(summary.projects) > 2:
                insights.append(f"Context switching: work spread across {len(summary.projects)} projects")

        if summary.categories and summary.total_seconds:
            category, seconds = next(iter(summary.categories.items()))
            insights.append(f"Top category: {category} ({seconds * 100 // summary.total_seconds}%)")
        return insights
