"""Capability shared by every project-management client.

Concrete clients (Plane, Notion, GitHub, GitLab) live outside this package;
the sync engine, auto-linker and issue sync only depend on the abstract base
and the value types defined here.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from pydantic import BaseModel, Field

from toki.core.logging import get_logger, log_error

logger = get_logger(__name__)


class PMApiError(Exception):
    """Non-2xx response, unparseable payload or rejected credentials from a PM system."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def format_duration_compact(seconds: int) -> str:
    """Render seconds as ``1h30m``, ``1h``, ``30m`` or ``0m``; sub-minute remainders are dropped."""
    seconds = max(int(seconds), 0)
    hours, remainder = divmod(seconds, 3600)
    minutes = remainder // 60
    if hours and minutes:
        return f"{hours}h{minutes}m"
    if hours:
        return f"{hours}h"
    return f"{minutes}m"


class TimeEntry(BaseModel):
    """Time to record against a work item in the target system."""

    work_item_id: str
    started_at: datetime
    duration_seconds: int = Field(ge=0)
    description: str = ""
    category: str = "Other"

    @property
    def duration_hours(self) -> float:
        return round(self.duration_seconds / 3600, 2)

    @property
    def duration_compact(self) -> str:
        return format_duration_compact(self.duration_seconds)


class TimeEntryResult(BaseModel):
    """Identifiers of whatever the target created for a time entry."""

    target_issue_id: str | None = None
    target_issue_number: int | None = None
    target_issue_url: str | None = None


class WorkItemDetails(BaseModel):
    id: str
    title: str
    description: str | None = None
    status: str = "unknown"
    project: str | None = None
    workspace: str | None = None


class PMProject(BaseModel):
    """A project as listed by a PM system."""

    id: str
    identifier: str
    name: str
    description: str | None = None


class PMIssue(BaseModel):
    """An issue as listed by a PM system, already normalized to an issue id."""

    external_id: str
    title: str
    description: str | None = None
    status: str = "backlog"
    labels: list[str] = Field(default_factory=list)
    assignee: str | None = None
    source_external_ref: str | None = None


class IssuePage(BaseModel):
    """One page of a cursor-paginated issue listing."""

    results: list[PMIssue] = Field(default_factory=list)
    next_cursor: str | None = None
    next_page_results: bool = False


class PMSyncReport(BaseModel):
    """Outcome of ``batch_sync``."""

    total_entries: int = 0
    successful: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)

    def record_success(self) -> None:
        self.successful += 1

    def record_failure(self, error: str) -> None:
        self.failed += 1
        self.errors.append(error)

    @property
    def is_complete_success(self) -> bool:
        return self.failed == 0 and self.successful == self.total_entries


class ProjectManagementSystem(ABC):
    """Abstract PM client consumed by sync, auto-linking and issue sync."""

    @abstractmethod
    async def fetch_work_item(self, work_item_id: str) -> WorkItemDetails:
        """Fetch a work item; raises ``PMApiError`` when it cannot be read."""

    @abstractmethod
    async def add_time_entry(self, entry: TimeEntry) -> TimeEntryResult:
        """Record a single time entry; raises ``PMApiError`` on failure."""

    @abstractmethod
    async def validate_credentials(self) -> bool:
        """Check credentials and connectivity."""

    @abstractmethod
    def system_name(self) -> str:
        """Stable lowercase system name used in ledger keys (e.g. ``github``)."""

    @abstractmethod
    async def list_projects(self) -> list[PMProject]:
        """Projects visible to the configured credentials."""

    @abstractmethod
    async def list_issues_paginated(self, project: str, cursor: str | None = None) -> IssuePage:
        """One page of issues for a PM project id."""

    async def batch_sync(self, entries: list[TimeEntry]) -> PMSyncReport:
        """Push entries one by one; failures are recorded and the batch continues."""
        report = PMSyncReport(total_entries=len(entries))
        for entry in entries:
            try:
                await self.add_time_entry(entry)
                report.record_success()
            except PMApiError as e:
                log_error(
                    logger,
                    "Time entry push failed",
                    error=e,
                    extra={"system": self.system_name(), "work_item_id": entry.work_item_id},
                )
                report.record_failure(f"{entry.work_item_id}: {e}")
        return report
