"""Project-management system integrations."""

from toki.integrations.base import (
    IssuePage,
    PMApiError,
    PMIssue,
    PMProject,
    PMSyncReport,
    ProjectManagementSystem,
    TimeEntry,
    TimeEntryResult,
    WorkItemDetails,
    format_duration_compact,
)

__all__ = [
    "IssuePage",
    "PMApiError",
    "PMIssue",
    "PMProject",
    "PMSyncReport",
    "ProjectManagementSystem",
    "TimeEntry",
    "TimeEntryResult",
    "WorkItemDetails",
    "format_duration_compact",
]
