"""Pytest configuration."""

from datetime import UTC, datetime

import pytest

from toki.core.config import get_settings
from toki.db.session import sqlite_url
from toki.db.store import Store
from toki.integrations.base import (
    IssuePage,
    PMApiError,
    PMProject,
    ProjectManagementSystem,
    TimeEntry,
    TimeEntryResult,
    WorkItemDetails,
)


@pytest.fixture(autouse=True)
def mock_settings(monkeypatch, tmp_path):
    """Point every test at its own data dir and fresh settings."""
    monkeypatch.setenv("TOKI_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("TOKI_TICK_INTERVAL_SECONDS", "5")
    monkeypatch.delenv("TOKI_ENCRYPTION_KEY", raising=False)
    monkeypatch.delenv("TOKI_EMBEDDING_API_KEY", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def store(tmp_path):
    """Initialized store on a temporary SQLite file."""
    store = Store(sqlite_url(tmp_path / "test.db"))
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def base_time():
    """A fixed mid-day UTC instant."""
    return datetime(2026, 3, 10, 12, 0, 0, tzinfo=UTC)


class FakePMClient(ProjectManagementSystem):
    """In-memory PM system recording every call."""

    def __init__(self, name: str = "github", projects=None, pages=None, fail_on: set[str] | None = None):
        self.name = name
        self.projects = list(projects or [])
        self.pages = dict(pages or {})
        self.fail_on = set(fail_on or ())
        self.entries: list[TimeEntry] = []
        self.page_requests: list[tuple[str, str | None]] = []

    def system_name(self) -> str:
        return self.name

    async def fetch_work_item(self, work_item_id: str) -> WorkItemDetails:
        return WorkItemDetails(id=work_item_id, title=f"Issue {work_item_id}")

    async def add_time_entry(self, entry: TimeEntry) -> TimeEntryResult:
        if entry.work_item_id in self.fail_on:
            raise PMApiError(f"rejected {entry.work_item_id}", status_code=422)
        self.entries.append(entry)
        number = len(self.entries)
        return TimeEntryResult(
            target_issue_id=str(number),
            target_issue_number=number,
            target_issue_url=f"https://example.test/issues/{number}",
        )

    async def validate_credentials(self) -> bool:
        return True

    async def list_projects(self) -> list[PMProject]:
        return self.projects

    async def list_issues_paginated(self, project: str, cursor: str | None = None) -> IssuePage:
        self.page_requests.append((project, cursor))
        if project in self.fail_on:
            raise PMApiError(f"cannot list {project}", status_code=500)
        return self.pages.get((project, cursor), IssuePage())


@pytest.fixture
def pm_client():
    return FakePMClient()


@pytest.fixture
def pm_client_factory():
    """Build a FakePMClient with custom projects, pages or failures."""
    return FakePMClient
