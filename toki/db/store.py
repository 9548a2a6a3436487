"""Typed async operations over the SQLite store.

``Store`` is the only gateway to persistent state. Each public method runs in
its own short transaction; failures surface as ``StoreError`` carrying the
underlying cause and are never retried here.
"""

import uuid
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, desc, func, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from toki.core.config import ConfigurationError, Settings, get_settings
from toki.core.datetime_utils import seconds_between, utc_date_str, utc_now
from toki.core.logging import get_logger
from toki.db.migrations import run_migrations
from toki.db.models import (
    ActivitySpan,
    Category,
    ClassificationRule,
    IntegrationConfig,
    IssueCandidate,
    Project,
    ProjectTime,
    Session,
    SyncedIssue,
    TimeBlock,
    UserSettings,
    WorkItem,
)
from toki.db.models.user_settings import DEFAULT_URL_WHITELIST, SETTINGS_ROW_ID
from toki.db.models.work_item import INACTIVE_ISSUE_STATUSES
from toki.db.session import create_session_maker, create_store_engine, sqlcipher_version, sqlite_url

logger = get_logger(__name__)

_SETTINGS_FIELDS = frozenset({
    "pause_tracking",
    "excluded_apps",
    "idle_threshold_seconds",
    "enable_work_item_tracking",
    "capture_window_title",
    "capture_browser_url",
    "url_whitelist",
    "work_hours_start",
    "work_hours_end",
    "session_end_idle_seconds",
})


class StoreError(Exception):
    """A store operation failed; ``cause`` holds the underlying exception."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


class Store:
    """Connection wrapper exposing typed store operations."""

    def __init__(self, url: str, encryption_key: str | None = None) -> None:
        self.url = url
        self._encryption_key = encryption_key
        # Set by initialize once the driver is known to honour the key
        self.encryption_enabled = False
        self._engine: AsyncEngine = create_store_engine(url, encryption_key=encryption_key)
        self._session_maker: async_sessionmaker[AsyncSession] = create_session_maker(self._engine)

    @classmethod
    async def open(cls, settings: Settings | None = None) -> "Store":
        """Open (creating if needed) the database in the configured data dir."""
        settings = settings or get_settings()
        try:
            settings.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Cannot create data directory {settings.data_dir}", e) from e

        store = cls(sqlite_url(settings.database_path), encryption_key=settings.resolve_encryption_key())
        try:
            await store.initialize()
        except StoreError:
            await store.close()
            raise
        logger.info(
            "Store opened",
            extra={
                "database_path": str(settings.database_path),
                "encryption": store.encryption_enabled,
            },
        )
        return store

    async def initialize(self) -> None:
        """Create/evolve the schema and seed defaults. Idempotent.

        Raises StoreError when a key is configured but the SQLite driver cannot
        encrypt, instead of writing the database in plaintext.
        """
        if self._encryption_key:
            await self._require_encryption()
        try:
            await run_migrations(self._engine)
        except (SQLAlchemyError, OSError) as e:
            raise StoreError("Schema initialization failed", e) from e

    async def _require_encryption(self) -> None:
        try:
            version = await sqlcipher_version(self._engine)
        except (SQLAlchemyError, OSError) as e:
            raise StoreError("Cannot check database encryption support", e) from e
        if version is None:
            raise StoreError(
                "An encryption key is configured but the SQLite driver has no SQLCipher support; "
                "refusing to store data unencrypted"
            )
        self.encryption_enabled = True
        logger.debug("SQLCipher available", extra={"cipher_version": version})

    async def close(self) -> None:
        await self._engine.dispose()

    async def __aenter__(self) -> "Store":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    yield session
        except StoreError:
            raise
        except (SQLAlchemyError, OSError) as e:
            raise StoreError(f"{operation} failed", e) from e

    # ===========================================
    # PROJECTS
    # ===========================================

    async def get_or_create_project(self, name: str, path: str, now: datetime | None = None) -> Project:
        """Upsert a project by path and touch ``last_active``."""
        now = now or utc_now()
        stmt = (
            sqlite_insert(Project)
            .values(id=uuid.uuid4(), name=name, path=path, created_at=now, last_active=now)
            .on_conflict_do_update(index_elements=["path"], set_={"last_active": now})
            .returning(Project)
        )
        async with self._transaction("get_or_create_project") as session:
            result = await session.scalars(stmt, execution_options={"populate_existing": True})
            return result.one()

    async def get_project(self, project_id: uuid.UUID) -> Project | None:
        async with self._transaction("get_project") as session:
            return await session.get(Project, project_id)

    async def get_project_by_path(self, path: str) -> Project | None:
        async with self._transaction("get_project_by_path") as session:
            result = await session.scalars(select(Project).where(Project.path == path))
            return result.first()

    async def get_project_by_name(self, name: str) -> Project | None:
        async with self._transaction("get_project_by_name") as session:
            result = await session.scalars(
                select(Project).where(func.lower(Project.name) == name.lower()).order_by(desc(Project.last_active))
            )
            return result.first()

    async def list_projects(self) -> list[Project]:
        async with self._transaction("list_projects") as session:
            result = await session.scalars(select(Project).order_by(desc(Project.last_active)))
            return list(result.all())

    async def list_linked_projects(self) -> list[Project]:
        async with self._transaction("list_linked_projects") as session:
            result = await session.scalars(
                select(Project).where(Project.pm_project_id.is_not(None)).order_by(Project.name)
            )
            return list(result.all())

    async def link_project_to_pm(
        self,
        project_id: uuid.UUID,
        pm_system: str,
        pm_project_id: str,
        pm_workspace: str | None = None,
    ) -> bool:
        """Set the PM linkage triple in one statement. Returns False if the project is unknown."""
        if not pm_system or not pm_project_id:
            raise ValueError("pm_system and pm_project_id are required; use unlink_project_from_pm to clear")
        async with self._transaction("link_project_to_pm") as session:
            result = await session.execute(
                update(Project)
                .where(Project.id == project_id)
                .values(pm_system=pm_system, pm_project_id=pm_project_id, pm_workspace=pm_workspace)
            )
            return result.rowcount > 0

    async def unlink_project_from_pm(self, project_id: uuid.UUID) -> bool:
        async with self._transaction("unlink_project_from_pm") as session:
            result = await session.execute(
                update(Project)
                .where(Project.id == project_id)
                .values(pm_system=None, pm_project_id=None, pm_workspace=None)
            )
            return result.rowcount > 0

    async def touch_project(self, project_id: uuid.UUID, when: datetime | None = None) -> None:
        async with self._transaction("touch_project") as session:
            await session.execute(
                update(Project).where(Project.id == project_id).values(last_active=when or utc_now())
            )

    # ===========================================
    # PROJECT TIME
    # ===========================================

    async def add_project_time(self, project_id: uuid.UUID, seconds: int, now: datetime | None = None) -> None:
        """Accrue seconds to today's (UTC) row for the project and touch it."""
        if seconds < 0:
            raise ValueError("seconds must be non-negative")
        now = now or utc_now()
        stmt = sqlite_insert(ProjectTime).values(
            id=uuid.uuid4(),
            project_id=project_id,
            date=utc_date_str(now),
            duration_seconds=seconds,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["project_id", "date"],
            set_={
                "duration_seconds": ProjectTime.duration_seconds + stmt.excluded.duration_seconds,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        async with self._transaction("add_project_time") as session:
            await session.execute(stmt)
            await session.execute(update(Project).where(Project.id == project_id).values(last_active=now))

    async def get_project_time_for_date(self, date: str) -> list[tuple[Project, int]]:
        """Projects with time on a UTC date, most time first."""
        async with self._transaction("get_project_time_for_date") as session:
            result = await session.execute(
                select(Project, ProjectTime.duration_seconds)
                .join(ProjectTime, ProjectTime.project_id == Project.id)
                .where(ProjectTime.date == date)
                .order_by(desc(ProjectTime.duration_seconds))
            )
            return [(row[0], int(row[1])) for row in result.all()]

    async def get_project_time_range(self, start_date: str, end_date: str) -> list[tuple[Project, int]]:
        """Per-project totals over an inclusive range of UTC dates."""
        total = func.sum(ProjectTime.duration_seconds).label("total")
        async with self._transaction("get_project_time_range") as session:
            result = await session.execute(
                select(Project, total)
                .join(ProjectTime, ProjectTime.project_id == Project.id)
                .where(ProjectTime.date >= start_date, ProjectTime.date <= end_date)
                .group_by(Project.id)
                .order_by(desc(total))
            )
            return [(row[0], int(row[1] or 0)) for row in result.all()]

    # ===========================================
    # ACTIVITY SPANS
    # ===========================================

    async def create_activity_span(
        self,
        app_bundle_id: str,
        category: str,
        start_time: datetime,
        project_id: uuid.UUID | None = None,
        work_item_id: uuid.UUID | None = None,
        session_id: uuid.UUID | None = None,
        context: dict[str, Any] | None = None,
    ) -> ActivitySpan:
        span = ActivitySpan(
            id=uuid.uuid4(),
            app_bundle_id=app_bundle_id,
            category=category,
            start_time=start_time,
            end_time=None,
            duration_seconds=0,
            project_id=project_id,
            work_item_id=work_item_id,
            session_id=session_id,
            context=context,
            created_at=utc_now(),
        )
        async with self._transaction("create_activity_span") as session:
            session.add(span)
        return span

    async def finalize_activity_span(self, span_id: uuid.UUID, end_time: datetime) -> ActivitySpan | None:
        """Close a span and set its duration. Returns None when the span does not exist.

        Finalizing an already-closed span is a no-op.
        """
        async with self._transaction("finalize_activity_span") as session:
            span = await session.get(ActivitySpan, span_id)
            if span is None:
                return None
            if span.end_time is not None:
                return span
            if end_time < span.start_time:
                end_time = span.start_time
            span.end_time = end_time
            span.duration_seconds = seconds_between(span.start_time, end_time)
            return span

    async def get_activity_span(self, span_id: uuid.UUID) -> ActivitySpan | None:
        async with self._transaction("get_activity_span") as session:
            return await session.get(ActivitySpan, span_id)

    async def get_ongoing_span(self) -> ActivitySpan | None:
        async with self._transaction("get_ongoing_span") as session:
            result = await session.scalars(
                select(ActivitySpan)
                .where(ActivitySpan.end_time.is_(None))
                .order_by(desc(ActivitySpan.start_time))
                .limit(1)
            )
            return result.first()

    async def count_open_spans(self) -> int:
        async with self._transaction("count_open_spans") as session:
            result = await session.execute(
                select(func.count(ActivitySpan.id)).where(ActivitySpan.end_time.is_(None))
            )
            return int(result.scalar() or 0)

    async def close_dangling_spans(self) -> int:
        """Close spans left open by a crashed daemon at their start time."""
        async with self._transaction("close_dangling_spans") as session:
            result = await session.scalars(select(ActivitySpan).where(ActivitySpan.end_time.is_(None)))
            spans = list(result.all())
            for span in spans:
                span.end_time = span.start_time
                span.duration_seconds = 0
        if spans:
            logger.warning("Closed dangling activity spans", extra={"count": len(spans)})
        return len(spans)

    async def get_activity_spans(self, start: datetime, end: datetime) -> list[ActivitySpan]:
        """Spans starting in [start, end), oldest first."""
        async with self._transaction("get_activity_spans") as session:
            result = await session.scalars(
                select(ActivitySpan)
                .where(ActivitySpan.start_time >= start, ActivitySpan.start_time < end)
                .order_by(ActivitySpan.start_time)
            )
            return list(result.all())

    async def get_activity_spans_by_project(
        self,
        project_id: uuid.UUID,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[ActivitySpan]:
        conditions = [ActivitySpan.project_id == project_id]
        if start is not None:
            conditions.append(ActivitySpan.start_time >= start)
        if end is not None:
            conditions.append(ActivitySpan.start_time < end)
        async with self._transaction("get_activity_spans_by_project") as session:
            result = await session.scalars(
                select(ActivitySpan).where(*conditions).order_by(ActivitySpan.start_time)
            )
            return list(result.all())

    async def get_activity_spans_by_session(self, session_id: uuid.UUID) -> list[ActivitySpan]:
        async with self._transaction("get_activity_spans_by_session") as session:
            result = await session.scalars(
                select(ActivitySpan).where(ActivitySpan.session_id == session_id).order_by(ActivitySpan.start_time)
            )
            return list(result.all())

    async def get_activity_spans_by_work_item(self, work_item_id: uuid.UUID) -> list[ActivitySpan]:
        async with self._transaction("get_activity_spans_by_work_item") as session:
            result = await session.scalars(
                select(ActivitySpan)
                .where(ActivitySpan.work_item_id == work_item_id)
                .order_by(ActivitySpan.start_time)
            )
            return list(result.all())

    async def update_activity_span_context(self, span_id: uuid.UUID, context: dict[str, Any]) -> None:
        """Merge keys into a span's context."""
        async with self._transaction("update_activity_span_context") as session:
            span = await session.get(ActivitySpan, span_id)
            if span is None:
                raise StoreError(f"Activity span {span_id} not found")
            span.context = {**(span.context or {}), **context}

    async def add_tag_to_span(self, span_id: uuid.UUID, tag: str) -> None:
        async with self._transaction("add_tag_to_span") as session:
            span = await session.get(ActivitySpan, span_id)
            if span is None:
                raise StoreError(f"Activity span {span_id} not found")
            context = dict(span.context or {})
            tags = list(context.get("tags") or [])
            if tag not in tags:
                tags.append(tag)
            context["tags"] = tags
            span.context = context

    async def get_category_totals(self, start: datetime, end: datetime) -> dict[str, int]:
        """Finalized seconds per category for spans starting in [start, end)."""
        async with self._transaction("get_category_totals") as session:
            result = await session.execute(
                select(ActivitySpan.category, func.sum(ActivitySpan.duration_seconds))
                .where(
                    ActivitySpan.start_time >= start,
                    ActivitySpan.start_time < end,
                    ActivitySpan.end_time.is_not(None),
                )
                .group_by(ActivitySpan.category)
            )
            return {row[0]: int(row[1] or 0) for row in result.all()}

    async def get_app_totals(self, start: datetime, end: datetime, limit: int = 10) -> list[tuple[str, int]]:
        """Most-used applications by finalized seconds."""
        total = func.sum(ActivitySpan.duration_seconds).label("total")
        async with self._transaction("get_app_totals") as session:
            result = await session.execute(
                select(ActivitySpan.app_bundle_id, total)
                .where(
                    ActivitySpan.start_time >= start,
                    ActivitySpan.start_time < end,
                    ActivitySpan.end_time.is_not(None),
                )
                .group_by(ActivitySpan.app_bundle_id)
                .order_by(desc(total))
                .limit(limit)
            )
            return [(row[0], int(row[1] or 0)) for row in result.all()]

    # ===========================================
    # SESSIONS
    # ===========================================

    async def create_session(self, start_time: datetime) -> Session:
        work_session = Session(
            id=uuid.uuid4(),
            start_time=start_time,
            end_time=None,
            total_active_seconds=0,
            idle_seconds=0,
            interruption_count=0,
            categories=[],
            work_item_ids=[],
            created_at=utc_now(),
        )
        async with self._transaction("create_session") as session:
            session.add(work_session)
        return work_session

    async def update_session_stats(
        self,
        session_id: uuid.UUID,
        total_active_seconds: int,
        idle_seconds: int,
        interruption_count: int,
    ) -> None:
        async with self._transaction("update_session_stats") as session:
            await session.execute(
                update(Session)
                .where(Session.id == session_id)
                .values(
                    total_active_seconds=total_active_seconds,
                    idle_seconds=idle_seconds,
                    interruption_count=interruption_count,
                )
            )

    async def finalize_session(self, session_id: uuid.UUID, end_time: datetime) -> Session | None:
        """Close a session, collecting categories and work items from its spans."""
        async with self._transaction("finalize_session") as session:
            work_session = await session.get(Session, session_id)
            if work_session is None:
                return None
            if work_session.end_time is not None:
                return work_session

            result = await session.scalars(
                select(ActivitySpan).where(ActivitySpan.session_id == session_id).order_by(ActivitySpan.start_time)
            )
            categories: list[str] = []
            work_item_ids: list[uuid.UUID] = []
            for span in result.all():
                if span.category not in categories:
                    categories.append(span.category)
                if span.work_item_id is not None and span.work_item_id not in work_item_ids:
                    work_item_ids.append(span.work_item_id)

            work_session.end_time = max(end_time, work_session.start_time)
            work_session.categories = categories
            work_session.work_item_ids = work_item_ids
            return work_session

    async def get_session(self, session_id: uuid.UUID) -> Session | None:
        async with self._transaction("get_session") as session:
            return await session.get(Session, session_id)

    async def get_open_sessions(self) -> list[Session]:
        async with self._transaction("get_open_sessions") as session:
            result = await session.scalars(select(Session).where(Session.end_time.is_(None)))
            return list(result.all())

    async def close_dangling_sessions(self) -> int:
        """Close sessions left open by a crash at start + recorded active/idle time."""
        async with self._transaction("close_dangling_sessions") as session:
            result = await session.scalars(select(Session).where(Session.end_time.is_(None)))
            sessions = list(result.all())
            for work_session in sessions:
                elapsed = work_session.total_active_seconds + work_session.idle_seconds
                work_session.end_time = work_session.start_time + timedelta(seconds=elapsed)
        if sessions:
            logger.warning("Closed dangling sessions", extra={"count": len(sessions)})
        return len(sessions)

    async def get_sessions(self, start: datetime, end: datetime) -> list[Session]:
        async with self._transaction("get_sessions") as session:
            result = await session.scalars(
                select(Session)
                .where(Session.start_time >= start, Session.start_time < end)
                .order_by(Session.start_time)
            )
            return list(result.all())

    # ===========================================
    # WORK ITEMS
    # ===========================================

    async def get_or_create_work_item(
        self,
        external_id: str,
        external_system: str,
        title: str | None = None,
        project: str | None = None,
        workspace: str | None = None,
    ) -> WorkItem:
        stmt = (
            sqlite_insert(WorkItem)
            .values(
                id=uuid.uuid4(),
                external_id=external_id,
                external_system=external_system,
                title=title,
                project=project,
                workspace=workspace,
                created_at=utc_now(),
            )
            .on_conflict_do_nothing(index_elements=["external_id", "external_system"])
        )
        async with self._transaction("get_or_create_work_item") as session:
            await session.execute(stmt)
            result = await session.scalars(
                select(WorkItem).where(
                    WorkItem.external_id == external_id,
                    WorkItem.external_system == external_system,
                )
            )
            return result.one()

    async def get_work_item(self, work_item_id: uuid.UUID) -> WorkItem | None:
        async with self._transaction("get_work_item") as session:
            return await session.get(WorkItem, work_item_id)

    async def get_work_items(self, work_item_ids: Sequence[uuid.UUID]) -> list[WorkItem]:
        """Work items in the order of the given ids; unknown ids are skipped."""
        if not work_item_ids:
            return []
        async with self._transaction("get_work_items") as session:
            result = await session.scalars(select(WorkItem).where(WorkItem.id.in_(list(work_item_ids))))
            by_id = {item.id: item for item in result.all()}
        return [by_id[i] for i in work_item_ids if i in by_id]

    async def get_work_item_by_external_id(
        self,
        external_id: str,
        external_system: str | None = None,
    ) -> WorkItem | None:
        conditions = [func.upper(WorkItem.external_id) == external_id.upper()]
        if external_system is not None:
            conditions.append(WorkItem.external_system == external_system)
        async with self._transaction("get_work_item_by_external_id") as session:
            result = await session.scalars(select(WorkItem).where(*conditions).order_by(WorkItem.created_at))
            return result.first()

    # ===========================================
    # ISSUE CANDIDATES
    # ===========================================

    async def upsert_issue_candidate(self, candidate: IssueCandidate) -> IssueCandidate:
        """Insert or update on (external_id, external_system).

        Existing rows keep their id and created_at; embedding, complexity and
        estimate are only replaced when the incoming value is set.
        """
        now = utc_now()
        values = {
            "id": candidate.id or uuid.uuid4(),
            "project_id": candidate.project_id,
            "external_id": candidate.external_id,
            "external_system": candidate.external_system,
            "pm_project_id": candidate.pm_project_id,
            "source_external_ref": candidate.source_external_ref,
            "title": candidate.title,
            "description": candidate.description,
            "status": candidate.status or "backlog",
            "labels": list(candidate.labels or []),
            "assignee": candidate.assignee,
            "embedding": candidate.embedding,
            "complexity": candidate.complexity,
            "estimated_seconds": candidate.estimated_seconds,
            "created_at": candidate.created_at or now,
            "last_synced": candidate.last_synced or now,
        }
        stmt = sqlite_insert(IssueCandidate).values(**values)
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=["external_id", "external_system"],
            set_={
                "project_id": excluded.project_id,
                "pm_project_id": excluded.pm_project_id,
                "source_external_ref": func.coalesce(
                    excluded.source_external_ref, IssueCandidate.source_external_ref
                ),
                "title": excluded.title,
                "description": excluded.description,
                "status": excluded.status,
                "labels": excluded.labels,
                "assignee": excluded.assignee,
                "embedding": func.coalesce(excluded.embedding, IssueCandidate.embedding),
                "complexity": func.coalesce(excluded.complexity, IssueCandidate.complexity),
                "estimated_seconds": func.coalesce(excluded.estimated_seconds, IssueCandidate.estimated_seconds),
                "last_synced": excluded.last_synced,
            },
        ).returning(IssueCandidate)
        async with self._transaction("upsert_issue_candidate") as session:
            result = await session.scalars(stmt, execution_options={"populate_existing": True})
            return result.one()

    async def get_issue_candidate(self, external_id: str, external_system: str) -> IssueCandidate | None:
        async with self._transaction("get_issue_candidate") as session:
            result = await session.scalars(
                select(IssueCandidate).where(
                    IssueCandidate.external_id == external_id,
                    IssueCandidate.external_system == external_system,
                )
            )
            return result.first()

    async def get_issue_candidate_by_id(self, candidate_id: uuid.UUID) -> IssueCandidate | None:
        async with self._transaction("get_issue_candidate_by_id") as session:
            return await session.get(IssueCandidate, candidate_id)

    async def get_issue_candidate_by_external_id(self, external_id: str) -> IssueCandidate | None:
        """Case-insensitive lookup across all systems."""
        async with self._transaction("get_issue_candidate_by_external_id") as session:
            result = await session.scalars(
                select(IssueCandidate)
                .where(func.upper(IssueCandidate.external_id) == external_id.upper())
                .order_by(desc(IssueCandidate.last_synced))
            )
            return result.first()

    async def get_issue_candidates_for_project(self, project_id: uuid.UUID) -> list[IssueCandidate]:
        async with self._transaction("get_issue_candidates_for_project") as session:
            result = await session.scalars(
                select(IssueCandidate)
                .where(IssueCandidate.project_id == project_id)
                .order_by(IssueCandidate.external_id)
            )
            return list(result.all())

    async def get_active_issue_candidates(self, project_id: uuid.UUID) -> list[IssueCandidate]:
        async with self._transaction("get_active_issue_candidates") as session:
            result = await session.scalars(
                select(IssueCandidate)
                .where(
                    IssueCandidate.project_id == project_id,
                    func.lower(IssueCandidate.status).not_in(sorted(INACTIVE_ISSUE_STATUSES)),
                )
                .order_by(IssueCandidate.external_id)
            )
            return list(result.all())

    async def get_issue_candidates_with_embeddings(self) -> list[IssueCandidate]:
        async with self._transaction("get_issue_candidates_with_embeddings") as session:
            result = await session.scalars(
                select(IssueCandidate).where(IssueCandidate.embedding.is_not(None))
            )
            return [c for c in result.all() if c.embedding is not None]

    async def update_issue_embedding(self, candidate_id: uuid.UUID, embedding: list[float]) -> None:
        async with self._transaction("update_issue_embedding") as session:
            await session.execute(
                update(IssueCandidate).where(IssueCandidate.id == candidate_id).values(embedding=embedding)
            )

    async def update_issue_complexity(self, candidate_id: uuid.UUID, complexity: str) -> None:
        async with self._transaction("update_issue_complexity") as session:
            await session.execute(
                update(IssueCandidate).where(IssueCandidate.id == candidate_id).values(complexity=complexity)
            )

    async def update_issue_estimate(self, candidate_id: uuid.UUID, estimated_seconds: int) -> None:
        async with self._transaction("update_issue_estimate") as session:
            await session.execute(
                update(IssueCandidate)
                .where(IssueCandidate.id == candidate_id)
                .values(estimated_seconds=estimated_seconds)
            )

    async def get_issue_time_stats(self) -> dict[str, int]:
        """Total finalized span seconds per work item external id."""
        async with self._transaction("get_issue_time_stats") as session:
            result = await session.execute(
                select(func.upper(WorkItem.external_id), func.sum(ActivitySpan.duration_seconds))
                .join(ActivitySpan, ActivitySpan.work_item_id == WorkItem.id)
                .where(ActivitySpan.end_time.is_not(None))
                .group_by(func.upper(WorkItem.external_id))
            )
            return {row[0]: int(row[1] or 0) for row in result.all() if row[1]}

    # ===========================================
    # TIME BLOCKS
    # ===========================================

    async def save_time_block(self, block: TimeBlock) -> TimeBlock:
        """Insert or update a block after checking its invariants."""
        if block.end_time <= block.start_time:
            raise ValueError("TimeBlock end_time must be after start_time")
        if block.synced and not block.confirmed:
            raise ValueError("TimeBlock cannot be synced without being confirmed")
        if block.id is None:
            block.id = uuid.uuid4()
        if block.created_at is None:
            block.created_at = utc_now()
        async with self._transaction("save_time_block") as session:
            return await session.merge(block)

    async def get_time_block(self, block_id: uuid.UUID) -> TimeBlock | None:
        async with self._transaction("get_time_block") as session:
            return await session.get(TimeBlock, block_id)

    async def get_time_blocks(self, start: datetime, end: datetime) -> list[TimeBlock]:
        async with self._transaction("get_time_blocks") as session:
            result = await session.scalars(
                select(TimeBlock)
                .where(TimeBlock.start_time >= start, TimeBlock.start_time < end)
                .order_by(TimeBlock.start_time)
            )
            return list(result.all())

    async def get_confirmed_unsynced_blocks(self) -> list[TimeBlock]:
        """Blocks eligible for push."""
        async with self._transaction("get_confirmed_unsynced_blocks") as session:
            result = await session.scalars(
                select(TimeBlock)
                .where(TimeBlock.confirmed.is_(True), TimeBlock.synced.is_(False))
                .order_by(TimeBlock.start_time)
            )
            return list(result.all())

    async def confirm_time_block(self, block_id: uuid.UUID) -> bool:
        async with self._transaction("confirm_time_block") as session:
            result = await session.execute(
                update(TimeBlock).where(TimeBlock.id == block_id).values(confirmed=True)
            )
            return result.rowcount > 0

    async def mark_time_block_synced(self, block_id: uuid.UUID) -> None:
        async with self._transaction("mark_time_block_synced") as session:
            block = await session.get(TimeBlock, block_id)
            if block is None:
                raise StoreError(f"Time block {block_id} not found")
            if not block.confirmed:
                raise StoreError(f"Time block {block_id} is not confirmed")
            block.synced = True

    async def delete_time_block(self, block_id: uuid.UUID) -> bool:
        async with self._transaction("delete_time_block") as session:
            result = await session.execute(delete(TimeBlock).where(TimeBlock.id == block_id))
            return result.rowcount > 0

    # ===========================================
    # SYNC LEDGER
    # ===========================================

    async def upsert_synced_issue(
        self,
        source_external_ref: str,
        target_system: str,
        target_project: str,
        target_issue_id: str | None = None,
        target_issue_number: int | None = None,
        target_issue_url: str | None = None,
        title: str | None = None,
        source_system: str | None = None,
    ) -> SyncedIssue:
        now = utc_now()
        stmt = sqlite_insert(SyncedIssue).values(
            id=uuid.uuid4(),
            source_external_ref=source_external_ref,
            source_system=source_system,
            target_system=target_system,
            target_project=target_project,
            target_issue_id=target_issue_id,
            target_issue_number=target_issue_number,
            target_issue_url=target_issue_url,
            title=title,
            created_at=now,
            updated_at=now,
        )
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=["source_external_ref", "target_system", "target_project"],
            set_={
                "target_issue_id": excluded.target_issue_id,
                "target_issue_number": excluded.target_issue_number,
                "target_issue_url": excluded.target_issue_url,
                "title": func.coalesce(excluded.title, SyncedIssue.title),
                "updated_at": excluded.updated_at,
            },
        ).returning(SyncedIssue)
        async with self._transaction("upsert_synced_issue") as session:
            result = await session.scalars(stmt, execution_options={"populate_existing": True})
            return result.one()

    async def get_synced_issue(
        self,
        source_external_ref: str,
        target_system: str,
        target_project: str,
    ) -> SyncedIssue | None:
        async with self._transaction("get_synced_issue") as session:
            result = await session.scalars(
                select(SyncedIssue).where(
                    SyncedIssue.source_external_ref == source_external_ref,
                    SyncedIssue.target_system == target_system,
                    SyncedIssue.target_project == target_project,
                )
            )
            return result.first()

    async def delete_synced_issue(self, source_external_ref: str, target_system: str, target_project: str) -> bool:
        async with self._transaction("delete_synced_issue") as session:
            result = await session.execute(
                delete(SyncedIssue).where(
                    SyncedIssue.source_external_ref == source_external_ref,
                    SyncedIssue.target_system == target_system,
                    SyncedIssue.target_project == target_project,
                )
            )
            return result.rowcount > 0

    async def is_synced(self, source_external_ref: str, target_system: str, target_project: str) -> bool:
        return await self.get_synced_issue(source_external_ref, target_system, target_project) is not None

    async def get_synced_issues_for_target(self, target_system: str, target_project: str) -> list[SyncedIssue]:
        async with self._transaction("get_synced_issues_for_target") as session:
            result = await session.scalars(
                select(SyncedIssue)
                .where(SyncedIssue.target_system == target_system, SyncedIssue.target_project == target_project)
                .order_by(SyncedIssue.created_at)
            )
            return list(result.all())

    # ===========================================
    # CLASSIFICATION
    # ===========================================

    async def list_categories(self) -> list[Category]:
        async with self._transaction("list_categories") as session:
            result = await session.scalars(select(Category).order_by(Category.position, Category.name))
            return list(result.all())

    async def list_classification_rules(self) -> list[ClassificationRule]:
        """Rules in evaluation order: priority desc, hit_count desc, oldest first."""
        async with self._transaction("list_classification_rules") as session:
            result = await session.scalars(
                select(ClassificationRule).order_by(
                    desc(ClassificationRule.priority),
                    desc(ClassificationRule.hit_count),
                    ClassificationRule.created_at,
                )
            )
            return list(result.all())

    async def upsert_classification_rule(
        self,
        pattern: str,
        pattern_type: str,
        category: str,
        priority: int = 100,
    ) -> ClassificationRule:
        stmt = sqlite_insert(ClassificationRule).values(
            id=uuid.uuid4(),
            pattern=pattern,
            pattern_type=str(pattern_type),
            category=category,
            priority=priority,
            hit_count=0,
            last_hit=None,
            created_at=utc_now(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["pattern", "pattern_type"],
            set_={"category": stmt.excluded.category, "priority": stmt.excluded.priority},
        ).returning(ClassificationRule)
        async with self._transaction("upsert_classification_rule") as session:
            result = await session.scalars(stmt, execution_options={"populate_existing": True})
            return result.one()

    async def record_rule_hit(self, rule_id: uuid.UUID, when: datetime | None = None) -> None:
        async with self._transaction("record_rule_hit") as session:
            await session.execute(
                update(ClassificationRule)
                .where(ClassificationRule.id == rule_id)
                .values(hit_count=ClassificationRule.hit_count + 1, last_hit=when or utc_now())
            )

    async def delete_classification_rule(self, rule_id: uuid.UUID) -> bool:
        async with self._transaction("delete_classification_rule") as session:
            result = await session.execute(delete(ClassificationRule).where(ClassificationRule.id == rule_id))
            return result.rowcount > 0

    # ===========================================
    # SETTINGS
    # ===========================================

    async def get_settings(self) -> UserSettings:
        async with self._transaction("get_settings") as session:
            settings = await session.get(UserSettings, SETTINGS_ROW_ID)
            if settings is None:
                settings = UserSettings(
                    id=SETTINGS_ROW_ID,
                    pause_tracking=False,
                    excluded_apps=[],
                    idle_threshold_seconds=300,
                    enable_work_item_tracking=True,
                    capture_window_title=True,
                    capture_browser_url=False,
                    url_whitelist=list(DEFAULT_URL_WHITELIST),
                    work_hours_start=9,
                    work_hours_end=18,
                    session_end_idle_seconds=900,
                    updated_at=utc_now(),
                )
                session.add(settings)
            return settings

    async def update_settings(self, **fields: Any) -> UserSettings:
        unknown = set(fields) - _SETTINGS_FIELDS
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        await self.get_settings()
        async with self._transaction("update_settings") as session:
            await session.execute(
                update(UserSettings)
                .where(UserSettings.id == SETTINGS_ROW_ID)
                .values(**fields, updated_at=utc_now())
            )
            refreshed = await session.get(UserSettings, SETTINGS_ROW_ID, populate_existing=True)
            if refreshed is None:
                raise StoreError("Settings row is missing")
            return refreshed

    # ===========================================
    # INTEGRATIONS
    # ===========================================

    async def get_integration_config(self, system_type: str) -> IntegrationConfig | None:
        async with self._transaction("get_integration_config") as session:
            result = await session.scalars(
                select(IntegrationConfig).where(IntegrationConfig.system_type == system_type)
            )
            return result.first()

    async def require_integration_config(self, system_type: str) -> IntegrationConfig:
        """Integration credentials, or a ConfigurationError telling the user what is missing."""
        config = await self.get_integration_config(system_type)
        if config is None or not config.api_key:
            raise ConfigurationError(
                f"No credentials configured for '{system_type}'. Add an integration config first."
            )
        return config

    async def upsert_integration_config(
        self,
        system_type: str,
        api_url: str,
        api_key: str,
        workspace_slug: str | None = None,
        project_id: str | None = None,
    ) -> IntegrationConfig:
        now = utc_now()
        stmt = sqlite_insert(IntegrationConfig).values(
            id=uuid.uuid4(),
            system_type=system_type,
            api_url=api_url,
            api_key=api_key,
            workspace_slug=workspace_slug,
            project_id=project_id,
            created_at=now,
            updated_at=now,
        )
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=["system_type"],
            set_={
                "api_url": excluded.api_url,
                "api_key": excluded.api_key,
                "workspace_slug": excluded.workspace_slug,
                "project_id": excluded.project_id,
                "updated_at": excluded.updated_at,
            },
        ).returning(IntegrationConfig)
        async with self._transaction("upsert_integration_config") as session:
            result = await session.scalars(stmt, execution_options={"populate_existing": True})
            return result.one()
