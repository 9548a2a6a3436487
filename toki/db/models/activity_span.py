"""Activity span model."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from toki.core.datetime_utils import utc_now
from toki.db.base import Base
from toki.db.types import JSONType, RFC3339DateTime, TextUUID


class ActivitySpan(Base):
    """A continuous interval of foreground use of one application."""

    __tablename__ = "activity_spans"

    id: Mapped[uuid.UUID] = mapped_column(TextUUID(), primary_key=True, default=uuid.uuid4)
    app_bundle_id: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    start_time: Mapped[datetime] = mapped_column(RFC3339DateTime(), nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(RFC3339DateTime())
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    project_id: Mapped[uuid.UUID | None] = mapped_column(TextUUID(), ForeignKey("projects.id"))
    work_item_id: Mapped[uuid.UUID | None] = mapped_column(TextUUID(), ForeignKey("work_items.id"))
    session_id: Mapped[uuid.UUID | None] = mapped_column(TextUUID(), ForeignKey("sessions.id"))
    # edited_files, git_commits, git_branch, browser_urls, tags, notes
    context: Mapped[dict[str, Any] | None] = mapped_column(JSONType())
    created_at: Mapped[datetime] = mapped_column(RFC3339DateTime(), nullable=False, default=utc_now)

    __table_args__ = (
        Index("idx_activity_spans_start_time", "start_time"),
        Index("idx_activity_spans_end_time", "end_time"),
        Index("idx_activity_spans_project", "project_id"),
        Index("idx_activity_spans_work_item", "work_item_id"),
        Index("idx_activity_spans_session", "session_id"),
    )

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def _context_list(self, key: str) -> list[str]:
        value = (self.context or {}).get(key) or []
        return [str(v) for v in value]

    @property
    def edited_files(self) -> list[str]:
        return self._context_list("edited_files")

    @property
    def git_commits(self) -> list[str]:
        return self._context_list("git_commits")

    @property
    def browser_urls(self) -> list[str]:
        return self._context_list("browser_urls")

    @property
    def tags(self) -> list[str]:
        return self._context_list("tags")

    @property
    def git_branch(self) -> str | None:
        return (self.context or {}).get("git_branch")

    @property
    def notes(self) -> str | None:
        return (self.context or {}).get("notes")
