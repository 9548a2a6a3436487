"""Project and per-day project time models."""

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from toki.core.datetime_utils import utc_now
from toki.db.base import Base
from toki.db.types import RFC3339DateTime, TextUUID


class Project(Base):
    """A local code workspace, optionally linked to a PM-system project."""

    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(TextUUID(), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    path: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text)
    pm_system: Mapped[str | None] = mapped_column(String(32))
    pm_project_id: Mapped[str | None] = mapped_column(String(255))
    pm_workspace: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(RFC3339DateTime(), nullable=False, default=utc_now)
    last_active: Mapped[datetime] = mapped_column(RFC3339DateTime(), nullable=False, default=utc_now)

    __table_args__ = (
        Index("idx_projects_name", "name"),
        Index("idx_projects_last_active", "last_active"),
    )

    @property
    def is_linked(self) -> bool:
        return bool(self.pm_project_id)


class ProjectTime(Base):
    """Additive daily seconds per project, independent of span boundaries."""

    __tablename__ = "project_time"

    id: Mapped[uuid.UUID] = mapped_column(TextUUID(), primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(
        TextUUID(),
        ForeignKey("projects.id"),
        nullable=False,
    )
    date: Mapped[str] = mapped_column(String(10), nullable=False)
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(RFC3339DateTime(), nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint("project_id", "date", name="uq_project_time_project_date"),
        Index("idx_project_time_date", "date"),
    )
