"""PM-system work item references and cached issue candidates."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from toki.core.datetime_utils import utc_now
from toki.db.base import Base
from toki.db.types import EmbeddingBlob, RFC3339DateTime, StringArray, TextUUID

INACTIVE_ISSUE_STATUSES = frozenset({"done", "completed", "cancelled", "canceled", "closed"})


class Complexity(enum.StrEnum):
    """Issue complexity, mapped to story points."""

    TRIVIAL = "trivial"
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    EPIC = "epic"

    @property
    def points(self) -> int:
        return {
            Complexity.TRIVIAL: 1,
            Complexity.SIMPLE: 2,
            Complexity.MODERATE: 3,
            Complexity.COMPLEX: 5,
            Complexity.EPIC: 8,
        }[self]

    @classmethod
    def parse(cls, value: str | None) -> "Complexity | None":
        """Lenient parse accepting names, lowercase values, and story points."""
        if value is None:
            return None
        text = value.strip().lower()
        by_points = {"1": cls.TRIVIAL, "2": cls.SIMPLE, "3": cls.MODERATE, "5": cls.COMPLEX, "8": cls.EPIC}
        if text in by_points:
            return by_points[text]
        try:
            return cls(text)
        except ValueError:
            return None


class WorkItem(Base):
    """A task reference in an external system (or "git" for branch-derived ids)."""

    __tablename__ = "work_items"

    id: Mapped[uuid.UUID] = mapped_column(TextUUID(), primary_key=True, default=uuid.uuid4)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    external_system: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str | None] = mapped_column(String(64))
    project: Mapped[str | None] = mapped_column(String(255))
    workspace: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(RFC3339DateTime(), nullable=False, default=utc_now)
    last_synced: Mapped[datetime | None] = mapped_column(RFC3339DateTime())

    __table_args__ = (
        UniqueConstraint("external_id", "external_system", name="uq_work_items_external"),
    )


class IssueCandidate(Base):
    """Cached PM issue plus derived matching and estimation data."""

    __tablename__ = "issue_candidates"

    id: Mapped[uuid.UUID] = mapped_column(TextUUID(), primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(TextUUID(), ForeignKey("projects.id"), nullable=False)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    external_system: Mapped[str] = mapped_column(String(32), nullable=False)
    pm_project_id: Mapped[str | None] = mapped_column(String(255))
    # Identifier the origin system needs for updates and ledgering (e.g. a Notion page id)
    source_external_ref: Mapped[str | None] = mapped_column(String(255))
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(64), nullable=False, default="backlog")
    labels: Mapped[list[str]] = mapped_column(StringArray(), default=list)
    assignee: Mapped[str | None] = mapped_column(String(255))
    embedding: Mapped[list[float] | None] = mapped_column(EmbeddingBlob())
    complexity: Mapped[str | None] = mapped_column(String(16))
    estimated_seconds: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(RFC3339DateTime(), nullable=False, default=utc_now)
    last_synced: Mapped[datetime] = mapped_column(RFC3339DateTime(), nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint("external_id", "external_system", name="uq_issue_candidates_external"),
        Index("idx_issue_candidates_project", "project_id"),
        Index("idx_issue_candidates_status", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status.lower() not in INACTIVE_ISSUE_STATUSES

    @property
    def complexity_level(self) -> Complexity | None:
        return Complexity.parse(self.complexity)

    def embedding_text(self) -> str:
        """Text fed to the embedding service: id, title, description, labels."""
        parts = [self.external_id, self.title]
        if self.description:
            parts.append(self.description)
        if self.labels:
            parts.append(" ".join(self.labels))
        return "\n".join(parts)
