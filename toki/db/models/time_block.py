"""Confirmable time blocks and the sync idempotence ledger."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from toki.core.datetime_utils import seconds_between, utc_now
from toki.db.base import Base
from toki.db.types import RFC3339DateTime, StringArray, TextUUID, UUIDArray


class TimeBlockSource(enum.StrEnum):
    MANUAL = "manual"
    AI_SUGGESTED = "ai_suggested"
    AUTO_DETECTED = "auto_detected"


class TimeBlock(Base):
    """A reviewable interval that can be pushed to a PM system once confirmed."""

    __tablename__ = "time_blocks"

    id: Mapped[uuid.UUID] = mapped_column(TextUUID(), primary_key=True, default=uuid.uuid4)
    start_time: Mapped[datetime] = mapped_column(RFC3339DateTime(), nullable=False)
    end_time: Mapped[datetime] = mapped_column(RFC3339DateTime(), nullable=False)
    project_id: Mapped[uuid.UUID | None] = mapped_column(TextUUID(), ForeignKey("projects.id"))
    work_item_ids: Mapped[list[uuid.UUID]] = mapped_column(UUIDArray(), default=list)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    tags: Mapped[list[str]] = mapped_column(StringArray(), default=list)
    category: Mapped[str | None] = mapped_column(String(64))
    source: Mapped[str] = mapped_column(String(16), nullable=False, default=TimeBlockSource.MANUAL.value)
    confidence: Mapped[float | None] = mapped_column(Float)
    confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    synced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(RFC3339DateTime(), nullable=False, default=utc_now)

    __table_args__ = (
        Index("idx_time_blocks_start_time", "start_time"),
        Index("idx_time_blocks_confirmed_synced", "confirmed", "synced"),
    )

    @property
    def duration_seconds(self) -> int:
        return seconds_between(self.start_time, self.end_time)

    @property
    def is_pushable(self) -> bool:
        return self.confirmed and not self.synced

    @classmethod
    def manual(
        cls,
        start_time: datetime,
        end_time: datetime,
        description: str,
        work_item_ids: list[uuid.UUID] | None = None,
        project_id: uuid.UUID | None = None,
    ) -> "TimeBlock":
        """User-entered block; confirmed on creation."""
        return cls(
            id=uuid.uuid4(),
            start_time=start_time,
            end_time=end_time,
            description=description,
            work_item_ids=list(work_item_ids or []),
            project_id=project_id,
            tags=[],
            source=TimeBlockSource.MANUAL.value,
            confidence=None,
            confirmed=True,
            synced=False,
            created_at=utc_now(),
        )

    @classmethod
    def ai_suggested(
        cls,
        start_time: datetime,
        end_time: datetime,
        description: str,
        work_item_ids: list[uuid.UUID] | None = None,
        confidence: float | None = None,
        project_id: uuid.UUID | None = None,
    ) -> "TimeBlock":
        """Review-engine suggestion; unconfirmed until the user accepts it."""
        return cls(
            id=uuid.uuid4(),
            start_time=start_time,
            end_time=end_time,
            description=description,
            work_item_ids=list(work_item_ids or []),
            project_id=project_id,
            tags=[],
            source=TimeBlockSource.AI_SUGGESTED.value,
            confidence=confidence,
            confirmed=False,
            synced=False,
            created_at=utc_now(),
        )


class SyncedIssue(Base):
    """Ledger row proving a source reference was pushed to a target project."""

    __tablename__ = "synced_issues"

    id: Mapped[uuid.UUID] = mapped_column(TextUUID(), primary_key=True, default=uuid.uuid4)
    source_external_ref: Mapped[str] = mapped_column(String(255), nullable=False)
    source_system: Mapped[str | None] = mapped_column(String(32))
    target_system: Mapped[str] = mapped_column(String(32), nullable=False)
    target_project: Mapped[str] = mapped_column(String(255), nullable=False)
    target_issue_id: Mapped[str | None] = mapped_column(String(255))
    target_issue_number: Mapped[int | None] = mapped_column(Integer)
    target_issue_url: Mapped[str | None] = mapped_column(Text)
    title: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(RFC3339DateTime(), nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(RFC3339DateTime(), nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint(
            "source_external_ref",
            "target_system",
            "target_project",
            name="uq_synced_issues_source_target",
        ),
        Index("idx_synced_issues_target", "target_system", "target_project"),
    )
