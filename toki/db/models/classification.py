"""Built-in categories and user-learned classification rules."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from toki.core.datetime_utils import utc_now
from toki.db.base import Base
from toki.db.types import RFC3339DateTime, TextUUID


class PatternType(enum.StrEnum):
    DOMAIN = "domain"
    WINDOW_TITLE = "window_title"
    BUNDLE_ID = "bundle_id"
    URL_PATH = "url_path"


class Category(Base):
    """Built-in regex category; seeded on first open."""

    __tablename__ = "categories"

    id: Mapped[uuid.UUID] = mapped_column(TextUUID(), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    pattern: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    # Seed order; the classifier tries categories in ascending position
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(RFC3339DateTime(), nullable=False, default=utc_now)


class ClassificationRule(Base):
    """User override mapping a pattern to a category."""

    __tablename__ = "classification_rules"

    id: Mapped[uuid.UUID] = mapped_column(TextUUID(), primary_key=True, default=uuid.uuid4)
    pattern: Mapped[str] = mapped_column(Text, nullable=False)
    pattern_type: Mapped[str] = mapped_column(String(16), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    hit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_hit: Mapped[datetime | None] = mapped_column(RFC3339DateTime())
    created_at: Mapped[datetime] = mapped_column(RFC3339DateTime(), nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint("pattern", "pattern_type", name="uq_classification_rules_pattern"),
        Index("idx_classification_rules_priority", "priority"),
    )

    def matches(self, app_bundle_id: str, window_title: str | None) -> bool:
        """Case-insensitive substring match against the field its type selects."""
        needle = self.pattern.lower()
        if self.pattern_type == PatternType.BUNDLE_ID:
            return needle in app_bundle_id.lower()
        if not window_title:
            return False
        return needle in window_title.lower()
