"""Session model for logical work sessions."""

import uuid
from datetime import datetime

from sqlalchemy import Index, Integer
from sqlalchemy.orm import Mapped, mapped_column

from toki.core.datetime_utils import utc_now
from toki.db.base import Base
from toki.db.types import RFC3339DateTime, StringArray, TextUUID, UUIDArray


class Session(Base):
    """Active work bracketed by long idle gaps."""

    __tablename__ = "sessions"

    id: Mapped[uuid.UUID] = mapped_column(TextUUID(), primary_key=True, default=uuid.uuid4)
    start_time: Mapped[datetime] = mapped_column(RFC3339DateTime(), nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(RFC3339DateTime())
    total_active_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    idle_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    interruption_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    categories: Mapped[list[str]] = mapped_column(StringArray(), default=list)
    work_item_ids: Mapped[list[uuid.UUID]] = mapped_column(UUIDArray(), default=list)
    created_at: Mapped[datetime] = mapped_column(RFC3339DateTime(), nullable=False, default=utc_now)

    __table_args__ = (
        Index("idx_sessions_start_time", "start_time"),
        Index("idx_sessions_end_time", "end_time"),
    )

    @property
    def is_open(self) -> bool:
        return self.end_time is None
