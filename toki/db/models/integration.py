"""Per-system integration credentials."""

import uuid
from datetime import datetime

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from toki.core.datetime_utils import utc_now
from toki.db.base import Base
from toki.db.types import RFC3339DateTime, TextUUID


class IntegrationConfig(Base):
    """Credentials and routing for one PM system."""

    __tablename__ = "integration_configs"

    id: Mapped[uuid.UUID] = mapped_column(TextUUID(), primary_key=True, default=uuid.uuid4)
    system_type: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    api_url: Mapped[str] = mapped_column(Text, nullable=False)
    api_key: Mapped[str] = mapped_column(Text, nullable=False)
    workspace_slug: Mapped[str | None] = mapped_column(String(255))
    project_id: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(RFC3339DateTime(), nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(RFC3339DateTime(), nullable=False, default=utc_now)
