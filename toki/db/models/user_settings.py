"""Single-row tracking settings."""

from datetime import datetime

from sqlalchemy import Boolean, Integer
from sqlalchemy.orm import Mapped, mapped_column

from toki.core.datetime_utils import utc_now
from toki.db.base import Base
from toki.db.types import RFC3339DateTime, StringArray

SETTINGS_ROW_ID = 1

DEFAULT_URL_WHITELIST = ["plane.so", "github.com", "jira.atlassian.com"]


class UserSettings(Base):
    """Tracking preferences read by the tracker at the start of every tick."""

    __tablename__ = "settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=SETTINGS_ROW_ID)
    pause_tracking: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    excluded_apps: Mapped[list[str]] = mapped_column(StringArray(), default=list)
    idle_threshold_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=300)
    enable_work_item_tracking: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    capture_window_title: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    capture_browser_url: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    url_whitelist: Mapped[list[str]] = mapped_column(
        StringArray(), default=lambda: list(DEFAULT_URL_WHITELIST)
    )
    work_hours_start: Mapped[int] = mapped_column(Integer, nullable=False, default=9)
    work_hours_end: Mapped[int] = mapped_column(Integer, nullable=False, default=18)
    session_end_idle_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=900)
    updated_at: Mapped[datetime] = mapped_column(RFC3339DateTime(), nullable=False, default=utc_now)
