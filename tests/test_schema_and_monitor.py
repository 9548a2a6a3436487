"""Tests for schema evolution, the fallback monitor and the PM base class."""

from datetime import timedelta

from sqlalchemy import inspect

from toki.core.datetime_utils import utc_now
from toki.db.migrations import DEFAULT_CATEGORIES, run_migrations
from toki.db.session import create_store_engine, sqlite_url
from toki.db.store import Store
from toki.integrations.base import TimeEntry
from toki.services.monitor import FallbackMonitor, get_platform_monitor

OLD_SETTINGS_TABLE = """
CREATE TABLE settings (
    id INTEGER PRIMARY KEY,
    pause_tracking BOOLEAN NOT NULL,
    excluded_apps TEXT,
    idle_threshold_seconds INTEGER NOT NULL,
    enable_work_item_tracking BOOLEAN NOT NULL,
    capture_window_title BOOLEAN NOT NULL,
    capture_browser_url BOOLEAN NOT NULL,
    url_whitelist TEXT,
    updated_at TEXT NOT NULL
)
"""

OLD_SETTINGS_ROW = """
INSERT INTO settings VALUES (1, 1, '["slack"]', 120, 1, 1, 0, '["github.com"]', '2026-01-01T00:00:00Z')
"""


class TestSchemaEvolution:
    """Test opening databases written by older versions."""

    async def test_missing_columns_are_added(self, tmp_path):
        """Test old rows survive and new columns take their defaults."""
        path = tmp_path / "old.db"
        engine = create_store_engine(sqlite_url(path))
        async with engine.begin() as conn:
            await conn.exec_driver_sql(OLD_SETTINGS_TABLE)
            await conn.exec_driver_sql(OLD_SETTINGS_ROW)
        await engine.dispose()

        async with Store(sqlite_url(path)) as store:
            await store.initialize()
            settings = await store.get_settings()

        assert settings.pause_tracking is True
        assert settings.excluded_apps == ["slack"]
        assert settings.idle_threshold_seconds == 120
        assert (settings.work_hours_start, settings.work_hours_end) == (9, 18)
        assert settings.session_end_idle_seconds == 900

    async def test_second_run_changes_nothing(self, tmp_path):
        engine = create_store_engine(sqlite_url(tmp_path / "fresh.db"))
        try:
            first = await run_migrations(engine)
            second = await run_migrations(engine)
            async with engine.connect() as conn:
                tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
        finally:
            await engine.dispose()

        assert first["tables_created"] > 0
        assert second == {"tables_created": 0, "columns_added": 0, "indexes_created": 0}
        assert {"activity_spans", "settings"} <= set(tables)

    async def test_categories_seeded_once(self, store):
        await store.initialize()

        categories = await store.list_categories()

        assert [c.name for c in categories] == [name for name, _, _ in DEFAULT_CATEGORIES]


class TestFallbackMonitor:
    """Test the placeholder monitor."""

    async def test_reports_generic_app(self):
        app = await FallbackMonitor().get_active_app()

        assert app.app_bundle_id == FallbackMonitor.APP_BUNDLE_ID
        assert app.window_title is None

    async def test_idle_measured_from_last_input(self):
        monitor = FallbackMonitor()
        monitor._last_input -= 400

        assert await monitor.get_idle_seconds() >= 400
        assert await monitor.is_idle(300)

        monitor.record_input()
        assert not await monitor.is_idle(300)

    def test_platform_monitor(self):
        assert isinstance(get_platform_monitor(), FallbackMonitor)


class TestBatchSync:
    """Test the default batch push on the PM base class."""

    def entry(self, work_item_id: str, seconds: int = 5400) -> TimeEntry:
        return TimeEntry(work_item_id=work_item_id, started_at=utc_now() - timedelta(hours=2), duration_seconds=seconds)

    async def test_failures_do_not_stop_batch(self, pm_client_factory):
        client = pm_client_factory(fail_on={"TOKI-2"})

        report = await client.batch_sync([self.entry("TOKI-1"), self.entry("TOKI-2"), self.entry("TOKI-3")])

        assert report.total_entries == 3
        assert report.successful == 2
        assert report.errors == ["TOKI-2: rejected TOKI-2"]
        assert not report.is_complete_success
        assert [e.work_item_id for e in client.entries] == ["TOKI-1", "TOKI-3"]

    def test_entry_durations(self):
        entry = self.entry("TOKI-1")

        assert entry.duration_hours == 1.5
        assert entry.duration_compact == "1h30m"
