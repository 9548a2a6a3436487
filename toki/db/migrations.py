"""Forward-only schema evolution.

Opening the store creates missing tables, adds missing columns with
``ALTER TABLE ... ADD COLUMN``, creates missing indexes and seeds the default
categories and the settings row. Every step is idempotent.
"""

import uuid
from typing import Any

from sqlalchemy import Column, Connection, Table, inspect
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine.interfaces import Dialect
from sqlalchemy.ext.asyncio import AsyncEngine

from toki.core.datetime_utils import utc_now
from toki.core.logging import get_logger
from toki.db.base import Base
from toki.db.models import Category, UserSettings
from toki.db.models.user_settings import DEFAULT_URL_WHITELIST, SETTINGS_ROW_ID

logger = get_logger(__name__)

# (name, pattern, description), in classification order
DEFAULT_CATEGORIES: list[tuple[str, str, str]] = [
    (
        "Coding",
        r"(vscode|code|cursor|todesktop|intellij|pycharm|webstorm|sublime|vim|nvim|neovim|emacs"
        r"|xcode|android.studio|zed|antigravity|windsurf|replit)",
        "Code editors and IDEs",
    ),
    ("AI-CLI", r"(claude|gemini|openai|anthropic|copilot|aider|continue)", "AI assistants and coding agents"),
    ("Terminal", r"(terminal|iterm|konsole|gnome-terminal|wezterm|alacritty|kitty|hyper|warp)", "Terminal emulators"),
    (
        "Break",
        r"(instagram|facebook|twitter|tiktok|youtube|netflix|twitch|reddit|linkedin\.com/feed|threads"
        r"|snapchat|pinterest|tumblr|weibo|bilibili)",
        "Social media and entertainment",
    ),
    (
        "Research",
        r"(stackoverflow|github\.com|gitlab\.com|docs\.|documentation|api\s+reference|mdn\s+web|devdocs"
        r"|plane\.so|jira|linear\.app|notion\.so)",
        "Technical reading and issue trackers",
    ),
    ("Browser", r"(chrome|firefox|safari|edge|brave|arc|opera|vivaldi)", "Web browsers"),
    ("Communication", r"(slack|discord|teams|zoom|skype|telegram|whatsapp|messages|mail)", "Chat, calls and mail"),
    ("Documentation", r"(notion|obsidian|evernote|onenote|bear|typora|logseq|roam)", "Note taking and writing"),
    ("Design", r"(figma|sketch|adobe|photoshop|illustrator|canva|affinity)", "Design tools"),
    ("Database", r"(dbeaver|tableplus|sequel|datagrip|mongodb|postico|pgadmin)", "Database clients"),
    ("Git", r"(github|gitlab|sourcetree|gitkraken|fork|tower)", "Git clients and forges"),
]


def _literal_default(column: Column[Any]) -> Any:
    default = column.default
    if default is None or not getattr(default, "is_scalar", False):
        return None
    return default.arg


def _render_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


def _add_column_ddl(table: Table, column: Column[Any], dialect: Dialect) -> str:
    type_sql = column.type.compile(dialect=dialect)
    ddl = f'ALTER TABLE "{table.name}" ADD COLUMN "{column.name}" {type_sql}'
    default = _literal_default(column)
    if default is not None:
        ddl += f" DEFAULT {_render_literal(default)}"
        if not column.nullable:
            ddl += " NOT NULL"
    return ddl


def evolve_schema(conn: Connection) -> dict[str, int]:
    """Bring the live schema up to the model metadata. Sync; run via run_sync."""
    inspector = inspect(conn)
    existing_tables = set(inspector.get_table_names())
    stats = {"tables_created": 0, "columns_added": 0, "indexes_created": 0}

    missing_tables = [t for t in Base.metadata.sorted_tables if t.name not in existing_tables]
    if missing_tables:
        Base.metadata.create_all(conn, tables=missing_tables)
        stats["tables_created"] = len(missing_tables)

    inspector = inspect(conn)
    for table in Base.metadata.sorted_tables:
        if table.name not in existing_tables:
            continue

        live_columns = {col["name"] for col in inspector.get_columns(table.name)}
        for column in table.columns:
            if column.name in live_columns:
                continue
            conn.exec_driver_sql(_add_column_ddl(table, column, conn.dialect))
            stats["columns_added"] += 1
            logger.info(
                "Added missing column",
                extra={"table": table.name, "column": column.name},
            )

        live_indexes = {idx["name"] for idx in inspector.get_indexes(table.name)}
        for index in table.indexes:
            if index.name not in live_indexes:
                index.create(conn, checkfirst=True)
                stats["indexes_created"] += 1

    return stats


def seed_defaults(conn: Connection) -> None:
    """Insert built-in categories and the settings row if absent."""
    now = utc_now()
    category_rows = [
        {"name": name, "pattern": pattern, "description": description, "position": position, "created_at": now}
        for position, (name, pattern, description) in enumerate(DEFAULT_CATEGORIES)
    ]
    # Explicit ids: the bulk insert bypasses per-row Python defaults for the primary key
    for row in category_rows:
        row["id"] = uuid.uuid4()
    conn.execute(sqlite_insert(Category).values(category_rows).on_conflict_do_nothing(index_elements=["name"]))

    conn.execute(
        sqlite_insert(UserSettings)
        .values(
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
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["id"])
    )


async def run_migrations(engine: AsyncEngine) -> dict[str, int]:
    """Evolve the schema and seed defaults in one transaction."""
    async with engine.begin() as conn:
        stats = await conn.run_sync(evolve_schema)
        await conn.run_sync(seed_defaults)
    if any(stats.values()):
        logger.info("Store schema updated", extra=stats)
    return stats
