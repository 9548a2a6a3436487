"""Async engine and session factory for the SQLite store."""

from pathlib import Path
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from toki.core.logging import get_logger

logger = get_logger(__name__)


def sqlite_url(path: Path | str) -> str:
    """aiosqlite URL for a database file (or ":memory:")."""
    return f"sqlite+aiosqlite:///{path}"


def _quote_pragma_value(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def create_store_engine(url: str, encryption_key: str | None = None, echo: bool = False) -> AsyncEngine:
    """Create the store engine.

    Every new DBAPI connection gets the encryption key (when one is
    configured), WAL journalling and a busy timeout, so a CLI process and the
    daemon can share the file.
    """
    engine = create_async_engine(url, echo=echo)

    @event.listens_for(engine.sync_engine, "connect")
    def _configure_connection(dbapi_connection: Any, connection_record: Any) -> None:
        cursor = dbapi_connection.cursor()
        try:
            if encryption_key:
                # Must be the first statement on the connection
                cursor.execute(f"PRAGMA key = {_quote_pragma_value(encryption_key)}")
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=5000")
        finally:
            cursor.close()

    logger.debug(
        "Store engine created",
        extra={"url": url, "encryption": encryption_key is not None},
    )
    return engine


async def sqlcipher_version(engine: AsyncEngine) -> str | None:
    """SQLCipher version of the linked SQLite library, or None for plain SQLite.

    Plain SQLite ignores unknown pragmas, so a configured key only encrypts
    when this returns a version.
    """
    async with engine.connect() as conn:
        row = (await conn.exec_driver_sql("PRAGMA cipher_version")).first()
    return str(row[0]) if row and row[0] else None


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
