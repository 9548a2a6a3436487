"""Application configuration."""

import logging
import os
import sys
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when a required setting or integration credential is missing."""

    pass


def default_data_dir() -> Path:
    """Per-user data directory for the database, socket and key file."""
    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / "toki"
    xdg = os.getenv("XDG_DATA_HOME")
    base = Path(xdg) if xdg else home / ".local" / "share"
    return base / "toki"


class Settings(BaseSettings):
    """Daemon settings loaded from environment variables (prefix TOKI_)."""

    model_config = SettingsConfigDict(
        env_prefix="TOKI_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    data_dir: Path = default_data_dir()
    database_filename: str = "toki.db"
    socket_filename: str = "toki.sock"
    key_filename: str = "toki.key"

    # Optional SQLCipher-style key, applied with PRAGMA key on every connection
    encryption_key: str | None = None
    encryption_key_file: Path | None = None

    # Tracker
    tick_interval_seconds: int = 5

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False

    # Embeddings (OpenAI-compatible endpoint)
    embedding_api_url: str = "https://api.openai.com/v1"
    embedding_api_key: str | None = None
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536

    http_timeout_seconds: float = 30.0

    @property
    def database_path(self) -> Path:
        return self.data_dir / self.database_filename

    @property
    def database_url(self) -> str:
        """Async SQLAlchemy URL for the store."""
        return f"sqlite+aiosqlite:///{self.database_path}"

    @property
    def socket_path(self) -> Path:
        return self.data_dir / self.socket_filename

    @property
    def key_path(self) -> Path:
        return self.encryption_key_file or (self.data_dir / self.key_filename)

    @model_validator(mode="after")
    def validate_tick_interval(self) -> "Settings":
        """Reject tick intervals the tracker cannot honour."""
        if self.tick_interval_seconds < 1:
            raise ValueError("TOKI_TICK_INTERVAL_SECONDS must be at least 1 second")
        if self.tick_interval_seconds > 300:
            logger.warning(
                "Tick interval above 5 minutes makes spans very coarse",
                extra={"tick_interval_seconds": self.tick_interval_seconds},
            )
        return self

    def resolve_encryption_key(self) -> str | None:
        """Return the configured key, reading the key file if one exists."""
        if self.encryption_key:
            return self.encryption_key
        path = self.key_path
        if self.encryption_key_file is not None or path.exists():
            try:
                return path.read_text(encoding="utf-8").strip() or None
            except OSError as e:
                raise ConfigurationError(f"Cannot read encryption key from {path}: {e}") from e
        return None

    def write_encryption_key(self, key: str) -> Path:
        """Persist a key file readable only by the owner (0600)."""
        path = self.key_path
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(key)
        os.chmod(path, 0o600)
        logger.info("Encryption key file written", extra={"path": str(path)})
        return path

    def require_embedding_api_key(self) -> str:
        """Embedding key, or a ConfigurationError naming the env variable to set."""
        if not self.embedding_api_key:
            raise ConfigurationError(
                "Embedding service is not configured. Set TOKI_EMBEDDING_API_KEY."
            )
        return self.embedding_api_key


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
