"""SQLAlchemy column types for the SQLite store.

On-disk conventions: UUIDs as canonical text, timestamps as RFC-3339 text,
variable-length lists as JSON text, embeddings as little-endian f32 blobs.
"""

import json
import uuid
from datetime import datetime
from typing import Any

import numpy as np
from sqlalchemy import LargeBinary, Text
from sqlalchemy.engine.interfaces import Dialect
from sqlalchemy.types import TypeDecorator

from toki.core.datetime_utils import parse_rfc3339, to_rfc3339
from toki.core.logging import get_logger

logger = get_logger(__name__)

EMBEDDING_DTYPE = np.dtype("<f4")


def encode_embedding(values: list[float] | np.ndarray) -> bytes:
    """Pack a vector as raw little-endian f32 bytes."""
    return np.asarray(values, dtype=EMBEDDING_DTYPE).tobytes()


def decode_embedding(blob: bytes | None) -> list[float] | None:
    """Unpack an f32 blob; corrupted lengths are dropped with a warning."""
    if blob is None:
        return None
    if len(blob) % EMBEDDING_DTYPE.itemsize != 0:
        logger.warning(
            "Dropping corrupted embedding blob",
            extra={"byte_length": len(blob)},
        )
        return None
    return np.frombuffer(blob, dtype=EMBEDDING_DTYPE).astype(float).tolist()


class TextUUID(TypeDecorator[uuid.UUID]):
    """UUID stored as its 36-char canonical string."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: uuid.UUID | str | None, dialect: Dialect) -> Any:
        if value is None:
            return None
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(value))

    def process_result_value(self, value: str | None, dialect: Dialect) -> uuid.UUID | None:
        if value is None:
            return None
        return uuid.UUID(value)


class RFC3339DateTime(TypeDecorator[datetime]):
    """Aware UTC datetime stored as RFC-3339 text."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> Any:
        if value is None:
            return None
        return to_rfc3339(value)

    def process_result_value(self, value: str | None, dialect: Dialect) -> datetime | None:
        return parse_rfc3339(value)


class JSONType(TypeDecorator[dict[str, Any]]):
    """JSON object stored as text."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Dialect) -> Any:
        if value is None:
            return None
        return json.dumps(value, default=str)

    def process_result_value(self, value: Any, dialect: Dialect) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                logger.warning("Dropping malformed JSON column value")
                return None
        return value


class StringArray(TypeDecorator[list[str]]):
    """List of strings stored as a JSON array."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: list[str] | None, dialect: Dialect) -> Any:
        if value is None:
            return None
        return json.dumps(list(value))

    def process_result_value(self, value: Any, dialect: Dialect) -> list[str]:
        if value is None:
            return []
        try:
            loaded = json.loads(value) if isinstance(value, str) else value
        except json.JSONDecodeError:
            logger.warning("Dropping malformed string list column value")
            return []
        return [str(item) for item in loaded or []]


class UUIDArray(TypeDecorator[list[uuid.UUID]]):
    """List of UUIDs stored as a JSON array of strings."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: list[uuid.UUID] | None, dialect: Dialect) -> Any:
        if value is None:
            return None
        return json.dumps([str(v) for v in value])

    def process_result_value(self, value: Any, dialect: Dialect) -> list[uuid.UUID]:
        if value is None:
            return []
        try:
            loaded = json.loads(value) if isinstance(value, str) else value
            return [uuid.UUID(str(v)) for v in loaded or []]
        except (json.JSONDecodeError, ValueError):
            logger.warning("Dropping malformed UUID list column value")
            return []


class EmbeddingBlob(TypeDecorator[list[float]]):
    """Embedding vector stored as raw little-endian f32 bytes."""

    impl = LargeBinary
    cache_ok = True

    def process_bind_param(self, value: list[float] | None, dialect: Dialect) -> Any:
        if value is None:
            return None
        return encode_embedding(value)

    def process_result_value(self, value: bytes | None, dialect: Dialect) -> list[float] | None:
        return decode_embedding(value)
