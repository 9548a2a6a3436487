"""
Embedding service for issue matching and time estimation.
Talks to an OpenAI-compatible /embeddings endpoint.
"""

from collections.abc import Sequence
from typing import Protocol

import httpx
import numpy as np

from toki.core.config import Settings, get_settings
from toki.core.logging import get_logger
from toki.core.retry import retry_with_backoff

logger = get_logger(__name__)

MAX_INPUT_CHARS = 30000


class EmbeddingService(Protocol):
    """Turns text into a fixed-dimension vector."""

    async def generate_embedding(self, text: str) -> list[float]: ...


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity in [-1, 1]; 0 when lengths differ or either vector has zero norm."""
    if len(a) != len(b) or len(a) == 0:
        return 0.0
    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(vec_a)
    norm_b = np.linalg.norm(vec_b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    similarity = float(np.dot(vec_a, vec_b) / (norm_a * norm_b))
    return max(-1.0, min(1.0, similarity))


class HttpEmbeddingService:
    """Embedding client over httpx with transient-error retry."""

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://api.openai.com/v1",
        model: str = "text-embedding-3-small",
        dimensions: int | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.model = model
        self.dimensions = dimensions
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "HttpEmbeddingService":
        """Build from config; raises ``ConfigurationError`` when no API key is set."""
        settings = settings or get_settings()
        return cls(
            api_key=settings.require_embedding_api_key(),
            api_url=settings.embedding_api_url,
            model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
            timeout=settings.http_timeout_seconds,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.api_url,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self._timeout,
            )
        return self._client

    @retry_with_backoff(max_attempts=3, min_wait=1, max_wait=10)
    async def _post_embeddings(self, payload: dict) -> httpx.Response:
        response = await self._get_client().post("/embeddings", json=payload)
        response.raise_for_status()
        return response

    async def generate_embedding(self, text: str) -> list[float]:
        payload: dict = {"model": self.model, "input": text[:MAX_INPUT_CHARS]}
        if self.dimensions:
            payload["dimensions"] = self.dimensions

        response = await self._post_embeddings(payload)
        data = response.json()
        try:
            embedding: list[float] = [float(x) for x in data["data"][0]["embedding"]]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed embedding response: {e}") from e

        logger.debug(
            "Embedding generated",
            extra={"model": self.model, "dimensions": len(embedding), "input_chars": len(text)},
        )
        return embedding

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
