"""Batched embedding generation.

Texts are sent to the embedding provider in fixed-size batches, one request
per batch, strictly one after another with a delay in between to respect
provider rate limits. Output order always matches input order; callers zip
vectors back onto chunk metadata by index.
"""
import asyncio
import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import structlog

from cvportal import config
from cvportal.errors import EmbeddingProviderError
from cvportal.rag.chunker import TextChunk

logger = structlog.get_logger()

DEFAULT_METADATA = MappingProxyType({
    "section": "summary",
    "importance": 1,
    "contentType": "text",
    "keywords": (),
})


def estimate_token_count(text: str) -> int:
    """Rough token estimate (~4 characters per token)."""
    return math.ceil(len(text) / 4) if text else 0


def _freeze(value: Any) -> Any:
    """Recursively convert mappings to read-only proxies and sequences to tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    """Inverse of ``_freeze`` for JSON serialization."""
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


@dataclass(frozen=True)
class RAGEmbedding:
    """An embedded chunk. Instances are never mutated after creation."""

    id: str
    content: str
    vector: Tuple[float, ...]
    tokens: int
    metadata: Mapping[str, Any] = field(default_factory=lambda: DEFAULT_METADATA)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        object.__setattr__(self, "vector", tuple(float(v) for v in self.vector))
        object.__setattr__(self, "metadata", _freeze(self.metadata))

    @property
    def importance(self) -> int:
        return int(self.metadata.get("importance", 0))

    def with_metadata(self, extra: Mapping[str, Any]) -> "RAGEmbedding":
        """Return a copy with ``extra`` merged over the current metadata."""
        return replace(self, metadata={**self.metadata, **extra})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "metadata": _thaw(self.metadata),
            "vector": list(self.vector),
            "tokens": self.tokens,
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RAGEmbedding":
        return cls(
            id=data["id"],
            content=data["content"],
            vector=data["vector"],
            tokens=data.get("tokens", estimate_token_count(data["content"])),
            metadata=data.get("metadata", DEFAULT_METADATA),
            created_at=datetime.fromisoformat(data["createdAt"]) if data.get("createdAt") else datetime.now(timezone.utc),
        )


class EmbeddingGenerator:
    """Turns texts into fixed-dimension vectors through an embedding provider.

    The provider is any object with an ``async embed(texts, model=...)``
    method returning one vector per text (see ``OllamaClient``).
    """

    def __init__(
        self,
        provider,
        model: str = None,
        dimension: int = None,
        batch_size: int = None,
        rate_limit_delay_ms: int = None,
        retry_attempts: int = None,
        request_timeout: float = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the generator.

        Args:
            provider: Embedding provider client
            model: Embedding model name (default from config)
            dimension: Expected vector dimension (default from config)
            batch_size: Texts per provider call (default from config)
            rate_limit_delay_ms: Pause between consecutive batch calls (default from config)
            retry_attempts: Attempts per batch before giving up (default from config)
            request_timeout: Upper bound for a single batch call in seconds
            sleep: Awaitable sleep function (injected in tests)
        """
        self.provider = provider
        self.model = model or config.EMBEDDING_MODEL
        self.dimension = dimension or config.EMBEDDING_DIMENSION
        self.batch_size = batch_size or config.EMBEDDING_BATCH_SIZE
        self.rate_limit_delay_ms = (
            rate_limit_delay_ms if rate_limit_delay_ms is not None
            else config.EMBEDDING_RATE_LIMIT_DELAY_MS
        )
        self.retry_attempts = max(1, retry_attempts or config.EMBEDDING_RETRY_ATTEMPTS)
        self.request_timeout = request_timeout or config.EMBEDDING_TIMEOUT
        self._sleep = sleep

        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")

    async def generate_embeddings(
        self,
        texts: Sequence[str],
        batch_size: Optional[int] = None,
        rate_limit_delay_ms: Optional[int] = None,
        metadata: Optional[Sequence[Mapping[str, Any]]] = None,
    ) -> List[RAGEmbedding]:
        """Embed texts in sequential batches.

        Args:
            texts: Texts to embed
            batch_size: Override for texts per provider call
            rate_limit_delay_ms: Override for the pause between batch calls
            metadata: Optional per-text metadata, same length as ``texts``

        Returns:
            Embeddings where ``result[i]`` corresponds to ``texts[i]``

        Raises:
            EmbeddingProviderError: If a batch still fails after its retries
        """
        if not texts:
            return []

        if metadata is not None and len(metadata) != len(texts):
            raise ValueError(
                f"metadata length ({len(metadata)}) does not match texts ({len(texts)})"
            )

        batch_size = batch_size or self.batch_size
        delay_ms = self.rate_limit_delay_ms if rate_limit_delay_ms is None else rate_limit_delay_ms

        logger.info(
            "embedding_generation_started",
            text_count=len(texts),
            batch_size=batch_size,
            model=self.model,
        )

        embeddings: List[RAGEmbedding] = []
        for start in range(0, len(texts), batch_size):
            if start > 0 and delay_ms > 0:
                await self._sleep(delay_ms / 1000)

            batch = list(texts[start : start + batch_size])
            vectors = await self._embed_batch(batch, start, delay_ms)

            for offset, (text, vector) in enumerate(zip(batch, vectors)):
                item_metadata = metadata[start + offset] if metadata is not None else DEFAULT_METADATA
                embeddings.append(RAGEmbedding(
                    id=f"embed-{uuid.uuid4().hex[:12]}-{start + offset}",
                    content=text,
                    vector=vector,
                    tokens=estimate_token_count(text),
                    metadata=item_metadata,
                ))

            logger.debug(
                "embeddings_batch_generated",
                batch_size=len(batch),
                total_so_far=len(embeddings),
            )

        logger.info("embedding_generation_completed", total_embeddings=len(embeddings))
        return embeddings

    async def generate_single_embedding(
        self, text: str, metadata: Optional[Mapping[str, Any]] = None
    ) -> RAGEmbedding:
        """Embed one text as a single-item batch."""
        results = await self.generate_embeddings(
            [text], batch_size=1, metadata=[metadata] if metadata is not None else None
        )
        return results[0]

    async def embed_chunks(self, chunks: Sequence[TextChunk]) -> List[RAGEmbedding]:
        """Embed chunks, carrying each chunk's metadata onto its embedding."""
        return await self.generate_embeddings(
            [chunk.content for chunk in chunks],
            metadata=[chunk.metadata.to_dict() for chunk in chunks],
        )

    async def _embed_batch(self, batch: List[str], start_index: int, delay_ms: int) -> List[List[float]]:
        """Embed one batch, retrying with exponential backoff."""
        last_error: Optional[str] = None

        for attempt in range(1, self.retry_attempts + 1):
            try:
                async with asyncio.timeout(self.request_timeout):
                    vectors = await self.provider.embed(
                        [text.strip() for text in batch], model=self.model
                    )
                self._validate(vectors, len(batch))
                return vectors

            except Exception as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(
                    "embedding_batch_failed",
                    batch_start=start_index,
                    batch_size=len(batch),
                    attempt=attempt,
                    max_attempts=self.retry_attempts,
                    error=last_error,
                )

            if attempt < self.retry_attempts:
                backoff_ms = max(delay_ms, 100) * (2 ** (attempt - 1))
                await self._sleep(backoff_ms / 1000)

        raise EmbeddingProviderError(
            f"Embedding batch starting at {start_index} failed after "
            f"{self.retry_attempts} attempts: {last_error}"
        )

    def _validate(self, vectors, expected_count: int) -> None:
        if not isinstance(vectors, list) or len(vectors) != expected_count:
            got = len(vectors) if isinstance(vectors, list) else type(vectors).__name__
            raise ValueError(f"Expected {expected_count} vectors, got {got}")

        for vector in vectors:
            if len(vector) != self.dimension:
                raise ValueError(
                    f"Embedding dimension mismatch: expected {self.dimension}, got {len(vector)}"
                )
