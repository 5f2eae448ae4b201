"""Query processing for the portal chat assistant.

Handles:
- Query embedding (single-item batch)
- Vector search with the configured threshold
- Greedy, token-budgeted context assembly
- Source attribution for the top chunks
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from cvportal.models import QueryProcessorConfig
from cvportal.rag.embeddings import EmbeddingGenerator
from cvportal.rag.store import SearchResult, VectorStore

logger = structlog.get_logger()

PREVIEW_LENGTH = 100


@dataclass
class ContextSource:
    """A chunk that contributed to the context."""

    embedding_id: str
    section: str
    similarity: float
    content: str

    @property
    def preview(self) -> str:
        if len(self.content) <= PREVIEW_LENGTH:
            return self.content
        return self.content[:PREVIEW_LENGTH] + "..."

    def to_dict(self) -> Dict[str, Any]:
        return {
            "embeddingId": self.embedding_id,
            "section": self.section,
            "similarity": self.similarity,
            "content": self.content,
            "preview": self.preview,
        }


@dataclass
class RetrievedContext:
    """Context handed to the chat model. Empty means insufficient information."""

    context: str = ""
    sources: List[ContextSource] = field(default_factory=list)
    token_count: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.context


class RAGQueryProcessor:
    """Turns a question into a token-budgeted context drawn from a VectorStore."""

    def __init__(
        self,
        embedding_generator: EmbeddingGenerator,
        settings: Optional[QueryProcessorConfig] = None,
    ):
        """Initialize the query processor.

        Args:
            embedding_generator: Generator used to embed queries
            settings: Search threshold, result count and token budget
        """
        self.embedding_generator = embedding_generator
        self.settings = settings or QueryProcessorConfig()

    async def search_similar(
        self, query: str, store: VectorStore, top_k: Optional[int] = None
    ) -> List[SearchResult]:
        """Embed a query and search the store.

        Raises:
            EmbeddingProviderError: If the query cannot be embedded
            ValueError: If the query vector doesn't match the store dimension
        """
        query_embedding = await self.embedding_generator.generate_single_embedding(query)
        return store.search(
            list(query_embedding.vector),
            top_k=top_k or self.settings.top_k,
            min_score=self.settings.min_score,
        )

    async def retrieve_context(
        self,
        query: str,
        store: VectorStore,
        max_tokens: Optional[int] = None,
    ) -> RetrievedContext:
        """Build context for a query.

        Never raises: any failure yields an empty context.

        Args:
            query: User question
            store: Vector store for the portal
            max_tokens: Token budget (default from settings)

        Returns:
            RetrievedContext whose token_count never exceeds the budget
        """
        if max_tokens is None:
            max_tokens = self.settings.max_tokens

        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return RetrievedContext()

        try:
            results = await self.search_similar(query, store)
        except Exception as e:
            logger.error(
                "context_retrieval_failed",
                error=str(e),
                error_type=type(e).__name__,
                query_preview=query[:100],
            )
            return RetrievedContext()

        parts: List[str] = []
        included: List[SearchResult] = []
        token_count = 0

        for result in results:
            tokens = result.embedding.tokens
            # Stop before the first chunk that doesn't fit; chunks are never truncated
            if token_count + tokens > max_tokens:
                break
            parts.append(result.embedding.content)
            included.append(result)
            token_count += tokens

        sources = [
            ContextSource(
                embedding_id=r.embedding.id,
                section=r.embedding.metadata.get("section", "unknown"),
                similarity=r.similarity,
                content=r.embedding.content,
            )
            for r in included[: self.settings.max_sources]
        ]

        logger.info(
            "context_retrieved",
            candidates=len(results),
            chunks_used=len(included),
            token_count=token_count,
            max_tokens=max_tokens,
        )

        return RetrievedContext(
            context="\n\n".join(parts),
            sources=sources,
            token_count=token_count,
        )
