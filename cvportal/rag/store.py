"""FAISS vector store for cosine-similarity search over profile embeddings.

Handles:
- Dimension-homogeneous embedding storage
- Exact inner-product search over L2-normalised vectors (== cosine)
- Deterministic ranking (similarity, then importance, then insertion order)
- JSON persistence in the format shipped to deployed spaces
"""
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import faiss
import numpy as np
import structlog

from cvportal import config
from cvportal.rag.embeddings import RAGEmbedding

logger = structlog.get_logger()

STORE_FORMAT_VERSION = "1.0"

# Similarities equal to this many decimals rank as ties
SCORE_DECIMALS = 9
SCORE_TOLERANCE = 1e-4


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 when either vector has zero norm.

    Raises:
        ValueError: If the vectors differ in length
    """
    if len(a) != len(b):
        raise ValueError(f"Vector length mismatch: {len(a)} != {len(b)}")

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0 or not np.isfinite(norm):
        return 0.0
    return float(np.clip(np.dot(va, vb) / norm, -1.0, 1.0))


def _normalize(vectors: np.ndarray) -> np.ndarray:
    """Row-wise L2 normalisation; zero rows stay zero."""
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    safe = np.where(norms == 0.0, 1.0, norms)
    return (vectors / safe).astype(np.float32)


@dataclass
class SearchResult:
    """A single search hit."""

    embedding: RAGEmbedding
    similarity: float
    rank: int


class VectorStore:
    """In-memory vector store backed by a flat FAISS inner-product index."""

    def __init__(self, dimension: int = None, embedding_model: str = None):
        """Initialize an empty store.

        Args:
            dimension: Vector dimension (default from config)
            embedding_model: Name of the model the vectors come from
        """
        self.dimension = dimension or config.EMBEDDING_DIMENSION
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self.index = faiss.IndexFlatIP(self.dimension)
        self.embeddings: List[RAGEmbedding] = []
        self.created_at = datetime.now(timezone.utc)

    def __len__(self) -> int:
        return len(self.embeddings)

    def add(self, embeddings: Iterable[RAGEmbedding]) -> int:
        """Add embeddings to the store.

        Returns:
            Number of embeddings added

        Raises:
            ValueError: If any vector has the wrong dimension
        """
        embeddings = list(embeddings)
        if not embeddings:
            return 0

        for embedding in embeddings:
            if len(embedding.vector) != self.dimension:
                raise ValueError(
                    f"Embedding dimension mismatch: expected {self.dimension}, "
                    f"got {len(embedding.vector)} (id={embedding.id})"
                )

        vectors = np.array([e.vector for e in embeddings], dtype=np.float32)
        self.index.add(_normalize(vectors))
        self.embeddings.extend(embeddings)

        logger.info("vectors_added", count=len(embeddings), total_vectors=self.index.ntotal)
        return len(embeddings)

    def search(
        self,
        query_vector: Sequence[float],
        top_k: int = None,
        min_score: float = None,
    ) -> List[SearchResult]:
        """Find the embeddings most similar to a query vector.

        Args:
            query_vector: Query embedding
            top_k: Maximum results (default from config)
            min_score: Minimum cosine similarity (default from config)

        Returns:
            At most ``top_k`` results, each with ``similarity >= min_score``,
            best first

        Raises:
            ValueError: If the query has the wrong dimension
        """
        top_k = config.RETRIEVAL_TOP_K if top_k is None else top_k
        min_score = config.RETRIEVAL_MIN_SCORE if min_score is None else min_score

        if len(query_vector) != self.dimension:
            raise ValueError(
                f"Query dimension mismatch: expected {self.dimension}, got {len(query_vector)}"
            )

        if top_k <= 0 or self.index.ntotal == 0:
            return []

        query = _normalize(np.array([query_vector], dtype=np.float32))

        # Exact scan over everything; the final order needs the tie-breakers below
        scores, indices = self.index.search(query, self.index.ntotal)

        # float32 scores only pre-filter; survivors are rescored in float64
        candidates = []
        for score, idx in zip(scores[0].tolist(), indices[0].tolist()):
            if idx < 0 or score < min_score - SCORE_TOLERANCE:
                continue
            similarity = cosine_similarity(query_vector, self.embeddings[idx].vector)
            if similarity >= min_score:
                candidates.append((similarity, idx))

        candidates.sort(key=lambda c: (
            -round(c[0], SCORE_DECIMALS),
            -self.embeddings[c[1]].importance,
            c[1],
        ))

        results = [
            SearchResult(embedding=self.embeddings[idx], similarity=similarity, rank=rank)
            for rank, (similarity, idx) in enumerate(candidates[:top_k], start=1)
        ]

        logger.debug(
            "vector_search_completed",
            top_k=top_k,
            min_score=min_score,
            results_found=len(results),
        )
        return results

    def get_stats(self) -> Dict[str, Any]:
        sections: Dict[str, int] = {}
        for embedding in self.embeddings:
            section = embedding.metadata.get("section", "unknown")
            sections[section] = sections.get(section, 0) + 1

        return {
            "vector_count": self.index.ntotal,
            "dimension": self.dimension,
            "embedding_model": self.embedding_model,
            "total_tokens": sum(e.tokens for e in self.embeddings),
            "sections": sections,
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the JSON layout consumed by the deployed chat app."""
        return {
            "metadata": {
                "version": STORE_FORMAT_VERSION,
                "createdAt": self.created_at.isoformat(),
                "totalEmbeddings": len(self.embeddings),
                "dimensions": self.dimension,
                "embeddingModel": self.embedding_model,
            },
            "embeddings": [e.to_dict() for e in self.embeddings],
            "index": {
                "type": "flat_inner_product",
                "metric": "cosine",
                "normalized": True,
            },
            "searchConfig": {
                "topK": config.RETRIEVAL_TOP_K,
                "minScore": config.RETRIEVAL_MIN_SCORE,
                "maxTokens": config.MAX_CONTEXT_TOKENS,
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VectorStore":
        metadata = data.get("metadata", {})
        store = cls(
            dimension=metadata.get("dimensions"),
            embedding_model=metadata.get("embeddingModel"),
        )
        if metadata.get("createdAt"):
            store.created_at = datetime.fromisoformat(metadata["createdAt"])
        store.add(RAGEmbedding.from_dict(item) for item in data.get("embeddings", []))
        return store

    def save(self, path: Path) -> Path:
        """Write the store to ``path`` as JSON.

        Raises:
            RuntimeError: If the file cannot be written
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        try:
            with open(path, "w") as f:
                json.dump(self.to_dict(), f)
        except OSError as e:
            raise RuntimeError(f"Failed to save vector store: {e}") from e

        logger.info("vector_store_saved", path=str(path), vector_count=len(self))
        return path

    @classmethod
    def load(cls, path: Path) -> "VectorStore":
        """Load a store previously written with ``save``.

        Raises:
            FileNotFoundError: If the file doesn't exist
            RuntimeError: If the file cannot be parsed
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Vector store not found: {path}")

        try:
            with open(path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise RuntimeError(f"Failed to load vector store: {e}") from e

        store = cls.from_dict(data)
        logger.info("vector_store_loaded", path=str(path), vector_count=len(store))
        return store


def store_path_for(portal_id: str, base_dir: Optional[Path] = None) -> Path:
    """Location of a portal's serialized vector store."""
    return Path(base_dir or config.VECTOR_STORE_DIR) / f"{portal_id}.json"
