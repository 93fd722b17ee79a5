"""In-process vector index over scheme embeddings, backed by NumPy.

Brute-force cosine similarity over a dense float32 matrix.  For catalog
scale (a few thousand central and state schemes) a single matrix-vector
multiply takes well under a millisecond, which keeps retrieval inside
its sub-second budget without an external vector database.

Rows are kept L2-normalised at index time so a query costs one
normalisation plus one ``matrix @ vector``.  Upserts overwrite in place;
removals swap the last row into the freed slot, so the index never
accumulates tombstones.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

import numpy as np
import structlog

logger = structlog.get_logger(__name__)

_DEFAULT_DIM: Final[int] = 768
_EPS: Final[float] = 1e-10


@dataclass(slots=True)
class SearchResult:
    """A single hit from the vector index."""

    doc_id: str
    score: float
    metadata: dict


class RAGService:
    """Cosine-similarity vector index with metadata filtering.

    Parameters
    ----------
    embedding_dim:
        Dimensionality of the stored vectors.  Vectors of any other length
        are rejected with :class:`ValueError`.
    """

    __slots__ = ("_dim", "_doc_ids", "_embeddings", "_index_map", "_metadata")

    def __init__(self, embedding_dim: int = _DEFAULT_DIM) -> None:
        self._dim = embedding_dim
        self._embeddings: np.ndarray = np.empty((0, embedding_dim), dtype=np.float32)
        self._metadata: list[dict] = []
        self._doc_ids: list[str] = []  # row -> doc_id
        self._index_map: dict[str, int] = {}  # doc_id -> row

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def _normalise(self, embedding: list[float]) -> np.ndarray:
        vec = np.asarray(embedding, dtype=np.float32).reshape(-1)
        if vec.shape[0] != self._dim:
            raise ValueError(f"expected a {self._dim}-dim vector, got {vec.shape[0]}")
        norm = float(np.linalg.norm(vec))
        return vec / norm if norm > _EPS else vec

    async def index_document(self, doc_id: str, embedding: list[float], metadata: dict) -> None:
        """Add or replace one document.

        Parameters
        ----------
        doc_id:
            Unique identifier (the scheme id).
        embedding:
            Dense vector of length ``embedding_dim``.
        metadata:
            Flat dict used by ``search`` filters (``is_active``, ``category``, ...).
        """
        vec = self._normalise(embedding)
        idx = self._index_map.get(doc_id)
        if idx is not None:
            self._embeddings[idx] = vec
            self._metadata[idx] = metadata
        else:
            idx = len(self._doc_ids)
            self._index_map[doc_id] = idx
            self._doc_ids.append(doc_id)
            self._metadata.append(metadata)
            self._embeddings = np.vstack([self._embeddings, vec.reshape(1, -1)])
        logger.debug("rag.indexed_document", doc_id=doc_id, index=idx)

    async def index_batch(self, documents: list[tuple[str, list[float], dict]]) -> None:
        """Upsert many documents; new rows are stacked in one allocation."""
        if not documents:
            return
        new_rows: list[np.ndarray] = []
        for doc_id, embedding, metadata in documents:
            vec = self._normalise(embedding)
            idx = self._index_map.get(doc_id)
            if idx is not None:
                self._embeddings[idx] = vec
                self._metadata[idx] = metadata
                continue
            self._index_map[doc_id] = len(self._doc_ids)
            self._doc_ids.append(doc_id)
            self._metadata.append(metadata)
            new_rows.append(vec)
        if new_rows:
            self._embeddings = np.vstack([self._embeddings, np.stack(new_rows)])
        logger.info("rag.batch_indexed", count=len(documents), total=self.corpus_size)

    async def remove_document(self, doc_id: str) -> bool:
        """Remove *doc_id*; returns ``False`` if it was not indexed."""
        idx = self._index_map.pop(doc_id, None)
        if idx is None:
            return False
        last = len(self._doc_ids) - 1
        if idx != last:
            moved = self._doc_ids[last]
            self._embeddings[idx] = self._embeddings[last]
            self._metadata[idx] = self._metadata[last]
            self._doc_ids[idx] = moved
            self._index_map[moved] = idx
        self._embeddings = self._embeddings[:last]
        self._metadata.pop()
        self._doc_ids.pop()
        logger.debug("rag.removed_document", doc_id=doc_id)
        return True

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(
        self,
        query_embedding: list[float],
        top_k: int = 5,
        filters: dict | None = None,
    ) -> list[SearchResult]:
        """Top-k documents by cosine similarity.

        Parameters
        ----------
        query_embedding:
            Dense query vector.
        top_k:
            Maximum number of results.
        filters:
            Exact-match metadata filters, e.g. ``{"is_active": True}``.
            Filtered-out documents are excluded, not merely down-weighted.

        Results are ordered by descending score, ties by ``doc_id``.
        Documents with non-positive similarity are dropped.
        """
        if not self._doc_ids or top_k <= 0:
            return []

        query = np.asarray(query_embedding, dtype=np.float32).reshape(-1)
        norm = float(np.linalg.norm(query))
        if norm < _EPS:
            logger.warning("rag.zero_norm_query")
            return []
        similarities = self._embeddings @ (query / norm)

        if filters:
            similarities = np.where(self._filter_mask(filters), similarities, -np.inf)

        k = min(top_k, len(self._doc_ids))
        if k < len(self._doc_ids):
            candidates = np.argpartition(-similarities, k)[:k]
        else:
            candidates = np.arange(len(self._doc_ids))

        hits = [
            SearchResult(
                doc_id=self._doc_ids[int(i)],
                score=float(similarities[int(i)]),
                metadata=self._metadata[int(i)],
            )
            for i in candidates
            if similarities[int(i)] > 0.0
        ]
        hits.sort(key=lambda r: (-r.score, r.doc_id))
        return hits[:k]

    def _filter_mask(self, filters: dict) -> np.ndarray:
        mask = np.ones(len(self._doc_ids), dtype=bool)
        for i, doc in enumerate(self._metadata):
            for key, value in filters.items():
                if doc.get(key) != value:
                    mask[i] = False
                    break
        return mask

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._index_map

    @property
    def corpus_size(self) -> int:
        return len(self._doc_ids)

    @property
    def embedding_dim(self) -> int:
        return self._dim
