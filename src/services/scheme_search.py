"""Similarity search over schemes with local feature-hashing embeddings.

Implements the similarity search provider contract used by the candidate
retriever.  Embeddings are produced locally with the signed hashing
trick over unigrams and bigrams, so no external embedding API is needed
and identical text always yields the identical vector.  Vectors are
stored in :class:`~src.services.rag.RAGService`.
"""

from __future__ import annotations

import hashlib

import numpy as np
import structlog

from src.models.scheme import SchemeDocument
from src.services.rag import RAGService

logger = structlog.get_logger(__name__)

_STRIP_CHARS = ".,;:!?\"'()[]{}/-"


class SchemeSearchService:
    """Embedding + vector search adapter for the scheme catalog.

    Parameters
    ----------
    rag:
        Vector index; its ``embedding_dim`` fixes the embedding size.
    """

    __slots__ = ("_dim", "_rag")

    def __init__(self, rag: RAGService) -> None:
        self._rag = rag
        self._dim = rag.embedding_dim

    # ------------------------------------------------------------------
    # Provider contract
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> list[float]:
        return self.text_to_embedding(text, self._dim)

    async def search(
        self,
        vector: list[float],
        top_k: int,
        filters: dict | None = None,
    ) -> list[tuple[str, float]]:
        results = await self._rag.search(vector, top_k=top_k, filters=filters)
        return [(r.doc_id, r.score) for r in results]

    # ------------------------------------------------------------------
    # Index maintenance
    # ------------------------------------------------------------------

    async def initialize(self, schemes: list[SchemeDocument]) -> None:
        """Batch-index every active scheme in *schemes*."""
        active = [s for s in schemes if s.is_active]
        if not active:
            logger.warning("scheme_search.no_schemes_to_index")
            return
        batch = [
            (s.scheme_id, self._embedding_for(s), self.scheme_metadata(s))
            for s in active
        ]
        await self._rag.index_batch(batch)
        logger.info("scheme_search.initialized", scheme_count=len(active), embedding_dim=self._dim)

    async def index_scheme(self, scheme: SchemeDocument) -> None:
        """Upsert *scheme*; inactive schemes are removed instead."""
        if not scheme.is_active:
            await self.remove_scheme(scheme.scheme_id)
            return
        await self._rag.index_document(
            scheme.scheme_id, self._embedding_for(scheme), self.scheme_metadata(scheme)
        )

    async def remove_scheme(self, scheme_id: str) -> None:
        removed = await self._rag.remove_document(scheme_id)
        if removed:
            logger.info("scheme_search.removed", scheme_id=scheme_id)

    @property
    def indexed_count(self) -> int:
        return self._rag.corpus_size

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    def _embedding_for(self, scheme: SchemeDocument) -> list[float]:
        # Precomputed vectors of the right size win over local hashing.
        if scheme.embedding is not None and len(scheme.embedding) == self._dim:
            return scheme.embedding
        return self.text_to_embedding(self.scheme_text(scheme), self._dim)

    @staticmethod
    def text_to_embedding(text: str, dim: int) -> list[float]:
        """Signed feature hashing of unigrams and bigrams, L2-normalised.

        Each n-gram picks a dimension from one MD5 digest and a sign
        (+1 / -1) from another, which keeps hash collisions unbiased.
        """
        vec = np.zeros(dim, dtype=np.float64)
        tokens = [
            cleaned
            for word in text.lower().split()
            if (cleaned := word.strip(_STRIP_CHARS)) and len(cleaned) > 1
        ]
        if not tokens:
            return vec.tolist()

        ngrams = tokens + [f"{a}_{b}" for a, b in zip(tokens, tokens[1:], strict=False)]
        for ngram in ngrams:
            h1 = hashlib.md5(ngram.encode(), usedforsecurity=False).hexdigest()
            h2 = hashlib.md5(f"{ngram}_sign".encode(), usedforsecurity=False).hexdigest()
            sign = 1.0 if int(h2[0], 16) % 2 == 0 else -1.0
            vec[int(h1[:8], 16) % dim] += sign

        norm = np.linalg.norm(vec)
        if norm > 1e-10:
            vec = vec / norm
        return vec.tolist()

    @staticmethod
    def scheme_text(scheme: SchemeDocument) -> str:
        """Searchable text for a scheme; the name is repeated for weight."""
        elig = scheme.eligibility
        parts: list[str] = [
            scheme.name,
            scheme.name,
            scheme.description,
            scheme.benefit.description,
            f"category {scheme.category.value}",
            f"ministry {scheme.ministry}",
        ]
        parts.extend(elig.locations)
        parts.extend(elig.occupations)
        parts.extend(f"caste {c.value}" for c in elig.caste_categories)
        if elig.gender is not None:
            parts.append(elig.gender.value)
        if elig.disability_required:
            parts.append("disability divyang")
        if elig.pregnancy_required:
            parts.append("pregnant women maternity")
        if elig.custom_rules:
            parts.append(elig.custom_rules)
        return " ".join(p for p in parts if p)

    @staticmethod
    def scheme_metadata(scheme: SchemeDocument) -> dict:
        """Flat metadata used for index-side filtering."""
        return {
            "scheme_id": scheme.scheme_id,
            "name": scheme.name,
            "category": scheme.category.value,
            "is_active": scheme.is_active,
            "version": scheme.version,
        }
