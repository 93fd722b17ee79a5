"""Tests for the NumPy vector index."""

from __future__ import annotations

import numpy as np
import pytest

from src.services.rag import RAGService


# -----------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------

def _make_embedding(dim: int, nonzero_idx: int = 0, value: float = 1.0) -> list[float]:
    """Create a sparse embedding with a single non-zero dimension."""
    vec = [0.0] * dim
    vec[nonzero_idx] = value
    return vec


def _make_random_embedding(dim: int, seed: int = 42) -> list[float]:
    rng = np.random.default_rng(seed)
    vec = rng.standard_normal(dim).astype(np.float32)
    return (vec / np.linalg.norm(vec)).tolist()


# -----------------------------------------------------------------------
# Indexing and search
# -----------------------------------------------------------------------


class TestRAGServiceBasic:
    async def test_empty_index_returns_empty(self) -> None:
        rag = RAGService(embedding_dim=8)
        assert await rag.search(_make_embedding(8)) == [], "search on an empty index should return []"

    async def test_embedding_dim_property(self) -> None:
        assert RAGService(embedding_dim=128).embedding_dim == 128

    async def test_index_document_and_search(self) -> None:
        rag = RAGService(embedding_dim=8)
        emb = _make_embedding(8, nonzero_idx=0)
        await rag.index_document("ignoaps", emb, {"name": "Old Age Pension"})

        results = await rag.search(emb, top_k=1)

        assert rag.corpus_size == 1
        assert results[0].doc_id == "ignoaps"
        assert results[0].score == pytest.approx(1.0, abs=1e-5)

    async def test_index_document_update_in_place(self) -> None:
        rag = RAGService(embedding_dim=8)
        await rag.index_document("doc1", _make_embedding(8, 0), {"version": 1})
        await rag.index_document("doc1", _make_embedding(8, 1), {"version": 2})

        results = await rag.search(_make_embedding(8, 1), top_k=1)

        assert rag.corpus_size == 1, "updating a document should not increase corpus_size"
        assert results[0].metadata["version"] == 2

    async def test_wrong_dimension_rejected(self) -> None:
        rag = RAGService(embedding_dim=8)
        with pytest.raises(ValueError):
            await rag.index_document("doc1", [1.0, 0.0], {})

    async def test_results_ordered_and_bounded(self) -> None:
        rag = RAGService(embedding_dim=8)
        for i in range(5):
            await rag.index_document(f"doc{i}", _make_embedding(8, i), {})
        query = [1.0, 0.5, 0.25, 0.0, 0.0, 0.0, 0.0, 0.0]

        results = await rag.search(query, top_k=2)

        assert [r.doc_id for r in results] == ["doc0", "doc1"]
        assert results[0].score > results[1].score

    async def test_non_positive_scores_dropped(self) -> None:
        rag = RAGService(embedding_dim=4)
        await rag.index_document("orthogonal", _make_embedding(4, 1), {})
        await rag.index_document("opposite", _make_embedding(4, 0, value=-1.0), {})
        assert await rag.search(_make_embedding(4, 0), top_k=5) == []

    async def test_zero_query_returns_empty(self) -> None:
        rag = RAGService(embedding_dim=4)
        await rag.index_document("doc", _make_embedding(4, 0), {})
        assert await rag.search([0.0, 0.0, 0.0, 0.0]) == []

    async def test_ties_break_on_doc_id(self) -> None:
        rag = RAGService(embedding_dim=4)
        emb = _make_embedding(4, 2)
        await rag.index_document("zeta", emb, {})
        await rag.index_document("alpha", emb, {})
        assert [r.doc_id for r in await rag.search(emb)] == ["alpha", "zeta"]


class TestRAGServiceBatchAndRemoval:
    async def test_index_batch(self) -> None:
        rag = RAGService(embedding_dim=16)
        docs = [(f"s{i}", _make_random_embedding(16, seed=i), {"n": i}) for i in range(10)]
        await rag.index_batch(docs)

        results = await rag.search(docs[3][1], top_k=1)

        assert rag.corpus_size == 10
        assert results[0].doc_id == "s3"

    async def test_index_batch_empty_is_noop(self) -> None:
        rag = RAGService(embedding_dim=4)
        await rag.index_batch([])
        assert rag.corpus_size == 0

    async def test_remove_document_compacts(self) -> None:
        rag = RAGService(embedding_dim=8)
        for i in range(3):
            await rag.index_document(f"doc{i}", _make_embedding(8, i), {"i": i})

        assert await rag.remove_document("doc0") is True
        assert await rag.remove_document("doc0") is False

        assert rag.corpus_size == 2
        assert "doc0" not in rag
        moved = await rag.search(_make_embedding(8, 2), top_k=1)
        assert moved[0].doc_id == "doc2" and moved[0].metadata == {"i": 2}


class TestRAGServiceFilters:
    async def test_filters_exclude_documents(self) -> None:
        rag = RAGService(embedding_dim=4)
        emb = _make_embedding(4, 0)
        await rag.index_document("active", emb, {"is_active": True, "category": "health"})
        await rag.index_document("inactive", emb, {"is_active": False, "category": "health"})
        await rag.index_document("other", emb, {"is_active": True, "category": "housing"})

        results = await rag.search(emb, filters={"is_active": True, "category": "health"})

        assert [r.doc_id for r in results] == ["active"]
