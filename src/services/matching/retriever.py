"""Candidate retrieval: bounded top-K scheme candidates for one request.

With query text the retriever embeds it, asks the similarity provider
for an over-fetched hit list, re-resolves every hit against the scheme
store (so a scheme deactivated mid-query never surfaces) and applies the
structural filters before truncating.  Without query text it enumerates
the active catalog through the filters alone.

A local snapshot of the active catalog, maintained from scheme change
events, backs :meth:`CandidateRetriever.snapshot_scan` for when the
similarity provider is unavailable.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from datetime import date
from typing import Final

import structlog

from src.models.enums import ChangeType
from src.models.events import SchemeChangeEvent
from src.models.scheme import SchemeDocument
from src.services.matching.errors import RetrievalUnavailable
from src.services.matching.interfaces import SchemeFilter, SchemeStore, SimilaritySearchProvider

logger = structlog.get_logger(__name__)

_TOKEN_RE: Final[re.Pattern[str]] = re.compile(r"\w+", flags=re.UNICODE)


@dataclass(frozen=True, slots=True)
class Candidate:
    scheme: SchemeDocument
    similarity: float = 0.0


def _order_key(candidate: Candidate) -> tuple[float, float, str]:
    # Higher similarity first, then newer revision, then id.
    return (
        -candidate.similarity,
        -candidate.scheme.updated_at.timestamp(),
        candidate.scheme.scheme_id,
    )


def _lexical_similarity(query: str, scheme: SchemeDocument) -> float:
    """Token-overlap score in [0, 1] used only for snapshot fallback."""
    wanted = {t.lower() for t in _TOKEN_RE.findall(query)}
    if not wanted:
        return 0.0
    haystack = {t.lower() for t in _TOKEN_RE.findall(f"{scheme.name} {scheme.description}")}
    return round(len(wanted & haystack) / len(wanted), 6)


class CandidateRetriever:
    """Vector + filter candidate retrieval with a snapshot fallback.

    Parameters
    ----------
    store:
        Scheme store used to enumerate and re-resolve schemes.
    search:
        Similarity provider; ``None`` makes every query-text retrieval
        raise :class:`RetrievalUnavailable`.
    timeout_seconds:
        Bound on embed + search together.
    overfetch:
        Multiplier on ``top_k`` for the raw hit list, since structural
        filtering happens after the vector search.
    default_top_k:
        Used when a query is given without an explicit ``top_k``.
    """

    __slots__ = ("_default_top_k", "_overfetch", "_search", "_snapshot", "_store", "_timeout")

    def __init__(
        self,
        store: SchemeStore,
        search: SimilaritySearchProvider | None,
        *,
        timeout_seconds: float = 0.8,
        overfetch: int = 3,
        default_top_k: int = 10,
    ) -> None:
        self._store = store
        self._search = search
        self._timeout = timeout_seconds
        self._overfetch = max(1, overfetch)
        self._default_top_k = default_top_k
        self._snapshot: dict[str, SchemeDocument] = {}

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def retrieve(
        self,
        query_text: str | None,
        filters: SchemeFilter | None = None,
        top_k: int | None = None,
        *,
        today: date,
        limiter: asyncio.Semaphore | None = None,
    ) -> list[Candidate]:
        """Return candidates ordered by similarity, newest revision, id.

        Raises
        ------
        ValueError
            If *top_k* is negative.
        RetrievalUnavailable
            If the similarity provider fails or exceeds its timeout.
        """
        if top_k is not None and top_k < 0:
            raise ValueError(f"top_k must be non-negative, got {top_k}")
        filters = filters or SchemeFilter()

        if not query_text or not query_text.strip():
            return await self._enumerate(filters, top_k, today)

        k = self._default_top_k if top_k is None else top_k
        if k == 0:
            return []
        if self._search is None:
            raise RetrievalUnavailable("no similarity search provider configured")

        try:
            if limiter is None:
                hits = await asyncio.wait_for(self._vector_hits(query_text, k, filters), self._timeout)
            else:
                async with limiter:
                    hits = await asyncio.wait_for(
                        self._vector_hits(query_text, k, filters), self._timeout
                    )
        except TimeoutError as exc:
            raise RetrievalUnavailable(
                f"similarity search exceeded {self._timeout}s"
            ) from exc
        except RetrievalUnavailable:
            raise
        except Exception as exc:
            raise RetrievalUnavailable(f"similarity search failed: {exc}") from exc

        candidates: list[Candidate] = []
        seen: set[str] = set()
        for scheme_id, similarity in hits:
            if scheme_id in seen:
                continue
            seen.add(scheme_id)
            scheme = await self._store.get_scheme(scheme_id)
            if scheme is None or not filters.accepts(scheme, today):
                continue
            candidates.append(Candidate(scheme=scheme, similarity=float(similarity)))

        candidates.sort(key=_order_key)
        logger.debug(
            "retriever.vector",
            hits=len(hits),
            accepted=len(candidates),
            top_k=k,
        )
        return candidates[:k]

    async def _vector_hits(
        self, query_text: str, k: int, filters: SchemeFilter
    ) -> list[tuple[str, float]]:
        assert self._search is not None  # noqa: S101
        vector = await self._search.embed(query_text)
        return await self._search.search(vector, k * self._overfetch, filters.as_search_filter())

    async def _enumerate(
        self, filters: SchemeFilter, top_k: int | None, today: date
    ) -> list[Candidate]:
        try:
            schemes = await self._store.get_active_schemes(filters)
        except Exception as exc:
            raise RetrievalUnavailable(f"scheme store unavailable: {exc}") from exc
        candidates = sorted(
            (Candidate(scheme=s) for s in schemes if filters.accepts(s, today)),
            key=lambda c: c.scheme.scheme_id,
        )
        return candidates if top_k is None else candidates[:top_k]

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    async def refresh_snapshot(self) -> int:
        """Reload the snapshot from the store; returns the number of schemes."""
        schemes = await self._store.get_active_schemes(SchemeFilter(include_closed=True))
        self._snapshot = {s.scheme_id: s for s in schemes if s.is_active}
        logger.info("retriever.snapshot_refreshed", schemes=len(self._snapshot))
        return len(self._snapshot)

    def apply_change(self, event: SchemeChangeEvent) -> None:
        """Keep the snapshot in step with a catalog mutation."""
        if event.change_type in (ChangeType.DEACTIVATED, ChangeType.DELETED) or not event.current.is_active:
            self._snapshot.pop(event.scheme_id, None)
            return
        known = self._snapshot.get(event.scheme_id)
        if known is None or known.version < event.current.version:
            self._snapshot[event.scheme_id] = event.current

    @property
    def snapshot_size(self) -> int:
        return len(self._snapshot)

    async def snapshot_scan(
        self,
        query_text: str | None,
        filters: SchemeFilter | None = None,
        top_k: int | None = None,
        *,
        today: date,
    ) -> list[Candidate]:
        """Scan the local snapshot, used when similarity search is down.

        Each snapshot entry is re-read from the scheme store, so a scheme
        deactivated before the change event reached the snapshot is still
        excluded.  If the store itself fails, the snapshot copy is used.
        """
        filters = filters or SchemeFilter()
        query = (query_text or "").strip()
        store_ok = True
        candidates: list[Candidate] = []
        for scheme_id, cached in sorted(self._snapshot.items()):
            scheme: SchemeDocument | None = cached
            if store_ok:
                try:
                    scheme = await self._store.get_scheme(scheme_id)
                except Exception:
                    logger.warning("retriever.snapshot_store_unavailable", exc_info=True)
                    store_ok = False
                    scheme = cached
            if scheme is None or not scheme.is_active:
                self._snapshot.pop(scheme_id, None)
                continue
            if not filters.accepts(scheme, today):
                continue
            similarity = _lexical_similarity(query, scheme) if query else 0.0
            candidates.append(Candidate(scheme=scheme, similarity=similarity))
        candidates.sort(key=_order_key if query else (lambda c: c.scheme.scheme_id))
        if query:
            k = self._default_top_k if top_k is None else top_k
            return candidates[:k]
        return candidates if top_k is None else candidates[:top_k]
