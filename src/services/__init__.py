"""Yojana Match service layer -- cache, vector index, stores, events and sweeps.

Exports are defined eagerly for services with no GCP dependency (cache,
rag, scheme_search, stores, notifications, reevaluation) and guarded for
the Vertex AI backed :class:`LLMService`, so that ``import src.services``
succeeds even when the GCP client libraries are broken at import time.
"""

from __future__ import annotations

from src.services.cache import CacheManager, InMemoryCacheBackend, RedisCacheBackend
from src.services.changelog import FieldChange, detect_changes, detect_criteria_changes
from src.services.notifications import EventFeed, NewlyEligibleStream, Subscription
from src.services.rag import RAGService, SearchResult
from src.services.reevaluation import ReevaluationTrigger, SweepJob, SweepReport
from src.services.scheme_search import SchemeSearchService
from src.services.stores import InMemoryProfileStore, InMemorySchemeStore, StaleVersionError

# Some GCP native extension failures raise pyo3_runtime.PanicException,
# which inherits from BaseException.
try:
    from src.services.llm import LLMService
except BaseException:  # pragma: no cover  # noqa: BLE001
    LLMService = None  # type: ignore[assignment,misc]

__all__ = [
    "CacheManager",
    "EventFeed",
    "FieldChange",
    "InMemoryCacheBackend",
    "InMemoryProfileStore",
    "InMemorySchemeStore",
    "LLMService",
    "NewlyEligibleStream",
    "RAGService",
    "RedisCacheBackend",
    "ReevaluationTrigger",
    "SchemeSearchService",
    "SearchResult",
    "StaleVersionError",
    "Subscription",
    "SweepJob",
    "SweepReport",
    "detect_changes",
    "detect_criteria_changes",
]
