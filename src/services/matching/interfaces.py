"""Capability contracts the engine consumes from its collaborators.

Concrete adapters live elsewhere (``src.services.scheme_search``,
``src.services.llm``, ``src.services.stores``); tests substitute fakes.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import date
from typing import Protocol, runtime_checkable

from src.models.events import ProfileChangeEvent, SchemeChangeEvent
from src.models.match import EligibilityPredicate
from src.models.scheme import SchemeCategory, SchemeDocument
from src.models.user_profile import UserProfile


@dataclass(slots=True)
class SchemeFilter:
    """Structural filter shared by the scheme store and the retriever."""

    category: SchemeCategory | None = None
    scheme_ids: frozenset[str] | None = None
    # Location names (state / district / block) of the profile; a scheme
    # passes when its location allow-list is empty or shares a name.
    locations: frozenset[str] | None = None
    include_closed: bool = False

    def accepts(self, scheme: SchemeDocument, today: date) -> bool:
        """Apply every structural condition, including the active flag."""
        if not scheme.is_active:
            return False
        if not self.include_closed and not scheme.is_open(today):
            return False
        if self.category is not None and scheme.category != self.category:
            return False
        if self.scheme_ids is not None and scheme.scheme_id not in self.scheme_ids:
            return False
        if self.locations is not None and scheme.eligibility.locations:
            wanted = {name.strip().lower() for name in self.locations}
            allowed = {name.strip().lower() for name in scheme.eligibility.locations}
            if not wanted & allowed:
                return False
        return True

    def as_search_filter(self) -> dict:
        """Flat metadata filter understood by the vector index."""
        filters: dict = {"is_active": True}
        if self.category is not None:
            filters["category"] = self.category.value
        return filters


@dataclass(slots=True)
class Interpretation:
    """What a reasoning provider understood from a free-text clause."""

    predicates: list[EligibilityPredicate] = field(default_factory=list)
    confidence: float = 0.0
    notes: list[str] = field(default_factory=list)


@runtime_checkable
class SimilaritySearchProvider(Protocol):
    async def embed(self, text: str) -> list[float]: ...

    async def search(
        self, vector: list[float], top_k: int, filters: dict | None = None
    ) -> list[tuple[str, float]]: ...


@runtime_checkable
class ReasoningProvider(Protocol):
    async def interpret(self, text: str) -> Interpretation: ...


@runtime_checkable
class SchemeStore(Protocol):
    async def get_active_schemes(self, filters: SchemeFilter | None = None) -> list[SchemeDocument]: ...

    async def get_scheme(self, scheme_id: str) -> SchemeDocument | None: ...

    def subscribe(self) -> AsyncIterator[SchemeChangeEvent]: ...


@runtime_checkable
class ProfileStore(Protocol):
    async def get_profile(self, profile_id: str) -> UserProfile | None: ...

    async def profile_ids(self) -> list[str]: ...

    def subscribe(self) -> AsyncIterator[ProfileChangeEvent]: ...
