"""Criteria interpreter: free-text eligibility clauses -> predicates.

Interpretations are cached per ``(scheme_id, version, text digest)``
through :class:`~src.services.cache.CacheManager`, so a clause is sent to
the reasoning provider at most once per scheme version.  Low-confidence
answers are cached too (asking again would not make the clause clearer);
provider errors and timeouts are not, so the next evaluation retries.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import structlog

from src.models.match import EligibilityPredicate
from src.models.scheme import SchemeDocument
from src.services.cache import CacheManager, stable_hash
from src.services.matching.interfaces import Interpretation, ReasoningProvider

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class InterpretedCriteria:
    """Interpreter verdict for one scheme version."""

    predicates: list[EligibilityPredicate] = field(default_factory=list)
    confidence: float = 1.0
    low_confidence: bool = False
    from_cache: bool = False
    note: str | None = None


class CriteriaInterpreter:
    """Confidence-gated, cached front end to a :class:`ReasoningProvider`.

    Parameters
    ----------
    provider:
        Anything with ``async interpret(text) -> Interpretation``.
    cache:
        Namespaced cache; entries are JSON dicts.
    timeout_seconds:
        Upper bound for a single provider call.
    confidence_threshold:
        Interpretations below this confidence contribute no predicates.
    ttl_seconds:
        Cache TTL.  Entries are also dropped eagerly on version bumps.
    """

    __slots__ = ("_cache", "_provider", "_threshold", "_timeout", "_ttl")

    def __init__(
        self,
        provider: ReasoningProvider,
        cache: CacheManager,
        *,
        timeout_seconds: float = 5.0,
        confidence_threshold: float = 0.6,
        ttl_seconds: int | None = None,
    ) -> None:
        if not 0.0 <= confidence_threshold <= 1.0:
            raise ValueError("confidence_threshold must be within [0, 1]")
        self._provider = provider
        self._cache = cache
        self._timeout = timeout_seconds
        self._threshold = confidence_threshold
        self._ttl = ttl_seconds

    @staticmethod
    def cache_key(scheme_id: str, version: int, text: str) -> str:
        return f"{scheme_id}:v{version}:{stable_hash(text)}"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def interpret(
        self,
        scheme: SchemeDocument,
        *,
        limiter: asyncio.Semaphore | None = None,
    ) -> InterpretedCriteria:
        """Interpret *scheme*'s ``custom_rules`` clause.

        Never raises for provider trouble: errors, timeouts and low
        confidence all yield zero predicates with ``low_confidence`` set.
        Cancellation propagates.
        """
        text = (scheme.eligibility.custom_rules or "").strip()
        if not text:
            return InterpretedCriteria()

        key = self.cache_key(scheme.scheme_id, scheme.version, text)
        cached = await self._cache.get(key)
        if cached is not None:
            interpretation = self._decode(cached)
            if interpretation is not None:
                logger.debug("interpreter.cache_hit", scheme_id=scheme.scheme_id, version=scheme.version)
                return self._gate(interpretation, scheme, from_cache=True)

        try:
            if limiter is None:
                interpretation = await asyncio.wait_for(self._provider.interpret(text), self._timeout)
            else:
                async with limiter:
                    interpretation = await asyncio.wait_for(
                        self._provider.interpret(text), self._timeout
                    )
        except TimeoutError:
            logger.warning(
                "interpreter.timeout",
                scheme_id=scheme.scheme_id,
                timeout_seconds=self._timeout,
            )
            return InterpretedCriteria(confidence=0.0, low_confidence=True, note="interpretation timed out")
        except Exception:
            logger.warning("interpreter.provider_failed", scheme_id=scheme.scheme_id, exc_info=True)
            return InterpretedCriteria(
                confidence=0.0, low_confidence=True, note="interpretation provider unavailable"
            )

        # Idempotent upsert; a concurrent miss may write the same entry twice.
        await self._cache.set(key, self._encode(interpretation, scheme), ttl_seconds=self._ttl)
        return self._gate(interpretation, scheme, from_cache=False)

    async def invalidate(self, scheme_id: str) -> int:
        """Drop every cached interpretation for *scheme_id*, all versions."""
        removed = await self._cache.delete_prefix(f"{scheme_id}:")
        logger.info("interpreter.invalidated", scheme_id=scheme_id, entries=removed)
        return removed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _gate(
        self,
        interpretation: Interpretation,
        scheme: SchemeDocument,
        *,
        from_cache: bool,
    ) -> InterpretedCriteria:
        if interpretation.confidence < self._threshold or not interpretation.predicates:
            logger.info(
                "interpreter.low_confidence",
                scheme_id=scheme.scheme_id,
                version=scheme.version,
                confidence=interpretation.confidence,
                threshold=self._threshold,
            )
            return InterpretedCriteria(
                confidence=interpretation.confidence,
                low_confidence=True,
                from_cache=from_cache,
                note="eligibility text could not be interpreted with enough confidence",
            )
        return InterpretedCriteria(
            predicates=list(interpretation.predicates),
            confidence=interpretation.confidence,
            from_cache=from_cache,
        )

    @staticmethod
    def _encode(interpretation: Interpretation, scheme: SchemeDocument) -> dict[str, Any]:
        return {
            "scheme_id": scheme.scheme_id,
            "version": scheme.version,
            "confidence": interpretation.confidence,
            "predicates": [p.model_dump(mode="json") for p in interpretation.predicates],
            "notes": list(interpretation.notes),
        }

    @staticmethod
    def _decode(payload: Any) -> Interpretation | None:
        if not isinstance(payload, dict):
            return None
        try:
            return Interpretation(
                predicates=[EligibilityPredicate.model_validate(p) for p in payload.get("predicates", [])],
                confidence=float(payload.get("confidence", 0.0)),
                notes=list(payload.get("notes", [])),
            )
        except (TypeError, ValueError):
            logger.warning("interpreter.cache_entry_invalid", scheme_id=payload.get("scheme_id"))
            return None
