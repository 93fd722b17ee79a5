"""Match orchestrator: the public entry point of the eligibility engine.

Sequences candidate retrieval, rule evaluation (with free-text criteria
interpretation where a scheme needs it) and scoring for one profile.
Each request walks the state machine::

    received -> retrieving -> evaluating [-> degraded] -> scoring -> complete

``degraded`` is entered when retrieval fell back to the local catalog
snapshot or any candidate's free-text criteria could not be interpreted
confidently.  The result still completes, annotated.  The only error a
caller sees is :class:`~src.services.matching.errors.ValidationError`
for an incomplete profile.

Interactive requests and background sweeps run in separate concurrency
lanes so a large sweep cannot starve interactive traffic of retrieval or
interpretation capacity.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Literal

import structlog

from src.models.enums import ConfidenceLevel, MatchState, RetrievalSource
from src.models.match import EvaluationOutcome, MatchResult, SchemeMatch
from src.services.matching.errors import PredicateCorruption, RetrievalUnavailable, ValidationError
from src.services.matching.history import MatchHistory
from src.services.matching.rules import RuleEvaluator, predicates_from_criteria
from src.services.matching.scorer import SchemeScorer

if TYPE_CHECKING:
    from src.models.user_profile import UserProfile
    from src.services.matching.interfaces import SchemeFilter
    from src.services.matching.interpreter import CriteriaInterpreter
    from src.services.matching.retriever import Candidate, CandidateRetriever

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

Lane = Literal["interactive", "sweep"]


def _today_utc() -> date:
    return datetime.now(UTC).date()


@dataclass(slots=True)
class _Evaluated:
    candidate: Candidate
    outcome: EvaluationOutcome
    confidence: ConfidenceLevel
    note: str | None = None


class MatchOrchestrator:
    """Runs ``match(profile, query_text)`` end to end.

    Parameters
    ----------
    retriever:
        Candidate retriever (vector search + snapshot fallback).
    interpreter:
        Cached, confidence-gated free-text criteria interpreter.
    evaluator, scorer:
        Rule evaluator and scorer; defaults use default configuration.
    history:
        Evaluation history updated after every match, consumed by the
        re-evaluation trigger.
    interactive_concurrency, sweep_concurrency:
        Sizes of the two external-call lanes.
    clock:
        Returns "today" for deadline checks; injectable for tests.
    """

    __slots__ = (
        "_clock",
        "_evaluator",
        "_history",
        "_interpreter",
        "_lanes",
        "_retriever",
        "_scorer",
    )

    def __init__(
        self,
        retriever: CandidateRetriever,
        interpreter: CriteriaInterpreter,
        *,
        evaluator: RuleEvaluator | None = None,
        scorer: SchemeScorer | None = None,
        history: MatchHistory | None = None,
        interactive_concurrency: int = 32,
        sweep_concurrency: int = 4,
        clock: Callable[[], date] = _today_utc,
    ) -> None:
        self._retriever = retriever
        self._interpreter = interpreter
        self._evaluator = evaluator or RuleEvaluator()
        self._scorer = scorer or SchemeScorer()
        self._history = history or MatchHistory()
        self._clock = clock
        self._lanes: dict[str, asyncio.Semaphore] = {
            "interactive": asyncio.Semaphore(interactive_concurrency),
            "sweep": asyncio.Semaphore(sweep_concurrency),
        }

    @property
    def history(self) -> MatchHistory:
        return self._history

    @property
    def retriever(self) -> CandidateRetriever:
        return self._retriever

    @property
    def interpreter(self) -> CriteriaInterpreter:
        return self._interpreter

    def today(self) -> date:
        """The matching date, from the injected clock."""
        return self._clock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def match(
        self,
        profile: UserProfile,
        query_text: str | None = None,
        *,
        filters: SchemeFilter | None = None,
        top_k: int | None = None,
        lane: Lane = "interactive",
    ) -> MatchResult:
        """Match *profile* against the catalog.

        Parameters
        ----------
        profile:
            A complete profile (see ``UserProfile.missing_required_fields``).
        query_text:
            Optional free-text need ("pension for my mother").  Without it
            every active scheme passing *filters* is evaluated.
        filters:
            Structural filters (category, location, explicit scheme ids).
        top_k:
            Candidate bound; defaults to the retriever's configured top-K
            for text queries and to "all" for filter-only matching.
        lane:
            ``"interactive"`` for user requests, ``"sweep"`` for background
            re-evaluation.

        Returns
        -------
        MatchResult
            Ranked primary matches, near matches when nothing fully
            matches, and an explanation that is never empty when both
            lists are.

        Raises
        ------
        ValidationError
            If the profile lacks required fields.
        ValueError
            If *top_k* is negative or *lane* unknown.
        """
        missing = profile.missing_required_fields()
        if missing:
            raise ValidationError(
                f"profile {profile.profile_id} is missing required fields: {', '.join(missing)}",
                fields=missing,
            )
        if top_k is not None and top_k < 0:
            raise ValueError(f"top_k must be non-negative, got {top_k}")
        limiter = self._lanes.get(lane)
        if limiter is None:
            raise ValueError(f"unknown lane {lane!r}")

        pipeline_start = time.perf_counter()
        today = self._clock()
        result = MatchResult(
            profile_id=profile.profile_id,
            query=query_text,
            state_history=[MatchState.RECEIVED],
        )
        log = logger.bind(request_id=result.request_id, profile_id=profile.profile_id, lane=lane)
        log.info("match.start", has_query=bool(query_text), top_k=top_k)

        # -- Step 1: Retrieve candidates ---------------------------------------
        self._transition(result, MatchState.RETRIEVING)
        step_start = time.perf_counter()
        try:
            candidates = await self._retriever.retrieve(
                query_text, filters, top_k, today=today, limiter=limiter
            )
            result.retrieval_source = (
                RetrievalSource.VECTOR_INDEX if query_text and query_text.strip()
                else RetrievalSource.CATALOG_SCAN
            )
        except RetrievalUnavailable as exc:
            log.warning("match.retrieval_fallback", reason=str(exc))
            candidates = await self._retriever.snapshot_scan(query_text, filters, top_k, today=today)
            result.retrieval_source = RetrievalSource.SNAPSHOT
            result.degraded = True
            result.annotations.append(
                "Scheme search was unavailable; candidates come from the locally cached catalog."
            )
        result.timings_ms["retrieval"] = _elapsed_ms(step_start)
        log.info("match.candidates", count=len(candidates), source=result.retrieval_source.value)

        # -- Step 2: Evaluate eligibility --------------------------------------
        self._transition(result, MatchState.EVALUATING)
        step_start = time.perf_counter()
        evaluated = await asyncio.gather(
            *(self._evaluate(c, profile, limiter, log) for c in candidates)
        )
        kept = [e for e in evaluated if e is not None]
        result.skipped_scheme_ids = sorted(
            c.scheme.scheme_id for c, e in zip(candidates, evaluated, strict=True) if e is None
        )
        result.evaluated_count = len(kept)
        low = sorted(e.candidate.scheme.scheme_id for e in kept if e.confidence is ConfidenceLevel.LOW)
        if low:
            result.degraded = True
            result.annotations.append(
                "Free-text eligibility conditions could not be checked automatically for: "
                + ", ".join(low)
            )
        if result.degraded:
            self._transition(result, MatchState.DEGRADED)
        result.timings_ms["evaluation"] = _elapsed_ms(step_start)

        # -- Step 3: Score and rank --------------------------------------------
        self._transition(result, MatchState.SCORING)
        step_start = time.perf_counter()
        max_benefit = max((e.candidate.scheme.benefit.amount for e in kept), default=0.0)
        scored: list[SchemeMatch] = []
        for e in kept:
            scheme_match = self._scorer.score(
                e.candidate.scheme,
                e.outcome,
                e.candidate.similarity,
                max_benefit=max_benefit,
                today=today,
                confidence=e.confidence,
            )
            scored.append(scheme_match)
            self._history.record(
                profile.profile_id, scheme_match.scheme_id, len(scheme_match.missing_criteria)
            )

        result.primary = self._scorer.rank([m for m in scored if m.fully_eligible])
        if not result.primary:
            result.near_matches = self._scorer.near_matches(scored)
        result.explanation = self._summarise(result, scored, candidates)
        result.timings_ms["scoring"] = _elapsed_ms(step_start)

        self._transition(result, MatchState.COMPLETE)
        result.timings_ms["total"] = _elapsed_ms(pipeline_start)
        log.info(
            "match.complete",
            primary=len(result.primary),
            near_matches=len(result.near_matches),
            skipped=len(result.skipped_scheme_ids),
            degraded=result.degraded,
            total_ms=result.timings_ms["total"],
        )
        return result

    # ------------------------------------------------------------------
    # Per-candidate evaluation
    # ------------------------------------------------------------------

    async def _evaluate(
        self,
        candidate: Candidate,
        profile: UserProfile,
        limiter: asyncio.Semaphore,
        log: structlog.stdlib.BoundLogger,
    ) -> _Evaluated | None:
        scheme = candidate.scheme
        try:
            structured = predicates_from_criteria(scheme.eligibility, scheme_id=scheme.scheme_id)
            outcome = self._evaluator.evaluate(structured, profile)
        except PredicateCorruption as exc:
            log.error(
                "match.predicate_corruption",
                scheme_id=scheme.scheme_id,
                version=scheme.version,
                reason=str(exc),
            )
            return None

        if not (scheme.eligibility.custom_rules or "").strip():
            return _Evaluated(candidate, outcome, ConfidenceLevel.HIGH)

        interpreted = await self._interpreter.interpret(scheme, limiter=limiter)
        if interpreted.low_confidence:
            return _Evaluated(candidate, outcome, ConfidenceLevel.LOW, interpreted.note)

        try:
            outcome = self._evaluator.evaluate(structured + interpreted.predicates, profile)
        except PredicateCorruption as exc:
            # Bad interpreted output degrades this scheme; the structured
            # verdict still stands.
            log.warning(
                "match.interpreted_predicate_invalid",
                scheme_id=scheme.scheme_id,
                version=scheme.version,
                reason=str(exc),
            )
            return _Evaluated(candidate, outcome, ConfidenceLevel.LOW, "interpreted criteria were invalid")
        return _Evaluated(candidate, outcome, ConfidenceLevel.MEDIUM)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _transition(result: MatchResult, state: MatchState) -> None:
        result.state = state
        result.state_history.append(state)

    @staticmethod
    def _summarise(
        result: MatchResult,
        scored: list[SchemeMatch],
        candidates: list[Candidate],
    ) -> str:
        if result.primary:
            top = result.primary[0]
            noun = "scheme matches" if len(result.primary) == 1 else "schemes match"
            return f"{len(result.primary)} {noun} your profile. Best match: {top.scheme_name}."
        if result.near_matches:
            closest = result.near_matches[0]
            return (
                f"No scheme fully matches your profile yet. {closest.scheme_name} is closest; "
                f"missing: {'; '.join(closest.missing_criteria)}."
            )
        if not candidates:
            return "No active, open schemes were found for this search."
        if not scored:
            return "The candidate schemes could not be evaluated because their eligibility data is invalid."
        closest = min(scored, key=lambda m: (len(m.missing_criteria), m.scheme_id))
        return (
            f"None of the {len(scored)} schemes evaluated match your profile. "
            f"The closest, {closest.scheme_name}, is missing {len(closest.missing_criteria)} "
            f"criteria: {'; '.join(closest.missing_criteria)}."
        )


def _elapsed_ms(start: float) -> float:
    """Return milliseconds elapsed since *start* (a ``perf_counter`` value)."""
    return round((time.perf_counter() - start) * 1000, 2)
