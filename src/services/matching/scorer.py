"""Scoring and ranking of evaluated scheme candidates.

Score composition::

    eligibility = 1.0 if satisfied else satisfied / total
    deadline    = 1.0 when ongoing, undated or at least ``horizon`` days out;
                  days_left / horizon inside the horizon; 0.0 once past
    benefit     = amount / max amount among this request's candidates
    final       = w_e * eligibility + w_d * deadline + w_b * benefit

Ranking is a total order: descending final score, fewer missing
criteria, nearer deadline (undated last), scheme id.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING

from src.models.enums import ConfidenceLevel
from src.models.match import EvaluationOutcome, SchemeMatch, ScoreBreakdown
from src.models.scheme import SchemeDocument

if TYPE_CHECKING:
    from config.settings import Settings

_SCORE_PRECISION = 6


@dataclass(frozen=True, slots=True)
class ScoringWeights:
    eligibility: float = 0.6
    deadline: float = 0.15
    benefit: float = 0.25

    def __post_init__(self) -> None:
        parts = (self.eligibility, self.deadline, self.benefit)
        if any(w < 0 for w in parts):
            raise ValueError("scoring weights must be non-negative")
        if not math.isclose(sum(parts), 1.0, abs_tol=1e-6):
            raise ValueError(f"scoring weights must sum to 1.0, got {sum(parts):.6f}")
        if self.eligibility <= max(self.deadline, self.benefit):
            raise ValueError("eligibility weight must dominate the other weights")

    @classmethod
    def from_settings(cls, settings: Settings) -> ScoringWeights:
        return cls(
            eligibility=settings.weight_eligibility,
            deadline=settings.weight_deadline,
            benefit=settings.weight_benefit,
        )


def _deadline_key(match: SchemeMatch) -> tuple[int, date]:
    if match.nearest_deadline is None:
        return (1, date.max)
    return (0, match.nearest_deadline)


def ranking_key(match: SchemeMatch) -> tuple[float, int, tuple[int, date], str]:
    return (-match.score, len(match.missing_criteria), _deadline_key(match), match.scheme_id)


def near_match_key(match: SchemeMatch) -> tuple[int, float, str]:
    return (len(match.missing_criteria), -match.similarity, match.scheme_id)


class SchemeScorer:
    """Turns (scheme, evaluation outcome, similarity) into ranked matches."""

    __slots__ = ("_horizon", "_max_missing", "_weights")

    def __init__(
        self,
        weights: ScoringWeights | None = None,
        *,
        deadline_horizon_days: int = 90,
        near_match_max_missing: int = 2,
    ) -> None:
        if deadline_horizon_days <= 0:
            raise ValueError("deadline_horizon_days must be positive")
        self._weights = weights or ScoringWeights()
        self._horizon = deadline_horizon_days
        self._max_missing = near_match_max_missing

    @property
    def weights(self) -> ScoringWeights:
        return self._weights

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def deadline_component(self, scheme: SchemeDocument, today: date) -> float:
        days_left = scheme.days_until_deadline(today)
        if days_left is None:
            return 1.0
        if days_left < 0:
            return 0.0
        return min(1.0, days_left / self._horizon)

    @staticmethod
    def benefit_component(amount: float, max_amount: float) -> float:
        if max_amount <= 0:
            return 0.0
        return min(1.0, amount / max_amount)

    @staticmethod
    def eligibility_component(outcome: EvaluationOutcome) -> float:
        return 1.0 if outcome.satisfied else outcome.satisfied_fraction

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def score(
        self,
        scheme: SchemeDocument,
        outcome: EvaluationOutcome,
        similarity: float,
        *,
        max_benefit: float,
        today: date,
        confidence: ConfidenceLevel = ConfidenceLevel.HIGH,
    ) -> SchemeMatch:
        """Build an unranked :class:`SchemeMatch` for one evaluated candidate.

        Parameters
        ----------
        scheme:
            The candidate scheme.
        outcome:
            Rule evaluator verdict for the profile.
        similarity:
            Retrieval similarity (0 for filter-only retrieval).
        max_benefit:
            Largest benefit amount in this request's candidate set.
        today:
            Reference date for deadline proximity.
        confidence:
            High for structured-only criteria, Medium when free text was
            interpreted, Low when interpretation was not possible.
        """
        components = ScoreBreakdown(
            eligibility=self.eligibility_component(outcome),
            deadline=self.deadline_component(scheme, today),
            benefit=self.benefit_component(scheme.benefit.amount, max_benefit),
            similarity=similarity,
        )
        w = self._weights
        final = (
            w.eligibility * components.eligibility
            + w.deadline * components.deadline
            + w.benefit * components.benefit
        )
        final = round(min(1.0, max(0.0, final)), _SCORE_PRECISION)

        deadline = None if scheme.is_ongoing else scheme.deadline
        return SchemeMatch(
            scheme_id=scheme.scheme_id,
            scheme_name=scheme.name,
            scheme_version=scheme.version,
            category=scheme.category,
            score=final,
            components=components,
            missing_criteria=[u.reason for u in outcome.unmet],
            unmet_predicates=outcome.unmet_refs,
            matched_criteria=list(outcome.matched),
            confidence=confidence,
            estimated_benefit=scheme.benefit.amount,
            nearest_deadline=deadline,
            similarity=round(similarity, _SCORE_PRECISION),
            explanation=self.explain(scheme, outcome, confidence),
            documents_required=list(scheme.documents_required),
        )

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    @staticmethod
    def rank(matches: list[SchemeMatch]) -> list[SchemeMatch]:
        """Order by the ranking key and assign 1-based ranks."""
        ordered = sorted(matches, key=ranking_key)
        return [m.model_copy(update={"rank": i}) for i, m in enumerate(ordered, start=1)]

    def near_matches(self, matches: list[SchemeMatch]) -> list[SchemeMatch]:
        """Schemes failing by 1 to ``near_match_max_missing`` predicates."""
        near = [m for m in matches if 1 <= len(m.missing_criteria) <= self._max_missing]
        near.sort(key=near_match_key)
        return [m.model_copy(update={"rank": i}) for i, m in enumerate(near, start=1)]

    # ------------------------------------------------------------------
    # Explanations
    # ------------------------------------------------------------------

    @staticmethod
    def explain(
        scheme: SchemeDocument,
        outcome: EvaluationOutcome,
        confidence: ConfidenceLevel = ConfidenceLevel.HIGH,
    ) -> str:
        if outcome.satisfied:
            if outcome.total == 0:
                text = f"{scheme.name} has no eligibility restrictions."
            else:
                text = (
                    f"You meet all {outcome.total} eligibility criteria for {scheme.name}: "
                    f"{', '.join(outcome.matched)}."
                )
        else:
            met = outcome.total - len(outcome.unmet)
            missing = "; ".join(u.reason for u in outcome.unmet)
            noun = "criterion" if len(outcome.unmet) == 1 else "criteria"
            text = (
                f"{scheme.name}: you meet {met} of {outcome.total} criteria. "
                f"Missing {len(outcome.unmet)} {noun}: {missing}."
            )
        if confidence is ConfidenceLevel.LOW:
            text += (
                " Some conditions are written in free text and could not be checked"
                " automatically; confirm them at the scheme office or CSC."
            )
        return text
