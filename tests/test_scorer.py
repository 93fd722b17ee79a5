"""Tests for scoring, ranking and near-match selection."""

from __future__ import annotations

from datetime import date

import pytest

from src.models.enums import ConfidenceLevel, PredicateKind
from src.models.match import EligibilityPredicate, EvaluationOutcome, UnmetPredicate
from src.models.scheme import Benefit, SchemeCategory, SchemeDocument
from src.services.matching.scorer import SchemeScorer, ScoringWeights

TODAY = date(2026, 10, 19)


def _make_scheme(scheme_id: str = "s1", **overrides) -> SchemeDocument:
    defaults = {
        "scheme_id": scheme_id,
        "name": f"Scheme {scheme_id}",
        "category": SchemeCategory.SOCIAL_SECURITY,
        "is_ongoing": True,
        "benefit": Benefit(amount=12000),
    }
    defaults.update(overrides)
    return SchemeDocument(**defaults)


def _outcome(total: int, missing: list[str] | None = None) -> EvaluationOutcome:
    missing = missing or []
    unmet = [
        UnmetPredicate(predicate=EligibilityPredicate(kind=PredicateKind.AGE_RANGE, minimum=60), reason=r)
        for r in missing
    ]
    return EvaluationOutcome(
        satisfied=not missing,
        total=total,
        unmet=unmet,
        matched=[f"criterion {i}" for i in range(total - len(missing))],
    )


# -----------------------------------------------------------------------
# Weights
# -----------------------------------------------------------------------


class TestScoringWeights:
    def test_defaults(self) -> None:
        w = ScoringWeights()
        assert (w.eligibility, w.deadline, w.benefit) == (0.6, 0.15, 0.25)

    def test_must_sum_to_one(self) -> None:
        with pytest.raises(ValueError, match="sum to 1.0"):
            ScoringWeights(0.6, 0.2, 0.3)

    def test_negative_rejected(self) -> None:
        with pytest.raises(ValueError):
            ScoringWeights(1.1, -0.05, -0.05)

    def test_eligibility_must_dominate(self) -> None:
        with pytest.raises(ValueError, match="dominate"):
            ScoringWeights(0.4, 0.2, 0.4)

    def test_horizon_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            SchemeScorer(deadline_horizon_days=0)


# -----------------------------------------------------------------------
# Components
# -----------------------------------------------------------------------


class TestComponents:
    def test_deadline_component_curve(self) -> None:
        scorer = SchemeScorer(deadline_horizon_days=90)
        assert scorer.deadline_component(_make_scheme(), TODAY) == 1.0
        assert scorer.deadline_component(_make_scheme(is_ongoing=False), TODAY) == 1.0
        far = _make_scheme(is_ongoing=False, deadline=date(2027, 6, 1))
        assert scorer.deadline_component(far, TODAY) == 1.0
        near = _make_scheme(is_ongoing=False, deadline=date(2026, 11, 3))  # 15 days
        assert scorer.deadline_component(near, TODAY) == pytest.approx(15 / 90)
        past = _make_scheme(is_ongoing=False, deadline=date(2026, 10, 1))
        assert scorer.deadline_component(past, TODAY) == 0.0

    def test_benefit_component(self) -> None:
        assert SchemeScorer.benefit_component(6000, 12000) == 0.5
        assert SchemeScorer.benefit_component(0, 0) == 0.0

    def test_eligibility_component(self) -> None:
        assert SchemeScorer.eligibility_component(_outcome(4)) == 1.0
        assert SchemeScorer.eligibility_component(_outcome(4, ["a"])) == 0.75

    def test_score_combines_weights(self) -> None:
        scorer = SchemeScorer()
        match = scorer.score(
            _make_scheme(benefit=Benefit(amount=6000)),
            _outcome(2),
            0.7,
            max_benefit=12000,
            today=TODAY,
        )
        # 0.6 * 1 + 0.15 * 1 + 0.25 * 0.5
        assert match.score == pytest.approx(0.875)
        assert match.components.similarity == 0.7
        assert match.similarity == 0.7
        assert match.fully_eligible is True


# -----------------------------------------------------------------------
# Ranking
# -----------------------------------------------------------------------


class TestRanking:
    def test_higher_benefit_ranks_first(self) -> None:
        scorer = SchemeScorer()
        small = scorer.score(_make_scheme("small", benefit=Benefit(amount=3000)), _outcome(2), 0.0,
                             max_benefit=12000, today=TODAY)
        large = scorer.score(_make_scheme("large"), _outcome(2), 0.0, max_benefit=12000, today=TODAY)

        ranked = scorer.rank([small, large])

        assert [m.scheme_id for m in ranked] == ["large", "small"]
        assert [m.rank for m in ranked] == [1, 2]

    def test_ties_break_on_nearer_deadline_then_id(self) -> None:
        scorer = SchemeScorer(deadline_horizon_days=30)
        kwargs = {"max_benefit": 12000, "today": TODAY}
        # Both deadlines sit beyond the horizon, so the deadline components tie.
        later = scorer.score(
            _make_scheme("a-later", is_ongoing=False, deadline=date(2027, 5, 1)), _outcome(1), 0.0, **kwargs
        )
        sooner = scorer.score(
            _make_scheme("z-sooner", is_ongoing=False, deadline=date(2027, 1, 1)), _outcome(1), 0.0, **kwargs
        )
        undated = scorer.score(_make_scheme("b-undated"), _outcome(1), 0.0, **kwargs)
        assert later.score == sooner.score == undated.score

        ranked = scorer.rank([undated, later, sooner])

        assert [m.scheme_id for m in ranked] == ["z-sooner", "a-later", "b-undated"]

    def test_rank_is_deterministic(self) -> None:
        scorer = SchemeScorer()
        matches = [
            scorer.score(_make_scheme(sid), _outcome(1), 0.0, max_benefit=12000, today=TODAY)
            for sid in ("c", "a", "b")
        ]
        assert [m.scheme_id for m in scorer.rank(matches)] == ["a", "b", "c"]
        assert scorer.rank(matches) == scorer.rank(list(reversed(matches)))


class TestNearMatches:
    def test_only_one_or_two_missing_qualify(self) -> None:
        scorer = SchemeScorer()
        kwargs = {"max_benefit": 12000, "today": TODAY}
        matches = [
            scorer.score(_make_scheme("eligible"), _outcome(3), 0.0, **kwargs),
            scorer.score(_make_scheme("two-off"), _outcome(3, ["x", "y"]), 0.0, **kwargs),
            scorer.score(_make_scheme("one-off"), _outcome(3, ["x"]), 0.2, **kwargs),
            scorer.score(_make_scheme("far-off"), _outcome(3, ["x", "y", "z"]), 0.9, **kwargs),
        ]

        near = scorer.near_matches(matches)

        assert [m.scheme_id for m in near] == ["one-off", "two-off"]
        assert [m.rank for m in near] == [1, 2]

    def test_ties_break_on_similarity(self) -> None:
        scorer = SchemeScorer()
        kwargs = {"max_benefit": 12000, "today": TODAY}
        near = scorer.near_matches([
            scorer.score(_make_scheme("a"), _outcome(2, ["x"]), 0.1, **kwargs),
            scorer.score(_make_scheme("b"), _outcome(2, ["x"]), 0.8, **kwargs),
        ])
        assert [m.scheme_id for m in near] == ["b", "a"]

    def test_max_missing_is_configurable(self) -> None:
        scorer = SchemeScorer(near_match_max_missing=1)
        match = scorer.score(_make_scheme(), _outcome(3, ["x", "y"]), 0.0, max_benefit=1, today=TODAY)
        assert scorer.near_matches([match]) == []


# -----------------------------------------------------------------------
# Explanations
# -----------------------------------------------------------------------


class TestExplain:
    def test_eligible_explanation_lists_criteria(self) -> None:
        text = SchemeScorer.explain(_make_scheme(), _outcome(2))
        assert text == "You meet all 2 eligibility criteria for Scheme s1: criterion 0, criterion 1."

    def test_open_scheme_explanation(self) -> None:
        assert SchemeScorer.explain(_make_scheme(), _outcome(0)) == "Scheme s1 has no eligibility restrictions."

    def test_missing_criteria_are_named(self) -> None:
        text = SchemeScorer.explain(_make_scheme(), _outcome(3, ["age must be at least 60"]))
        assert text == (
            "Scheme s1: you meet 2 of 3 criteria. Missing 1 criterion: age must be at least 60."
        )

    def test_low_confidence_warns(self) -> None:
        text = SchemeScorer.explain(_make_scheme(), _outcome(1), ConfidenceLevel.LOW)
        assert "confirm them at the scheme office or CSC" in text

    def test_match_carries_missing_and_documents(self) -> None:
        scheme = _make_scheme(documents_required=["Aadhaar card"])
        match = SchemeScorer().score(
            scheme, _outcome(2, ["gender must be female"]), 0.0, max_benefit=12000, today=TODAY
        )
        assert match.missing_criteria == ["gender must be female"]
        assert match.unmet_predicates == ["age_range"]
        assert match.documents_required == ["Aadhaar card"]
        assert match.fully_eligible is False
