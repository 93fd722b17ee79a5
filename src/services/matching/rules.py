"""Deterministic rules engine for structured eligibility predicates.

Pure functions only: no I/O, no clock, no shared state.  Every predicate
is checked (no short-circuit) so callers always get the complete list of
unmet criteria for explanations and near-match suggestions.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Final

from src.models.enums import PredicateKind
from src.models.match import EligibilityPredicate, EvaluationOutcome, UnmetPredicate
from src.models.scheme import EligibilityCriteria
from src.models.user_profile import UserProfile
from src.services.matching.errors import PredicateCorruption

_RANGE_KINDS: Final[frozenset[PredicateKind]] = frozenset({
    PredicateKind.AGE_RANGE,
    PredicateKind.INCOME_RANGE,
    PredicateKind.CHILDREN_COUNT,
})

_REQUIREMENT_KINDS: Final[frozenset[PredicateKind]] = frozenset({
    PredicateKind.DISABILITY,
    PredicateKind.PREGNANCY,
})

_ANY_VALUES: Final[frozenset[str]] = frozenset({"any", "all"})


# ---------------------------------------------------------------------------
# Criteria -> predicates
# ---------------------------------------------------------------------------


def predicates_from_criteria(
    criteria: EligibilityCriteria,
    *,
    scheme_id: str | None = None,
) -> list[EligibilityPredicate]:
    """Compile structured criteria into normalized predicates.

    Only restrictions that are actually present become predicates, so a
    scheme open to everyone compiles to an empty list.

    Raises
    ------
    PredicateCorruption
        If a range is inverted or a bound is negative.
    """
    predicates: list[EligibilityPredicate] = []

    def _range(kind: PredicateKind, low: float | None, high: float | None) -> None:
        if low is None and high is None:
            return
        if (low is not None and low < 0) or (high is not None and high < 0):
            raise PredicateCorruption(f"{kind.value} has a negative bound", scheme_id=scheme_id)
        if low is not None and high is not None and low > high:
            raise PredicateCorruption(
                f"{kind.value} is inverted ({low} > {high})", scheme_id=scheme_id
            )
        predicates.append(EligibilityPredicate(kind=kind, minimum=low, maximum=high))

    def _members(kind: PredicateKind, values: Iterable[object]) -> None:
        allowed = tuple(str(v) for v in values)
        if allowed:
            predicates.append(EligibilityPredicate(kind=kind, allowed=allowed))

    _range(PredicateKind.AGE_RANGE, criteria.min_age, criteria.max_age)
    _range(PredicateKind.INCOME_RANGE, criteria.min_income, criteria.max_income)
    if criteria.gender is not None:
        predicates.append(
            EligibilityPredicate(kind=PredicateKind.GENDER, allowed=(criteria.gender.value,))
        )
    _members(PredicateKind.LOCATION, criteria.locations)
    _members(PredicateKind.CASTE, (c.value for c in criteria.caste_categories))
    if criteria.disability_required:
        predicates.append(
            EligibilityPredicate(
                kind=PredicateKind.DISABILITY,
                required=True,
                minimum=criteria.min_disability_percentage,
            )
        )
    _members(PredicateKind.OCCUPATION, criteria.occupations)
    _members(PredicateKind.EDUCATION, (e.value for e in criteria.education_levels))
    _members(PredicateKind.MARITAL_STATUS, (m.value for m in criteria.marital_statuses))
    if criteria.pregnancy_required:
        predicates.append(EligibilityPredicate(kind=PredicateKind.PREGNANCY, required=True))
    _range(PredicateKind.CHILDREN_COUNT, criteria.min_children, criteria.max_children)

    return predicates


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def _rupees(amount: float) -> str:
    return f"Rs. {amount:,.0f}"


def _bounds(minimum: float | None, maximum: float | None, fmt: Callable[[float], str]) -> str:
    if minimum is not None and maximum is not None:
        return f"between {fmt(minimum)} and {fmt(maximum)}"
    if minimum is not None:
        return f"at least {fmt(minimum)}"
    return f"at most {fmt(maximum)}"  # type: ignore[arg-type]


def _whole(value: float) -> str:
    return f"{value:g}"


def _in_range(value: float, minimum: float | None, maximum: float | None) -> bool:
    if minimum is not None and value < minimum:
        return False
    if maximum is not None and value > maximum:
        return False
    return True


# ---------------------------------------------------------------------------
# Rule evaluator
# ---------------------------------------------------------------------------

# A check returns (satisfied, detail).  On success the detail is a
# matched-criteria label, on failure the missing-criteria descriptor.
_Check = Callable[[EligibilityPredicate, UserProfile], tuple[bool, str]]


class RuleEvaluator:
    """Evaluates normalized predicates against a profile (logical AND)."""

    __slots__ = ("_checks",)

    def __init__(self) -> None:
        self._checks: dict[PredicateKind, _Check] = {
            PredicateKind.AGE_RANGE: self._check_age,
            PredicateKind.INCOME_RANGE: self._check_income,
            PredicateKind.GENDER: self._check_gender,
            PredicateKind.LOCATION: self._check_location,
            PredicateKind.CASTE: self._check_caste,
            PredicateKind.DISABILITY: self._check_disability,
            PredicateKind.OCCUPATION: self._check_occupation,
            PredicateKind.EDUCATION: self._check_education,
            PredicateKind.MARITAL_STATUS: self._check_marital_status,
            PredicateKind.PREGNANCY: self._check_pregnancy,
            PredicateKind.CHILDREN_COUNT: self._check_children,
        }

    def evaluate(
        self,
        predicates: list[EligibilityPredicate],
        profile: UserProfile,
    ) -> EvaluationOutcome:
        """Evaluate every predicate and collect all unmet ones.

        Raises
        ------
        PredicateCorruption
            If any predicate is malformed.  Validation happens before
            evaluation so a corrupt scheme never yields a partial verdict.
        """
        for predicate in predicates:
            self._validate(predicate)

        unmet: list[UnmetPredicate] = []
        matched: list[str] = []
        for predicate in predicates:
            ok, detail = self._checks[predicate.kind](predicate, profile)
            if ok:
                matched.append(detail)
            else:
                unmet.append(UnmetPredicate(predicate=predicate, reason=detail))

        return EvaluationOutcome(
            satisfied=not unmet,
            total=len(predicates),
            unmet=unmet,
            matched=matched,
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(self, predicate: EligibilityPredicate) -> None:
        if predicate.kind not in self._checks:
            raise PredicateCorruption(f"unsupported predicate kind {predicate.kind!r}")
        if predicate.kind in _RANGE_KINDS:
            if predicate.minimum is None and predicate.maximum is None:
                raise PredicateCorruption(f"{predicate.kind.value} has no bounds")
            if (
                predicate.minimum is not None
                and predicate.maximum is not None
                and predicate.minimum > predicate.maximum
            ):
                raise PredicateCorruption(f"{predicate.kind.value} is inverted")
        if predicate.kind in _REQUIREMENT_KINDS and predicate.required is None:
            raise PredicateCorruption(f"{predicate.kind.value} has no requirement flag")

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    @staticmethod
    def _check_age(p: EligibilityPredicate, profile: UserProfile) -> tuple[bool, str]:
        wanted = f"age must be {_bounds(p.minimum, p.maximum, _whole)}"
        if profile.age is None:
            return False, f"{wanted} (age not provided)"
        if _in_range(profile.age, p.minimum, p.maximum):
            return True, "age"
        return False, f"{wanted} (profile: {profile.age})"

    @staticmethod
    def _check_income(p: EligibilityPredicate, profile: UserProfile) -> tuple[bool, str]:
        wanted = f"annual income must be {_bounds(p.minimum, p.maximum, _rupees)}"
        income = profile.effective_annual_income
        if income is None:
            return False, f"{wanted} (income not provided)"
        if _in_range(income, p.minimum, p.maximum):
            return True, "income"
        return False, f"{wanted} (profile: {_rupees(income)})"

    @staticmethod
    def _check_gender(p: EligibilityPredicate, profile: UserProfile) -> tuple[bool, str]:
        allowed = {a.lower() for a in p.allowed}
        if not allowed or allowed & _ANY_VALUES:
            return True, "gender"
        if profile.gender is not None and profile.gender.value in allowed:
            return True, "gender"
        return False, f"gender must be {' or '.join(sorted(allowed))}"

    @staticmethod
    def _check_location(p: EligibilityPredicate, profile: UserProfile) -> tuple[bool, str]:
        if not p.allowed:
            return True, "location"
        allowed = {a.strip().lower() for a in p.allowed}
        # Most specific level wins for the explanation.
        for level, value in profile.location.levels():
            if value.strip().lower() in allowed:
                return True, f"location ({level}: {value})"
        return False, f"location must be one of: {', '.join(p.allowed)}"

    @staticmethod
    def _membership(
        label: str,
        p: EligibilityPredicate,
        value: str | None,
    ) -> tuple[bool, str]:
        if not p.allowed:
            return True, label
        allowed = {a.strip().lower() for a in p.allowed}
        if allowed & _ANY_VALUES:
            return True, label
        if value is not None and value.strip().lower() in allowed:
            return True, label
        return False, f"{label} must be one of: {', '.join(p.allowed)}"

    def _check_caste(self, p: EligibilityPredicate, profile: UserProfile) -> tuple[bool, str]:
        value = profile.caste_category.value if profile.caste_category else None
        return self._membership("caste category", p, value)

    def _check_occupation(self, p: EligibilityPredicate, profile: UserProfile) -> tuple[bool, str]:
        return self._membership("occupation", p, profile.occupation)

    def _check_education(self, p: EligibilityPredicate, profile: UserProfile) -> tuple[bool, str]:
        value = profile.education.value if profile.education else None
        return self._membership("education", p, value)

    def _check_marital_status(
        self, p: EligibilityPredicate, profile: UserProfile
    ) -> tuple[bool, str]:
        status = profile.family.marital_status
        return self._membership("marital status", p, status.value if status else None)

    @staticmethod
    def _check_disability(p: EligibilityPredicate, profile: UserProfile) -> tuple[bool, str]:
        if not p.required:
            return True, "disability"
        status = profile.disability
        if not status.has_disability:
            return False, "applicant must have a certified disability"
        if p.minimum is not None and status.percentage < p.minimum:
            return False, (
                f"disability must be at least {p.minimum:g}% "
                f"(profile: {status.percentage:g}%)"
            )
        return True, "disability"

    @staticmethod
    def _check_pregnancy(p: EligibilityPredicate, profile: UserProfile) -> tuple[bool, str]:
        if not p.required or profile.family.is_pregnant:
            return True, "pregnancy"
        return False, "applicant must be pregnant"

    @staticmethod
    def _check_children(p: EligibilityPredicate, profile: UserProfile) -> tuple[bool, str]:
        count = profile.family.children_count
        if _in_range(count, p.minimum, p.maximum):
            return True, "children"
        return False, (
            f"number of children must be {_bounds(p.minimum, p.maximum, _whole)} "
            f"(profile: {count})"
        )

