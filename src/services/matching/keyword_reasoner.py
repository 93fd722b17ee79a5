"""Offline reader for common Indian scheme eligibility clauses.

Handles the phrasings that dominate myScheme-style catalogs:

- "aged 60 years and above", "between 18 and 40 years"
- "annual income below Rs. 2,00,000", "income up to 2.5 lakh"
- "women", "widows", "pregnant women"
- "40% or more disability", "persons with disabilities"
- "SC/ST", "OBC", "economically weaker sections"
- "small and marginal farmers", "students", "street vendors"
- "at least one girl child", "residents of Maharashtra"

The clause is split into fragments and every fragment is matched
independently.  Confidence is the share of fragments that produced at
least one predicate, so vague clauses ("deserving families") fall below
the interpreter's threshold instead of being half-understood.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import Final

import structlog

from src.models.enums import CasteCategory, Gender, MaritalStatus, PredicateKind, Provenance
from src.models.match import EligibilityPredicate
from src.services.matching.interfaces import Interpretation

logger = structlog.get_logger(__name__)

# Fragments break on semicolons, ", " and sentence ends.  Indian number
# grouping ("2,00,000") and "Rs. 5" survive because neither is followed
# by whitespace plus a capital letter.
_FRAGMENT_SPLIT_RE: Final[re.Pattern[str]] = re.compile(r";|,\s+|\.\s+(?=[A-Z])|\.\s*$")

_NUMBER_WORDS: Final[dict[str, int]] = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
}

_FLAGS: Final[int] = re.IGNORECASE

# -- age ---------------------------------------------------------------------
_AGE_BETWEEN_RE: Final[re.Pattern[str]] = re.compile(
    r"(?:between|from)\s+(\d{1,3})\s*(?:and|to|-)\s*(\d{1,3})\s*years", _FLAGS
)
_AGE_DASH_RE: Final[re.Pattern[str]] = re.compile(r"(\d{1,3})\s*(?:-|to)\s*(\d{1,3})\s*years", _FLAGS)
_AGE_MIN_RE: Final[re.Pattern[str]] = re.compile(
    r"(?:aged?\s+(\d{1,3})\s*(?:years?)?\s*(?:and|or)\s*(?:above|older|more))"
    r"|(?:(?:above|over|at least|minimum(?: age of)?)\s+(\d{1,3})\s*years)",
    _FLAGS,
)
_AGE_MAX_RE: Final[re.Pattern[str]] = re.compile(
    r"(?:below|under|less than|not more than|up to|upto|maximum(?: age of)?)\s+(\d{1,3})\s*years",
    _FLAGS,
)

# -- income ------------------------------------------------------------------
_INCOME_MAX_RE: Final[re.Pattern[str]] = re.compile(
    r"income[^0-9]{0,40}?(?:below|less than|up to|upto|not exceeding|under|within|does not exceed)"
    r"\s*(?:rs\.?|inr|₹)?\s*([\d,]+(?:\.\d+)?)\s*(lakhs?|lacs?|lakh)?"
    r"(\s*(?:per month|a month|monthly))?",
    _FLAGS,
)

# -- gender / family ---------------------------------------------------------
_FEMALE_RE: Final[re.Pattern[str]] = re.compile(
    r"\b(?:women|woman|female|girls?|widows?|mothers?)\b", _FLAGS
)
_MALE_RE: Final[re.Pattern[str]] = re.compile(r"\b(?:men|male|boys?)\b", _FLAGS)
# Phrases describing the applicant's children, not the applicant.
_CHILD_PHRASE_RE: Final[re.Pattern[str]] = re.compile(
    r"\b(?:girl|boy|female|male)\s+child(?:ren)?\b|\b(?:daughters?|sons?)\b", _FLAGS
)
_MARITAL_PATTERNS: Final[tuple[tuple[re.Pattern[str], MaritalStatus], ...]] = (
    (re.compile(r"\bwidow(?:s|ed)?\b", _FLAGS), MaritalStatus.WIDOWED),
    (re.compile(r"\bdivorc(?:ee|ees|ed)\b", _FLAGS), MaritalStatus.DIVORCED),
    (re.compile(r"\bunmarried\b", _FLAGS), MaritalStatus.SINGLE),
)
_PREGNANT_RE: Final[re.Pattern[str]] = re.compile(r"\bpregnan(?:t|cy)\b", _FLAGS)
_CHILDREN_MIN_RE: Final[re.Pattern[str]] = re.compile(
    r"at least\s+(\d|one|two|three)\s+(?:girl\s+)?child(?:ren)?", _FLAGS
)
_CHILDREN_MAX_RE: Final[re.Pattern[str]] = re.compile(
    r"(?:up to|upto|not more than|maximum of)\s+(\d|one|two|three)\s+(?:living\s+)?child(?:ren)?",
    _FLAGS,
)

# -- disability --------------------------------------------------------------
_DISABILITY_PCT_RE: Final[re.Pattern[str]] = re.compile(
    r"(\d{2,3})\s*%\s*(?:or more\s+|and above\s+)?(?:benchmark\s+)?(?:disab|handicap)", _FLAGS
)
_DISABILITY_RE: Final[re.Pattern[str]] = re.compile(
    r"\b(?:disabled|disability|disabilities|divyang(?:jan)?|pwd|handicapped)\b", _FLAGS
)

# -- caste -------------------------------------------------------------------
_CASTE_PATTERNS: Final[tuple[tuple[re.Pattern[str], CasteCategory], ...]] = (
    (re.compile(r"\bsc\b|scheduled castes?", _FLAGS), CasteCategory.SC),
    (re.compile(r"\bst\b|scheduled tribes?", _FLAGS), CasteCategory.ST),
    (re.compile(r"\bobc\b|other backward class", _FLAGS), CasteCategory.OBC),
    (re.compile(r"\bews\b|economically weaker section", _FLAGS), CasteCategory.EWS),
)

# -- occupation --------------------------------------------------------------
_OCCUPATION_PATTERNS: Final[tuple[tuple[re.Pattern[str], str], ...]] = (
    (re.compile(r"\bfarmers?\b|\bcultivators?\b|\bkisan\b", _FLAGS), "farmer"),
    (re.compile(r"\bfisher(?:men|man|folk)?\b", _FLAGS), "fisherman"),
    (re.compile(r"\bstudents?\b", _FLAGS), "student"),
    (re.compile(r"\bstreet vendors?\b", _FLAGS), "street_vendor"),
    (re.compile(r"\bartisans?\b|\bweavers?\b", _FLAGS), "artisan"),
    (re.compile(r"\b(?:construction|unorganised|unorganized)\s+workers?\b|\blabou?rers?\b", _FLAGS), "laborer"),
)

# -- location ----------------------------------------------------------------
_RESIDENT_RE: Final[re.Pattern[str]] = re.compile(
    r"(?i:residents?|domiciles?|domiciled|living)\s+(?i:of|in)\s+"
    r"((?:[A-Z][a-z]+)(?:\s+[A-Z][a-z]+)*)"
)


def _count(token: str) -> int:
    return _NUMBER_WORDS.get(token.lower(), 0) if not token.isdigit() else int(token)


def _predicate(kind: PredicateKind, source: str, confidence: float, **params: object) -> EligibilityPredicate:
    return EligibilityPredicate(
        kind=kind,
        provenance=Provenance.INTERPRETED,
        confidence=confidence,
        source_text=source.strip(),
        **params,  # type: ignore[arg-type]
    )


# ---------------------------------------------------------------------------
# Per-fragment readers
# ---------------------------------------------------------------------------


def _read_age(fragment: str) -> list[EligibilityPredicate]:
    for pattern in (_AGE_BETWEEN_RE, _AGE_DASH_RE):
        m = pattern.search(fragment)
        if m:
            return [_predicate(PredicateKind.AGE_RANGE, m.group(0), 0.9,
                               minimum=float(m.group(1)), maximum=float(m.group(2)))]
    found: list[EligibilityPredicate] = []
    m = _AGE_MIN_RE.search(fragment)
    if m:
        value = m.group(1) or m.group(2)
        found.append(_predicate(PredicateKind.AGE_RANGE, m.group(0), 0.9, minimum=float(value)))
    m = _AGE_MAX_RE.search(fragment)
    if m:
        found.append(_predicate(PredicateKind.AGE_RANGE, m.group(0), 0.9, maximum=float(m.group(1))))
    return found


def _read_income(fragment: str) -> list[EligibilityPredicate]:
    m = _INCOME_MAX_RE.search(fragment)
    if not m:
        return []
    try:
        amount = float(m.group(1).replace(",", ""))
    except ValueError:
        return []
    if m.group(2):
        amount *= 100_000
    if m.group(3):
        amount *= 12
    return [_predicate(PredicateKind.INCOME_RANGE, m.group(0), 0.85, maximum=amount)]


def _read_gender(fragment: str) -> list[EligibilityPredicate]:
    fragment = _CHILD_PHRASE_RE.sub(" ", fragment)
    m = _FEMALE_RE.search(fragment)
    if m:
        return [_predicate(PredicateKind.GENDER, m.group(0), 0.8, allowed=(Gender.FEMALE.value,))]
    m = _MALE_RE.search(fragment)
    if m:
        return [_predicate(PredicateKind.GENDER, m.group(0), 0.7, allowed=(Gender.MALE.value,))]
    return []


def _read_family(fragment: str) -> list[EligibilityPredicate]:
    found: list[EligibilityPredicate] = []
    for pattern, status in _MARITAL_PATTERNS:
        m = pattern.search(fragment)
        if m:
            found.append(_predicate(PredicateKind.MARITAL_STATUS, m.group(0), 0.85,
                                    allowed=(status.value,)))
    m = _PREGNANT_RE.search(fragment)
    if m:
        found.append(_predicate(PredicateKind.PREGNANCY, m.group(0), 0.85, required=True))
    m = _CHILDREN_MIN_RE.search(fragment)
    if m:
        found.append(_predicate(PredicateKind.CHILDREN_COUNT, m.group(0), 0.75,
                                minimum=float(_count(m.group(1)))))
    m = _CHILDREN_MAX_RE.search(fragment)
    if m:
        found.append(_predicate(PredicateKind.CHILDREN_COUNT, m.group(0), 0.75,
                                maximum=float(_count(m.group(1)))))
    return found


def _read_disability(fragment: str) -> list[EligibilityPredicate]:
    m = _DISABILITY_PCT_RE.search(fragment)
    if m:
        return [_predicate(PredicateKind.DISABILITY, m.group(0), 0.9,
                           required=True, minimum=float(m.group(1)))]
    m = _DISABILITY_RE.search(fragment)
    if m:
        return [_predicate(PredicateKind.DISABILITY, m.group(0), 0.8, required=True)]
    return []


def _read_caste(fragment: str) -> list[EligibilityPredicate]:
    allowed = tuple(c.value for pattern, c in _CASTE_PATTERNS if pattern.search(fragment))
    if not allowed:
        return []
    return [_predicate(PredicateKind.CASTE, fragment, 0.85, allowed=allowed)]


def _read_occupation(fragment: str) -> list[EligibilityPredicate]:
    allowed = tuple(o for pattern, o in _OCCUPATION_PATTERNS if pattern.search(fragment))
    if not allowed:
        return []
    return [_predicate(PredicateKind.OCCUPATION, fragment, 0.75, allowed=allowed)]


def _read_location(fragment: str) -> list[EligibilityPredicate]:
    m = _RESIDENT_RE.search(fragment)
    if not m:
        return []
    return [_predicate(PredicateKind.LOCATION, m.group(0), 0.8, allowed=(m.group(1),))]


_READERS: Final[tuple[Callable[[str], list[EligibilityPredicate]], ...]] = (
    _read_age,
    _read_income,
    _read_gender,
    _read_family,
    _read_disability,
    _read_caste,
    _read_occupation,
    _read_location,
)


# ---------------------------------------------------------------------------
# Reasoner
# ---------------------------------------------------------------------------


class KeywordCriteriaReasoner:
    """Rule-based reasoning provider that needs no network access."""

    __slots__ = ()

    async def interpret(self, text: str) -> Interpretation:
        return self.read(text)

    def read(self, text: str) -> Interpretation:
        fragments = [f.strip() for f in _FRAGMENT_SPLIT_RE.split(text) if f and f.strip()]
        if not fragments:
            return Interpretation(confidence=0.0, notes=["empty clause"])

        predicates: list[EligibilityPredicate] = []
        notes: list[str] = []
        recognised = 0
        for fragment in fragments:
            found = [p for reader in _READERS for p in reader(fragment)]
            if found:
                recognised += 1
                predicates.extend(found)
            else:
                notes.append(f"not understood: {fragment!r}")

        confidence = round(recognised / len(fragments), 4) if predicates else 0.0
        logger.debug(
            "keyword_reasoner.read",
            fragments=len(fragments),
            recognised=recognised,
            predicates=len(predicates),
        )
        return Interpretation(predicates=predicates, confidence=confidence, notes=notes)
