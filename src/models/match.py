"""Transient models produced while matching a profile against schemes.

None of these are persisted by the engine.  ``EligibilityPredicate`` is
the normalized unit of evaluation, ``EvaluationOutcome`` the rule
evaluator's verdict, ``SchemeMatch`` the ranked, explained output and
``MatchResult`` the envelope returned to callers.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field

from src.models.enums import (
    ConfidenceLevel,
    MatchState,
    PredicateKind,
    Provenance,
    RetrievalSource,
)
from src.models.scheme import SchemeCategory


class EligibilityPredicate(BaseModel):
    """A single normalized comparison against one profile attribute.

    Range kinds use ``minimum`` / ``maximum`` (inclusive, ``None`` means
    unbounded).  Membership kinds use ``allowed``.  Requirement kinds
    (disability, pregnancy) use ``required`` and, for disability, an
    optional ``minimum`` percentage.
    """

    model_config = ConfigDict(frozen=True)

    kind: PredicateKind
    provenance: Provenance = Provenance.STRUCTURED
    confidence: float = Field(default=1.0, ge=0, le=1)
    source_text: str | None = None
    minimum: float | None = None
    maximum: float | None = None
    allowed: tuple[str, ...] = ()
    required: bool | None = None

    @property
    def ref(self) -> str:
        """Short stable reference, e.g. ``income_range`` or ``caste:interpreted``."""
        if self.provenance is Provenance.STRUCTURED:
            return self.kind.value
        return f"{self.kind.value}:{self.provenance.value}"


class UnmetPredicate(BaseModel):
    predicate: EligibilityPredicate
    reason: str  # human-readable missing-criteria descriptor


class EvaluationOutcome(BaseModel):
    satisfied: bool
    total: int
    unmet: list[UnmetPredicate] = Field(default_factory=list)
    matched: list[str] = Field(default_factory=list)

    @property
    def unmet_refs(self) -> list[str]:
        return [u.predicate.ref for u in self.unmet]

    @property
    def satisfied_fraction(self) -> float:
        if self.total == 0:
            return 1.0
        return (self.total - len(self.unmet)) / self.total


class ScoreBreakdown(BaseModel):
    eligibility: float = 0.0
    deadline: float = 0.0
    benefit: float = 0.0
    similarity: float = 0.0


class SchemeMatch(BaseModel):
    scheme_id: str
    scheme_name: str
    scheme_version: int
    category: SchemeCategory
    score: float = Field(ge=0, le=1)
    components: ScoreBreakdown = Field(default_factory=ScoreBreakdown)
    missing_criteria: list[str] = Field(default_factory=list)
    unmet_predicates: list[str] = Field(default_factory=list)
    matched_criteria: list[str] = Field(default_factory=list)
    confidence: ConfidenceLevel = ConfidenceLevel.HIGH
    estimated_benefit: float = 0.0
    nearest_deadline: date | None = None
    similarity: float = 0.0
    rank: int = 0
    explanation: str = ""
    documents_required: list[str] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def fully_eligible(self) -> bool:
        return not self.missing_criteria


class MatchResult(BaseModel):
    request_id: str = Field(default_factory=lambda: uuid4().hex)
    profile_id: str
    query: str | None = None
    state: MatchState = MatchState.RECEIVED
    state_history: list[MatchState] = Field(default_factory=list)
    degraded: bool = False
    annotations: list[str] = Field(default_factory=list)
    retrieval_source: RetrievalSource = RetrievalSource.VECTOR_INDEX
    primary: list[SchemeMatch] = Field(default_factory=list)
    near_matches: list[SchemeMatch] = Field(default_factory=list)
    explanation: str = ""
    evaluated_count: int = 0
    skipped_scheme_ids: list[str] = Field(default_factory=list)
    timings_ms: dict[str, float] = Field(default_factory=dict)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
