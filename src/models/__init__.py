from src.models.enums import (
    BenefitType,
    CasteCategory,
    ChangeType,
    ConfidenceLevel,
    DisabilityType,
    EducationLevel,
    Gender,
    MaritalStatus,
    MatchState,
    PredicateKind,
    Provenance,
    RetrievalSource,
    SweepKind,
)
from src.models.events import NewlyEligible, ProfileChangeEvent, SchemeChangeEvent
from src.models.match import (
    EligibilityPredicate,
    EvaluationOutcome,
    MatchResult,
    SchemeMatch,
    ScoreBreakdown,
    UnmetPredicate,
)
from src.models.scheme import Benefit, EligibilityCriteria, SchemeCategory, SchemeDocument
from src.models.user_profile import (
    DisabilityStatus,
    FamilyComposition,
    GeoPoint,
    Location,
    UserProfile,
)

__all__ = [
    "Benefit",
    "BenefitType",
    "CasteCategory",
    "ChangeType",
    "ConfidenceLevel",
    "DisabilityStatus",
    "DisabilityType",
    "EducationLevel",
    "EligibilityCriteria",
    "EligibilityPredicate",
    "EvaluationOutcome",
    "FamilyComposition",
    "Gender",
    "GeoPoint",
    "Location",
    "MaritalStatus",
    "MatchResult",
    "MatchState",
    "NewlyEligible",
    "PredicateKind",
    "ProfileChangeEvent",
    "Provenance",
    "RetrievalSource",
    "SchemeCategory",
    "SchemeChangeEvent",
    "SchemeDocument",
    "SchemeMatch",
    "ScoreBreakdown",
    "SweepKind",
    "UnmetPredicate",
    "UserProfile",
]
