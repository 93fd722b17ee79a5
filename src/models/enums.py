from __future__ import annotations

from enum import StrEnum


class Gender(StrEnum):
    __slots__ = ()

    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class CasteCategory(StrEnum):
    __slots__ = ()

    GENERAL = "general"
    OBC = "obc"
    SC = "sc"
    ST = "st"
    EWS = "ews"


class MaritalStatus(StrEnum):
    __slots__ = ()

    SINGLE = "single"
    MARRIED = "married"
    WIDOWED = "widowed"
    DIVORCED = "divorced"
    SEPARATED = "separated"


class EducationLevel(StrEnum):
    __slots__ = ()

    NONE = "none"
    PRIMARY = "primary"
    SECONDARY = "secondary"
    HIGHER_SECONDARY = "higher_secondary"
    GRADUATE = "graduate"
    POST_GRADUATE = "post_graduate"


class DisabilityType(StrEnum):
    __slots__ = ()

    NONE = "none"
    VISUAL = "visual"
    HEARING = "hearing"
    LOCOMOTOR = "locomotor"
    MENTAL = "mental"
    MULTIPLE = "multiple"


class BenefitType(StrEnum):
    __slots__ = ()

    CASH_TRANSFER = "cash_transfer"
    PENSION = "pension"
    SUBSIDY = "subsidy"
    INSURANCE = "insurance"
    LOAN = "loan"
    SCHOLARSHIP = "scholarship"
    IN_KIND = "in_kind"
    SERVICE = "service"


class PredicateKind(StrEnum):
    """Normalized eligibility comparisons understood by the rule evaluator."""

    __slots__ = ()

    AGE_RANGE = "age_range"
    INCOME_RANGE = "income_range"
    GENDER = "gender"
    LOCATION = "location"
    CASTE = "caste"
    DISABILITY = "disability"
    OCCUPATION = "occupation"
    EDUCATION = "education"
    MARITAL_STATUS = "marital_status"
    PREGNANCY = "pregnancy"
    CHILDREN_COUNT = "children_count"


class Provenance(StrEnum):
    __slots__ = ()

    STRUCTURED = "structured"
    INTERPRETED = "interpreted"


class ConfidenceLevel(StrEnum):
    __slots__ = ()

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class MatchState(StrEnum):
    __slots__ = ()

    RECEIVED = "received"
    RETRIEVING = "retrieving"
    EVALUATING = "evaluating"
    DEGRADED = "degraded"
    SCORING = "scoring"
    COMPLETE = "complete"


class RetrievalSource(StrEnum):
    __slots__ = ()

    VECTOR_INDEX = "vector_index"
    CATALOG_SCAN = "catalog_scan"
    SNAPSHOT = "snapshot"


class ChangeType(StrEnum):
    __slots__ = ()

    CREATED = "created"
    UPDATED = "updated"
    DEACTIVATED = "deactivated"
    DELETED = "deleted"


class SweepKind(StrEnum):
    __slots__ = ()

    TARGETED = "targeted"  # criteria of one scheme changed
    NEW_SCHEME = "new_scheme"  # a scheme became active
    PROFILE = "profile"  # one profile changed
