from __future__ import annotations

from datetime import UTC, date, datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator

from src.models.enums import BenefitType, CasteCategory, EducationLevel, Gender, MaritalStatus


class SchemeCategory(StrEnum):
    __slots__ = ()

    AGRICULTURE = "agriculture"
    HEALTH = "health"
    EDUCATION = "education"
    HOUSING = "housing"
    EMPLOYMENT = "employment"
    SOCIAL_SECURITY = "social_security"
    FINANCIAL_INCLUSION = "financial_inclusion"
    WOMEN_CHILD = "women_child"
    TRIBAL = "tribal"
    DISABILITY = "disability"
    SENIOR_CITIZEN = "senior_citizen"
    SKILL_DEVELOPMENT = "skill_development"
    INFRASTRUCTURE = "infrastructure"
    OTHER = "other"


class EligibilityCriteria(BaseModel):
    """Structured eligibility criteria plus an optional free-text clause.

    Empty lists and ``None`` bounds mean "no restriction".  Bounds are
    not cross-validated here: catalog data arrives from external
    administration tooling and the rule evaluator reports inverted or
    otherwise corrupt ranges per scheme instead of rejecting the whole
    catalog.
    """

    min_age: int | None = None
    max_age: int | None = None
    min_income: float | None = None
    max_income: float | None = None  # annual, INR
    gender: Gender | None = None  # None == "any"
    locations: list[str] = Field(default_factory=list)  # state / district / block names
    caste_categories: list[CasteCategory] = Field(default_factory=list)
    disability_required: bool = False
    min_disability_percentage: float | None = None
    occupations: list[str] = Field(default_factory=list)
    education_levels: list[EducationLevel] = Field(default_factory=list)
    marital_statuses: list[MaritalStatus] = Field(default_factory=list)
    pregnancy_required: bool = False
    min_children: int | None = None
    max_children: int | None = None
    custom_rules: str | None = None

    @field_validator("gender", mode="before")
    @classmethod
    def _any_gender_is_unrestricted(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip().lower()
            if value in ("", "any", "all", "both"):
                return None
        return value


class Benefit(BaseModel):
    benefit_type: BenefitType = BenefitType.CASH_TRANSFER
    amount: float = Field(default=0.0, ge=0)  # estimated annual value, INR
    description: str = ""


class SchemeDocument(BaseModel):
    model_config = {"populate_by_name": True}

    scheme_id: str
    name: str
    description: str = ""
    category: SchemeCategory = SchemeCategory.OTHER
    ministry: str = ""
    eligibility: EligibilityCriteria = Field(default_factory=EligibilityCriteria)
    benefit: Benefit = Field(default_factory=Benefit)
    documents_required: list[str] = Field(default_factory=list)
    deadline: date | None = None
    is_ongoing: bool = False
    embedding: list[float] | None = None  # for vector search

    # -- Lifecycle -------------------------------------------------------------
    is_active: bool = True
    version: int = Field(default=1, ge=1)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    deactivated_at: datetime | None = None

    def is_open(self, today: date) -> bool:
        """Whether applications are still accepted on *today*."""
        if self.is_ongoing or self.deadline is None:
            return True
        return self.deadline >= today

    def days_until_deadline(self, today: date) -> int | None:
        """Days left until the deadline, or ``None`` for ongoing schemes."""
        if self.is_ongoing or self.deadline is None:
            return None
        return (self.deadline - today).days

    def revised(self, **changes: object) -> SchemeDocument:
        """Return a copy with *changes* applied and the version bumped."""
        update: dict[str, object] = {
            **changes,
            "version": self.version + 1,
            "updated_at": datetime.now(UTC),
        }
        return self.model_copy(update=update, deep=True)
