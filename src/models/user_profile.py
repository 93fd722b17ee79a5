"""Citizen profile models used for eligibility matching.

Profiles are owned by the profile store; the matching engine only reads
them.  Every field is optional at the model level so partially captured
profiles (voice onboarding, CSC kiosks) can still be stored, but
:meth:`UserProfile.missing_required_fields` lists what must be filled
before the engine will evaluate the profile.
"""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

from pydantic import BaseModel, Field, computed_field

from src.models.enums import (
    CasteCategory,
    DisabilityType,
    EducationLevel,
    Gender,
    MaritalStatus,
)


class GeoPoint(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class Location(BaseModel):
    """Hierarchical location: state > district > block > village."""

    state: str | None = None
    district: str | None = None
    block: str | None = None
    village: str | None = None
    coordinates: GeoPoint | None = None

    def levels(self) -> list[tuple[str, str]]:
        """Return ``(level, value)`` pairs ordered most specific first."""
        pairs = [
            ("block", self.block),
            ("district", self.district),
            ("state", self.state),
        ]
        return [(level, value) for level, value in pairs if value]


class DisabilityStatus(BaseModel):
    has_disability: bool = False
    disability_type: DisabilityType = DisabilityType.NONE
    percentage: float = Field(default=0.0, ge=0, le=100)


class FamilyComposition(BaseModel):
    marital_status: MaritalStatus | None = None
    children_ages: list[int] = Field(default_factory=list)
    dependents: int = Field(default=0, ge=0)
    is_pregnant: bool = False
    pregnancy_trimester: int | None = Field(default=None, ge=1, le=3)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def children_count(self) -> int:
        return len(self.children_ages)


class UserProfile(BaseModel):
    """A citizen's attributes as seen by the eligibility engine."""

    model_config = {"frozen": False}

    profile_id: str = Field(default_factory=lambda: uuid4().hex)

    # ----------------------------------------------------------------
    # Demographics
    # ----------------------------------------------------------------
    age: int | None = Field(default=None, ge=0)
    gender: Gender | None = None
    location: Location = Field(default_factory=Location)
    caste_category: CasteCategory | None = None

    # ----------------------------------------------------------------
    # Economic (INR)
    # ----------------------------------------------------------------
    annual_income: float | None = Field(default=None, ge=0)
    monthly_income: float | None = Field(default=None, ge=0)

    # ----------------------------------------------------------------
    # Circumstances
    # ----------------------------------------------------------------
    disability: DisabilityStatus = Field(default_factory=DisabilityStatus)
    family: FamilyComposition = Field(default_factory=FamilyComposition)
    occupation: str | None = None  # "farmer", "laborer", "student", "homemaker", ...
    education: EducationLevel | None = None

    # ----------------------------------------------------------------
    # Preferences
    # ----------------------------------------------------------------
    preferred_language: str = "hi"

    # ----------------------------------------------------------------
    # Versioning
    # ----------------------------------------------------------------
    version: int = Field(default=1, ge=1)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def effective_annual_income(self) -> float | None:
        """Annual income, derived from monthly income when only that is known."""
        if self.annual_income is not None:
            return self.annual_income
        if self.monthly_income is not None:
            return self.monthly_income * 12
        return None

    def missing_required_fields(self) -> list[str]:
        """Return the required-for-matching fields that are not populated."""
        missing: list[str] = []
        if self.age is None:
            missing.append("age")
        if self.gender is None:
            missing.append("gender")
        if not self.location.state:
            missing.append("location.state")
        if self.effective_annual_income is None:
            missing.append("income")
        return missing
