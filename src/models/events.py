"""Change notifications consumed by, and eligibility events emitted by, the engine."""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

from pydantic import BaseModel, Field

from src.models.enums import ChangeType, SweepKind
from src.models.match import SchemeMatch
from src.models.scheme import SchemeDocument
from src.models.user_profile import UserProfile


class SchemeChangeEvent(BaseModel):
    change_type: ChangeType
    scheme_id: str
    version: int
    previous: SchemeDocument | None = None
    current: SchemeDocument
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ProfileChangeEvent(BaseModel):
    change_type: ChangeType
    profile_id: str
    version: int
    current: UserProfile | None = None  # None for deletions
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class NewlyEligible(BaseModel):
    """A profile now qualifies for a scheme it did not qualify for before.

    Consumed by the alerting subsystem; the engine only produces it.
    """

    event_id: str = Field(default_factory=lambda: uuid4().hex)
    profile_id: str
    scheme_id: str
    scheme_version: int
    match_details: SchemeMatch
    sweep_id: str
    reason: SweepKind
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
