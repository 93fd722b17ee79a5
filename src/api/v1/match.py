"""Eligibility matching API endpoints for Yojana Match v1.

Provides endpoints for:
    * Matching an inline profile (optionally with a free-text need)
    * Matching a stored profile by id
    * Reading recent newly-eligible events produced by sweeps

The HTTP layer only translates requests into
:meth:`~src.pipeline.orchestrator.MatchOrchestrator.match` calls; an
incomplete profile is the only error surfaced, as HTTP 422.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from src.models.events import NewlyEligible
from src.models.match import MatchResult
from src.models.scheme import SchemeCategory
from src.models.user_profile import UserProfile
from src.services.matching.errors import ValidationError
from src.services.matching.interfaces import SchemeFilter

if TYPE_CHECKING:
    from src.pipeline.orchestrator import MatchOrchestrator

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/match", tags=["match"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


class MatchRequest(BaseModel):
    """Request body for matching an inline profile."""

    profile: UserProfile
    query: str | None = Field(default=None, max_length=1000)
    category: SchemeCategory | None = None
    top_k: int | None = Field(default=None, ge=0, le=100)


class NewlyEligibleListResponse(BaseModel):
    events: list[NewlyEligible]
    total: int


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_orchestrator(request: Request) -> MatchOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Matching engine is not initialised.")
    return orchestrator


async def _run_match(
    request: Request,
    profile: UserProfile,
    query: str | None,
    category: SchemeCategory | None,
    top_k: int | None,
) -> MatchResult:
    orchestrator = _get_orchestrator(request)
    filters = SchemeFilter(category=category) if category is not None else None
    try:
        return await orchestrator.match(profile, query, filters=filters, top_k=top_k)
    except ValidationError as exc:
        logger.info("api.match.incomplete_profile", profile_id=profile.profile_id, fields=exc.fields)
        raise HTTPException(
            status_code=422,
            detail={"message": str(exc), "missing_fields": exc.fields},
        ) from exc


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("", response_model=MatchResult)
async def match_profile(body: MatchRequest, request: Request) -> MatchResult:
    """Match an inline profile against the active catalog.

    With ``query`` the candidates come from similarity search; without
    it every active scheme (narrowed by ``category``) is evaluated.
    """
    result = await _run_match(request, body.profile, body.query, body.category, body.top_k)
    logger.info(
        "api.match.completed",
        request_id=result.request_id,
        profile_id=result.profile_id,
        primary=len(result.primary),
        near_matches=len(result.near_matches),
        degraded=result.degraded,
    )
    return result


@router.get("/profiles/{profile_id}", response_model=MatchResult)
async def match_stored_profile(
    profile_id: str,
    request: Request,
    q: str | None = Query(default=None, max_length=1000, description="Free-text need"),
    category: SchemeCategory | None = Query(default=None, description="Restrict to a scheme category"),
    top_k: int | None = Query(default=None, ge=0, le=100, description="Candidate bound"),
) -> MatchResult:
    """Match a profile held by the profile store."""
    store = getattr(request.app.state, "profile_store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Profile store is not initialised.")
    profile = await store.get_profile(profile_id)
    if profile is None:
        raise HTTPException(status_code=404, detail=f"Profile '{profile_id}' not found.")
    return await _run_match(request, profile, q, category, top_k)


@router.get("/events", response_model=NewlyEligibleListResponse)
async def recent_newly_eligible(
    request: Request,
    profile_id: str | None = Query(default=None, description="Only events for this profile"),
    limit: int = Query(default=50, ge=1, le=500),
) -> NewlyEligibleListResponse:
    """Most recent newly-eligible events, newest first."""
    stream = getattr(request.app.state, "newly_eligible", None)
    events = stream.recent(profile_id=profile_id, limit=limit) if stream is not None else []
    return NewlyEligibleListResponse(events=events, total=len(events))
