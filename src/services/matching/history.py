"""Index of prior evaluations, used to narrow re-evaluation sweeps.

Tracks, per scheme, which profiles have been scored against it and how
many criteria each was missing, plus per profile the set of schemes it
was fully eligible for.  The per-scheme profile set is capped; once a
scheme overflows, its scored set is reported as unknown and sweeps fall
back to the (much smaller) near-miss set.
"""

from __future__ import annotations

import structlog

logger = structlog.get_logger(__name__)


class MatchHistory:
    """In-process evaluation history.  Not persisted."""

    __slots__ = ("_eligible", "_max_profiles", "_near", "_overflowed", "_scored", "_near_max")

    def __init__(self, *, max_profiles_per_scheme: int = 50_000, near_match_max_missing: int = 2) -> None:
        self._max_profiles = max_profiles_per_scheme
        self._near_max = near_match_max_missing
        self._scored: dict[str, dict[str, int]] = {}
        self._overflowed: set[str] = set()
        self._near: dict[str, set[str]] = {}
        self._eligible: dict[str, set[str]] = {}

    def record(self, profile_id: str, scheme_id: str, missing_count: int) -> None:
        """Remember that *profile_id* was evaluated against *scheme_id*."""
        if missing_count == 0:
            self._eligible.setdefault(profile_id, set()).add(scheme_id)
        else:
            self._eligible.get(profile_id, set()).discard(scheme_id)

        near = self._near.setdefault(scheme_id, set())
        if 1 <= missing_count <= self._near_max:
            near.add(profile_id)
        else:
            near.discard(profile_id)

        if scheme_id in self._overflowed:
            return
        scored = self._scored.setdefault(scheme_id, {})
        if profile_id not in scored and len(scored) >= self._max_profiles:
            # Past the cap the exact set is no longer trustworthy.
            self._overflowed.add(scheme_id)
            del self._scored[scheme_id]
            logger.info("match_history.scheme_overflowed", scheme_id=scheme_id, cap=self._max_profiles)
            return
        scored[profile_id] = missing_count

    def profiles_scored_for(self, scheme_id: str) -> set[str] | None:
        """Profiles previously scored against *scheme_id*, or ``None`` if unknown."""
        if scheme_id in self._overflowed:
            return None
        scored = self._scored.get(scheme_id)
        if scored is None:
            return None
        return set(scored)

    def near_miss_profiles(self, scheme_id: str) -> set[str]:
        """Profiles whose last evaluation missed *scheme_id* by 1-2 criteria."""
        return set(self._near.get(scheme_id, ()))

    def eligible_schemes(self, profile_id: str) -> set[str]:
        return set(self._eligible.get(profile_id, ()))

    def forget_scheme(self, scheme_id: str) -> None:
        """Drop all knowledge of *scheme_id* (deactivation)."""
        self._scored.pop(scheme_id, None)
        self._overflowed.discard(scheme_id)
        self._near.pop(scheme_id, None)
        for schemes in self._eligible.values():
            schemes.discard(scheme_id)

    def forget_profile(self, profile_id: str) -> None:
        self._eligible.pop(profile_id, None)
        for scored in self._scored.values():
            scored.pop(profile_id, None)
        for near in self._near.values():
            near.discard(profile_id)
