"""Error taxonomy for the matching engine.

Only :class:`ValidationError` reaches callers of ``match``.  The others
are raised at component boundaries and converted into degraded-but-
explained results by the orchestrator.
"""

from __future__ import annotations


class MatchingError(Exception):
    """Base class for all matching engine errors."""


class ValidationError(MatchingError, ValueError):
    """Profile or request input is incomplete or malformed."""

    def __init__(self, message: str, *, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.fields = fields or []


class RetrievalUnavailable(MatchingError):
    """The similarity search provider failed or timed out."""


class PredicateCorruption(MatchingError):
    """A scheme's predicate data cannot be evaluated."""

    def __init__(self, message: str, *, scheme_id: str | None = None) -> None:
        super().__init__(message)
        self.scheme_id = scheme_id
