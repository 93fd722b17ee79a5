"""Field-level diff between two versions of a scheme.

The re-evaluation trigger uses :func:`detect_criteria_changes` to tell an
eligibility change (which warrants a targeted sweep) from a cosmetic
edit such as a reworded description (which only needs re-indexing).

Change detection covers:
    - Top-level fields: name, description, category, ministry, benefit,
      documents_required, deadline, is_ongoing, is_active.
    - Every eligibility sub-field, including the free-text custom rules.
"""

from __future__ import annotations

from typing import Final

import orjson
import structlog
from pydantic import BaseModel

from src.models.scheme import EligibilityCriteria, SchemeDocument

logger = structlog.get_logger(__name__)

_MONITORED_FIELDS: Final[tuple[str, ...]] = (
    "name",
    "description",
    "category",
    "ministry",
    "benefit",
    "documents_required",
    "deadline",
    "is_ongoing",
    "is_active",
)

_ELIGIBILITY_FIELDS: Final[tuple[str, ...]] = tuple(EligibilityCriteria.model_fields)

# Normalised "nothing here" values; None vs "" vs [] is not a change.
_EMPTY: Final[tuple[object, ...]] = (None, "", [], {})


class FieldChange(BaseModel):
    field: str
    old_value: str
    new_value: str
    affects_eligibility: bool = False


def _normalise(value: object) -> object:
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    if isinstance(value, list):
        # Allow-lists are sets semantically; ordering is not a change.
        return sorted(str(v).strip().lower() for v in value)
    if isinstance(value, str):
        return value.strip()
    return value


def _values_differ(old: object, new: object) -> bool:
    old_n, new_n = _normalise(old), _normalise(new)
    if old_n in _EMPTY and new_n in _EMPTY:
        return False
    return old_n != new_n


def _serialise(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    if isinstance(value, (list, dict)):
        return orjson.dumps(value, default=str).decode()
    return str(value)


def detect_changes(previous: SchemeDocument, current: SchemeDocument) -> list[FieldChange]:
    """All meaningful field changes from *previous* to *current*."""
    changes: list[FieldChange] = []
    for field in _MONITORED_FIELDS:
        old, new = getattr(previous, field), getattr(current, field)
        if _values_differ(old, new):
            changes.append(FieldChange(field=field, old_value=_serialise(old), new_value=_serialise(new)))

    for field in _ELIGIBILITY_FIELDS:
        old, new = getattr(previous.eligibility, field), getattr(current.eligibility, field)
        if _values_differ(old, new):
            changes.append(
                FieldChange(
                    field=f"eligibility.{field}",
                    old_value=_serialise(old),
                    new_value=_serialise(new),
                    affects_eligibility=True,
                )
            )

    if changes:
        logger.info(
            "changelog.changes_detected",
            scheme_id=current.scheme_id,
            from_version=previous.version,
            to_version=current.version,
            fields=[c.field for c in changes],
        )
    return changes


def detect_criteria_changes(previous: SchemeDocument, current: SchemeDocument) -> list[FieldChange]:
    """Only the changes that can alter who is eligible."""
    return [c for c in detect_changes(previous, current) if c.affects_eligibility]
