"""Data seeding utilities for loading and indexing the scheme catalog.

Loads scheme definitions from the bundled ``catalog.json`` file and
indexes the active ones into the vector index via the
:class:`~src.services.scheme_search.SchemeSearchService`.  Designed to
run once at application startup; later catalog edits flow through the
scheme store's change stream instead.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError as PydanticValidationError

from src.models.scheme import SchemeCategory, SchemeDocument

if TYPE_CHECKING:
    from src.services.scheme_search import SchemeSearchService

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

_DATA_DIR: Path = Path(__file__).resolve().parent / "schemes"
_CATALOG_PATH: Path = _DATA_DIR / "catalog.json"

_CATEGORIES: frozenset[str] = frozenset(c.value for c in SchemeCategory)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_schemes(path: Path | None = None) -> list[SchemeDocument]:
    """Load scheme data from a JSON file.

    Parameters
    ----------
    path:
        Path to the JSON file.  Defaults to the bundled ``catalog.json``.

    Returns
    -------
    list[SchemeDocument]
        Parsed and validated scheme documents.  Entries that fail
        validation are logged and skipped.

    Raises
    ------
    FileNotFoundError
        If the JSON file does not exist.
    json.JSONDecodeError
        If the JSON is malformed.
    """
    file_path = path or _CATALOG_PATH

    if not file_path.exists():
        raise FileNotFoundError(f"Scheme data file not found: {file_path}")

    with file_path.open("r", encoding="utf-8") as f:
        raw_schemes: list[dict] = json.load(f)

    schemes: list[SchemeDocument] = []
    seen: set[str] = set()
    for raw in raw_schemes:
        try:
            scheme = _parse_scheme(raw)
        except (KeyError, PydanticValidationError):
            logger.warning(
                "seed.parse_error",
                scheme_id=raw.get("scheme_id", "unknown"),
                exc_info=True,
            )
            continue
        if scheme.scheme_id in seen:
            logger.warning("seed.duplicate_scheme", scheme_id=scheme.scheme_id)
            continue
        seen.add(scheme.scheme_id)
        schemes.append(scheme)

    logger.info("seed.loaded_schemes", count=len(schemes), source=str(file_path))
    return schemes


def _parse_scheme(raw: dict) -> SchemeDocument:
    """Parse a raw JSON dict into a validated :class:`SchemeDocument`."""
    data = dict(raw)
    if not data["scheme_id"] or not data["name"]:
        raise KeyError("scheme_id and name are required")
    # Unknown categories are catalogued as "other" rather than rejected.
    if data.get("category") not in _CATEGORIES:
        data["category"] = SchemeCategory.OTHER.value
    return SchemeDocument.model_validate(data)


# ---------------------------------------------------------------------------
# Seeding
# ---------------------------------------------------------------------------


async def seed_scheme_data(
    scheme_search: SchemeSearchService,
    *,
    path: Path | None = None,
) -> list[SchemeDocument]:
    """Load schemes from JSON and index them into the search service.

    Parameters
    ----------
    scheme_search:
        The :class:`SchemeSearchService` to initialise with the loaded
        scheme data.
    path:
        Optional path to the catalog JSON file.

    Returns
    -------
    list[SchemeDocument]
        Every loaded scheme, active or not.  The caller seeds the scheme
        store with these.
    """
    schemes = load_schemes(path)

    if not schemes:
        logger.warning("seed.no_schemes_loaded")
        return []

    logger.info("seed.indexing_schemes", count=len(schemes))
    await scheme_search.initialize(schemes)
    logger.info("seed.complete", indexed=scheme_search.indexed_count)

    return schemes
