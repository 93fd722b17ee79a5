"""Vertex AI Gemini reasoner for free-text eligibility clauses.

Wraps the ``vertexai`` SDK to turn clauses such as "widows from BPL
families with at least one girl child" into normalized
:class:`~src.models.match.EligibilityPredicate` objects.  The model is
asked for strict JSON; anything it returns that does not map onto a
known predicate kind is dropped and noted, never guessed at.
"""

from __future__ import annotations

import time
from typing import Any, Final

import orjson
import structlog
import vertexai
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from vertexai.generative_models import (
    Content,
    GenerationConfig,
    GenerativeModel,
    Part,
)

from src.models.enums import PredicateKind, Provenance
from src.models.match import EligibilityPredicate
from src.services.matching.interfaces import Interpretation

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT: Final[str] = """\
You convert eligibility clauses of Indian government welfare schemes \
into machine-checkable predicates.  You never invent criteria that the \
clause does not state, and you report low confidence when the clause is \
vague, subjective, or refers to documents rather than attributes.\
"""

_INTERPRET_PROMPT: Final[str] = """\
Translate the eligibility clause below into predicates.

Return ONLY a JSON object with these keys:
- "predicates": list of objects, each with
    "kind": one of {kinds}
    "minimum": number or null   (inclusive; age in years, income in INR per year)
    "maximum": number or null   (inclusive)
    "allowed": list of strings  (for membership kinds; lowercase values)
    "required": boolean or null (for disability and pregnancy)
    "source_text": the fragment of the clause this predicate came from
    "confidence": float 0-1
- "confidence": float 0-1 for the clause as a whole
- "notes": list of strings describing parts you could not translate

Membership values: gender uses male/female/other, caste uses \
general/obc/sc/st/ews, marital_status uses \
single/married/widowed/divorced/separated, education uses \
none/primary/secondary/higher_secondary/graduate/post_graduate.

Clause: {text}

JSON response:\
"""

_KINDS: Final[str] = ", ".join(k.value for k in PredicateKind)


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def _as_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _clamp(value: Any, default: float = 0.0) -> float:
    number = _as_float(value)
    if number is None:
        return default
    return max(0.0, min(1.0, number))


def parse_interpretation(payload: Any, clause: str) -> Interpretation:
    """Map a decoded model response onto an :class:`Interpretation`.

    Unknown kinds and malformed entries are skipped with a note; the
    overall confidence is capped by the mean per-predicate confidence.
    """
    if not isinstance(payload, dict):
        return Interpretation(confidence=0.0, notes=["response was not a JSON object"])

    predicates: list[EligibilityPredicate] = []
    notes: list[str] = [str(n) for n in payload.get("notes") or []]

    for raw in payload.get("predicates") or []:
        if not isinstance(raw, dict):
            notes.append("skipped non-object predicate")
            continue
        try:
            kind = PredicateKind(str(raw.get("kind", "")).lower())
        except ValueError:
            notes.append(f"unknown predicate kind {raw.get('kind')!r}")
            continue
        allowed = tuple(str(a).lower() for a in raw.get("allowed") or [])
        required = raw.get("required")
        predicates.append(
            EligibilityPredicate(
                kind=kind,
                provenance=Provenance.INTERPRETED,
                confidence=_clamp(raw.get("confidence"), default=0.5),
                source_text=str(raw.get("source_text") or clause),
                minimum=_as_float(raw.get("minimum")),
                maximum=_as_float(raw.get("maximum")),
                allowed=allowed,
                required=bool(required) if required is not None else None,
            )
        )

    confidence = _clamp(payload.get("confidence"))
    if predicates:
        mean = sum(p.confidence for p in predicates) / len(predicates)
        confidence = min(confidence, mean)
    else:
        confidence = 0.0

    return Interpretation(predicates=predicates, confidence=round(confidence, 4), notes=notes)


# ---------------------------------------------------------------------------
# LLMService
# ---------------------------------------------------------------------------


class LLMService:
    """Async Gemini client implementing the reasoning provider contract."""

    def __init__(
        self,
        project_id: str,
        region: str = "asia-south1",
        model_name: str = "gemini-2.0-flash",
    ) -> None:
        self._project_id = project_id
        self._region = region
        self._model_name = model_name
        self._model: GenerativeModel | None = None
        self._initialized = False

    def _initialize(self) -> None:
        """Lazily initialize the Vertex AI SDK and model handle."""
        if self._initialized:
            return
        vertexai.init(project=self._project_id, location=self._region)
        self._model = GenerativeModel(
            model_name=self._model_name,
            system_instruction=[Part.from_text(_SYSTEM_PROMPT)],
        )
        self._initialized = True
        logger.info(
            "llm_initialized",
            project=self._project_id,
            region=self._region,
            model=self._model_name,
        )

    def _get_model(self) -> GenerativeModel:
        self._initialize()
        assert self._model is not None  # noqa: S101
        return self._model

    @retry(
        retry=retry_if_exception_type(Exception),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def interpret(self, text: str) -> Interpretation:
        """Interpret a free-text eligibility clause.

        Parameters
        ----------
        text:
            The scheme's custom eligibility clause.

        Returns
        -------
        Interpretation
            Predicates tagged ``interpreted`` plus a confidence in [0, 1].
            An unparseable response yields zero confidence rather than an
            exception; transport errors propagate after retries.
        """
        start = time.perf_counter()
        model = self._get_model()

        generation_config = GenerationConfig(
            temperature=0.0,
            top_p=0.8,
            max_output_tokens=1024,
            response_mime_type="application/json",
        )
        prompt = _INTERPRET_PROMPT.format(kinds=_KINDS, text=text)
        response = await model.generate_content_async(
            contents=[Content(role="user", parts=[Part.from_text(prompt)])],
            generation_config=generation_config,
        )

        raw_text = (response.text or "").strip()
        try:
            payload = orjson.loads(raw_text)
        except orjson.JSONDecodeError:
            logger.warning("llm_interpret_parse_failed", raw=raw_text[:200])
            payload = None

        interpretation = parse_interpretation(payload, text)
        logger.info(
            "llm_interpret",
            clause_length=len(text),
            predicates=len(interpretation.predicates),
            confidence=interpretation.confidence,
            processing_time_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return interpretation
