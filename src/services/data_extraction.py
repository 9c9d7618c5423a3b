"""
Confidence-Scored Extractor.

Wraps a single language-understanding call: raw text in, an
``ExtractionCandidate`` out. The model's output is treated as untrusted
data; its self-reported confidence is used when present, otherwise a
heuristic based on how many required fields were populated.
"""

from __future__ import annotations

import asyncio
from typing import Any

from src.config import get_settings
from src.errors import EmptyExtraction, ExtractionUnavailable, IntakeError, InvalidInput
from src.logging_config import get_logger
from src.schemas.extraction import ExtractionCandidate, FieldType, SchemaSpec
from src.services.llm_client import Understand

logger = get_logger(__name__)

# Keys the model uses for metadata rather than extracted data.
CONFIDENCE_KEYS = ("confidence", "confidence_score")
RATIONALE_KEYS = ("explanation", "rationale", "reasoning")

_PYTHON_TYPES: dict[FieldType, tuple[type, ...]] = {
    FieldType.STRING: (str,),
    FieldType.INTEGER: (int,),
    FieldType.NUMBER: (int, float),
    FieldType.BOOLEAN: (bool,),
    FieldType.ENUM: (str,),
    FieldType.LIST: (list,),
    FieldType.OBJECT: (dict,),
    FieldType.DATE: (str,),
    FieldType.TIME: (str,),
}


def clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def normalize_confidence(value: Any) -> float | None:
    """Coerce a self-reported score to [0, 1]; None when unusable."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip().rstrip("%"))
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    score = float(value)
    if score != score:  # NaN
        return None
    # Some prompts ask for 0-100.
    if 1.0 < score <= 100.0:
        score = score / 100.0
    return clamp(score)


def heuristic_confidence(raw: dict[str, Any], schema: SchemaSpec) -> float:
    """Populated required fields over total required fields."""
    considered = schema.required_fields or schema.fields
    if not considered:
        return 0.0
    populated = sum(1 for f in considered if _is_populated(raw.get(f.name)))
    return clamp(populated / len(considered))


def _is_populated(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, list, dict)) and not value:
        return False
    return True


def _matches_type(value: Any, field_type: FieldType) -> bool:
    if field_type == FieldType.ANY:
        return True
    expected = _PYTHON_TYPES[field_type]
    # bool is an int subclass; a boolean is never a number here.
    if isinstance(value, bool) and bool not in expected:
        return False
    return isinstance(value, expected)


def has_invalid_fields(raw: dict[str, Any], schema: SchemaSpec) -> bool:
    """True when any key is undeclared or any populated value has the wrong type."""
    for key, value in raw.items():
        spec = schema.field(key)
        if spec is None:
            return True
        if value is None:
            continue
        if not _matches_type(value, spec.type):
            return True
        if spec.type == FieldType.ENUM and spec.enum_values and value not in spec.enum_values:
            return True
    return False


class ConfidenceScoredExtractor:
    """
    Turns raw text into an ``ExtractionCandidate`` via one model call.

    The ``understand`` capability is injected so the extractor can be
    exercised without a live model.
    """

    def __init__(
        self,
        understand: Understand,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self._understand = understand
        self.max_attempts = max_attempts or settings.extraction_max_attempts
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.extraction_backoff_seconds
        )
        self.timeout = timeout or settings.llm_timeout_seconds

    async def extract(
        self, raw_text: str, schema: SchemaSpec, instructions: str = ""
    ) -> ExtractionCandidate:
        """
        Run a single extraction.

        Args:
            raw_text: User text or transcript. Must be non-empty after trimming.
            schema: Fields the model should populate.
            instructions: Domain-specific prompt prepended to the schema hint.

        Raises:
            InvalidInput: ``raw_text`` is blank.
            ExtractionUnavailable: provider, transport or timeout failure.
            EmptyExtraction: provider answered with something that is not a JSON object.
        """
        text = (raw_text or "").strip()
        if not text:
            raise InvalidInput("Input text is empty")

        logger.info("extraction_started", schema=schema.name, text_length=len(text))

        hint = schema.to_hint()
        if instructions:
            hint = f"{instructions}\n\nFIELDS:\n{hint}"

        try:
            output = await asyncio.wait_for(self._understand(text, hint), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.warning("extraction_timeout", schema=schema.name, timeout=self.timeout)
            raise ExtractionUnavailable(
                "Language model timed out", {"timeout_seconds": self.timeout}
            ) from e
        except IntakeError:
            raise
        except Exception as e:
            # Anything else from the provider layer is still a provider failure.
            logger.error("extraction_provider_error", schema=schema.name, error=str(e))
            raise ExtractionUnavailable("Language model call failed", {"error": str(e)}) from e

        if not isinstance(output, dict):
            raise EmptyExtraction("Model response was not a JSON object")
        raw = dict(output)
        reported = None
        for key in CONFIDENCE_KEYS:
            if key in raw:
                score = normalize_confidence(raw.pop(key))
                if reported is None:
                    reported = score
        rationale = ""
        for key in RATIONALE_KEYS:
            value = raw.pop(key, None)
            if isinstance(value, str) and value.strip() and not rationale:
                rationale = value.strip()

        if reported is None:
            confidence = heuristic_confidence(raw, schema)
            source = "heuristic"
        else:
            confidence = reported
            source = "model"

        candidate = ExtractionCandidate(
            raw=raw,
            confidence=confidence,
            rationale=rationale,
            has_invalid_fields=has_invalid_fields(raw, schema),
            confidence_source=source,
        )

        logger.info(
            "extraction_complete",
            schema=schema.name,
            fields_returned=len(raw),
            confidence=round(confidence, 3),
            confidence_source=source,
            has_invalid_fields=candidate.has_invalid_fields,
        )
        return candidate

    async def extract_with_retry(
        self, raw_text: str, schema: SchemaSpec, instructions: str = ""
    ) -> ExtractionCandidate:
        """``extract`` with capped exponential backoff on ``ExtractionUnavailable``."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self.extract(raw_text, schema, instructions)
            except ExtractionUnavailable as e:
                if attempt >= self.max_attempts:
                    logger.warning(
                        "extraction_retries_exhausted",
                        schema=schema.name,
                        attempts=attempt,
                        error=e.message,
                    )
                    raise
                delay = self.backoff_seconds * (4 ** (attempt - 1))
                logger.info(
                    "extraction_retry_scheduled",
                    schema=schema.name,
                    attempt=attempt,
                    delay_seconds=delay,
                )
                await asyncio.sleep(delay)
