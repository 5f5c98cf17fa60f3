"""
Validation boundary for content-service responses.

Generated payloads arrive as loosely structured text: JSON wrapped in markdown
fences, or surrounded by conversational filler. Everything passing through
here either becomes a typed model or raises MalformedResponseError.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from curriculum_synth.domain.exceptions import MalformedResponseError
from curriculum_synth.domain.schemas.curriculum import CurriculumSpec
from curriculum_synth.infrastructure.observability.synthesis_logging import compact_error

T = TypeVar("T", bound=BaseModel)

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


def robust_json_parse(text: Optional[str], *, operation: str = "unknown") -> Any:
    if not text or not str(text).strip():
        raise MalformedResponseError(
            "Empty response from content service.", operation=operation, raw_response=text
        )

    cleaned = _FENCE_RE.sub("", text).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    first_brace = text.find("{")
    first_bracket = text.find("[")
    if first_brace != -1 and (first_bracket == -1 or first_brace < first_bracket):
        start, end_char = first_brace, "}"
    elif first_bracket != -1:
        start, end_char = first_bracket, "]"
    else:
        raise MalformedResponseError(
            "No JSON structure found in content service response.",
            operation=operation,
            raw_response=text,
        )

    end = text.rfind(end_char)
    if end <= start:
        raise MalformedResponseError(
            "Unterminated JSON structure in content service response.",
            operation=operation,
            raw_response=text,
        )
    try:
        return json.loads(text[start : end + 1])
    except json.JSONDecodeError as exc:
        raise MalformedResponseError(
            f"Malformed JSON response: {compact_error(exc)}",
            operation=operation,
            raw_response=text,
        ) from exc


def parse_model(payload: Any, schema: Type[T], *, operation: str) -> T:
    """Validates an already-decoded payload (or raw text) into `schema`."""
    if isinstance(payload, str):
        payload = robust_json_parse(payload, operation=operation)
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise MalformedResponseError(
            f"{schema.__name__} validation failed: {compact_error(exc)}",
            operation=operation,
            raw_response=payload if isinstance(payload, str) else json.dumps(payload, default=str)[:2000],
        ) from exc


def parse_curriculum(payload: Any) -> CurriculumSpec:
    return parse_model(payload, CurriculumSpec, operation="plan_curriculum")
