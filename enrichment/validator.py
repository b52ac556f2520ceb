"""Validation layer for raw enrichment model output.

Extracts the JSON object embedded in a free-text response and validates it
against the EnrichmentPayload schema.
"""

import json
import re
from typing import List

from pydantic import ValidationError

from enrichment.schema import EnrichmentPayload


class EnrichmentOutputError(ValueError):
    """Raised when model output fails extraction, parsing or schema validation.

    Attributes:
        stage: Which step failed ("extract", "json_parse" or "schema").
        errors: List of human-readable error descriptions.
        raw_response: The original string that failed validation.
    """

    def __init__(self, stage: str, errors: List[str], raw_response: str) -> None:
        self.stage = stage
        self.errors = errors
        self.raw_response = raw_response
        super().__init__(
            f"Enrichment output validation failed at stage '{stage}': " + "; ".join(errors)
        )


def _strip_markdown_fences(text: str) -> str:
    """Remove optional markdown code fences wrapping JSON."""
    stripped = text.strip()
    match = re.match(
        r"^```(?:json)?\s*\n?(.*?)\n?\s*```$",
        stripped,
        re.DOTALL,
    )
    if match:
        return match.group(1).strip()
    return stripped


def _extract_json_object(text: str) -> str:
    """Return the outermost ``{...}`` span, tolerating prose around it."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return ""
    return text[start : end + 1]


def validate_enrichment_output(raw_response: str) -> EnrichmentPayload:
    """Parse and validate one model response.

    Steps:
        1. Strip optional markdown fences.
        2. Extract the JSON object from surrounding prose.
        3. Parse as JSON.
        4. Validate against EnrichmentPayload.

    Raises:
        EnrichmentOutputError: If any step fails.
    """
    if not raw_response or not raw_response.strip():
        raise EnrichmentOutputError(stage="extract", errors=["empty response"], raw_response=raw_response or "")

    candidate = _extract_json_object(_strip_markdown_fences(raw_response))
    if not candidate:
        raise EnrichmentOutputError(
            stage="extract",
            errors=["no JSON object found in response"],
            raw_response=raw_response,
        )

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise EnrichmentOutputError(stage="json_parse", errors=[str(exc)], raw_response=raw_response) from exc

    if not isinstance(data, dict):
        raise EnrichmentOutputError(
            stage="schema",
            errors=["top-level JSON must be an object"],
            raw_response=raw_response,
        )

    try:
        return EnrichmentPayload.model_validate(data)
    except ValidationError as exc:
        errors = [
            f"{'.'.join(str(loc) for loc in e['loc'])}: {e['msg']}"
            for e in exc.errors()
        ]
        raise EnrichmentOutputError(stage="schema", errors=errors, raw_response=raw_response) from exc
