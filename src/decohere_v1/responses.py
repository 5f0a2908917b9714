from __future__ import annotations

import re
from typing import Any, Dict, List

import orjson
from pydantic import ValidationError

from .orchestrator.results import Ok, Retry, RetryableResult
from .prompts import INFEASIBLE_SENTINEL
from .schemas import OracleResponse

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"```$")
PREVIEW_CHARS = 200


def strip_code_fences(content: str) -> str:
    cleaned = content.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_CLOSE_RE.sub("", _FENCE_OPEN_RE.sub("", cleaned)).strip()
    return cleaned


def _is_text(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def validate_oracle_payload(payload: Dict[str, Any]) -> List[str]:
    errors: List[str] = []
    if "value" not in payload:
        errors.append("Response missing required 'value' field")
    heuristics = payload.get("heuristics")
    if heuristics is not None:
        if not isinstance(heuristics, list):
            errors.append("'heuristics' must be a list")
        else:
            for item in heuristics:
                if not isinstance(item, dict) or not all(
                    _is_text(item.get(key)) for key in ("name", "description", "predicate")
                ):
                    errors.append("Heuristic missing required fields (name, description, predicate)")
    candidates = payload.get("candidateValidators")
    if candidates is not None:
        if not isinstance(candidates, list):
            errors.append("'candidateValidators' must be a list")
        else:
            for item in candidates:
                if not isinstance(item, dict) or not _is_text(item.get("predicate")):
                    errors.append("Candidate validator missing required 'predicate' field")
    explanation = payload.get("explanation")
    if explanation is not None and not isinstance(explanation, str):
        errors.append("'explanation' must be a string")
    return errors


def parse_oracle_response(content: str) -> RetryableResult[OracleResponse]:
    cleaned = strip_code_fences(content)
    try:
        payload = orjson.loads(cleaned)
    except orjson.JSONDecodeError as exc:
        preview = cleaned[:PREVIEW_CHARS]
        return Retry(
            reason="parse_error",
            feedback=f"Previous response was not valid JSON ({exc}). Content: {preview}",
            errors=("Response is not valid JSON",),
        )
    if not isinstance(payload, dict):
        return Retry(
            reason="parse_error",
            feedback="Previous response must be a JSON object with a 'value' field.",
            errors=("Response is not a JSON object",),
        )
    errors = validate_oracle_payload(payload)
    if errors:
        return Retry(
            reason="invalid_response",
            feedback="Previous response was malformed: " + "; ".join(errors),
            errors=tuple(errors),
        )
    try:
        return Ok(OracleResponse.model_validate(payload))
    except ValidationError as exc:
        return Retry(
            reason="invalid_response",
            feedback=f"Previous response was malformed: {exc.error_count()} schema error(s)",
            errors=tuple(str(item["msg"]) for item in exc.errors()),
        )


def is_infeasible(response: OracleResponse) -> bool:
    return (response.explanation or "").strip() == INFEASIBLE_SENTINEL


def format_oracle_response(response: OracleResponse) -> str:
    parts = [
        f"Value: {orjson.dumps(response.value).decode('utf-8')}",
        f"Heuristics: {len(response.heuristics)}",
        f"Candidates: {len(response.candidate_validators)}",
    ]
    if response.explanation:
        parts.append(f"Explanation: {response.explanation[:100]}")
    return " | ".join(parts)
