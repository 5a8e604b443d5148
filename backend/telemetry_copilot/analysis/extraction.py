"""
Pull a JSON object out of free-form model output.

Models wrap JSON in prose, in ```json fences, or both.  The span is
found by a balanced-brace scan that ignores braces inside string
literals, so a stray ``}`` in a description does not truncate the
object.  The outcome is tagged (``Parsed`` / ``Malformed``) instead of
raised, so callers can degrade without try/except around every call.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from pydantic import BaseModel, ValidationError

from telemetry_copilot.core.logging import get_logger

logger = get_logger(__name__)

_FENCE_RE = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\n?(.*?)```", re.DOTALL)

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True)
class Parsed(Generic[ModelT]):
    value: ModelT


@dataclass(frozen=True)
class Malformed:
    reason: str
    raw_text: str
    # False when the text contained no JSON object at all
    had_json: bool = False


ParseOutcome = Union[Parsed, Malformed]


def strip_fences(text: str) -> str:
    """Return the body of the first ``` fence, or *text* unchanged."""
    match = _FENCE_RE.search(text or "")
    return match.group(1).strip() if match else (text or "").strip()


def _balanced_object(text: str) -> str | None:
    """First balanced ``{...}`` span in *text*, respecting string literals."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        # Unbalanced from here; try the next opening brace
        start = text.find("{", start + 1)
    return None


def extract_json_object(text: str | None) -> str | None:
    """
    Locate the JSON object in *text*.  A fenced block wins over bare
    braces in the surrounding prose.
    """
    if not text:
        return None
    for match in _FENCE_RE.finditer(text):
        span = _balanced_object(match.group(1))
        if span is not None:
            return span
    return _balanced_object(text)


def parse_model_output(text: str | None, schema: type[ModelT]) -> ParseOutcome:
    """Extract, decode and validate a JSON object against *schema*."""
    raw = text or ""
    span = extract_json_object(raw)
    if span is None:
        return Malformed(reason="no JSON object found", raw_text=raw)

    try:
        data = json.loads(span)
    except json.JSONDecodeError as exc:
        logger.warning("Model output is not valid JSON: %s", exc)
        return Malformed(reason=f"invalid JSON: {exc}", raw_text=raw, had_json=True)

    try:
        return Parsed(schema.model_validate(data))
    except ValidationError as exc:
        logger.warning(
            "Model output does not match %s: %d error(s)",
            schema.__name__, exc.error_count(),
        )
        return Malformed(reason=f"schema mismatch: {exc.error_count()} error(s)", raw_text=raw, had_json=True)
