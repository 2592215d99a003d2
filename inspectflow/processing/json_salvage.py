"""
Reading a JSON object out of language-model output.

Two phases:
  1. strict ``json.loads`` of the whole reply;
  2. locate the first balanced ``{...}`` substring (string literals and
     escapes respected, scan bounded by *max_scan*) and parse that.

Returns ``None`` when neither phase yields a JSON object.
"""

from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MAX_SCAN = 200_000


def parse_json_object(text: str, max_scan: int = DEFAULT_MAX_SCAN) -> dict[str, Any] | None:
    if not text or not text.strip():
        return None

    parsed = _strict(text)
    if parsed is not None:
        return parsed

    candidate = first_balanced_object(text, max_scan=max_scan)
    if candidate is None:
        logger.debug("No balanced JSON object found in model output.")
        return None

    parsed = _strict(candidate)
    if parsed is None:
        logger.debug("Balanced substring is not valid JSON: %s…", candidate[:120])
    return parsed


def _strict(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def first_balanced_object(text: str, max_scan: int = DEFAULT_MAX_SCAN) -> str | None:
    """Return the first ``{...}`` substring whose braces balance, or ``None``."""
    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    end_limit = min(len(text), start + max_scan)

    for i in range(start, end_limit):
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

    return None
