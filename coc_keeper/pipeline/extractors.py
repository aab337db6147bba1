"""Structured-payload extraction from collaborator text.

Collaborator output is untrusted: a JSON payload may arrive bare, wrapped in
a markdown code fence, or surrounded by prose. These helpers try the strict
parse first and then progressively looser structural recoveries. When
nothing usable is found they raise `MalformedResponse`, which the retry
policy treats like a transport failure.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)
_BRACKET_RE = re.compile(r"\[(.*?)\]", re.DOTALL)


class MalformedResponse(ValueError):
    """Raised when no structured payload can be recovered from a response."""


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None


def _strip_fence(text: str) -> str | None:
    match = _FENCE_RE.search(text)
    return match.group(1).strip() if match else None


def _first_balanced(text: str, open_ch: str = "{", close_ch: str = "}") -> str | None:
    """Return the first balanced open_ch...close_ch span, honouring JSON strings."""
    start = text.find(open_ch)
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
            elif ch == open_ch:
                depth += 1
            elif ch == close_ch:
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # Unbalanced from this start; try the next opener.
        start = text.find(open_ch, start + 1)
    return None


def extract_json_object(text: str) -> dict[str, Any]:
    """Recover the first JSON object from a collaborator response."""
    if not text or not text.strip():
        raise MalformedResponse("empty response")

    stripped = text.strip()
    data = _loads(stripped)
    if isinstance(data, dict):
        return data

    fenced = _strip_fence(stripped)
    if fenced is not None:
        data = _loads(fenced)
        if isinstance(data, dict):
            return data
        stripped = fenced

    candidate = _first_balanced(stripped)
    if candidate is not None:
        data = _loads(candidate)
        if isinstance(data, dict):
            logger.debug("recovered object via balanced scan (%d chars)", len(candidate))
            return data

    raise MalformedResponse(f"no JSON object found in response: {text[:120]!r}")


def extract_json_array(text: str, member: str = "agents") -> list[Any]:
    """Recover a JSON array: a bare list, `member` of an object, or a bracketed span."""
    if not text or not text.strip():
        raise MalformedResponse("empty response")

    stripped = text.strip()
    fenced = _strip_fence(stripped)
    for candidate in (stripped, fenced):
        if candidate is None:
            continue
        data = _loads(candidate)
        if isinstance(data, list):
            return data
        if isinstance(data, dict) and isinstance(data.get(member), list):
            return data[member]

    match = _BRACKET_RE.search(stripped)
    if match:
        data = _loads(f"[{match.group(1)}]")
        if isinstance(data, list):
            logger.debug("recovered array via bracket match")
            return data

    raise MalformedResponse(f"no JSON array found in response: {text[:120]!r}")
