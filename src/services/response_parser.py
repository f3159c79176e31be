"""Tolerant parsing of generated response letters.

The model is asked for ``{"responseText": ..., "complexityScore": ...}``
but routinely wraps it in prose or markdown fences, and letters often
contain raw newlines or stray backslashes inside the string literal.
:func:`parse_generated_response` tries a bounded list of candidate
substrings, each first as-is and then after a textual repair pass, and
raises :class:`GenerationFailure` when none decodes to a usable object.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Final

import orjson

from src.services.errors import GenerationFailure

_FENCE_RE: Final[re.Pattern[str]] = re.compile(
    r"(?:```|~~~)[ \t]*(?:[A-Za-z0-9_-]+)?[ \t]*\n?(.*?)(?:```|~~~)",
    re.DOTALL,
)

_VALID_ESCAPES: Final[frozenset[str]] = frozenset('"\\/bfnrtu')

_CONTROL_ESCAPES: Final[dict[str, str]] = {
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\b": "\\b",
    "\f": "\\f",
}

MIN_SCORE: Final[int] = 1
MAX_SCORE: Final[int] = 10
DEFAULT_SCORE: Final[int] = 5


@dataclass(slots=True, frozen=True)
class GeneratedResponse:
    """A parsed response letter and its complexity score."""

    text: str
    complexity_score: int


# ---------------------------------------------------------------------------
# Candidate extraction
# ---------------------------------------------------------------------------


def _balanced_object_at(text: str, start: int) -> str | None:
    """Return the ``{...}`` object opening at *start*, honouring string literals."""
    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
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


def _balanced_objects(text: str) -> Iterator[str]:
    """Yield every balanced object in *text*, in order of its opening brace."""
    start = text.find("{")
    while start != -1:
        balanced = _balanced_object_at(text, start)
        if balanced:
            yield balanced
        start = text.find("{", start + 1)


def _candidates(raw: str) -> Iterator[str]:
    stripped = raw.strip()
    yield stripped

    fence = _FENCE_RE.search(stripped)
    if fence:
        fenced = fence.group(1).strip()
        yield fenced
        yield from _balanced_objects(fenced)

    yield from _balanced_objects(stripped)

    # Unbalanced braces usually mean a stray quote confused the scanner.
    first, last = stripped.find("{"), stripped.rfind("}")
    if first != -1 and last > first:
        yield stripped[first : last + 1]


# ---------------------------------------------------------------------------
# Repair
# ---------------------------------------------------------------------------


def repair_json_strings(text: str) -> str:
    """Escape bare control characters and invalid escapes inside string literals."""
    out: list[str] = []
    in_string = False
    i = 0
    while i < len(text):
        ch = text[i]
        if not in_string:
            if ch == '"':
                in_string = True
            out.append(ch)
            i += 1
            continue

        if ch == "\\":
            nxt = text[i + 1] if i + 1 < len(text) else ""
            if nxt and nxt in _VALID_ESCAPES:
                out.append(ch + nxt)
                i += 2
            else:
                out.append("\\\\")
                i += 1
            continue
        if ch == '"':
            in_string = False
            out.append(ch)
        elif ch in _CONTROL_ESCAPES:
            out.append(_CONTROL_ESCAPES[ch])
        elif ord(ch) < 0x20:
            out.append(f"\\u{ord(ch):04x}")
        else:
            out.append(ch)
        i += 1
    return "".join(out)


def _try_decode(candidate: str) -> dict[str, Any] | None:
    for attempt in (candidate, repair_json_strings(candidate)):
        try:
            decoded = orjson.loads(attempt)
        except orjson.JSONDecodeError:
            continue
        if isinstance(decoded, dict):
            return decoded
    return None


# ---------------------------------------------------------------------------
# Field coercion
# ---------------------------------------------------------------------------


def _coerce_score(value: Any) -> int:
    if isinstance(value, bool) or value is None:
        return DEFAULT_SCORE
    if isinstance(value, int):
        score = value
    elif isinstance(value, float):
        score = round(value)
    elif isinstance(value, str):
        match = re.search(r"-?\d+", value)
        if not match:
            return DEFAULT_SCORE
        score = int(match.group(0))
    else:
        return DEFAULT_SCORE
    return max(MIN_SCORE, min(MAX_SCORE, score))


def _to_response(data: dict[str, Any]) -> GeneratedResponse:
    text = data.get("responseText", data.get("response_text"))
    if not isinstance(text, str) or not text.strip():
        msg = "Generated response has no responseText"
        raise GenerationFailure(msg)
    score = data.get("complexityScore", data.get("complexity_score"))
    return GeneratedResponse(text=text.strip(), complexity_score=_coerce_score(score))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_generated_response(raw: str | None) -> GeneratedResponse:
    """Parse raw model output into a :class:`GeneratedResponse`.

    Raises :class:`GenerationFailure` when no candidate decodes to an
    object carrying a non-empty ``responseText``.  A missing or
    non-numeric score becomes 5; numeric scores are clamped to 1-10.
    """
    if not raw or not raw.strip():
        msg = "Generated response is empty"
        raise GenerationFailure(msg)

    seen: set[str] = set()
    last_error: GenerationFailure | None = None
    for candidate in _candidates(raw):
        if candidate in seen:
            continue
        seen.add(candidate)
        data = _try_decode(candidate)
        if data is None:
            continue
        try:
            return _to_response(data)
        except GenerationFailure as exc:
            last_error = exc

    if last_error is not None:
        raise last_error
    msg = "Could not parse JSON from generated response"
    raise GenerationFailure(msg)
