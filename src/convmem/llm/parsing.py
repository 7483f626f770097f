"""Recovering JSON from LLM text.

Models asked for JSON still wrap it in markdown fences or surround it with
prose. Parsing runs in two stages: strict JSON after stripping fences, then
the first balanced `{...}` span. Anything else is an explicit ParseError.
"""

import json
import re
from dataclasses import dataclass
from typing import Any

from convmem.errors import ParseError

_FENCE_RE = re.compile(r"```(?:json)?\s*\n(.*?)```", re.DOTALL)


@dataclass(frozen=True)
class ParseResult:
    """Either a parsed value or the reason parsing failed."""

    value: Any = None
    error: ParseError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def strip_fences(text: str) -> str:
    """Return the body of the first markdown code fence, or the text itself."""
    if match := _FENCE_RE.search(text):
        return match.group(1).strip()
    return text.strip()


def find_balanced_object(text: str) -> str | None:
    """Find the first balanced {...} span, ignoring braces inside strings."""
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
        start = text.find("{", start + 1)
    return None


def parse_structured(text: str) -> ParseResult:
    """Parse JSON out of raw model output."""
    if not text or not text.strip():
        return ParseResult(error=ParseError("empty response", raw=text or ""))

    body = strip_fences(text)
    try:
        return ParseResult(value=json.loads(body))
    except json.JSONDecodeError:
        pass

    span = find_balanced_object(body)
    if span is None:
        return ParseResult(error=ParseError("no JSON object found", raw=text))
    try:
        return ParseResult(value=json.loads(span))
    except json.JSONDecodeError as e:
        return ParseResult(error=ParseError(f"invalid JSON object: {e}", raw=text))


def coerce_json(value: Any) -> ParseResult:
    """Normalize a provider return value: strings are parsed, the rest passes."""
    if isinstance(value, str):
        return parse_structured(value)
    if value is None:
        return ParseResult(error=ParseError("provider returned nothing"))
    return ParseResult(value=value)
