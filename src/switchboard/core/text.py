"""Text utilities for Switchboard."""

from collections.abc import Iterator
import json
from typing import Any

_OPENERS = {"{": "}", "[": "]"}


def _balanced_block(text: str, start: int) -> str | None:
    """Return the bracket-balanced block opening at ``start``, if it closes."""
    opener = text[start]
    closer = _OPENERS[opener]

    depth = 0
    in_string = False
    escape_next = False

    for i, char in enumerate(text[start:], start=start):
        if escape_next:
            escape_next = False
            continue

        if char == "\\":
            escape_next = True
            continue

        if char == '"':
            in_string = not in_string
            continue

        if in_string:
            continue

        if char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return text[start : i + 1]

    return None


def _candidates(text: str) -> Iterator[str]:
    for start, char in enumerate(text):
        if char in _OPENERS:
            block = _balanced_block(text, start)
            if block is not None:
                yield block


def extract_json_payload(text: str) -> str | None:
    """Extract the first complete JSON object or array from text.

    Uses bracket counting to find the matching close, so prose around the
    payload and multiple disjoint blocks (e.g. code snippets) are tolerated.

    Args:
        text: Raw text potentially containing JSON

    Returns:
        Extracted JSON string or None if not found
    """
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return None
    return _balanced_block(text, min(starts))


def parse_json_payload(text: str, expect: type | None = None) -> Any | None:
    """Parse the JSON payload embedded in text.

    Every bracketed block is tried in order, so bracketed prose ahead of the
    payload (``"3 groups [see below]: {...}"``) is skipped.

    Args:
        text: Raw text potentially containing JSON.
        expect: If given, only a decoded value of this type is accepted.

    Returns:
        The first decoded value, or None if no valid payload is present.
    """
    for block in _candidates(text):
        try:
            value = json.loads(block)
        except json.JSONDecodeError:
            continue
        if expect is None or isinstance(value, expect):
            return value
    return None


def normalize_answer(text: str) -> str:
    """Normalise an answer for equality comparison.

    JSON answers are compared structurally (canonical key order and
    spacing); anything else is compared case-insensitively with whitespace
    collapsed.
    """
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.strip("`").removeprefix("json").strip()
    if stripped[:1] in _OPENERS:
        try:
            value = json.loads(stripped)
        except json.JSONDecodeError:
            pass
        else:
            return json.dumps(value, sort_keys=True, separators=(",", ":"))
    return " ".join(stripped.split()).casefold()
