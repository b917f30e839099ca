"""
parsing.py — Getting structure back out of model responses.

The model is an unreliable JSON generator. With response_format=json_object it's right most of the time,
but we still see, in rough order of frequency:
  - ```json fences around otherwise valid JSON
  - a sentence of preamble ("Here is the evaluation:") before the object
  - a trailing explanation after the closing brace
  - an array when we asked for an object (or the other way round)
  - plain prose bullet lists instead of a JSON array of criteria

``parse_json_output`` handles the first four. The last one is what the
heuristic criteria parser is for: line filter → strip markers → length
guard → cap. It's deliberately dumb so it can be tested line by line.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)

# Markers a list line can start with, possibly several ("- 1. ", "(a) "):
# whitespace and leftovers of a half-written JSON array, bullets, numbering
# ("1.", "2)", "(3)", "4.1.") and lettered or roman numbering followed by a
# space. Digits that belong to the text ("24/7", "3D", "1.5") are kept.
_LEADING_MARKER_RE = re.compile(
    r"^(?:"
    r"[\s\"'`\[\],;:]+"
    r"|[-*•▪◦·‣+–—>#]+"
    r"|\(?\d{1,3}(?:\.\d+)*[.)](?!\d)"
    r"|\(?(?:[a-zA-Z]|[ivxIVX]{1,4})[.)](?=\s)"
    r")+"
)
_TRAILING_JUNK_RE = re.compile(r'[\s"\'`\[\],;]+$')
_INNER_QUOTES_RE = re.compile(r'["\[\]]')


def parse_json_output(text: str, expect: str = "object") -> Optional[Any]:
    """
    Multi-strategy JSON parser for model output.

    Args:
        text:   Raw response text.
        expect: "object" or "array" — the top-level shape we need.

    Returns:
        The decoded value with the expected top-level type, or None.

    Strategies, strictest first:
      1. Direct parse
      2. Strip markdown fences and retry
      3. Scan for the first balanced {...} / [...] that decodes
    """
    if not text:
        return None
    wanted = dict if expect == "object" else list

    try:
        value = json.loads(text)
        if isinstance(value, wanted):
            return value
    except json.JSONDecodeError:
        pass

    cleaned = _FENCE_RE.sub("", text).strip().rstrip("`").strip()
    try:
        value = json.loads(cleaned)
        if isinstance(value, wanted):
            return value
    except json.JSONDecodeError:
        pass

    opener, closer = ("{", "}") if expect == "object" else ("[", "]")
    for candidate in _balanced_spans(cleaned, opener, closer):
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, wanted):
            return value

    return None


def _balanced_spans(text: str, opener: str, closer: str):
    """
    Yield every balanced opener...closer span, in order of start position.

    String literals are respected so a "}" inside a justification doesn't
    close the object early. Unbalanced tails (output truncated at max_tokens)
    simply yield nothing.
    """
    start = text.find(opener)
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for idx in range(start, len(text)):
            ch = text[idx]
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
            elif ch == opener:
                depth += 1
            elif ch == closer:
                depth -= 1
                if depth == 0:
                    yield text[start:idx + 1]
                    break
        start = text.find(opener, start + 1)


def clean_criterion_line(line: str) -> str:
    """Strip list markers, numbering, quotes and brackets from one line."""
    cleaned = _LEADING_MARKER_RE.sub("", line.strip())
    cleaned = _TRAILING_JUNK_RE.sub("", cleaned)
    cleaned = _INNER_QUOTES_RE.sub("", cleaned)
    return cleaned.strip()


def heuristic_criteria(
    text: str,
    max_items: int = 8,
    min_line_length: int = 10,
    max_line_length: int = 100,
    min_clean_length: int = 5,
) -> List[str]:
    """
    Fallback criteria parser for prose responses.

    1. Line filter: keep lines whose trimmed length is strictly between
       min_line_length and max_line_length.
    2. Strip: remove leading bullets/numbering/punctuation.
    3. Length guard: drop anything shorter than min_clean_length.
    4. Cap: first max_items survivors, duplicates skipped.
    """
    criteria: List[str] = []
    seen = set()

    for line in (text or "").splitlines():
        trimmed = line.strip()
        if not (min_line_length < len(trimmed) < max_line_length):
            continue
        cleaned = clean_criterion_line(trimmed)
        if len(cleaned) < min_clean_length:
            continue
        key = cleaned.casefold()
        if key in seen:
            continue
        seen.add(key)
        criteria.append(cleaned)
        if len(criteria) >= max_items:
            break

    return criteria


def clean_criteria_list(
    items: List[Any],
    max_items: int = 8,
    min_length: int = 5,
    max_length: int = 100,
) -> List[str]:
    """
    Tidy a list the model returned as proper JSON.

    Non-strings are dropped, whitespace trimmed, duplicates removed
    (case-insensitive, first one wins) and each item must be in
    [min_length, max_length). Order is preserved; that's display order.
    """
    criteria: List[str] = []
    seen = set()
    for item in items:
        if not isinstance(item, str):
            continue
        text = " ".join(item.split())
        if not (min_length <= len(text) < max_length):
            logger.debug("Dropping criterion with length %d: %r", len(text), text[:60])
            continue
        key = text.casefold()
        if key in seen:
            continue
        seen.add(key)
        criteria.append(text)
        if len(criteria) >= max_items:
            break
    return criteria
