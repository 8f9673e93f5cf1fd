"""
Model Output Parsing and Formatting
===================================

Turns raw provider text into tagged parse results, and cleans answer text
for delivery.
"""

import json
import math
import re
from typing import Any, List, Optional

from .entities import (
    AnswerParsed,
    AnswerParseError,
    AnswerParseResult,
    RerankParsed,
    RerankParseError,
    RerankParseResult,
    RerankScore,
)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_SOURCE_MARKER_RE = re.compile(r"\[\s*(?:(?:source|fonte|fuente)\s*)?\d+(?:\s*,\s*\d+)*\s*\]", re.IGNORECASE)
_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}\s*", re.MULTILINE)
_EMPHASIS_RE = re.compile(r"(\*\*|__|\*|~~)")
_UNDERSCORE_EMPHASIS_RE = re.compile(r"(?<!\w)_(\S(?:.*?\S)?)_(?!\w)")
_BACKTICK_RE = re.compile(r"`+")
_SPACE_BEFORE_PUNCT_RE = re.compile(r"\s+([.,;:!?])")
_SPACE_RE = re.compile(r"\s+")
_WRAPPING_QUOTES = [('"', '"'), ("'", "'"), ("“", "”"), ("‘", "’"), ("«", "»")]
_TERMINAL = (".", "!", "?", "…")


def _load_json_object(raw: str) -> Optional[dict]:
    text = _FENCE_RE.sub("", raw.strip())
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    return data if isinstance(data, dict) else None


def _as_score(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        score = float(value)
    elif isinstance(value, str):
        try:
            score = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(score) or not 0 <= score <= 100:
        return None
    return score


def parse_rerank_output(raw: Optional[str]) -> RerankParseResult:
    """
    Parse `{"scores": [{"id", "score"}]}`.

    Entries with a missing id or a non-numeric or out-of-range score are
    dropped. An output with no usable entry is a parse error.
    """
    if not raw or not raw.strip():
        return RerankParseError(raw=raw or "", reason="empty output")

    data = _load_json_object(raw)
    if data is None:
        return RerankParseError(raw=raw, reason="not a JSON object")

    entries = data.get("scores")
    if not isinstance(entries, list):
        return RerankParseError(raw=raw, reason="missing scores list")

    scores: List[RerankScore] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        document_id = entry.get("id")
        score = _as_score(entry.get("score"))
        if document_id is None or isinstance(document_id, (dict, list)) or score is None:
            continue
        scores.append(RerankScore(document_id=str(document_id), score=score))

    if not scores:
        return RerankParseError(raw=raw, reason="no valid scores")
    return RerankParsed(scores=scores)


def parse_answer_output(raw: Optional[str]) -> AnswerParseResult:
    """Parse `{"text", "cited_source_indices"}`. Indices are validated later."""
    if not raw or not raw.strip():
        return AnswerParseError(raw=raw or "", reason="empty output")

    data = _load_json_object(raw)
    if data is None:
        return AnswerParseError(raw=raw, reason="not a JSON object")

    text = data.get("text")
    if not isinstance(text, str):
        return AnswerParseError(raw=raw, reason="missing text")

    indices = data.get("cited_source_indices", [])
    if not isinstance(indices, list):
        indices = []
    return AnswerParsed(text=text, indices=indices)


def valid_citation_indices(indices: List[Any], source_count: int) -> List[int]:
    """Integers in [1, source_count], first occurrence order, no duplicates."""
    valid: List[int] = []
    for index in indices:
        if isinstance(index, bool) or not isinstance(index, int):
            continue
        if 1 <= index <= source_count and index not in valid:
            valid.append(index)
    return valid


def clean_answer_text(text: str) -> str:
    """
    Make model prose safe for plain-text channels.

    Removes markdown emphasis, headings and code ticks, strips inline source
    markers, collapses whitespace, strips wrapping quotes and ends the text
    with terminal punctuation. Returns "" when nothing is left.
    """
    text = _HEADING_RE.sub("", text)
    text = _EMPHASIS_RE.sub("", text)
    text = _UNDERSCORE_EMPHASIS_RE.sub(r"\1", text)
    text = _BACKTICK_RE.sub("", text)
    text = _SOURCE_MARKER_RE.sub("", text)
    text = _SPACE_RE.sub(" ", text).strip()
    text = _SPACE_BEFORE_PUNCT_RE.sub(r"\1", text)

    stripped = True
    while stripped and len(text) >= 2:
        stripped = False
        for opening, closing in _WRAPPING_QUOTES:
            if text.startswith(opening) and text.endswith(closing):
                text = text[len(opening):-len(closing)].strip()
                stripped = True
                break

    if not text:
        return ""
    if not text.endswith(_TERMINAL):
        text += "."
    return text
