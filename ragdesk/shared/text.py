"""
Text Utilities
==============

Cleaning and tokenizing helpers shared by prompt builders, the in-memory
search index and the deterministic mock embedder.
"""

import html
import re
import unicodedata
from typing import Any, List

_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")
_WORD_RE = re.compile(r"[a-z0-9]+")


def content_to_text(content: Any) -> str:
    """
    Flatten document content to text.

    Content may be a plain string or a structured blob (dict/list) coming
    from a rich-text editor; strings found inside the blob are joined.
    """
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, dict):
        return " ".join(content_to_text(value) for value in content.values())
    if isinstance(content, (list, tuple)):
        return " ".join(content_to_text(item) for item in content)
    return str(content)


def clean_text(value: Any) -> str:
    """Strip HTML tags and entities, collapse whitespace."""
    text = content_to_text(value)
    text = _TAG_RE.sub(" ", text)
    text = html.unescape(text)
    return _SPACE_RE.sub(" ", text).strip()


def truncate(text: str, limit: int) -> str:
    """Cut text at `limit` characters, marking the cut with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


def fold(text: str) -> str:
    """Casefold and strip accents ("Não" -> "nao")."""
    decomposed = unicodedata.normalize("NFKD", text.casefold())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def tokenize(text: str) -> List[str]:
    """Lexical tokens: folded alphanumeric words longer than two characters."""
    return [token for token in _WORD_RE.findall(fold(text)) if len(token) > 2]
