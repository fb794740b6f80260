from __future__ import annotations

import re

_TAG_RE = re.compile(r"<[^>]+>")
_ENTITY_RE = re.compile(r"&[a-z]+;", re.IGNORECASE)
_SPACE_RE = re.compile(r"\s+")


def strip_markup(text: str) -> str:
    """Drop HTML tags and entities and collapse whitespace."""
    text = _TAG_RE.sub(" ", text or "")
    text = _ENTITY_RE.sub(" ", text)
    return _SPACE_RE.sub(" ", text).strip()


def excerpt(text: str, length: int = 300) -> str:
    return strip_markup(text)[:length]
