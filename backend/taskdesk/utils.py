from __future__ import annotations

import re
from typing import Any, Iterable, List, Optional

_WHITESPACE = re.compile(r"\s+")


def normalize_client_name(value: Any) -> Optional[str]:
    """Return a client name trimmed with inner whitespace collapsed."""
    if value is None:
        return None
    text = _WHITESPACE.sub(" ", str(value)).strip()
    return text or None


def normalize_tags(values: Optional[Iterable[Any]]) -> Optional[str]:
    if not values:
        return None
    cleaned: List[str] = []
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if text:
            cleaned.append(text)
    return ",".join(cleaned) or None


def parse_tags(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [tag.strip() for tag in value.split(",") if tag.strip()]


def blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value if value.strip() else None
