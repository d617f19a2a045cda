"""Answer normalization and fuzzy matching.

Responsibilities:
- Normalize free-text answers for comparison (case, punctuation, spacing)
- Loose equality between two answers
- Jaccard similarity of whitespace-token sets
"""

from __future__ import annotations

import re

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize(text: str | None) -> str:
    """Lowercase, turn every character outside ``[a-z0-9\\s]`` into a space,
    collapse runs of whitespace and trim.

    >>> normalize("  The Cell's  POWER-house! ")
    'the cell s power house'
    """
    lowered = (text or "").lower()
    spaced = _NON_ALNUM.sub(" ", lowered)
    return _WHITESPACE.sub(" ", spaced).strip()


def eq_loose(a: str | None, b: str | None) -> bool:
    """Equality after normalization."""
    return normalize(a) == normalize(b)


def tokens(text: str | None) -> set[str]:
    """Set of normalized whitespace-separated words."""
    normalized = normalize(text)
    return set(normalized.split(" ")) if normalized else set()


def jaccard(a: str | None, b: str | None) -> float:
    """Jaccard similarity |A ∩ B| / |A ∪ B| of the two token sets.

    Two empty sets are identical, so their similarity is 1.0.
    """
    ta, tb = tokens(a), tokens(b)
    if not ta and not tb:
        return 1.0
    return len(ta & tb) / len(ta | tb)
