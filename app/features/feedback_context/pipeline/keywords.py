"""
Salient search terms from a free-text question.
"""

from __future__ import annotations

import re

MIN_KEYWORD_LENGTH = 4

STOP_WORDS = frozenset(
    {
        # articles, conjunctions, prepositions
        "the", "a", "an", "and", "or", "but", "at", "on", "to", "as", "of", "in", "by",
        "with", "from", "for", "about", "into", "over", "than", "that", "this", "these",
        "those", "there", "their", "them", "they", "which",
        # auxiliaries and modals
        "is", "are", "was", "were", "been", "be", "being", "have", "has", "had", "do",
        "does", "did", "will", "would", "should", "could", "can", "may", "might", "must",
        "shall",
        # interrogatives
        "what", "where", "when", "why", "how", "who", "whom", "whose",
        # request verbs
        "me", "show", "tell", "give", "get", "list", "find", "please",
        # temporal fillers
        "latest", "recent", "recently", "new", "old", "today", "now",
    }
)

_WORD_RE = re.compile(r"[^\W\d_]+(?:['-][^\W\d_]+)*", re.UNICODE)


def extract(text: str | None) -> list[str]:
    """
    Extract deduplicated keywords in first-encounter order.

    Tokens of three characters or fewer and stop words are discarded.
    Empty or non-alphabetic input returns an empty list.
    """
    if not text:
        return []

    seen: dict[str, None] = {}
    for match in _WORD_RE.finditer(text.lower()):
        word = match.group(0)
        if len(word) < MIN_KEYWORD_LENGTH or word in STOP_WORDS:
            continue
        seen.setdefault(word, None)
    return list(seen)
