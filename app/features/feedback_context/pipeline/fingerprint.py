"""
Content fingerprints for duplicate feedback detection.

Two reports whose bodies normalize to the same text share a fingerprint and
are counted as the same underlying issue.
"""

from __future__ import annotations

import hashlib
from collections import Counter
from collections.abc import Iterable

from ..domain.models import FeedbackRecord

__all__ = ["fingerprint", "group_by_fingerprint", "repetition_count"]


def _normalize(text: str | None) -> str:
    return (text or "").strip().lower()


def fingerprint(text: str | None) -> str:
    """Deterministic SHA-256 hex digest of the trimmed, lowercased text."""
    return hashlib.sha256(_normalize(text).encode("utf-8")).hexdigest()


def group_by_fingerprint(records: Iterable[FeedbackRecord]) -> Counter[str]:
    """Occurrences per body fingerprint, in first-encounter order."""
    return Counter(fingerprint(record.body) for record in records)


def repetition_count(records: Iterable[FeedbackRecord]) -> int:
    """Sum of (count - 1) over fingerprints seen more than once."""
    return sum(count - 1 for count in group_by_fingerprint(records).values() if count > 1)
