"""
Aggregate counts over a candidate set.
"""

from __future__ import annotations

from collections.abc import Sequence

from ..domain.models import CorpusStats, FeedbackRecord, Sentiment, UrgencyLevel
from .fingerprint import repetition_count


def summarize(candidates: Sequence[FeedbackRecord]) -> CorpusStats:
    """
    Count sentiment, urgency, departments and tags; sum comments; find the
    first and latest report. An empty candidate set yields all zeros.
    """
    if not candidates:
        return CorpusStats()

    sentiment_counts = {s: 0 for s in Sentiment}
    urgency_counts = {u: 0 for u in UrgencyLevel}
    department_counts: dict[str, int] = {}
    tag_counts: dict[str, int] = {}
    comment_count = 0

    for record in candidates:
        if record.sentiment is not None:
            sentiment_counts[record.sentiment] += 1
        if record.urgency is not None:
            urgency_counts[record.urgency] += 1
        if record.department:
            department_counts[record.department] = department_counts.get(record.department, 0) + 1
        for tag in sorted(record.tags):
            tag_counts[tag] = tag_counts.get(tag, 0) + 1
        comment_count += max(record.comment_count, 0)

    timestamps = [record.created_at for record in candidates]

    return CorpusStats(
        total=len(candidates),
        sentiment_counts=sentiment_counts,
        urgency_counts=urgency_counts,
        department_counts=department_counts,
        tag_counts=tag_counts,
        repetition_count=repetition_count(candidates),
        comment_count=comment_count,
        first_report_at=min(timestamps),
        latest_report_at=max(timestamps),
    )
