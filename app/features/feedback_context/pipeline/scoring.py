"""
Composite 0-100 priority score and department routing.

The five contributions are capped independently and summed:

    volume      max 30   bands on candidate count
    urgency     max 30   weighted average over urgency-tagged records
    sentiment   max 20   share of negative among sentiment-tagged records
    repetition  max 10   two points per repeated report
    engagement  max 10   half a point per comment

Urgency is an average while sentiment is a single-bucket percentage. Both are
kept as they are; the weights were tuned against each other.
"""

from __future__ import annotations

import math

from app.infrastructure.observability.logging import get_logger

from ..domain.models import (
    CorpusStats,
    IssueCategory,
    PriorityResult,
    Sentiment,
    UrgencyLevel,
)

logger = get_logger(__name__)

MIN_SCORE = 0
MAX_SCORE = 100

VOLUME_BANDS: tuple[tuple[int, int], ...] = ((10, 30), (5, 20), (2, 10))
VOLUME_FLOOR = 5

URGENCY_WEIGHTS: dict[UrgencyLevel, int] = {
    UrgencyLevel.CRITICAL: 30,
    UrgencyLevel.HIGH: 20,
    UrgencyLevel.MEDIUM: 10,
    UrgencyLevel.LOW: 5,
}

SENTIMENT_CAP = 20.0
REPETITION_CAP = 10.0
REPETITION_WEIGHT = 2
ENGAGEMENT_CAP = 10.0
COMMENTS_PER_POINT = 2


def volume_contribution(candidate_count: int) -> float:
    for threshold, points in VOLUME_BANDS:
        if candidate_count >= threshold:
            return float(points)
    return float(VOLUME_FLOOR)


def urgency_contribution(stats: CorpusStats) -> float:
    tagged = stats.urgency_tagged
    if tagged == 0:
        return 0.0
    weighted = sum(URGENCY_WEIGHTS[level] * stats.urgency_counts.get(level, 0) for level in UrgencyLevel)
    return weighted / tagged


def sentiment_contribution(stats: CorpusStats) -> float:
    tagged = stats.sentiment_tagged
    if tagged == 0:
        return 0.0
    negative_percentage = stats.sentiment_counts.get(Sentiment.NEGATIVE, 0) / tagged * 100
    return min(SENTIMENT_CAP, negative_percentage / 5)


def repetition_contribution(stats: CorpusStats) -> float:
    return min(REPETITION_CAP, float(stats.repetition_count * REPETITION_WEIGHT))


def engagement_contribution(stats: CorpusStats) -> float:
    return min(ENGAGEMENT_CAP, stats.comment_count / COMMENTS_PER_POINT)


def recommend_department(stats: CorpusStats, issue_category: IssueCategory | None = None) -> str:
    """
    Most frequent department among the candidates, ties going to the one seen
    first. Without department tags, fall back to the issue category default.
    """
    if stats.department_counts:
        best_department, best_count = None, 0
        for department, count in stats.department_counts.items():
            if count > best_count:
                best_department, best_count = department, count
        if best_department:
            return best_department

    category = issue_category or IssueCategory.GENERAL
    return category.default_department


class PriorityScorer:
    """Converts corpus statistics into a bounded priority and a routing department."""

    def score(
        self,
        stats: CorpusStats,
        candidate_count: int,
        issue_category: IssueCategory | None = None,
    ) -> PriorityResult:
        contributions = {
            "volume": volume_contribution(candidate_count),
            "urgency": urgency_contribution(stats),
            "sentiment": sentiment_contribution(stats),
            "repetition": repetition_contribution(stats),
            "engagement": engagement_contribution(stats),
        }

        raw_total = sum(contributions.values())
        priority = max(MIN_SCORE, min(MAX_SCORE, math.floor(raw_total)))
        department = recommend_department(stats, issue_category)

        logger.debug(
            "Priority scored",
            priority=priority,
            raw_total=round(raw_total, 2),
            candidate_count=candidate_count,
            department=department,
        )

        return PriorityResult(
            priority=priority,
            department=department,
            candidate_count=candidate_count,
            contributions=contributions,
        )
