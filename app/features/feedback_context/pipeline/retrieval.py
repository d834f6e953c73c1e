"""
Bounded, ordered candidate retrieval from the feedback store.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

from app.infrastructure.observability.logging import get_logger

from ..domain.models import FeedbackRecord, QueryFilters, urgency_rank
from ..errors import RetrievalFailure

logger = get_logger(__name__)

DEFAULT_LIMIT = 50

CandidateSet = tuple[FeedbackRecord, ...]


class FeedbackStore(Protocol):
    async def find_relevant(
        self,
        keywords: Sequence[str],
        *,
        location: str | None = None,
        issue_category: str | None = None,
        since: datetime | None = None,
        limit: int = DEFAULT_LIMIT,
        urgent_first: bool = True,
    ) -> list[FeedbackRecord]: ...

    async def find_unanalyzed(self, limit: int = 100) -> list[FeedbackRecord]: ...

    async def apply_analysis(self, feedback_id: int, fields: dict) -> None: ...


def candidate_sort_key(record: FeedbackRecord) -> tuple[int, float]:
    """Most urgent first, then newest first."""
    return (urgency_rank(record.urgency), -record.created_at.timestamp())


def order_candidates(records: Sequence[FeedbackRecord], urgent_first: bool = True) -> CandidateSet:
    if urgent_first:
        return tuple(sorted(records, key=candidate_sort_key))
    return tuple(sorted(records, key=lambda r: r.created_at.timestamp(), reverse=True))


class FeedbackRetriever:
    """Reads candidates through the store and enforces the urgency/recency ordering."""

    def __init__(self, store: FeedbackStore):
        self.store = store

    async def retrieve(
        self,
        keywords: Sequence[str],
        filters: QueryFilters | None = None,
        limit: int = DEFAULT_LIMIT,
    ) -> CandidateSet:
        filters = filters or QueryFilters()
        limit = max(int(limit), 0)
        if limit == 0:
            return ()

        try:
            rows = await self.store.find_relevant(
                list(keywords),
                location=filters.location,
                issue_category=filters.issue_category.value if filters.issue_category else None,
                since=filters.since,
                limit=limit,
                urgent_first=filters.urgent_first,
            )
        except RetrievalFailure:
            raise
        except Exception as e:
            logger.error(
                "Feedback retrieval failed",
                keyword_count=len(keywords),
                location=filters.location,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise RetrievalFailure(f"Feedback store query failed: {e}") from e

        candidates = order_candidates(rows, filters.urgent_first)[:limit]

        logger.debug(
            "Feedback candidates retrieved",
            keyword_count=len(keywords),
            returned=len(candidates),
            limit=limit,
        )
        return candidates
