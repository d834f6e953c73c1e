"""
Feedback context pipeline: parse -> retrieve -> summarize -> score.

Each stage returns a new value consumed by the next one, and the finished
FeedbackContext is memoized per normalized query text.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

from app.config import settings
from app.infrastructure.observability.logging import get_logger

from ..domain.models import FeedbackContext, QueryFilters
from . import query_parser
from .context_cache import ContextCache, query_fingerprint
from .retrieval import FeedbackRetriever
from .scoring import PriorityScorer
from .statistics import summarize

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class FeedbackContextBuilder:
    """Builds (or fetches from cache) the grounded context for one question."""

    def __init__(
        self,
        retriever: FeedbackRetriever,
        cache: ContextCache[FeedbackContext] | None = None,
        scorer: PriorityScorer | None = None,
        sample_size: int | None = None,
        cache_ttl: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.retriever = retriever
        self.cache = cache
        self.scorer = scorer or PriorityScorer()
        self.sample_size = sample_size or settings.FEEDBACK_SAMPLE_SIZE
        self.cache_ttl = cache_ttl or settings.FEEDBACK_CACHE_TTL_SECONDS
        self.clock = clock

    async def build(self, query: str | None) -> FeedbackContext:
        query_fp = query_fingerprint(query)

        async def compute() -> FeedbackContext:
            return await self.compute(query, query_fp)

        if self.cache is None:
            return await compute()
        return await self.cache.get_or_compute(query_fp, self.cache_ttl, compute)

    async def compute(self, query: str | None, query_fp: str | None = None) -> FeedbackContext:
        now = self.clock()
        filters: QueryFilters = query_parser.parse(query, now=now)

        candidates = await self.retriever.retrieve(filters.keywords, filters, limit=self.sample_size)
        stats = summarize(candidates)
        priority = self.scorer.score(stats, len(candidates), filters.issue_category)

        logger.info(
            "Feedback context built",
            keyword_count=len(filters.keywords),
            location=filters.location,
            issue_category=filters.issue_category,
            candidates=len(candidates),
            priority=priority.priority,
        )

        return FeedbackContext(
            query_fingerprint=query_fp or query_fingerprint(query),
            keywords=list(filters.keywords),
            location=filters.location,
            issue_category=filters.issue_category,
            timeframe_label=filters.timeframe_label,
            candidates=list(candidates),
            stats=stats,
            priority=priority,
            built_at=now,
        )
