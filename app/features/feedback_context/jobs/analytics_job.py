"""
Topic-prioritization analytics report.

Runs in the worker: reads analyzed feedback, breaks it down by sentiment,
location and department, scores each department's topic with the same
PriorityScorer the chat context uses, asks the model for recommendations
and stores the finished report through the job tracker.
"""

from __future__ import annotations

import json
from collections import defaultdict
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from app.config import settings
from app.infrastructure.observability.logging import get_logger

from ..domain.models import FeedbackRecord, PriorityResult, UrgencyLevel, urgency_rank
from ..pipeline.retrieval import FeedbackStore, order_candidates
from ..pipeline.scoring import PriorityScorer
from ..pipeline.statistics import summarize
from ..services.llm_client import LLMClient
from .tracker import AsyncJobTracker

logger = get_logger(__name__)

ANALYTICS_JOB_KEY = "analytics_report"
MAX_TOPICS = 15
MAX_TOPICS_IN_PROMPT = 10

RECOMMENDATIONS_SYSTEM_PROMPT = (
    "You are an AI assistant for government strategy. Provide practical, actionable "
    "recommendations based on citizen feedback analysis. Respond with a single JSON object."
)


class Recommendations(BaseModel):
    immediate_actions: list[str] = Field(default_factory=list)
    long_term_strategies: list[str] = Field(default_factory=list)
    resource_allocation: list[str] = Field(default_factory=list)
    communication_strategies: list[str] = Field(default_factory=list)


class LocationHotspot(BaseModel):
    location: str
    count: int
    highest_urgency: UrgencyLevel | None = None


class DepartmentTopic(BaseModel):
    department: str
    feedback_count: int
    urgent_cases: int
    locations: list[str] = Field(default_factory=list)
    sentiment_percentages: dict[str, float] = Field(default_factory=dict)
    priority: PriorityResult


class AnalyticsReport(BaseModel):
    candidate_count: int
    sentiment_analysis: dict[str, int]
    location_hotspots: list[LocationHotspot]
    department_insights: list[DepartmentTopic]
    ai_recommendations: Recommendations
    ai_generated: bool
    generated_at: datetime


def location_hotspots(records: list[FeedbackRecord]) -> list[LocationHotspot]:
    groups: dict[str, list[FeedbackRecord]] = defaultdict(list)
    for record in records:
        if record.location:
            groups[record.location].append(record)

    hotspots = []
    for location, group in groups.items():
        most_urgent = min(group, key=lambda r: urgency_rank(r.urgency))
        hotspots.append(
            LocationHotspot(location=location, count=len(group), highest_urgency=most_urgent.urgency)
        )
    hotspots.sort(key=lambda h: (-h.count, urgency_rank(h.highest_urgency)))
    return hotspots


def department_topics(records: list[FeedbackRecord], scorer: PriorityScorer) -> list[DepartmentTopic]:
    """One scored topic per assigned department, highest priority first."""
    groups: dict[str, list[FeedbackRecord]] = defaultdict(list)
    for record in records:
        if record.department:
            groups[record.department].append(record)

    topics = []
    for department, group in groups.items():
        ordered = order_candidates(group)
        stats = summarize(ordered)
        total = len(ordered)
        topics.append(
            DepartmentTopic(
                department=department,
                feedback_count=total,
                urgent_cases=sum(
                    1 for r in ordered if r.urgency in (UrgencyLevel.CRITICAL, UrgencyLevel.HIGH)
                ),
                locations=sorted({r.location for r in ordered if r.location}),
                sentiment_percentages={
                    s.value: round(count / total * 100, 1) for s, count in stats.sentiment_counts.items()
                },
                priority=scorer.score(stats, total),
            )
        )
    topics.sort(key=lambda t: (-t.priority.priority, -t.feedback_count))
    return topics[:MAX_TOPICS]


def build_recommendations_prompt(topics: list[DepartmentTopic]) -> str:
    summary = [
        {
            "department": t.department,
            "priority_score": t.priority.priority,
            "feedback_count": t.feedback_count,
            "urgent_cases": t.urgent_cases,
            "locations": t.locations[:5],
            "sentiment_percentages": t.sentiment_percentages,
        }
        for t in topics[:MAX_TOPICS_IN_PROMPT]
    ]
    return f"""Based on the following prioritized citizen feedback topics, provide actionable recommendations for government officials:

Topics: {json.dumps(summary, indent=2)}

Please return a JSON object with the following structure:
{{
    "immediate_actions": ["Action 1", "Action 2", "Action 3"],
    "long_term_strategies": ["Strategy 1", "Strategy 2", "Strategy 3"],
    "resource_allocation": ["Allocation 1", "Allocation 2", "Allocation 3"],
    "communication_strategies": ["Communication 1", "Communication 2", "Communication 3"]
}}

Focus on specific, actionable recommendations that address the highest priority topics."""


class AnalyticsReportJob:
    def __init__(
        self,
        store: FeedbackStore,
        llm: LLMClient,
        tracker: AsyncJobTracker,
        scorer: PriorityScorer | None = None,
        sample_size: int | None = None,
        temperature: float | None = None,
    ):
        self.store = store
        self.llm = llm
        self.tracker = tracker
        self.scorer = scorer or PriorityScorer()
        self.sample_size = sample_size or settings.ANALYTICS_SAMPLE_SIZE
        self.temperature = temperature if temperature is not None else settings.ANALYTICS_TEMPERATURE

    async def run(self, job_key: str = ANALYTICS_JOB_KEY, final_attempt: bool = True) -> AnalyticsReport:
        """
        Produce the report with staged progress. A failure is re-raised so the
        queue can retry; it is recorded as ``failed`` only on the final attempt,
        otherwise the slot goes back to ``pending``.
        """
        try:
            await self.tracker.update(job_key, 0, "Starting analysis...")
            rows = await self.store.find_relevant([], limit=self.sample_size)
            records = [r for r in rows if r.is_analyzed]

            await self.tracker.update(job_key, 20, "Analyzing sentiment trends...")
            stats = summarize(records)
            sentiment = {s.value: count for s, count in stats.sentiment_counts.items()}

            await self.tracker.update(job_key, 40, "Processing location hotspots...")
            hotspots = location_hotspots(records)

            await self.tracker.update(job_key, 60, "Generating department insights...")
            topics = department_topics(records, self.scorer)

            await self.tracker.update(job_key, 80, "Generating AI recommendations...")
            if topics:
                completion = await self.llm.complete(
                    RECOMMENDATIONS_SYSTEM_PROMPT,
                    [{"role": "user", "content": build_recommendations_prompt(topics)}],
                    self.temperature,
                    response_model=Recommendations,
                    purpose="analytics_recommendations",
                )
                recommendations, ai_generated = completion.parsed, True
            else:
                logger.warning("No analyzed feedback available for analytics", job_key=job_key)
                recommendations, ai_generated = Recommendations(), False

            await self.tracker.update(job_key, 90, "Finalizing results...")
            report = AnalyticsReport(
                candidate_count=len(records),
                sentiment_analysis=sentiment,
                location_hotspots=hotspots,
                department_insights=topics,
                ai_recommendations=recommendations,
                ai_generated=ai_generated,
                generated_at=datetime.now(UTC),
            )
            await self.tracker.complete(job_key, report, "Analysis complete!")

        except Exception as e:
            logger.error(
                "Analytics report generation failed",
                job_key=job_key,
                error=str(e),
                error_type=type(e).__name__,
            )
            if final_attempt:
                await self.tracker.fail(job_key, f"Analysis failed: {e}")
            else:
                await self.tracker.requeue(job_key, f"Retrying after error: {e}")
            raise

        logger.info(
            "Analytics report generated",
            job_key=job_key,
            candidate_count=report.candidate_count,
            topics=len(topics),
            ai_generated=ai_generated,
        )
        return report
