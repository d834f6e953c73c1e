"""
Per-feedback structured analysis through the language model.

The model must return a JSON object matching FeedbackAnalysis. Anything else
is a ModelFailure; there is no keyword-based fallback, so a record is either
properly analyzed or left untouched.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from app.config import settings
from app.infrastructure.observability.logging import get_logger

from ..domain.models import FeedbackAnalysis, FeedbackRecord
from ..pipeline.retrieval import FeedbackStore
from .llm_client import LLMClient

logger = get_logger(__name__)

ANALYSIS_SYSTEM_PROMPT = (
    "You are an AI assistant for a government feedback system. "
    "Your task is to analyze citizen feedback and provide useful insights. "
    "Respond with a single JSON object and nothing else."
)


def build_analysis_prompt(record: FeedbackRecord) -> str:
    return f"""Analyze the following feedback and return a JSON object with these fields:
sentiment (positive, negative, or neutral),
urgency_level (low, medium, high, critical),
feedback_type (complaint, suggestion, question, compliment),
tags (array of relevant tags),
department (most relevant government department),
summary (brief summary in 1-2 sentences).

Title: {record.title}
Location: {record.location or "unspecified"}
Feedback: {record.body}"""


class FeedbackAnalysisService:
    def __init__(self, store: FeedbackStore, llm: LLMClient, temperature: float | None = None):
        self.store = store
        self.llm = llm
        self.temperature = temperature if temperature is not None else settings.ANALYSIS_TEMPERATURE

    def _messages(self, record: FeedbackRecord) -> list[dict[str, str]]:
        return [{"role": "user", "content": build_analysis_prompt(record)}]

    async def analyze(self, record: FeedbackRecord, force: bool = False) -> FeedbackAnalysis | None:
        """
        Analyze one record and write the enrichment back to the store.

        Returns None when the record was already analyzed and ``force`` is off.
        """
        if record.is_analyzed and not force:
            logger.info("Feedback already analyzed", feedback_id=record.id)
            return None

        completion = await self.llm.complete(
            ANALYSIS_SYSTEM_PROMPT,
            self._messages(record),
            self.temperature,
            response_model=FeedbackAnalysis,
            purpose="feedback_analysis",
        )
        analysis: FeedbackAnalysis = completion.parsed
        await self.store.apply_analysis(record.id, analysis.as_fields())

        logger.info(
            "Feedback analyzed successfully",
            feedback_id=record.id,
            sentiment=analysis.sentiment.value,
            urgency=analysis.urgency_level.value,
            department=analysis.department,
        )
        return analysis

    async def analyze_stream(self, record: FeedbackRecord, force: bool = False) -> AsyncIterator[str]:
        """
        Stream the raw model output while it is produced. The result is
        parsed and committed only after the stream has ended; a consumer that
        stops iterating early leaves the record unanalyzed.
        """
        if record.is_analyzed and not force:
            logger.info("Feedback already analyzed", feedback_id=record.id)
            return

        buffer: list[str] = []
        async for chunk in self.llm.stream(
            ANALYSIS_SYSTEM_PROMPT,
            self._messages(record),
            self.temperature,
            json_mode=True,
        ):
            buffer.append(chunk)
            yield chunk

        analysis = self.llm.parse_structured("".join(buffer).strip(), FeedbackAnalysis)
        await self.store.apply_analysis(record.id, analysis.as_fields())
        logger.info("Streamed feedback analysis committed", feedback_id=record.id)
