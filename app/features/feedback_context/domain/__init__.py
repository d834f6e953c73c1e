"""
Domain subpackage for the feedback context engine.
"""

from .models import (
    Conversation,
    ConversationTurn,
    CorpusStats,
    FeedbackAnalysis,
    FeedbackContext,
    FeedbackRecord,
    FeedbackType,
    IssueCategory,
    JobState,
    JobStatus,
    PriorityResult,
    QueryFilters,
    Sentiment,
    UrgencyLevel,
    urgency_rank,
)

__all__ = [
    "Conversation",
    "ConversationTurn",
    "CorpusStats",
    "FeedbackAnalysis",
    "FeedbackContext",
    "FeedbackRecord",
    "FeedbackType",
    "IssueCategory",
    "JobState",
    "JobStatus",
    "PriorityResult",
    "QueryFilters",
    "Sentiment",
    "UrgencyLevel",
    "urgency_rank",
]
