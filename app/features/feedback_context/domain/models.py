"""
Domain models for the feedback context engine.

Values that travel through Redis (feedback records, statistics, cached
contexts, job statuses) are pydantic models so they serialize to JSON.
Request-scoped values that never leave the process are dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class Sentiment(StrEnum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class UrgencyLevel(StrEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return URGENCY_RANKS[self]


URGENCY_RANKS: dict[UrgencyLevel, int] = {
    UrgencyLevel.CRITICAL: 1,
    UrgencyLevel.HIGH: 2,
    UrgencyLevel.MEDIUM: 3,
    UrgencyLevel.LOW: 4,
}
UNSET_URGENCY_RANK = 5


def urgency_rank(urgency: UrgencyLevel | None) -> int:
    """Sort rank for an urgency value; unset sorts after low."""
    return URGENCY_RANKS[urgency] if urgency is not None else UNSET_URGENCY_RANK


class IssueCategory(StrEnum):
    ROAD = "road"
    WATER = "water"
    ELECTRICITY = "electricity"
    WASTE = "waste"
    SAFETY = "safety"
    EDUCATION = "education"
    HEALTH = "health"
    GENERAL = "general"

    @property
    def default_department(self) -> str:
        return DEFAULT_DEPARTMENTS[self]


DEFAULT_DEPARTMENTS: dict[IssueCategory, str] = {
    IssueCategory.ROAD: "Municipal Road Maintenance",
    IssueCategory.WATER: "Water Services Department",
    IssueCategory.ELECTRICITY: "Power and Utilities",
    IssueCategory.WASTE: "Waste Management",
    IssueCategory.SAFETY: "Public Safety Office",
    IssueCategory.EDUCATION: "Education Department",
    IssueCategory.HEALTH: "Public Health Services",
    IssueCategory.GENERAL: "Municipal Services",
}


class FeedbackRecord(BaseModel):
    """A citizen feedback report as read from the store."""

    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    body: str
    sentiment: Sentiment | None = None
    urgency: UrgencyLevel | None = None
    department: str | None = None
    tags: frozenset[str] = frozenset()
    location: str | None = None
    comment_count: int = 0
    created_at: datetime

    @property
    def is_analyzed(self) -> bool:
        return self.sentiment is not None


class FeedbackType(StrEnum):
    COMPLAINT = "complaint"
    SUGGESTION = "suggestion"
    QUESTION = "question"
    COMPLIMENT = "compliment"


class FeedbackAnalysis(BaseModel):
    """Structured enrichment returned by the model for one feedback report."""

    model_config = ConfigDict(extra="ignore")

    sentiment: Sentiment
    urgency_level: UrgencyLevel
    feedback_type: FeedbackType
    tags: list[str] = Field(default_factory=list)
    department: str | None = None
    summary: str | None = None

    def as_fields(self) -> dict[str, Any]:
        """Store write payload; only enrichment fields the store understands."""
        return {
            "sentiment": self.sentiment,
            "urgency": self.urgency_level,
            "department": self.department,
            "feedback_type": self.feedback_type,
            "tags": set(self.tags),
            "summary": self.summary,
        }


class CorpusStats(BaseModel):
    """Aggregate counts over one candidate set."""

    total: int = 0
    sentiment_counts: dict[Sentiment, int] = Field(
        default_factory=lambda: {s: 0 for s in Sentiment}
    )
    urgency_counts: dict[UrgencyLevel, int] = Field(
        default_factory=lambda: {u: 0 for u in UrgencyLevel}
    )
    department_counts: dict[str, int] = Field(default_factory=dict)
    tag_counts: dict[str, int] = Field(default_factory=dict)
    repetition_count: int = 0
    comment_count: int = 0
    first_report_at: datetime | None = None
    latest_report_at: datetime | None = None

    @property
    def sentiment_tagged(self) -> int:
        return sum(self.sentiment_counts.values())

    @property
    def urgency_tagged(self) -> int:
        return sum(self.urgency_counts.values())

    def top_tags(self, limit: int = 5) -> list[str]:
        ranked = sorted(self.tag_counts.items(), key=lambda item: item[1], reverse=True)
        return [tag for tag, _ in ranked[:limit]]


class PriorityResult(BaseModel):
    """Composite priority score plus the department it should be routed to."""

    priority: int
    department: str
    candidate_count: int
    contributions: dict[str, float] = Field(default_factory=dict)

    @property
    def has_data(self) -> bool:
        """False when the score was derived from an empty candidate set."""
        return self.candidate_count > 0


@dataclass(frozen=True, slots=True)
class QueryFilters:
    """Best-effort filters extracted from a free-text question."""

    keywords: tuple[str, ...] = ()
    location: str | None = None
    issue_category: IssueCategory | None = None
    since: datetime | None = None
    timeframe_label: str | None = None
    query_type: str = "general"
    urgent_first: bool = True


class FeedbackContext(BaseModel):
    """Everything the prompt builder needs for one query; the cached unit."""

    query_fingerprint: str
    keywords: list[str] = Field(default_factory=list)
    location: str | None = None
    issue_category: IssueCategory | None = None
    timeframe_label: str | None = None
    candidates: list[FeedbackRecord] = Field(default_factory=list)
    stats: CorpusStats = Field(default_factory=CorpusStats)
    priority: PriorityResult
    built_at: datetime


Role = Literal["system", "user", "assistant"]


@dataclass(slots=True)
class ConversationTurn:
    role: Role
    content: str
    token_count: int
    is_summary: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    def as_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(slots=True)
class Conversation:
    """A chat thread owned by one official; persistence is the caller's concern."""

    id: str
    turns: list[ConversationTurn] = field(default_factory=list)
    token_usage: int = 0
    title: str | None = None

    def add_token_usage(self, tokens: int) -> None:
        self.token_usage += max(tokens, 0)


class JobState(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


class JobStatus(BaseModel):
    """Job-register entry for one logical job."""

    status: JobState = JobState.PENDING
    message: str = ""
    progress: int = Field(default=0, ge=0, le=100)
    dispatched_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    updated_at: datetime | None = None

    def as_progress(self) -> dict[str, Any]:
        return {"progress": self.progress, "message": self.message, "status": self.status.value}
