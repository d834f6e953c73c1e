"""
Error taxonomy for the feedback context engine.
"""

from datetime import datetime

from app.services.redis_client import CacheUnavailableError

__all__ = [
    "BudgetViolation",
    "CacheUnavailableError",
    "FeedbackContextError",
    "ModelFailure",
    "RetrievalFailure",
    "StaleJobConflict",
]


class FeedbackContextError(Exception):
    """Base exception for engine failures."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.recoverable = recoverable


class RetrievalFailure(FeedbackContextError):
    """The feedback store was unreachable or rejected the query."""


class ModelFailure(FeedbackContextError):
    """The language model call failed or returned a non-conforming payload."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        raw_snippet: str | None = None,
        recoverable: bool = True,
    ):
        super().__init__(message, recoverable=recoverable)
        self.status_code = status_code
        self.raw_snippet = raw_snippet


class BudgetViolation(FeedbackContextError):
    """The system message alone does not fit the context window."""

    def __init__(self, system_tokens: int, max_tokens: int):
        super().__init__(
            f"System message needs {system_tokens} tokens but the window is {max_tokens}",
            recoverable=False,
        )
        self.system_tokens = system_tokens
        self.max_tokens = max_tokens


class StaleJobConflict(FeedbackContextError):
    """A job with the same key is already pending or processing."""

    def __init__(self, job_key: str, started_at: datetime | None, status: str):
        when = started_at.isoformat() if started_at else "an unknown time"
        super().__init__(f"Job '{job_key}' already in progress since {when}")
        self.job_key = job_key
        self.started_at = started_at
        self.status = status
