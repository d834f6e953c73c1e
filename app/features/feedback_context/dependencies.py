"""
Shared, lazily-connected engine components.

Nothing here opens a connection at import time: Redis and Postgres are
initialized by the application lifespan (or the worker), and the OpenAI
client is created on first use.
"""

from app.services.redis_client import fast_redis

from .jobs.queue import JobQueue
from .jobs.tracker import AsyncJobTracker
from .pipeline.context_builder import FeedbackContextBuilder
from .pipeline.context_cache import ContextCache
from .pipeline.retrieval import FeedbackRetriever
from .repository.feedback_repository import feedback_repository
from .services.analysis_service import FeedbackAnalysisService
from .services.chat_service import ChatService
from .services.llm_client import get_llm_client

job_tracker = AsyncJobTracker(fast_redis)
job_queue = JobQueue(fast_redis)
context_cache = ContextCache(fast_redis)
context_builder = FeedbackContextBuilder(FeedbackRetriever(feedback_repository), context_cache)


def get_job_tracker() -> AsyncJobTracker:
    return job_tracker


def get_job_queue() -> JobQueue:
    return job_queue


def get_chat_service() -> ChatService:
    return ChatService(context_builder, get_llm_client())


def get_analysis_service() -> FeedbackAnalysisService:
    return FeedbackAnalysisService(feedback_repository, get_llm_client())
