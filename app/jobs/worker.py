"""
Background worker runner.

Pops queued jobs from Redis and dispatches them through JOB_REGISTRY. A job
that raises is pushed back with its attempt counter incremented until
WORKER_MAX_ATTEMPTS is reached. Redis outages pause the loop instead of
ending it.
"""

import asyncio
import signal
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from app.config import settings
from app.db.pool import db_pool
from app.features.feedback_context.dependencies import get_analysis_service, job_queue, job_tracker
from app.features.feedback_context.jobs.analytics_job import AnalyticsReportJob
from app.features.feedback_context.jobs.batch_analysis_job import BatchAnalysisJob
from app.features.feedback_context.jobs.queue import JobQueue, QueuedJob
from app.features.feedback_context.errors import CacheUnavailableError
from app.features.feedback_context.jobs.tracker import AsyncJobTracker
from app.features.feedback_context.pipeline.retrieval import FeedbackStore
from app.features.feedback_context.repository.feedback_repository import feedback_repository
from app.features.feedback_context.services.analysis_service import FeedbackAnalysisService
from app.features.feedback_context.services.llm_client import LLMClient, get_llm_client
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.services.redis_client import fast_redis

logger = get_logger(__name__)


@dataclass(slots=True)
class WorkerContext:
    store: FeedbackStore
    llm: LLMClient
    tracker: AsyncJobTracker
    analysis_service: FeedbackAnalysisService


# handlers get final_attempt=True when no retry will follow a failure
JobHandler = Callable[[WorkerContext, QueuedJob, bool], Awaitable[object]]


async def run_analytics_report(ctx: WorkerContext, job: QueuedJob, final_attempt: bool) -> object:
    return await AnalyticsReportJob(ctx.store, ctx.llm, ctx.tracker).run(job.job_key, final_attempt)


async def run_feedback_analysis(ctx: WorkerContext, job: QueuedJob, final_attempt: bool) -> object:
    batch_limit = int(job.payload.get("limit", 100))
    return await BatchAnalysisJob(
        ctx.store, ctx.analysis_service, ctx.tracker, batch_limit=batch_limit
    ).run(job.job_key, final_attempt)


JOB_REGISTRY: dict[str, JobHandler] = {
    "analytics_report": run_analytics_report,
    "feedback_analysis": run_feedback_analysis,
}


class Worker:
    def __init__(
        self,
        queue: JobQueue,
        context: WorkerContext,
        registry: dict[str, JobHandler] | None = None,
        max_attempts: int | None = None,
        retry_delay_s: float | None = None,
    ):
        self.queue = queue
        self.context = context
        self.registry = registry if registry is not None else JOB_REGISTRY
        self.max_attempts = max_attempts or settings.WORKER_MAX_ATTEMPTS
        self.retry_delay_s = retry_delay_s if retry_delay_s is not None else settings.WORKER_REDIS_RETRY_SECONDS
        self._stopping = asyncio.Event()

    def stop(self) -> None:
        self._stopping.set()

    async def process_one(self, timeout_s: int | None = None) -> bool:
        """Handle at most one queued job. Returns False when the queue was empty."""
        job = await self.queue.dequeue(timeout_s)
        if job is None:
            return False

        handler = self.registry.get(job.name)
        if handler is None:
            logger.error(
                "Unknown worker job, dropping",
                job=job.name,
                available=sorted(self.registry.keys()),
            )
            return True

        attempt = job.attempt + 1
        logger.info("Running job", job=job.name, job_key=job.job_key, attempt=attempt)
        try:
            await handler(self.context, job, attempt >= self.max_attempts)
        except Exception as e:
            if attempt < self.max_attempts:
                logger.warning(
                    "Job failed, requeueing",
                    job=job.name,
                    job_key=job.job_key,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    error=str(e),
                )
                job.attempt = attempt
                try:
                    await self.queue.enqueue(job)
                except CacheUnavailableError:
                    logger.error("Could not requeue job", job=job.name, job_key=job.job_key, attempt=attempt)
                    raise
            else:
                logger.error(
                    "Job failed, attempts exhausted",
                    job=job.name,
                    job_key=job.job_key,
                    attempts=attempt,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            return True

        logger.info("Job finished", job=job.name, job_key=job.job_key, attempt=attempt)
        return True

    async def run(self) -> None:
        logger.info("Starting background worker", queue=self.queue.queue_key, jobs=sorted(self.registry))
        while not self._stopping.is_set():
            try:
                await self.process_one()
            except CacheUnavailableError as e:
                logger.warning(
                    "Job queue unavailable, backing off",
                    operation=e.operation,
                    retry_in_s=self.retry_delay_s,
                    error=str(e),
                )
                await asyncio.sleep(self.retry_delay_s)
        logger.info("Background worker stopped")


async def run_worker() -> None:
    """Connect infrastructure, process jobs until signalled, then clean up."""
    await db_pool.initialize()
    await fast_redis.initialize()

    context = WorkerContext(
        store=feedback_repository,
        llm=get_llm_client(),
        tracker=job_tracker,
        analysis_service=get_analysis_service(),
    )
    worker = Worker(job_queue, context)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.stop)

    try:
        await worker.run()
    finally:
        await fast_redis.close()
        await db_pool.close()


def main() -> None:
    """CLI entrypoint."""
    setup_logging(log_level=settings.LOG_LEVEL)
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
