"""
Redis list job queue with an attempt budget.

Producers register the job on the tracker first, so a second request for the
same job key is rejected before anything is queued. Delivery is
at-least-once: a failed message is pushed back with its attempt counter
incremented until the budget runs out.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

from app.config import settings
from app.infrastructure.observability.logging import get_logger

from ..domain.models import JobStatus
from ..errors import CacheUnavailableError
from .tracker import AsyncJobTracker

logger = get_logger(__name__)


class QueueBackend(Protocol):
    async def push(self, key: str, value: str) -> int: ...

    async def pop_blocking(self, key: str, timeout_s: int) -> str | None: ...


@dataclass(slots=True)
class QueuedJob:
    name: str
    job_key: str
    payload: dict[str, Any] = field(default_factory=dict)
    attempt: int = 0

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> QueuedJob:
        data = json.loads(raw)
        return cls(
            name=data["name"],
            job_key=data["job_key"],
            payload=data.get("payload") or {},
            attempt=int(data.get("attempt", 0)),
        )


class JobQueue:
    def __init__(self, backend: QueueBackend, queue_key: str | None = None):
        self.backend = backend
        self.queue_key = queue_key or settings.WORKER_QUEUE_KEY

    async def enqueue(self, job: QueuedJob) -> None:
        await self.backend.push(self.queue_key, job.to_json())
        logger.info("Job enqueued", job=job.name, job_key=job.job_key, attempt=job.attempt)

    async def dequeue(self, timeout_s: int | None = None) -> QueuedJob | None:
        raw = await self.backend.pop_blocking(
            self.queue_key, timeout_s if timeout_s is not None else settings.WORKER_POLL_TIMEOUT_SECONDS
        )
        if raw is None:
            return None
        try:
            return QueuedJob.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Dropping malformed queue message", raw=raw[:200], error=str(e))
            return None


async def dispatch_job(
    tracker: AsyncJobTracker,
    queue: JobQueue,
    name: str,
    job_key: str,
    payload: dict[str, Any] | None = None,
) -> JobStatus:
    """
    Register the job as pending and queue it. StaleJobConflict propagates
    when the key is already owned by a live job.
    """
    status = await tracker.dispatch(job_key)
    try:
        await queue.enqueue(QueuedJob(name=name, job_key=job_key, payload=payload or {}))
    except CacheUnavailableError:
        await tracker.fail(job_key, "Could not queue job")
        raise
    return status
