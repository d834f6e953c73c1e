"""
Redis-backed job register: pending -> processing -> completed | failed.

One status slot per logical job key plus a separate result slot. A pending
or processing entry that has not moved for ``stale_after`` seconds is read
as absent by conflict detection, which lets a new dispatch take over an
abandoned job without a watchdog. Readers never delete anything.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from pydantic import BaseModel, ValidationError

from app.config import settings
from app.infrastructure.observability.logging import get_logger

from ..domain.models import JobState, JobStatus
from ..errors import CacheUnavailableError, StaleJobConflict

logger = get_logger(__name__)

STATUS_NAMESPACE = "job_status"
RESULT_NAMESPACE = "job_result"
LOCK_NAMESPACE = "job_lock"
DISPATCH_LOCK_TTL_SECONDS = 10

NOT_STARTED = {"progress": 0, "message": "Job not started", "status": JobState.PENDING.value}


class JobRegisterBackend(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool: ...

    async def set_if_absent(self, key: str, value: str, ttl_s: int) -> bool: ...

    async def delete(self, key: str) -> bool: ...

    async def delete_if_equals(self, key: str, value: str) -> bool: ...


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AsyncJobTracker:
    def __init__(
        self,
        backend: JobRegisterBackend,
        clock: Callable[[], datetime] = _utcnow,
        stale_after: int | None = None,
        status_ttl: int | None = None,
        result_ttl: int | None = None,
    ):
        self.backend = backend
        self.clock = clock
        self.stale_after = timedelta(seconds=stale_after or settings.JOB_STALE_AFTER_SECONDS)
        self.status_ttl = status_ttl or settings.JOB_STATUS_TTL_SECONDS
        self.result_ttl = result_ttl or settings.JOB_RESULT_TTL_SECONDS

    @staticmethod
    def status_key(job_key: str) -> str:
        return f"{STATUS_NAMESPACE}:{job_key}"

    @staticmethod
    def result_key(job_key: str) -> str:
        return f"{RESULT_NAMESPACE}:{job_key}"

    @staticmethod
    def lock_key(job_key: str) -> str:
        return f"{LOCK_NAMESPACE}:{job_key}"

    async def _read(self, job_key: str) -> JobStatus | None:
        try:
            raw = await self.backend.get(self.status_key(job_key))
        except CacheUnavailableError as e:
            logger.warning("Job register unavailable on read", job_key=job_key, error=str(e))
            return None

        if raw is None:
            return None
        try:
            return JobStatus.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Unreadable job status entry", job_key=job_key, error=str(e))
            return None

    def is_stale(self, status: JobStatus) -> bool:
        if status.status is JobState.PROCESSING:
            reference = status.started_at or status.dispatched_at
        elif status.status is JobState.PENDING:
            reference = status.dispatched_at
        else:
            return False
        if reference is None:
            return False
        return self.clock() - reference > self.stale_after

    async def current(self, job_key: str) -> JobStatus | None:
        """Status as seen by conflict detection: stale active entries read as absent."""
        status = await self._read(job_key)
        if status is None:
            return None
        if self.is_stale(status):
            logger.info(
                "Ignoring stale job status",
                job_key=job_key,
                status=status.status.value,
                started_at=status.started_at,
                dispatched_at=status.dispatched_at,
            )
            return None
        return status

    async def progress(self, job_key: str) -> dict[str, Any]:
        """Last recorded progress, or the not-started default."""
        status = await self._read(job_key)
        if status is None:
            return dict(NOT_STARTED)
        return status.as_progress()

    async def result(self, job_key: str) -> Any | None:
        try:
            raw = await self.backend.get(self.result_key(job_key))
        except CacheUnavailableError as e:
            logger.warning("Job register unavailable on result read", job_key=job_key, error=str(e))
            return None
        if raw is None:
            return None
        return json.loads(raw)

    async def _write(self, job_key: str, status: JobStatus) -> None:
        try:
            await self.backend.set_with_ttl(
                self.status_key(job_key), status.model_dump_json(), self.status_ttl
            )
        except CacheUnavailableError as e:
            logger.warning(
                "Job register unavailable on write",
                job_key=job_key,
                status=status.status.value,
                error=str(e),
            )

    async def _acquire_dispatch_lock(self, job_key: str) -> str | None:
        token = uuid.uuid4().hex
        try:
            acquired = await self.backend.set_if_absent(
                self.lock_key(job_key), token, DISPATCH_LOCK_TTL_SECONDS
            )
        except CacheUnavailableError as e:
            logger.warning("Job register unavailable, dispatching without lock", job_key=job_key, error=str(e))
            return token
        return token if acquired else None

    async def _release_dispatch_lock(self, job_key: str, token: str) -> None:
        # the lock may have expired and been taken by another dispatcher
        try:
            await self.backend.delete_if_equals(self.lock_key(job_key), token)
        except CacheUnavailableError as e:
            logger.warning("Could not release dispatch lock", job_key=job_key, error=str(e))

    async def dispatch(self, job_key: str, message: str = "Job queued") -> JobStatus:
        """
        Register a new pending job. Raises StaleJobConflict when a live
        pending or processing entry already owns the key.
        """
        token = await self._acquire_dispatch_lock(job_key)
        if token is None:
            existing = await self._read(job_key)
            started_at = (existing.started_at or existing.dispatched_at) if existing else None
            logger.info("Job dispatch already in flight", job_key=job_key)
            raise StaleJobConflict(job_key, started_at, JobState.PENDING.value)

        try:
            existing = await self.current(job_key)
            if existing is not None and not existing.status.is_terminal:
                started_at = existing.started_at or existing.dispatched_at
                logger.info(
                    "Job already in progress",
                    job_key=job_key,
                    status=existing.status.value,
                    started_at=started_at,
                )
                raise StaleJobConflict(job_key, started_at, existing.status.value)

            now = self.clock()
            status = JobStatus(
                status=JobState.PENDING,
                message=message,
                progress=0,
                dispatched_at=now,
                updated_at=now,
            )
            await self._write(job_key, status)
            logger.info("Job dispatched", job_key=job_key)
            return status
        finally:
            await self._release_dispatch_lock(job_key, token)

    async def update(self, job_key: str, progress: int, message: str) -> JobStatus:
        """Move to processing; progress never decreases within one run."""
        now = self.clock()
        existing = await self._read(job_key)
        active = existing is not None and not existing.status.is_terminal

        requested = max(0, min(100, int(progress)))
        floor = existing.progress if active else 0
        started_at = existing.started_at if active and existing.started_at else now

        status = JobStatus(
            status=JobState.PROCESSING,
            message=message,
            progress=max(floor, requested),
            dispatched_at=existing.dispatched_at if existing else None,
            started_at=started_at,
            updated_at=now,
        )
        await self._write(job_key, status)
        logger.debug("Job progress", job_key=job_key, progress=status.progress, message=message)
        return status

    async def complete(
        self,
        job_key: str,
        result: BaseModel | dict[str, Any] | list[Any] | None = None,
        message: str = "Job completed",
    ) -> JobStatus:
        now = self.clock()
        existing = await self._read(job_key)

        if result is not None:
            payload = result.model_dump_json() if isinstance(result, BaseModel) else json.dumps(result, default=str)
            try:
                await self.backend.set_with_ttl(self.result_key(job_key), payload, self.result_ttl)
            except CacheUnavailableError as e:
                logger.warning("Job result not stored", job_key=job_key, error=str(e))

        status = JobStatus(
            status=JobState.COMPLETED,
            message=message,
            progress=100,
            dispatched_at=existing.dispatched_at if existing else None,
            started_at=existing.started_at if existing else None,
            completed_at=now,
            updated_at=now,
        )
        await self._write(job_key, status)
        logger.info("Job completed", job_key=job_key)
        return status

    async def requeue(self, job_key: str, message: str) -> JobStatus:
        """Put a failed attempt back to pending so the slot stays owned until the retry runs."""
        now = self.clock()
        status = JobStatus(
            status=JobState.PENDING,
            message=message,
            progress=0,
            dispatched_at=now,
            updated_at=now,
        )
        await self._write(job_key, status)
        logger.warning("Job requeued", job_key=job_key, reason=message)
        return status

    async def fail(self, job_key: str, message: str) -> JobStatus:
        now = self.clock()
        existing = await self._read(job_key)

        status = JobStatus(
            status=JobState.FAILED,
            message=message,
            progress=existing.progress if existing else 0,
            dispatched_at=existing.dispatched_at if existing else None,
            started_at=existing.started_at if existing else None,
            failed_at=now,
            updated_at=now,
        )
        await self._write(job_key, status)
        logger.error("Job failed", job_key=job_key, reason=message)
        return status

    async def clear(self, job_key: str) -> None:
        for key in (self.status_key(job_key), self.result_key(job_key)):
            try:
                await self.backend.delete(key)
            except CacheUnavailableError as e:
                logger.warning("Job register unavailable on clear", key=key, error=str(e))
