"""
Best-effort memoization of built feedback contexts in Redis.

Entries expire a fixed time after the first write; hits never refresh the
TTL. When Redis is unreachable every call computes, and racing writers for
the same query simply overwrite each other.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Generic, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from app.infrastructure.observability.logging import get_logger

from ..domain.models import FeedbackContext
from ..errors import CacheUnavailableError
from .fingerprint import fingerprint

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class CacheBackend(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool: ...

    async def delete(self, key: str) -> bool: ...


def query_fingerprint(query: str | None) -> str:
    """Cache key component shared by textually identical questions."""
    return fingerprint(" ".join((query or "").split()))


class ContextCache(Generic[ModelT]):
    """Content cache namespace over the shared Redis backend."""

    def __init__(
        self,
        backend: CacheBackend,
        model: type[ModelT] = FeedbackContext,
        namespace: str = "feedback_context",
    ):
        self.backend = backend
        self.model = model
        self.namespace = namespace

    def _key(self, query_fp: str) -> str:
        return f"{self.namespace}:{query_fp}"

    async def get_or_compute(
        self,
        query_fp: str,
        ttl: int,
        compute_fn: Callable[[], Awaitable[ModelT]],
    ) -> ModelT:
        key = self._key(query_fp)

        cached = await self._read(key)
        if cached is not None:
            logger.debug("Context cache hit", key=key)
            return cached

        value = await compute_fn()
        await self._write(key, value, ttl)
        return value

    async def forget(self, query: str) -> bool:
        """Drop the entry for a raw query text."""
        key = self._key(query_fingerprint(query))
        try:
            return await self.backend.delete(key)
        except CacheUnavailableError as e:
            logger.warning("Context cache unavailable, nothing forgotten", key=key, error=str(e))
            return False

    async def _read(self, key: str) -> ModelT | None:
        try:
            raw = await self.backend.get(key)
        except CacheUnavailableError as e:
            logger.warning("Context cache unavailable, computing without cache", key=key, error=str(e))
            return None

        if raw is None:
            return None

        try:
            return self.model.model_validate_json(raw)
        except ValidationError as e:
            # an entry written by an older model shape is treated as a miss
            logger.warning("Discarding unreadable context cache entry", key=key, error=str(e))
            return None

    async def _write(self, key: str, value: ModelT, ttl: int) -> None:
        try:
            await self.backend.set_with_ttl(key, value.model_dump_json(), ttl)
        except CacheUnavailableError as e:
            logger.warning("Context cache unavailable, result not stored", key=key, error=str(e))
