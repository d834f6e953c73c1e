from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

import pytest

from app.db.helpers import DatabaseError
from app.features.feedback_context.domain.models import (
    FeedbackRecord,
    Sentiment,
    UrgencyLevel,
)
from app.features.feedback_context.errors import CacheUnavailableError, ModelFailure
from app.features.feedback_context.services.llm_client import Completion, LLMClient

BASE_TIME = datetime(2025, 6, 2, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeRedis:
    """In-memory stand-in for FastRedisClient with TTLs driven by a FakeClock."""

    def __init__(self, clock: FakeClock | None = None):
        self.clock = clock or FakeClock()
        self.store: dict[str, str] = {}
        self.expires: dict[str, datetime] = {}
        self.lists: dict[str, list[str]] = {}
        self.ttls: dict[str, int | None] = {}
        self.unavailable = False

    def _check(self, operation: str) -> None:
        if self.unavailable:
            raise CacheUnavailableError("Redis down", operation=operation)

    def _expire(self, key: str) -> None:
        expires_at = self.expires.get(key)
        if expires_at is not None and self.clock() >= expires_at:
            self.store.pop(key, None)
            self.expires.pop(key, None)

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        self._check("set")
        self.store[key] = value
        self.ttls[key] = ttl_s
        if ttl_s:
            self.expires[key] = self.clock() + timedelta(seconds=ttl_s)
        else:
            self.expires.pop(key, None)
        return True

    async def set_if_absent(self, key: str, value: str, ttl_s: int) -> bool:
        self._check("set_nx")
        self._expire(key)
        if key in self.store:
            return False
        return await self.set_with_ttl(key, value, ttl_s)

    async def get(self, key: str) -> str | None:
        self._check("get")
        self._expire(key)
        return self.store.get(key)

    async def delete(self, key: str) -> bool:
        self._check("delete")
        self.expires.pop(key, None)
        return self.store.pop(key, None) is not None

    async def delete_if_equals(self, key: str, value: str) -> bool:
        self._check("delete_if_equals")
        self._expire(key)
        if self.store.get(key) != value:
            return False
        return await self.delete(key)

    async def push(self, key: str, value: str) -> int:
        self._check("push")
        self.lists.setdefault(key, []).append(value)
        return len(self.lists[key])

    async def pop_blocking(self, key: str, timeout_s: int) -> str | None:
        self._check("pop")
        items = self.lists.get(key)
        return items.pop(0) if items else None


class FakeFeedbackStore:
    """Feedback store honoring the same filters as the Postgres repository."""

    def __init__(self, records: Sequence[FeedbackRecord] = ()):
        self.records = list(records)
        self.calls: list[dict] = []
        self.applied: list[tuple[int, dict]] = []
        self.error: Exception | None = None

    async def find_relevant(
        self,
        keywords,
        *,
        location=None,
        issue_category=None,
        since=None,
        limit=50,
        urgent_first=True,
    ):
        self.calls.append(
            {
                "keywords": list(keywords),
                "location": location,
                "issue_category": issue_category,
                "since": since,
                "limit": limit,
                "urgent_first": urgent_first,
            }
        )
        if self.error is not None:
            raise self.error

        def matches(record: FeedbackRecord) -> bool:
            if keywords:
                fields = [record.title, record.body, record.department or "", record.location or ""]
                if not any(k.lower() in f.lower() for k in keywords for f in fields):
                    return False
            if location and location.lower() not in (record.location or "").lower():
                return False
            if issue_category and not any(
                issue_category.lower() in f.lower() for f in (record.title, record.body)
            ):
                return False
            if since is not None and record.created_at < since:
                return False
            return True

        # store order is deliberately insertion order; the retriever re-sorts
        return [r for r in self.records if matches(r)][:limit]

    async def find_unanalyzed(self, limit: int = 100):
        if self.error is not None:
            raise self.error
        return [r for r in self.records if not r.is_analyzed][:limit]

    async def apply_analysis(self, feedback_id: int, fields: dict) -> None:
        if self.error is not None:
            raise self.error
        self.applied.append((feedback_id, fields))


class FakeLLM:
    """Scripted model client; queue replies (str) or errors (ModelFailure)."""

    model = "fake-model"

    def __init__(self):
        self.replies: list = []
        self.stream_chunks: list[str] = []
        self.stream_error: ModelFailure | None = None
        self.calls: list[dict] = []

    async def complete(
        self, system, messages, temperature, response_model=None, max_tokens=None, purpose="chat"
    ):
        self.calls.append(
            {
                "system": system,
                "messages": list(messages),
                "temperature": temperature,
                "response_model": response_model,
                "purpose": purpose,
            }
        )
        reply = self.replies.pop(0) if self.replies else "ok"
        if isinstance(reply, Exception):
            raise reply
        completion = Completion(text=reply, prompt_tokens=100, completion_tokens=20)
        if response_model is not None:
            completion.parsed = LLMClient.parse_structured(reply, response_model)
        return completion

    async def stream(self, system, messages, temperature, max_tokens=None, json_mode=False):
        self.calls.append({"system": system, "messages": list(messages), "stream": True})
        for chunk in self.stream_chunks:
            yield chunk
        if self.stream_error is not None:
            raise self.stream_error

    parse_structured = staticmethod(LLMClient.parse_structured)


def make_record(
    id: int,
    body: str | None = None,
    *,
    title: str | None = None,
    urgency: UrgencyLevel | None = None,
    sentiment: Sentiment | None = None,
    department: str | None = None,
    location: str | None = None,
    tags: Sequence[str] = (),
    comment_count: int = 0,
    minutes_ago: int = 0,
) -> FeedbackRecord:
    return FeedbackRecord(
        id=id,
        title=title or f"Report {id}",
        body=body if body is not None else f"Feedback body {id}",
        urgency=urgency,
        sentiment=sentiment,
        department=department,
        location=location,
        tags=frozenset(tags),
        comment_count=comment_count,
        created_at=BASE_TIME - timedelta(minutes=minutes_ago),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis(clock):
    return FakeRedis(clock)


@pytest.fixture
def fake_store():
    return FakeFeedbackStore()


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def scenario_a_records():
    """12 negative reports: 8 critical, 4 high, 3 repeated bodies, 20 comments."""
    records = []
    for i in range(12):
        body = "Burst water main flooding the street" if i < 3 else f"Distinct report number {i}"
        records.append(
            make_record(
                i + 1,
                body,
                urgency=UrgencyLevel.CRITICAL if i < 8 else UrgencyLevel.HIGH,
                sentiment=Sentiment.NEGATIVE,
                department="Water Services Department",
                location="Dardania",
                comment_count=2 if i < 10 else 0,
                minutes_ago=i,
            )
        )
    return records


@pytest.fixture
def store_failure():
    return DatabaseError("connection refused", operation="fetch_all")
