import json

import pytest

from app.features.feedback_context.domain.models import JobState
from app.features.feedback_context.errors import StaleJobConflict
from app.features.feedback_context.jobs.queue import JobQueue, QueuedJob, dispatch_job
from app.features.feedback_context.jobs.tracker import AsyncJobTracker


@pytest.fixture
def tracker(clock, fake_redis):
    return AsyncJobTracker(fake_redis, clock=clock, stale_after=600, status_ttl=3600, result_ttl=3600)


@pytest.mark.asyncio
async def test_progress_defaults_when_never_dispatched(tracker):
    assert await tracker.progress("analytics_report") == {
        "progress": 0,
        "message": "Job not started",
        "status": "pending",
    }


@pytest.mark.asyncio
async def test_dispatch_conflicts_with_live_job(tracker, clock):
    await tracker.dispatch("analytics_report")
    await tracker.update("analytics_report", 20, "Collecting data...")
    clock.advance(minutes=3)

    with pytest.raises(StaleJobConflict) as exc_info:
        await tracker.dispatch("analytics_report")

    assert exc_info.value.status == "processing"
    assert exc_info.value.started_at is not None


@pytest.mark.asyncio
async def test_stale_processing_job_can_be_redispatched(tracker, clock):
    await tracker.dispatch("analytics_report")
    await tracker.update("analytics_report", 40, "Analyzing...")
    clock.advance(minutes=11)

    status = await tracker.dispatch("analytics_report")

    assert status.status is JobState.PENDING
    assert status.progress == 0
    assert await tracker.progress("analytics_report") == {
        "progress": 0,
        "message": "Job queued",
        "status": "pending",
    }


@pytest.mark.asyncio
async def test_stale_entry_still_readable_by_progress(tracker, clock):
    await tracker.dispatch("analytics_report")
    await tracker.update("analytics_report", 60, "Generating recommendations...")
    clock.advance(minutes=11)

    assert await tracker.current("analytics_report") is None
    assert (await tracker.progress("analytics_report"))["progress"] == 60


@pytest.mark.asyncio
async def test_held_dispatch_lock_raises_conflict(tracker, fake_redis):
    fake_redis.store[tracker.lock_key("analytics_report")] = "someone-else"

    with pytest.raises(StaleJobConflict):
        await tracker.dispatch("analytics_report")


@pytest.mark.asyncio
async def test_dispatch_after_terminal_state_is_allowed(tracker):
    await tracker.dispatch("analytics_report")
    await tracker.complete("analytics_report", {"ok": True})

    status = await tracker.dispatch("analytics_report")

    assert status.status is JobState.PENDING


@pytest.mark.asyncio
async def test_progress_is_monotonic_within_a_run(tracker):
    await tracker.dispatch("analytics_report")
    await tracker.update("analytics_report", 60, "Analyzing...")

    status = await tracker.update("analytics_report", 20, "Late update")

    assert status.progress == 60
    assert status.message == "Late update"


@pytest.mark.asyncio
async def test_update_clamps_out_of_range_progress(tracker):
    status = await tracker.update("analytics_report", 250, "Overshoot")

    assert status.progress == 100
    assert status.status is JobState.PROCESSING


@pytest.mark.asyncio
async def test_update_keeps_started_at(tracker, clock):
    first = await tracker.update("analytics_report", 10, "Starting")
    clock.advance(minutes=2)

    second = await tracker.update("analytics_report", 20, "Still going")

    assert second.started_at == first.started_at


@pytest.mark.asyncio
async def test_complete_stores_result_separately(tracker, fake_redis):
    await tracker.dispatch("analytics_report")

    await tracker.complete("analytics_report", {"total": 3})

    assert await tracker.result("analytics_report") == {"total": 3}
    assert await tracker.progress("analytics_report") == {
        "progress": 100,
        "message": "Job completed",
        "status": "completed",
    }
    assert json.loads(fake_redis.store["job_result:analytics_report"]) == {"total": 3}


@pytest.mark.asyncio
async def test_fail_records_message_and_keeps_progress(tracker):
    await tracker.update("analytics_report", 40, "Analyzing...")

    status = await tracker.fail("analytics_report", "Analysis failed: boom")

    assert status.status is JobState.FAILED
    assert status.progress == 40
    assert status.failed_at is not None
    assert (await tracker.progress("analytics_report"))["message"] == "Analysis failed: boom"


@pytest.mark.asyncio
async def test_unavailable_register_reads_default(tracker, fake_redis):
    fake_redis.unavailable = True

    assert (await tracker.progress("analytics_report"))["message"] == "Job not started"
    assert await tracker.result("analytics_report") is None


@pytest.mark.asyncio
async def test_clear_removes_status_and_result(tracker):
    await tracker.complete("analytics_report", {"x": 1})

    await tracker.clear("analytics_report")

    assert await tracker.result("analytics_report") is None
    assert await tracker.current("analytics_report") is None


@pytest.mark.asyncio
async def test_dispatch_job_registers_then_enqueues(tracker, fake_redis):
    queue = JobQueue(fake_redis, queue_key="jobs")

    await dispatch_job(tracker, queue, "analytics_report", "analytics_report", {"a": 1})

    job = await queue.dequeue(timeout_s=0)
    assert job == QueuedJob(name="analytics_report", job_key="analytics_report", payload={"a": 1})
    with pytest.raises(StaleJobConflict):
        await dispatch_job(tracker, queue, "analytics_report", "analytics_report")
    assert fake_redis.lists["jobs"] == []


@pytest.mark.asyncio
async def test_malformed_queue_message_is_dropped(fake_redis):
    queue = JobQueue(fake_redis, queue_key="jobs")
    await fake_redis.push("jobs", "not json")

    assert await queue.dequeue(timeout_s=0) is None


@pytest.mark.asyncio
async def test_dispatch_releases_its_own_lock(tracker, fake_redis):
    await tracker.dispatch("analytics_report")

    assert tracker.lock_key("analytics_report") not in fake_redis.store


@pytest.mark.asyncio
async def test_lock_release_leaves_another_dispatchers_lock(tracker, fake_redis, clock):
    token = await tracker._acquire_dispatch_lock("analytics_report")
    clock.advance(seconds=11)
    assert await fake_redis.set_if_absent(tracker.lock_key("analytics_report"), "other-token", 10)

    await tracker._release_dispatch_lock("analytics_report", token)

    assert fake_redis.store[tracker.lock_key("analytics_report")] == "other-token"


@pytest.mark.asyncio
async def test_requeue_keeps_slot_owned(tracker, fake_redis, clock):
    await tracker.dispatch("analytics_report")
    await tracker.update("analytics_report", 40, "Analyzing...")
    clock.advance(minutes=9)

    await tracker.requeue("analytics_report", "Retrying after error: boom")
    clock.advance(minutes=9)

    with pytest.raises(StaleJobConflict) as exc_info:
        await tracker.dispatch("analytics_report")
    assert exc_info.value.status == "pending"
    assert (await tracker.progress("analytics_report"))["progress"] == 0
