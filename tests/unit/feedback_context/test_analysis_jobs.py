import json

import pytest
from conftest import FakeFeedbackStore, make_record

from app.features.feedback_context.domain.models import (
    FeedbackType,
    JobState,
    Sentiment,
    UrgencyLevel,
)
from app.features.feedback_context.errors import ModelFailure
from app.features.feedback_context.jobs.analytics_job import (
    AnalyticsReportJob,
    department_topics,
    location_hotspots,
)
from app.features.feedback_context.jobs.batch_analysis_job import BatchAnalysisJob
from app.features.feedback_context.jobs.tracker import AsyncJobTracker
from app.features.feedback_context.pipeline.scoring import PriorityScorer
from app.features.feedback_context.services.analysis_service import FeedbackAnalysisService

ANALYSIS_JSON = json.dumps(
    {
        "sentiment": "negative",
        "urgency_level": "high",
        "feedback_type": "complaint",
        "tags": ["water", "leak"],
        "department": "Water Services Department",
        "summary": "Leaking pipe on the main road.",
    }
)

RECOMMENDATIONS_JSON = json.dumps(
    {
        "immediate_actions": ["Dispatch repair crews to Dardania"],
        "long_term_strategies": ["Replace ageing mains"],
        "resource_allocation": ["Shift budget to water services"],
        "communication_strategies": ["Publish repair timelines"],
    }
)


class RecordingTracker(AsyncJobTracker):
    def __init__(self, backend, clock):
        super().__init__(backend, clock=clock, stale_after=600, status_ttl=3600, result_ttl=3600)
        self.stages: list[tuple[int, str]] = []

    async def update(self, job_key, progress, message):
        self.stages.append((progress, message))
        return await super().update(job_key, progress, message)


@pytest.fixture
def tracker(fake_redis, clock):
    return RecordingTracker(fake_redis, clock)


@pytest.mark.asyncio
async def test_analyze_writes_enrichment_back(fake_llm):
    store = FakeFeedbackStore()
    fake_llm.replies = [ANALYSIS_JSON]
    service = FeedbackAnalysisService(store, fake_llm, temperature=0.2)

    analysis = await service.analyze(make_record(7, "Pipe leaking for a week"))

    assert analysis.feedback_type is FeedbackType.COMPLAINT
    assert store.applied == [
        (
            7,
            {
                "sentiment": Sentiment.NEGATIVE,
                "urgency": UrgencyLevel.HIGH,
                "department": "Water Services Department",
                "feedback_type": FeedbackType.COMPLAINT,
                "tags": {"water", "leak"},
                "summary": "Leaking pipe on the main road.",
            },
        )
    ]
    assert fake_llm.calls[0]["temperature"] == 0.2
    assert "Pipe leaking for a week" in fake_llm.calls[0]["messages"][0]["content"]


@pytest.mark.asyncio
async def test_analyze_skips_already_analyzed(fake_llm):
    store = FakeFeedbackStore()
    service = FeedbackAnalysisService(store, fake_llm, temperature=0.2)

    result = await service.analyze(make_record(7, sentiment=Sentiment.NEUTRAL))

    assert result is None
    assert fake_llm.calls == []


@pytest.mark.asyncio
async def test_analyze_rejects_free_text_reply(fake_llm):
    store = FakeFeedbackStore()
    fake_llm.replies = ["This feedback seems negative and urgent."]
    service = FeedbackAnalysisService(store, fake_llm, temperature=0.2)

    with pytest.raises(ModelFailure):
        await service.analyze(make_record(7))

    assert store.applied == []


@pytest.mark.asyncio
async def test_analyze_stream_commits_only_after_stream_ends(fake_llm):
    store = FakeFeedbackStore()
    fake_llm.stream_chunks = [ANALYSIS_JSON[:20], ANALYSIS_JSON[20:]]
    service = FeedbackAnalysisService(store, fake_llm, temperature=0.2)

    stream = service.analyze_stream(make_record(7))
    await stream.__anext__()
    assert store.applied == []

    async for _ in stream:
        pass

    assert store.applied[0][0] == 7


@pytest.mark.asyncio
async def test_analyze_stream_abandoned_early_leaves_record_untouched(fake_llm):
    store = FakeFeedbackStore()
    fake_llm.stream_chunks = [ANALYSIS_JSON[:20], ANALYSIS_JSON[20:]]
    service = FeedbackAnalysisService(store, fake_llm, temperature=0.2)

    stream = service.analyze_stream(make_record(7))
    await stream.__anext__()
    await stream.aclose()

    assert store.applied == []


def _analyzed_records():
    return [
        make_record(1, urgency=UrgencyLevel.CRITICAL, sentiment=Sentiment.NEGATIVE,
                    department="Water Services Department", location="Dardania", comment_count=4),
        make_record(2, urgency=UrgencyLevel.HIGH, sentiment=Sentiment.NEGATIVE,
                    department="Water Services Department", location="Dardania"),
        make_record(3, urgency=UrgencyLevel.LOW, sentiment=Sentiment.POSITIVE,
                    department="Parks", location="Ulpiana"),
        make_record(4, body="not analyzed yet", location="Dardania"),
    ]


def test_location_hotspots_rank_by_count_then_urgency():
    hotspots = location_hotspots([r for r in _analyzed_records() if r.is_analyzed])

    assert [(h.location, h.count) for h in hotspots] == [("Dardania", 2), ("Ulpiana", 1)]
    assert hotspots[0].highest_urgency is UrgencyLevel.CRITICAL


def test_department_topics_are_scored_and_ordered():
    topics = department_topics([r for r in _analyzed_records() if r.is_analyzed], PriorityScorer())

    assert [t.department for t in topics] == ["Water Services Department", "Parks"]
    water = topics[0]
    assert water.urgent_cases == 2
    assert water.sentiment_percentages["negative"] == 100.0
    assert water.priority.priority > topics[1].priority.priority


@pytest.mark.asyncio
async def test_analytics_job_reports_staged_progress(tracker, fake_llm):
    fake_llm.replies = [RECOMMENDATIONS_JSON]
    job = AnalyticsReportJob(FakeFeedbackStore(_analyzed_records()), fake_llm, tracker,
                             sample_size=100, temperature=0.3)

    report = await job.run("analytics_report")

    assert [p for p, _ in tracker.stages] == [0, 20, 40, 60, 80, 90]
    assert report.candidate_count == 3
    assert report.ai_generated
    assert report.ai_recommendations.immediate_actions == ["Dispatch repair crews to Dardania"]
    assert fake_llm.calls[0]["temperature"] == 0.3
    assert await tracker.progress("analytics_report") == {
        "progress": 100,
        "message": "Analysis complete!",
        "status": "completed",
    }
    stored = await tracker.result("analytics_report")
    assert stored["department_insights"][0]["department"] == "Water Services Department"


@pytest.mark.asyncio
async def test_analytics_job_without_analyzed_feedback_skips_model(tracker, fake_llm):
    job = AnalyticsReportJob(FakeFeedbackStore([make_record(1)]), fake_llm, tracker,
                             sample_size=100, temperature=0.3)

    report = await job.run("analytics_report")

    assert not report.ai_generated
    assert report.department_insights == []
    assert fake_llm.calls == []


@pytest.mark.asyncio
async def test_analytics_job_failure_marks_job_failed(tracker, fake_llm):
    fake_llm.replies = [ModelFailure("rate limited", status_code=429)]
    job = AnalyticsReportJob(FakeFeedbackStore(_analyzed_records()), fake_llm, tracker,
                             sample_size=100, temperature=0.3)

    with pytest.raises(ModelFailure):
        await job.run("analytics_report")

    progress = await tracker.progress("analytics_report")
    assert progress["status"] == "failed"
    assert progress["message"] == "Analysis failed: rate limited"
    assert progress["progress"] == 80


@pytest.mark.asyncio
async def test_batch_job_continues_past_model_failures(tracker, fake_llm):
    store = FakeFeedbackStore([make_record(1), make_record(2), make_record(3, sentiment=Sentiment.NEUTRAL)])
    fake_llm.replies = [ModelFailure("bad json"), ANALYSIS_JSON]
    service = FeedbackAnalysisService(store, fake_llm, temperature=0.2)

    summary = await BatchAnalysisJob(store, service, tracker).run("feedback_analysis")

    assert summary == {"total": 2, "analyzed": 1, "failed": 1}
    assert [feedback_id for feedback_id, _ in store.applied] == [2]
    assert max(p for p, _ in tracker.stages) == 99
    status = await tracker.current("feedback_analysis")
    assert status.status is JobState.COMPLETED


@pytest.mark.asyncio
async def test_batch_job_store_failure_marks_job_failed(tracker, fake_llm, store_failure):
    store = FakeFeedbackStore()
    store.error = store_failure
    service = FeedbackAnalysisService(store, fake_llm, temperature=0.2)

    with pytest.raises(type(store_failure)):
        await BatchAnalysisJob(store, service, tracker).run("feedback_analysis")

    assert (await tracker.progress("feedback_analysis"))["status"] == "failed"


@pytest.mark.asyncio
async def test_analytics_job_retryable_failure_keeps_slot_pending(tracker, fake_llm, clock):
    await tracker.dispatch("analytics_report")
    fake_llm.replies = [ModelFailure("rate limited", status_code=429)]
    job = AnalyticsReportJob(FakeFeedbackStore(_analyzed_records()), fake_llm, tracker,
                             sample_size=100, temperature=0.3)
    clock.advance(minutes=1)

    with pytest.raises(ModelFailure):
        await job.run("analytics_report", final_attempt=False)

    status = await tracker.current("analytics_report")
    assert status.status is JobState.PENDING
    assert status.progress == 0
    assert status.dispatched_at == clock()
    assert status.message == "Retrying after error: rate limited"


@pytest.mark.asyncio
async def test_batch_job_retryable_failure_keeps_slot_pending(tracker, fake_llm, store_failure):
    store = FakeFeedbackStore()
    store.error = store_failure
    service = FeedbackAnalysisService(store, fake_llm, temperature=0.2)

    with pytest.raises(type(store_failure)):
        await BatchAnalysisJob(store, service, tracker).run("feedback_analysis", final_attempt=False)

    assert (await tracker.progress("feedback_analysis"))["status"] == "pending"
