"""
Batch enrichment of feedback that has not been analyzed yet.
"""

from __future__ import annotations

from app.infrastructure.observability.logging import get_logger

from ..errors import ModelFailure
from ..pipeline.retrieval import FeedbackStore
from ..services.analysis_service import FeedbackAnalysisService
from .tracker import AsyncJobTracker

logger = get_logger(__name__)

BATCH_ANALYSIS_JOB_KEY = "feedback_analysis"
DEFAULT_BATCH_LIMIT = 100


class BatchAnalysisJob:
    def __init__(
        self,
        store: FeedbackStore,
        analysis_service: FeedbackAnalysisService,
        tracker: AsyncJobTracker,
        batch_limit: int = DEFAULT_BATCH_LIMIT,
    ):
        self.store = store
        self.analysis_service = analysis_service
        self.tracker = tracker
        self.batch_limit = batch_limit

    async def run(self, job_key: str = BATCH_ANALYSIS_JOB_KEY, final_attempt: bool = True) -> dict[str, int]:
        """
        Analyze every pending record. A model failure on one record is logged
        and counted; store failures abort the run, which is marked failed on
        the final attempt and put back to pending otherwise.
        """
        analyzed = 0
        failed = 0
        try:
            await self.tracker.update(job_key, 0, "Loading unanalyzed feedback...")
            records = await self.store.find_unanalyzed(self.batch_limit)
            total = len(records)

            for index, record in enumerate(records, start=1):
                try:
                    if await self.analysis_service.analyze(record) is not None:
                        analyzed += 1
                except ModelFailure as e:
                    failed += 1
                    logger.warning(
                        "Feedback analysis failed, continuing",
                        feedback_id=record.id,
                        error=str(e),
                        status_code=e.status_code,
                    )

                # 100 is reserved for completion
                progress = min(99, int(index / total * 100))
                await self.tracker.update(job_key, progress, f"Analyzed {index}/{total} feedback reports")

            summary = {"total": total, "analyzed": analyzed, "failed": failed}
            await self.tracker.complete(
                job_key,
                summary,
                f"Analysis complete: {analyzed} analyzed, {failed} failed",
            )
        except Exception as e:
            logger.error("Batch feedback analysis failed", job_key=job_key, error=str(e))
            if final_attempt:
                await self.tracker.fail(job_key, f"Analysis failed: {e}")
            else:
                await self.tracker.requeue(job_key, f"Retrying after error: {e}")
            raise

        logger.info("Batch feedback analysis finished", job_key=job_key, **summary)
        return summary
