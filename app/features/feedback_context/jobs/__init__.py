"""
Background jobs for the feedback context engine and the register that
tracks their progress.
"""

from .analytics_job import ANALYTICS_JOB_KEY, AnalyticsReport, AnalyticsReportJob
from .batch_analysis_job import BATCH_ANALYSIS_JOB_KEY, BatchAnalysisJob
from .queue import JobQueue, QueuedJob, dispatch_job
from .tracker import AsyncJobTracker

__all__ = [
    "ANALYTICS_JOB_KEY",
    "BATCH_ANALYSIS_JOB_KEY",
    "AnalyticsReport",
    "AnalyticsReportJob",
    "AsyncJobTracker",
    "BatchAnalysisJob",
    "JobQueue",
    "QueuedJob",
    "dispatch_job",
]
