"""
Job progress read surface.

The only inbound HTTP operation the engine serves: the current progress of a
background job, defaulting to "not started" when nothing is registered.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..dependencies import get_job_tracker
from ..jobs.tracker import AsyncJobTracker

router = APIRouter(prefix="/jobs", tags=["jobs"])


class JobProgressResponse(BaseModel):
    progress: int
    message: str
    status: str


@router.get("/{job_key}/progress", response_model=JobProgressResponse)
async def get_job_progress(
    job_key: str,
    tracker: AsyncJobTracker = Depends(get_job_tracker),
) -> JobProgressResponse:
    return JobProgressResponse(**await tracker.progress(job_key))
