"""
Feedback context engine feature package.

Everything that turns citizen feedback into grounded model context lives
here: the retrieval/scoring pipeline, conversation budgeting, the model
client, the background jobs and their progress register, and the single
HTTP read surface.
"""

# Re-export the primary building blocks for easy access.
from .api.router import router as jobs_router  # noqa: F401
from .domain.models import FeedbackContext, FeedbackRecord, JobStatus  # noqa: F401
from .jobs.tracker import AsyncJobTracker  # noqa: F401
from .pipeline.context_builder import FeedbackContextBuilder  # noqa: F401
from .services.chat_service import ChatService  # noqa: F401
