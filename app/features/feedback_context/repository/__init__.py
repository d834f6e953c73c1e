"""
Persistence layer for the feedback context engine.
"""

from .feedback_repository import FeedbackRepository, FeedbackRepositoryError, feedback_repository

__all__ = ["FeedbackRepository", "FeedbackRepositoryError", "feedback_repository"]
