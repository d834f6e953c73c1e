"""
Service layer for the feedback context engine.
"""

from .analysis_service import FeedbackAnalysisService
from .chat_service import ChatReply, ChatService
from .llm_client import Completion, LLMClient, get_llm_client

__all__ = [
    "ChatReply",
    "ChatService",
    "Completion",
    "FeedbackAnalysisService",
    "LLMClient",
    "get_llm_client",
]
