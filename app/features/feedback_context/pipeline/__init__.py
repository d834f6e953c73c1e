"""
Pipeline stages for the feedback context engine.

Each stage is a plain function or a small class that takes the previous
stage's value and returns a new one.
"""

from .context_builder import FeedbackContextBuilder
from .context_cache import ContextCache, query_fingerprint
from .fingerprint import fingerprint, group_by_fingerprint, repetition_count
from .retrieval import FeedbackRetriever, FeedbackStore, order_candidates
from .scoring import PriorityScorer
from .statistics import summarize

__all__ = [
    "ContextCache",
    "FeedbackContextBuilder",
    "FeedbackRetriever",
    "FeedbackStore",
    "PriorityScorer",
    "fingerprint",
    "group_by_fingerprint",
    "order_candidates",
    "query_fingerprint",
    "repetition_count",
    "summarize",
]
