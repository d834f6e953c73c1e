"""
Conversation history management: token budgeting and compression.
"""

from .compressor import ConversationCompressor
from .token_budget import PackedPrompt, TokenBudgetPlanner, estimate_tokens

__all__ = ["ConversationCompressor", "PackedPrompt", "TokenBudgetPlanner", "estimate_tokens"]
