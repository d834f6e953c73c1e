"""
Collapses old conversation turns into a single summary turn.
"""

from __future__ import annotations

from app.config import settings
from app.infrastructure.observability.logging import get_logger

from ..domain.models import Conversation, ConversationTurn
from .token_budget import estimate_tokens

logger = get_logger(__name__)

SUMMARY_PREFIX = "Previous conversation summary: "
SUMMARY_MAX_CHARS = 500
SUMMARY_SAMPLES_PER_ROLE = 3


def summarize_turns(turns: list[ConversationTurn]) -> str:
    if not turns:
        return ""

    user_lines = [t.content for t in turns if t.role == "user"][:SUMMARY_SAMPLES_PER_ROLE]
    assistant_lines = [t.content for t in turns if t.role == "assistant"][:SUMMARY_SAMPLES_PER_ROLE]

    summary = (
        "User discussed: "
        + "; ".join(user_lines)
        + ". Assistant provided information about: "
        + "; ".join(assistant_lines)
    )
    return summary[:SUMMARY_MAX_CHARS] + "..."


class ConversationCompressor:
    def __init__(self, threshold: int | None = None, preserve_recent: int | None = None):
        self.threshold = threshold if threshold is not None else settings.CHAT_COMPRESSION_THRESHOLD
        self.preserve_recent = (
            preserve_recent if preserve_recent is not None else settings.CHAT_PRESERVE_RECENT_TURNS
        )

    def should_compress(self, conversation: Conversation) -> bool:
        return conversation.token_usage > self.threshold

    def _oldest_run(self, turns: list[ConversationTurn]) -> tuple[int, int]:
        """Bounds [start, end) of the oldest non-summary run outside the recent window."""
        cutoff = max(len(turns) - self.preserve_recent, 0)
        start = 0
        while start < cutoff and turns[start].is_summary:
            start += 1
        end = start
        while end < cutoff and not turns[end].is_summary:
            end += 1
        return start, end

    def compress(self, conversation: Conversation) -> bool:
        """
        Replace the oldest contiguous run of ordinary turns (everything except
        the most recent ``preserve_recent``) with one system summary turn.

        Summary turns are never folded into a new summary. Returns False when
        there was nothing to compress. Afterwards ``token_usage`` equals the
        token count of the turns that remain.
        """
        turns = conversation.turns
        start, end = self._oldest_run(turns)
        if start == end:
            return False

        run = turns[start:end]
        content = SUMMARY_PREFIX + summarize_turns(run)
        summary_turn = ConversationTurn(
            role="system",
            content=content,
            token_count=estimate_tokens(content),
            is_summary=True,
            metadata={"type": "summary", "original_messages": len(run)},
        )

        previous_usage = conversation.token_usage
        conversation.turns = [*turns[:start], summary_turn, *turns[end:]]
        conversation.token_usage = sum(t.token_count for t in conversation.turns)

        logger.info(
            "Compressed conversation history",
            conversation_id=conversation.id,
            compressed_turns=len(run),
            summary_tokens=summary_turn.token_count,
            token_usage_before=previous_usage,
            token_usage_after=conversation.token_usage,
        )
        return True
