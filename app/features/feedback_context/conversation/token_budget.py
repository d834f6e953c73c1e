"""
Token estimation and context-window packing.

The estimate is deliberately provider-agnostic: the larger of a word-based
and a character-based approximation. It only ever grows as text is appended.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from app.infrastructure.observability.logging import get_logger

from ..domain.models import ConversationTurn
from ..errors import BudgetViolation

logger = get_logger(__name__)

TOKENS_PER_WORD = 0.75
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str | None) -> int:
    if not text:
        return 0
    word_based = len(text.split()) * TOKENS_PER_WORD
    char_based = len(text) / CHARS_PER_TOKEN
    return int(max(word_based, char_based))


@dataclass(slots=True)
class PackedPrompt:
    """System message, the contiguous history prefix that fit, and the final turn."""

    system: str
    system_tokens: int
    history: list[ConversationTurn]
    final: ConversationTurn
    dropped_turns: int = 0
    messages: list[dict[str, str]] = field(init=False, default_factory=list)

    def __post_init__(self):
        self.messages = [turn.as_message() for turn in self.history] + [self.final.as_message()]

    @property
    def history_tokens(self) -> int:
        return sum(turn.token_count for turn in self.history)

    @property
    def budgeted_tokens(self) -> int:
        """Tokens counted against the window; the final turn is excluded."""
        return self.system_tokens + self.history_tokens

    @property
    def total_tokens(self) -> int:
        return self.budgeted_tokens + self.final.token_count

    def with_system(self) -> list[dict[str, str]]:
        return [{"role": "system", "content": self.system}, *self.messages]


class TokenBudgetPlanner:
    """Packs a system message plus as much chronological history as fits."""

    def pack(
        self,
        system_message: str,
        history_turns: Sequence[ConversationTurn],
        max_tokens: int,
        final_message: str | ConversationTurn,
    ) -> PackedPrompt:
        """
        The system message must fit strictly under ``max_tokens`` on its own or
        BudgetViolation is raised; it is never truncated.

        History is walked oldest first and stops at the first turn that would
        reach the window, so the kept history is always a contiguous prefix.
        The final message is appended regardless of its size.
        """
        system_tokens = estimate_tokens(system_message)
        if system_tokens >= max_tokens:
            logger.error(
                "System message exceeds context window",
                system_tokens=system_tokens,
                max_tokens=max_tokens,
            )
            raise BudgetViolation(system_tokens, max_tokens)

        running_total = system_tokens
        kept: list[ConversationTurn] = []
        for turn in history_turns:
            if running_total + turn.token_count >= max_tokens:
                break
            kept.append(turn)
            running_total += turn.token_count

        if isinstance(final_message, ConversationTurn):
            final = final_message
        else:
            final = ConversationTurn(
                role="user",
                content=final_message,
                token_count=estimate_tokens(final_message),
            )

        dropped = len(history_turns) - len(kept)
        if dropped:
            logger.info(
                "History truncated to fit context window",
                kept_turns=len(kept),
                dropped_turns=dropped,
                budgeted_tokens=running_total,
                max_tokens=max_tokens,
            )
        if running_total + final.token_count > max_tokens:
            logger.warning(
                "Final message exceeds remaining budget, sending anyway",
                final_tokens=final.token_count,
                budgeted_tokens=running_total,
                max_tokens=max_tokens,
            )

        return PackedPrompt(
            system=system_message,
            system_tokens=system_tokens,
            history=kept,
            final=final,
            dropped_turns=dropped,
        )
