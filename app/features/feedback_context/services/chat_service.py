"""
Chat turn processing for the officials' feedback assistant.

One turn: compress history if it has grown past the threshold, build (or
reuse) the feedback context for the question, render the system message,
pack it with as much history as fits, call the model and append both turns
to the conversation. A model failure degrades to a fixed apology; retrieval
and budget failures propagate to the caller.
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator
from dataclasses import dataclass

from app.config import settings
from app.infrastructure.observability.logging import get_logger

from ..conversation import ConversationCompressor, PackedPrompt, TokenBudgetPlanner, estimate_tokens
from ..domain.models import Conversation, ConversationTurn, FeedbackContext, FeedbackRecord, UrgencyLevel
from ..errors import ModelFailure
from ..pipeline import FeedbackContextBuilder
from .llm_client import LLMClient

logger = get_logger(__name__)

APOLOGY_MESSAGE = "I apologize, but I'm experiencing technical difficulties. Please try again in a moment."
NO_SAMPLES_MESSAGE = "No specific feedback samples available for this query."

TITLE_WORDS = 6
TITLE_MAX_CHARS = 50

MAX_CRITICAL_SAMPLES = 3
MAX_HIGH_SAMPLES = 3
MAX_OTHER_SAMPLES = 2
OTHER_SECTION_LINE_LIMIT = 8


def conversation_title(message: str) -> str:
    title = " ".join(message.split(" ")[:TITLE_WORDS])
    if len(title) > TITLE_MAX_CHARS:
        title = title[: TITLE_MAX_CHARS - 3] + "..."
    return title


def _sample_line(record: FeedbackRecord) -> str:
    urgency = record.urgency.value if record.urgency else "unknown"
    sentiment = record.sentiment.value if record.sentiment else "neutral"
    location = record.location or "unspecified"
    return (
        f'- "{record.title}" (Location: {location}, Urgency: {urgency}, '
        f"Sentiment: {sentiment}) - Feedback #{record.id}"
    )


def build_sample_summary(candidates: list[FeedbackRecord]) -> str:
    """Samples grouped by urgency, most critical first."""
    if not candidates:
        return NO_SAMPLES_MESSAGE

    critical, high, other = [], [], []
    for record in candidates:
        line = _sample_line(record)
        if record.urgency is UrgencyLevel.CRITICAL:
            critical.append(line)
        elif record.urgency is UrgencyLevel.HIGH:
            high.append(line)
        else:
            other.append(line)

    lines: list[str] = []
    if critical:
        lines.append("CRITICAL ISSUES (requiring immediate attention):")
        lines.extend(critical[:MAX_CRITICAL_SAMPLES])
    if high:
        lines.append("\nHIGH PRIORITY ISSUES:")
        lines.extend(high[:MAX_HIGH_SAMPLES])
    if other and len(lines) < OTHER_SECTION_LINE_LIMIT:
        lines.append("\nOTHER FEEDBACK:")
        lines.extend(other[:MAX_OTHER_SAMPLES])
    return "\n".join(lines)


def build_system_message(context: FeedbackContext) -> str:
    stats = context.stats
    s = {k.value: v for k, v in stats.sentiment_counts.items()}
    u = {k.value: v for k, v in stats.urgency_counts.items()}
    scope = ", ".join(
        part
        for part in (
            f"location: {context.location}" if context.location else "",
            f"issue type: {context.issue_category.value}" if context.issue_category else "",
            f"timeframe: {context.timeframe_label}" if context.timeframe_label else "",
        )
        if part
    )
    top_tags = ", ".join(stats.top_tags()) or "none"

    return f"""You are an intelligent assistant for government officials analyzing citizen feedback. You have access to current citizen feedback data and must provide specific, data-driven insights based on this information.

RELEVANT FEEDBACK SUMMARY{f" ({scope})" if scope else ""}:
- Matching Feedback Reports: {stats.total}
- Sentiment Distribution: {s.get("positive", 0)} positive, {s.get("negative", 0)} negative, {s.get("neutral", 0)} neutral
- Urgency Distribution: {u.get("critical", 0)} critical, {u.get("high", 0)} high, {u.get("medium", 0)} medium, {u.get("low", 0)} low
- Repeated Reports: {stats.repetition_count}
- Citizen Comments: {stats.comment_count}
- Common Tags: {top_tags}
- Priority Score: {context.priority.priority}/100
- Recommended Department: {context.priority.department}

RECENT RELEVANT FEEDBACK SAMPLES:
{build_sample_summary(context.candidates)}

IMPORTANT INSTRUCTIONS:
1. Always use the provided feedback data to answer questions
2. When asked how many reports match, refer to the exact number: {stats.total}
3. For critical issues, prioritize feedback marked as 'critical' or 'high' urgency
4. Provide specific examples from the feedback samples when relevant, citing their feedback numbers
5. Give actionable recommendations based on the data
6. Never give generic responses; always reference the actual data provided"""


@dataclass(slots=True)
class ChatReply:
    user_turn: ConversationTurn
    assistant_turn: ConversationTurn
    token_usage: int
    degraded: bool = False


class ChatService:
    def __init__(
        self,
        context_builder: FeedbackContextBuilder,
        llm: LLMClient,
        planner: TokenBudgetPlanner | None = None,
        compressor: ConversationCompressor | None = None,
        max_context_tokens: int | None = None,
        temperature: float | None = None,
    ):
        self.context_builder = context_builder
        self.llm = llm
        self.planner = planner or TokenBudgetPlanner()
        self.compressor = compressor or ConversationCompressor()
        self.max_context_tokens = max_context_tokens or settings.CHAT_MAX_CONTEXT_TOKENS
        self.temperature = temperature if temperature is not None else settings.CHAT_TEMPERATURE

    async def _prepare(self, conversation: Conversation, user_message: str) -> tuple[FeedbackContext, PackedPrompt]:
        if self.compressor.should_compress(conversation):
            self.compressor.compress(conversation)

        context = await self.context_builder.build(user_message)
        packed = self.planner.pack(
            build_system_message(context),
            conversation.turns,
            self.max_context_tokens,
            user_message,
        )
        return context, packed

    def _record_exchange(
        self,
        conversation: Conversation,
        packed: PackedPrompt,
        content: str,
        model_tokens: int,
        metadata: dict,
    ) -> ChatReply:
        user_turn = packed.final
        assistant_turn = ConversationTurn(
            role="assistant",
            content=content,
            token_count=estimate_tokens(content),
            metadata=metadata,
        )
        first_exchange = not conversation.turns

        conversation.turns.extend([user_turn, assistant_turn])
        usage = model_tokens + user_turn.token_count
        conversation.add_token_usage(usage)
        if first_exchange and not conversation.title:
            conversation.title = conversation_title(user_turn.content)

        return ChatReply(
            user_turn=user_turn,
            assistant_turn=assistant_turn,
            token_usage=usage,
            degraded=metadata.get("model") == "fallback",
        )

    async def handle(self, conversation: Conversation, user_message: str) -> ChatReply:
        context, packed = await self._prepare(conversation, user_message)

        logger.info(
            "Generating chat response",
            conversation_id=conversation.id,
            user_message_length=len(user_message),
            context_samples=len(context.candidates),
            history_turns=len(packed.history),
        )

        started = time.perf_counter()
        try:
            completion = await self.llm.complete(
                packed.system, packed.messages, self.temperature, purpose="chat"
            )
            content, model_tokens, model = completion.text, completion.total_tokens, self.llm.model
        except ModelFailure as e:
            logger.error(
                "Chat response generation failed",
                conversation_id=conversation.id,
                error=str(e),
                status_code=e.status_code,
                raw_snippet=e.raw_snippet,
            )
            content, model_tokens, model = APOLOGY_MESSAGE, 0, "fallback"

        metadata = {
            "processing_time_ms": round((time.perf_counter() - started) * 1000, 1),
            "model": model,
            "feedback_samples": len(context.candidates),
            "priority": context.priority.priority,
        }
        return self._record_exchange(conversation, packed, content, model_tokens, metadata)

    async def stream(self, conversation: Conversation, user_message: str) -> AsyncIterator[str]:
        """
        Yield the assistant reply as it is generated. Both turns are appended
        only once the stream has been fully consumed.
        """
        context, packed = await self._prepare(conversation, user_message)

        started = time.perf_counter()
        chunks: list[str] = []
        model = self.llm.model
        try:
            async for chunk in self.llm.stream(packed.system, packed.messages, self.temperature):
                chunks.append(chunk)
                yield chunk
        except ModelFailure as e:
            logger.error(
                "Chat stream failed",
                conversation_id=conversation.id,
                error=str(e),
                status_code=e.status_code,
                received_chunks=len(chunks),
            )
            model = "fallback"
            chunks = [APOLOGY_MESSAGE]
            yield APOLOGY_MESSAGE

        content = "".join(chunks)
        metadata = {
            "processing_time_ms": round((time.perf_counter() - started) * 1000, 1),
            "model": model,
            "feedback_samples": len(context.candidates),
            "priority": context.priority.priority,
            "streamed": True,
        }
        # streaming responses carry no usage block, so the reply is estimated
        model_tokens = 0 if model == "fallback" else packed.total_tokens + estimate_tokens(content)
        self._record_exchange(conversation, packed, content, model_tokens, metadata)
