import pytest

from app.features.feedback_context.domain.models import ConversationTurn
from app.features.feedback_context.errors import BudgetViolation
from app.features.feedback_context.conversation.token_budget import (
    TokenBudgetPlanner,
    estimate_tokens,
)

SYSTEM = "abcd" * 10  # 10 tokens


def _turns(*counts):
    roles = ("user", "assistant")
    return [
        ConversationTurn(role=roles[i % 2], content=f"turn {i}", token_count=count)
        for i, count in enumerate(counts)
    ]


def test_estimate_takes_larger_of_word_and_char_estimates():
    assert estimate_tokens("") == 0
    assert estimate_tokens(None) == 0
    assert estimate_tokens("a b c d") == 3  # 4 words * 0.75 beats 7 chars / 4
    assert estimate_tokens("x" * 400) == 100


def test_estimate_grows_as_text_is_appended():
    text = "water leak"
    assert estimate_tokens(text + " near the school") >= estimate_tokens(text)


def test_pack_keeps_contiguous_prefix_and_stops_at_first_overflow():
    history = _turns(40, 30, 25, 5)

    packed = TokenBudgetPlanner().pack(SYSTEM, history, 100, "next question")

    assert packed.history == history[:2]
    assert packed.dropped_turns == 2
    assert packed.budgeted_tokens == 80
    assert packed.budgeted_tokens < 100


def test_pack_turn_exactly_reaching_window_is_dropped():
    history = _turns(40, 50)

    packed = TokenBudgetPlanner().pack(SYSTEM, history, 100, "q")

    assert packed.history == history[:1]


def test_final_message_is_always_last():
    packed = TokenBudgetPlanner().pack(SYSTEM, _turns(10, 10), 100, "x" * 4000)

    assert packed.messages[-1] == {"role": "user", "content": "x" * 4000}
    assert packed.final.token_count == 1000
    assert packed.total_tokens > 100


def test_final_message_turn_is_used_as_is():
    final = ConversationTurn(role="user", content="hello", token_count=7)

    packed = TokenBudgetPlanner().pack(SYSTEM, [], 100, final)

    assert packed.final is final
    assert packed.with_system() == [
        {"role": "system", "content": SYSTEM},
        {"role": "user", "content": "hello"},
    ]


def test_oversized_system_message_raises_budget_violation():
    system = "x" * 36000  # 9000 tokens

    with pytest.raises(BudgetViolation) as exc_info:
        TokenBudgetPlanner().pack(system, _turns(10), 8000, "question")

    assert exc_info.value.system_tokens == 9000
    assert exc_info.value.max_tokens == 8000
    assert exc_info.value.recoverable is False


def test_system_message_exactly_at_window_is_rejected():
    with pytest.raises(BudgetViolation):
        TokenBudgetPlanner().pack("x" * 400, [], 100, "q")
