from relay_core.budget.context import ContextBudgeter, estimate_chars
from relay_core.budget.sizing import ResponseSizer, estimate_prompt_tokens
from relay_core.domain.models import Budget, ChatMessage, ImagePart, TextPart


def _msg(role, content):
    return ChatMessage(role=role, content=content)


def test_history_within_budget_is_unchanged():
    history = [_msg("system", "S"), _msg("user", "hi")]
    out = ContextBudgeter(Budget(max_history_chars=10_000)).fit(history)
    assert out == history
    assert sum(1 for m in out if m.role == "system") == 1


def test_outgoing_message_is_appended():
    history = [_msg("system", "S")]
    outgoing = _msg("user", "hello")
    assert ContextBudgeter(Budget()).fit(history, outgoing) == [history[0], outgoing]


def test_overflow_keeps_newest_and_one_system_first():
    history = [
        _msg("system", "old identity"),
        _msg("user", "a" * 40),
        _msg("assistant", "b" * 40),
        _msg("system", "new identity"),
        _msg("user", "c" * 40),
        _msg("assistant", "d" * 40),
    ]
    newest = _msg("user", "e" * 30)
    out = ContextBudgeter(Budget(max_history_chars=100)).fit(history, newest)
    assert out[-1] is newest
    assert out[0].content == "new identity"
    assert [m.role for m in out].count("system") == 1
    # e(30) + d(40) + new identity(12) fit; c(40) would overflow
    assert [m.content for m in out[1:]] == ["d" * 40, "e" * 30]


def test_stops_at_first_message_that_does_not_fit():
    history = [_msg("user", "x" * 5), _msg("assistant", "y" * 50), _msg("user", "z" * 10)]
    out = ContextBudgeter(Budget(max_history_chars=40)).fit(history)
    # "x"*5 would fit on its own but the walk has already stopped
    assert [m.content for m in out] == ["z" * 10]


def test_newest_message_kept_even_when_oversized():
    history = [_msg("system", "S"), _msg("user", "q")]
    huge = _msg("user", "h" * 500)
    out = ContextBudgeter(Budget(max_history_chars=100)).fit(history, huge)
    assert out == [history[0], huge]


def test_message_count_cap():
    history = [_msg("user", str(i)) for i in range(10)]
    out = ContextBudgeter(Budget(max_history_messages=3)).fit(history)
    assert [m.content for m in out] == ["7", "8", "9"]


def test_system_reinserted_when_count_cap_drops_it():
    history = [_msg("system", "S")] + [_msg("user", str(i)) for i in range(5)]
    out = ContextBudgeter(Budget(max_history_messages=2)).fit(history)
    assert [m.content for m in out] == ["S", "3", "4"]


def test_image_parts_cost_fixed_amount():
    content = [TextPart("look"), ImagePart("data:image/png;base64," + "A" * 50_000)]
    assert estimate_chars(content, 2_000) == 4 + 2_000


def test_large_image_does_not_evict_text_context():
    history = [_msg("system", "S"), _msg("user", "context " * 100)]
    image = _msg("user", [TextPart("what is this"), ImagePart("data:image/png;base64," + "A" * 100_000)])
    out = ContextBudgeter(Budget(max_history_chars=4_000, image_part_chars=500)).fit(history, image)
    assert out == [history[0], history[1], image]


def test_prompt_tokens_round_up_per_message():
    msgs = [_msg("user", "abcde"), _msg("assistant", "a")]
    assert estimate_prompt_tokens(msgs, 0) == 2 + 1


def test_sizer_no_cap_for_empty_history():
    sizer = ResponseSizer(Budget())
    assert sizer.cap([]) is None
    assert sizer.cap([_msg("user", "")]) is None


def test_sizer_default_cap_when_prompt_small():
    budget = Budget(max_history_chars=12_000, default_response_tokens=4096, max_response_tokens_ceiling=20_000)
    assert ResponseSizer(budget).cap([_msg("user", "hi")]) == 4096


def test_sizer_default_cap_bounded_by_ceiling():
    budget = Budget(default_response_tokens=50_000, max_response_tokens_ceiling=20_000)
    assert ResponseSizer(budget).cap([_msg("user", "hi")]) == 20_000


def test_sizer_half_prompt_when_near_budget():
    budget = Budget(max_history_chars=1_000, max_response_tokens_ceiling=20_000)
    msgs = [_msg("user", "x" * 1_000)]
    assert ResponseSizer(budget).cap(msgs) == 125


def test_sizer_half_prompt_bounded_by_ceiling():
    budget = Budget(max_history_chars=1_000, max_response_tokens_ceiling=100)
    assert ResponseSizer(budget).cap([_msg("user", "x" * 4_000)]) == 100
