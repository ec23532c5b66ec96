from relay_core.budget.context import ContextBudgeter, estimate_chars
from relay_core.budget.sizing import ResponseSizer, estimate_prompt_tokens

__all__ = ["ContextBudgeter", "ResponseSizer", "estimate_chars", "estimate_prompt_tokens"]
