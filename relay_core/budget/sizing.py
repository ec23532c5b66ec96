import logging
import math
from typing import Optional, Sequence

from relay_core.budget.context import estimate_chars
from relay_core.domain.models import Budget, ChatMessage
from relay_core.infrastructure.logging.logger import log_event

CHARS_PER_TOKEN = 4
# 提示长度低于字符预算的该比例时，视为“远未触顶”，使用默认回复上限
HEADROOM_RATIO = 0.9


def estimate_prompt_tokens(messages: Sequence[ChatMessage], image_part_chars: int) -> int:
    """按 4 字符 ≈ 1 token 估算，逐条向上取整。"""

    return sum(math.ceil(estimate_chars(m.content, image_part_chars) / CHARS_PER_TOKEN) for m in messages)


class ResponseSizer:
    """根据裁剪后的历史推导本次请求的 max_tokens。"""

    def __init__(self, budget: Budget):
        self._budget = budget

    def cap(self, messages: Sequence[ChatMessage]) -> Optional[int]:
        prompt_tokens = estimate_prompt_tokens(messages, self._budget.image_part_chars)
        if not prompt_tokens:
            return None
        ceiling = self._budget.max_response_tokens_ceiling
        if prompt_tokens * CHARS_PER_TOKEN < self._budget.max_history_chars * HEADROOM_RATIO:
            return min(self._budget.default_response_tokens, ceiling)
        capped = min(ceiling, max(1, prompt_tokens // 2))
        log_event(logging.INFO, "Prompt near budget, capping response", prompt_tokens=prompt_tokens, max_tokens=capped)
        return capped
