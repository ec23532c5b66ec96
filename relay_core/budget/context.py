"""发送前的历史裁剪。

从最新消息往前回溯，累加每条消息的估算字符成本，直到下一条会超出预算
或条数上限为止；不会截断单条消息。最新一条消息无论多大都会保留。

图片按固定成本计算而不是按 URL 长度，避免一张内嵌 base64 图片把全部文本
上下文挤掉。裁剪后如果原历史中存在 system 消息，保证结果中恰好保留一条
（最新的那条）并放在首位；这可能让总量超出预算一条消息，属于有意取舍。
"""

import logging
from typing import List, Optional, Sequence

from relay_core.domain.models import Budget, ChatMessage, MessageContent, TextPart
from relay_core.infrastructure.logging.logger import log_event


def estimate_chars(content: MessageContent, image_part_chars: int) -> int:
    if isinstance(content, str):
        return len(content)
    total = 0
    for part in content:
        if isinstance(part, TextPart):
            total += len(part.value)
        else:
            total += image_part_chars
    return total


class ContextBudgeter:
    def __init__(self, budget: Budget):
        self._budget = budget

    def cost(self, message: ChatMessage) -> int:
        return estimate_chars(message.content, self._budget.image_part_chars)

    def fit(self, history: Sequence[ChatMessage], outgoing: Optional[ChatMessage] = None) -> List[ChatMessage]:
        """返回满足预算的历史子序列（保持原顺序）。"""

        messages = list(history)
        if outgoing is not None:
            messages.append(outgoing)
        if not messages:
            return []

        max_chars = self._budget.max_history_chars
        max_messages = self._budget.max_history_messages
        costs = [self.cost(m) for m in messages]
        if sum(costs) <= max_chars and len(messages) <= max_messages:
            return messages

        kept: List[ChatMessage] = []
        remaining = max_chars
        for msg, cost in zip(reversed(messages), reversed(costs)):
            # 最新一条必须保留；其余消息一旦放不下就停止回溯
            if kept and (cost > remaining or len(kept) >= max_messages):
                break
            kept.append(msg)
            remaining -= cost
        kept.reverse()

        latest_system = next((m for m in reversed(messages) if m.role == "system"), None)
        if latest_system is not None:
            kept = [latest_system] + [m for m in kept if m.role != "system"]

        log_event(
            logging.INFO,
            "Trimmed history to budget",
            total=len(messages),
            kept=len(kept),
            budget_chars=max_chars,
            kept_chars=sum(self.cost(m) for m in kept),
        )
        return kept
