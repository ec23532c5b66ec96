"""交换的 building 阶段：历史 + 新消息 → 外发请求体。"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from relay_core.budget.context import ContextBudgeter
from relay_core.budget.sizing import ResponseSizer
from relay_core.domain.models import Budget, ChatMessage
from relay_core.exchange.content import identity_text, is_empty, with_identity


@dataclass
class ExchangeRequest:
    """裁剪完成、待发送的请求。"""

    model: str
    messages: List[ChatMessage]
    conversation_id: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    search_mode: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_payload() for m in self.messages],
        }
        if self.conversation_id:
            payload["conversationId"] = self.conversation_id
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if self.max_tokens:
            payload["max_tokens"] = self.max_tokens
        if self.search_mode:
            payload["search"] = {"mode": self.search_mode}
        return payload


def build_request(
    history: Sequence[ChatMessage],
    outgoing: ChatMessage,
    *,
    model: str,
    label: Optional[str],
    budget: Budget,
    conversation_id: Optional[str] = None,
    temperature: Optional[float] = None,
    search_mode: Optional[str] = None,
) -> ExchangeRequest:
    """合并身份消息、丢弃空消息、裁剪历史并推导回复上限。"""

    base = with_identity(history, identity_text(label or model))
    window = [m for m in base if not is_empty(m.content)]
    bounded = ContextBudgeter(budget).fit(window, outgoing if not is_empty(outgoing.content) else None)
    return ExchangeRequest(
        model=model,
        messages=bounded,
        conversation_id=conversation_id,
        temperature=temperature,
        max_tokens=ResponseSizer(budget).cap(bounded),
        search_mode=search_mode,
    )
