"""统一的对话与流式交换数据模型。

本模块定义了转发层内部共享的标准数据结构：

- ChatMessage: 一条对话消息（system/user/assistant），内容可以是纯文本或多段内容。
- Budget: 发送前强制执行的历史/回复预算（进程级常量）。
- SearchStatus / FallbackNotice: 流中夹带的控制信号解析结果。
- ExchangeEvent: 调用方从一次交换中依次收到的事件。

所有组件（解码器、预算器、节流器、交换状态机）都只依赖这些模型，
与具体 HTTP 库和上层 UI 解耦。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union
from uuid import uuid4


# 消息角色（与 OpenAI 风格接口的 role 字段对应）
Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class TextPart:
    value: str
    kind: Literal["text"] = "text"


@dataclass(frozen=True)
class ImagePart:
    url: str
    kind: Literal["image"] = "image"


ContentPart = Union[TextPart, ImagePart]
MessageContent = Union[str, List[ContentPart]]


def _new_id() -> str:
    return f"m-{uuid4().hex}"


@dataclass(frozen=True)
class ChatMessage:
    """一条对话消息。

    - role: 消息角色；消息封存进历史后不可变（frozen dataclass）。
    - content: 纯文本，或按顺序排列的 TextPart / ImagePart 列表。
    - id: 创建时分配的唯一标识，历史顺序由插入顺序决定，从不重排。
    - meta: 附加元数据（模型、附件信息等），不会发给上游。
    """

    role: Role
    content: MessageContent
    id: str = field(default_factory=_new_id)
    meta: Dict[str, Any] = field(default_factory=dict, compare=False)

    def to_payload(self) -> Dict[str, Any]:
        """转换为上游请求体中的 `{role, content}`。"""

        if isinstance(self.content, str):
            return {"role": self.role, "content": self.content}
        parts: List[Dict[str, Any]] = []
        for part in self.content:
            if isinstance(part, TextPart):
                parts.append({"type": "text", "text": part.value})
            else:
                parts.append({"type": "image_url", "image_url": {"url": part.url}})
        return {"role": self.role, "content": parts}


@dataclass(frozen=True)
class Attachment:
    """调用方随一轮消息提交的附件。

    src 通常是 data URL（`data:<mime>;base64,...`）或可访问的 URL。
    """

    kind: Literal["image", "file"]
    name: str
    mime: str
    size: int
    src: Optional[str] = None


@dataclass(frozen=True)
class Budget:
    """发送前的预算约束，初始化后只读。

    超出预算只会导致静默裁剪，从不抛出异常。
    """

    max_history_messages: int = 60
    max_history_chars: int = 12_000
    max_response_tokens_ceiling: int = 20_000
    default_response_tokens: int = 4096
    image_part_chars: int = 2_000

    @classmethod
    def from_settings(cls, settings) -> "Budget":
        return cls(
            max_history_messages=settings.max_history_messages,
            max_history_chars=settings.max_history_chars,
            max_response_tokens_ceiling=settings.max_response_tokens_ceiling,
            default_response_tokens=settings.default_response_tokens,
            image_part_chars=settings.image_part_chars,
        )


@dataclass(frozen=True)
class SearchStatus:
    """上游联网搜索状态。state 为 "start" 时表示正在搜索。"""

    state: str
    query: Optional[str] = None

    @property
    def searching(self) -> bool:
        return self.state == "start"


@dataclass(frozen=True)
class FallbackNotice:
    """上游静默降级通知：建议改用的模型 key 与机器可读原因码。"""

    model: str
    reason: str


class ExchangeState(str, Enum):
    IDLE = "idle"
    BUILDING = "building"
    IN_FLIGHT = "in-flight"
    COMPLETED = "completed"
    ABORTED = "aborted"
    ERRORED = "errored"

    @property
    def terminal(self) -> bool:
        return self in (ExchangeState.COMPLETED, ExchangeState.ABORTED, ExchangeState.ERRORED)


EventKind = Literal["delta", "status", "fallback", "completed", "aborted", "errored"]


@dataclass
class ExchangeEvent:
    """交换过程中推送给调用方的事件。

    kind:
        - "delta": 正文增量，text 为本次增量。
        - "status": 搜索状态变化；status 为 None 表示清除状态。
        - "fallback": 上游降级通知（每次交换最多一次）。
        - "completed" / "aborted" / "errored": 终止事件，text 为累计全文，
          errored 时 error 为可读错误信息。
    """

    kind: EventKind
    text: str = ""
    status: Optional[SearchStatus] = None
    fallback: Optional[FallbackNotice] = None
    error: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return self.kind in ("completed", "aborted", "errored")
