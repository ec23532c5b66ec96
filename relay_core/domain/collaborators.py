from typing import Optional, Protocol

from .models import ChatMessage


class MessageLog(Protocol):
    """持久化协作方：交换结束后追加用户消息与助手回复。本层不做存储。"""

    def append(self, conversation_id: str, *messages: ChatMessage) -> None:
        ...


class ModelCatalog(Protocol):
    """模型目录协作方：把模型 key 解析为展示名，未知时返回 None。"""

    def display_name(self, model_key: str) -> Optional[str]:
        ...
