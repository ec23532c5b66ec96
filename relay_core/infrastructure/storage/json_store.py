import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from relay_core.config.settings import settings
from relay_core.domain.exceptions import BusinessError
from relay_core.domain.models import ChatMessage, ImagePart, MessageContent, TextPart


class JsonlMessageLog:
    """按会话追加写入 JSON Lines 的消息日志（持久化协作方的默认实现）。"""

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._conv_root = self._root / "conversations"
        self._conv_root.mkdir(parents=True, exist_ok=True)

    def append(self, conversation_id: str, *messages: ChatMessage) -> None:
        cdir = self._conv_root / conversation_id
        msgs_path = cdir / "messages.jsonl"
        now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        try:
            cdir.mkdir(parents=True, exist_ok=True)
            with msgs_path.open("a", encoding="utf-8") as f:
                for message in messages:
                    payload = {
                        "id": message.id,
                        "conversation_id": conversation_id,
                        "role": message.role,
                        "content": self._dump_content(message.content),
                        "created_at": now,
                        "meta": message.meta,
                    }
                    f.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
        except (OSError, TypeError, ValueError) as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))

    def list_messages(self, conversation_id: str) -> List[ChatMessage]:
        msgs_path = self._conv_root / conversation_id / "messages.jsonl"
        items: List[ChatMessage] = []
        if not msgs_path.exists():
            return items
        for line in msgs_path.read_text(encoding="utf-8").splitlines():
            try:
                data = json.loads(line)
                items.append(self._to_message(data))
            except (json.JSONDecodeError, KeyError):
                continue
        return items

    @staticmethod
    def _dump_content(content: MessageContent) -> Any:
        if isinstance(content, str):
            return content
        return [
            {"kind": "text", "value": p.value} if isinstance(p, TextPart) else {"kind": "image", "url": p.url}
            for p in content
        ]

    @staticmethod
    def _to_message(data: Dict[str, Any]) -> ChatMessage:
        raw = data.get("content") or ""
        if isinstance(raw, list):
            content: MessageContent = [
                TextPart(p.get("value", "")) if p.get("kind") == "text" else ImagePart(p.get("url", ""))
                for p in raw
            ]
        else:
            content = str(raw)
        return ChatMessage(role=data["role"], content=content, id=data["id"], meta=data.get("meta") or {})
