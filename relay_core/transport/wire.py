"""上游响应线格式解码。

上游端点可能以三种互不兼容的格式返回内容：

1. `text/event-stream`：逐行 `data: <json 或原始文本>`，以 `data: [DONE]` 结束。
2. 无分帧的分块纯文本。
3. 一次性返回的 JSON 对象，正文位于若干已知字段之一。

WireDecoder 根据 Content-Type 选择解码模式，并把原始文本块转换成统一的
增量字符串序列。Content-Type 缺失或无法识别时，按内容嗅探 SSE 分帧
（某一行以 `data:` 开头）。嗅探只是尽力而为的启发式：恰好有一行以
`data:` 开头的纯文本也会被当作 SSE 处理。

解码层从不因为单个坏帧而失败：无法解析的 `data:` 负载原样作为增量输出。
上游主动报告的错误（`event: error` 事件，或只带 error 字段的帧）则抛出
TransportError。
"""

import json
import logging
import re
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, List, Optional

from relay_core.domain.exceptions import DecodeError, TransportError
from relay_core.infrastructure.logging.logger import log_event


SSE_PREFIX = "data:"
DONE_TOKEN = "[DONE]"
EVENT_PREFIX = "event:"
ERROR_EVENT = "error"

# 单次 JSON 响应中依次检查的正文字段
SINGLE_SHOT_FIELDS = ("text", "data", "content")
# SSE 帧 JSON 中依次检查的通用增量字段（优先于这些字段的是 choices[0].delta.content）
DELTA_FIELDS = ("text", "delta", "content")

_SSE_LINE = re.compile(r"^data:", re.MULTILINE)


class WireMode(str, Enum):
    SSE = "sse"
    TEXT = "text"
    JSON = "json"
    SNIFF = "sniff"


def classify(content_type: Optional[str]) -> WireMode:
    """根据 Content-Type 选择解码模式。"""

    ct = (content_type or "").lower()
    if "text/event-stream" in ct:
        return WireMode.SSE
    if "application/json" in ct:
        return WireMode.JSON
    if "text/" in ct or "application/octet-stream" in ct:
        return WireMode.TEXT
    return WireMode.SNIFF


def _first_str(obj: dict, keys) -> Optional[str]:
    for key in keys:
        value = obj.get(key)
        if value is None:
            continue
        if isinstance(value, str):
            return value
    return None


def extract_delta(obj: Any) -> str:
    """从一帧 SSE JSON 中提取增量文本。

    依次尝试：OpenAI 风格 `choices[0].delta.content`，然后通用的
    text / delta / content 字段；负载本身是 JSON 字符串时直接返回。
    """

    if isinstance(obj, str):
        return obj
    if not isinstance(obj, dict):
        return ""
    choices = obj.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        delta = choices[0].get("delta")
        if isinstance(delta, dict) and isinstance(delta.get("content"), str):
            return delta["content"]
    return _first_str(obj, DELTA_FIELDS) or ""


def stream_error(payload: str) -> TransportError:
    """把上游在流内报告的错误帧转换为 TransportError。

    兼容 `{"error": "..."}`、`{"error": {"message": "..."}}` 以及
    `event: error` 之后的 `{"message": "..."}`；无法解析时用原始负载作为消息。
    """

    try:
        obj = json.loads(payload)
    except json.JSONDecodeError:
        obj = payload
    message: Any = obj
    if isinstance(obj, dict):
        message = obj.get("error") or obj.get("message") or payload
        if isinstance(message, dict):
            message = message.get("message") or json.dumps(message, ensure_ascii=False)
    return TransportError(code="UPSTREAM_STREAM_ERROR", message=str(message) or "stream error", http_status=502)


def parse_frame(payload: str) -> str:
    """解析单个 `data:` 负载。

    Raises:
        DecodeError: 负载不是合法 JSON。
        TransportError: 负载是上游中继报告的流内错误帧（只有 error 字段）。
    """

    try:
        obj = json.loads(payload)
    except json.JSONDecodeError as e:
        raise DecodeError(code="BAD_FRAME", message=str(e))
    text = extract_delta(obj)
    if not text and isinstance(obj, dict) and obj.get("error"):
        raise stream_error(payload)
    return text


def extract_single_shot(text: str) -> Optional[str]:
    """解析一次性响应体；无法解析为 JSON 时原样返回文本。"""

    try:
        obj = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return text or None
    if isinstance(obj, str):
        return obj or None
    if isinstance(obj, dict):
        for key in SINGLE_SHOT_FIELDS:
            value = obj.get(key)
            if value is None:
                continue
            out = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
            return out or None
        choices = obj.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message") or {}
            if isinstance(message, dict) and isinstance(message.get("content"), str):
                return message["content"] or None
    return json.dumps(obj, ensure_ascii=False)


class WireDecoder:
    """把文本块序列解码为增量序列。

    同步接口 feed()/finish() 便于逐块驱动与测试；decode() 把它包装成
    异步迭代。每个实例只能解码一条响应流。
    """

    def __init__(self, content_type: Optional[str] = None):
        self.mode = classify(content_type)
        self._carry = ""
        self._body: List[str] = []
        self._done = False
        self._used = False
        # 当前 SSE 事件名（`event:` 行），空行结束一个事件
        self._event: Optional[str] = None

    @property
    def done(self) -> bool:
        """是否已经看到 `[DONE]` 终止符。"""

        return self._done

    def feed(self, chunk: str) -> List[str]:
        if self._done or not chunk:
            return []
        if self.mode is WireMode.SSE:
            self._carry += chunk
            return self._drain_lines()
        if self.mode is WireMode.TEXT:
            return [chunk]
        if self.mode is WireMode.JSON:
            self._body.append(chunk)
            return []
        return self._feed_sniff(chunk)

    def finish(self) -> List[str]:
        """流结束：冲刷缓冲。

        SSE 模式下残留的半行不输出（可能只是不完整的分帧）。
        """

        if self.mode is WireMode.JSON:
            out = extract_single_shot("".join(self._body))
            self._body = []
            return [out] if out else []
        if self.mode is WireMode.SSE:
            self._carry = ""
            return []
        rest, self._carry = self._carry, ""
        return [rest] if rest else []

    async def decode(self, chunks: AsyncIterable[str]) -> AsyncIterator[str]:
        if self._used:
            raise RuntimeError("WireDecoder instances are single-use")
        self._used = True
        async for chunk in chunks:
            for delta in self.feed(chunk):
                yield delta
            if self.done:
                break
        for delta in self.finish():
            yield delta

    def _feed_sniff(self, chunk: str) -> List[str]:
        text = self._carry + chunk
        self._carry = ""
        if _SSE_LINE.search(text):
            log_event(logging.DEBUG, "Detected SSE framing without event-stream header")
            self.mode = WireMode.SSE
            self._carry = text
            return self._drain_lines()
        # 末尾半行可能是尚未到齐的 "data:" 前缀，先留在缓冲里
        tail_start = text.rfind("\n") + 1
        tail = text[tail_start:]
        if tail and len(tail) < len(SSE_PREFIX) and SSE_PREFIX.startswith(tail):
            self._carry = tail
            text = text[:tail_start]
        return [text] if text else []

    def _drain_lines(self) -> List[str]:
        out: List[str] = []
        while not self._done:
            nl = self._carry.find("\n")
            if nl == -1:
                break
            line = self._carry[:nl].strip()
            self._carry = self._carry[nl + 1:]
            delta = self._parse_line(line)
            if delta:
                out.append(delta)
        return out

    def _parse_line(self, line: str) -> Optional[str]:
        if not line:
            self._event = None
            return None
        if line.startswith(EVENT_PREFIX):
            self._event = line[len(EVENT_PREFIX):].strip() or None
            return None
        if not line.startswith(SSE_PREFIX):
            return None
        payload = line[len(SSE_PREFIX):].strip()
        if not payload:
            return None
        if self._event == ERROR_EVENT:
            raise stream_error(payload)
        if payload == DONE_TOKEN:
            self._done = True
            return None
        try:
            return parse_frame(payload)
        except DecodeError:
            log_event(logging.DEBUG, "Non-JSON SSE payload, passing through", size=len(payload))
            return payload
