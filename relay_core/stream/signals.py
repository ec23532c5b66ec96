"""流内控制信号识别。

- SearchStatusChannel: 上游在正文增量中夹带的搜索状态标记
  `[[[SEARCH_STATUS]]]{"state": "start", "query": "..."}`。
  带标记的增量整条作为状态事件消费，绝不进入正文；JSON 损坏时仍按
  "start" 处理（宁可多报一次搜索中，也不丢信号）。任何正文增量到达都会
  清除当前的搜索状态。
- FallbackDetector: 在正文中查找上游静默降级的提示短语，每次交换最多
  通知一次，且不修改正文。
"""

from __future__ import annotations

import json
import logging
import re
from typing import List, Optional

from relay_core.domain.models import ExchangeEvent, FallbackNotice, SearchStatus
from relay_core.infrastructure.logging.logger import log_event

SEARCH_STATUS_MARKER = "[[[SEARCH_STATUS]]]"


def parse_search_status(raw: str) -> SearchStatus:
    try:
        obj = json.loads(raw.strip())
    except json.JSONDecodeError:
        return SearchStatus(state="start")
    if not isinstance(obj, dict):
        return SearchStatus(state="start")
    state = obj.get("state")
    query = obj.get("query")
    return SearchStatus(
        state=state if isinstance(state, str) and state else "start",
        query=query if isinstance(query, str) and query else None,
    )


class SearchStatusChannel:
    def __init__(self, marker: str = SEARCH_STATUS_MARKER):
        self._marker = marker
        self.current: Optional[SearchStatus] = None

    def reset(self) -> None:
        self.current = None

    def route(self, delta: str) -> List[ExchangeEvent]:
        """把一条解码后的增量拆分为状态事件或正文事件。"""

        if delta.startswith(self._marker):
            status = parse_search_status(delta[len(self._marker):])
            self.current = status
            log_event(logging.INFO, "Search status", state=status.state, query=status.query)
            return [ExchangeEvent(kind="status", status=status)]
        events: List[ExchangeEvent] = []
        if self.current is not None:
            self.current = None
            events.append(ExchangeEvent(kind="status", status=None))
        events.append(ExchangeEvent(kind="delta", text=delta))
        return events


class FallbackDetector:
    """检测降级短语（忽略大小写）。

    保留上一条增量的末尾若干字符，使跨增量边界的短语也能被识别。
    """

    def __init__(self, phrase: str, model: str, reason: str):
        self._pattern = re.compile(re.escape(phrase), re.IGNORECASE)
        self._tail_len = max(len(phrase) - 1, 0)
        self._tail = ""
        self._notice = FallbackNotice(model=model, reason=reason)
        self.notified = False

    @classmethod
    def from_settings(cls, settings) -> FallbackDetector:
        return cls(settings.fallback_phrase, settings.fallback_model, settings.fallback_reason)

    def inspect(self, delta: str) -> Optional[FallbackNotice]:
        if self.notified or not delta:
            return None
        window = self._tail + delta
        self._tail = window[-self._tail_len:] if self._tail_len else ""
        if not self._pattern.search(window):
            return None
        self.notified = True
        log_event(logging.WARNING, "Upstream fallback detected", model=self._notice.model, reason=self._notice.reason)
        return self._notice
