"""会话上下文：一段对话的历史、当前模型以及至多一个进行中的交换。

同一会话内不会有两个交换并发执行：
- 已有交换在 in-flight 时，新的提交默认被忽略（返回 None）；
  传入 interrupt=True 时先中止旧交换再开始新的。
- 切换模型时总是先中止进行中的交换。
- 上游降级通知不会打断当前流；建议的模型在本次交换结束后才生效。
"""

from __future__ import annotations

import logging
import re
from typing import Callable, List, Optional

from relay_core.config.settings import settings as default_settings
from relay_core.domain.collaborators import MessageLog, ModelCatalog
from relay_core.domain.models import Attachment, Budget, ChatMessage, ExchangeState, FallbackNotice
from relay_core.exchange.content import build_content
from relay_core.exchange.lifecycle import Exchange
from relay_core.exchange.request import build_request
from relay_core.infrastructure.logging.logger import log_event
from relay_core.stream.signals import FallbackDetector
from relay_core.stream.typewriter import Typewriter
from relay_core.transport.base import ChatTransport


class ChatSession:
    def __init__(
        self,
        transport: ChatTransport,
        *,
        settings=None,
        conversation_id: Optional[str] = None,
        model: Optional[str] = None,
        history: Optional[List[ChatMessage]] = None,
        catalog: Optional[ModelCatalog] = None,
        message_log: Optional[MessageLog] = None,
        token: Optional[str] = None,
        on_fallback: Optional[Callable[[FallbackNotice], None]] = None,
        auto_switch_on_fallback: bool = True,
    ):
        self._settings = settings or default_settings
        self._transport = transport
        self._catalog = catalog
        self._message_log = message_log
        self._token = token
        self._on_fallback = on_fallback
        self._auto_switch = auto_switch_on_fallback
        self._pending_model: Optional[str] = None
        self._budget = Budget.from_settings(self._settings)
        self.conversation_id = conversation_id
        self.model = model or self._settings.default_model
        self.history: List[ChatMessage] = list(history or [])
        self.active: Optional[Exchange] = None

    @property
    def busy(self) -> bool:
        return self.active is not None and self.active.state is ExchangeState.IN_FLIGHT

    def label(self) -> str:
        """当前模型的展示名；目录中没有时退回模型 key。"""

        name = self._catalog.display_name(self.model) if self._catalog is not None else None
        return name or self.model

    def uses_typewriter(self) -> bool:
        pattern = self._settings.typewriter_model_pattern
        return bool(pattern) and re.search(pattern, self.model, re.IGNORECASE) is not None

    def submit(
        self,
        text: str = "",
        attachment: Optional[Attachment] = None,
        *,
        interrupt: bool = False,
    ) -> Optional[Exchange]:
        """提交新一轮消息并启动交换；必须在事件循环内调用。

        没有文本也没有附件，或已有交换进行中（且未要求 interrupt）时返回 None。
        """

        if not (text or "").strip() and attachment is None:
            return None
        if self.busy:
            if not interrupt:
                log_event(logging.INFO, "Submission ignored, exchange in flight", conversation_id=self.conversation_id)
                return None
            self.active.stop()

        content = build_content(text, attachment)
        meta = {"model": self.model}
        if attachment is not None:
            meta["attachment"] = {"kind": attachment.kind, "name": attachment.name, "mime": attachment.mime}
        user_msg = ChatMessage(role="user", content=content, meta=meta)
        request = build_request(
            self.history,
            user_msg,
            model=self.model,
            label=self.label(),
            budget=self._budget,
            conversation_id=self.conversation_id,
            temperature=self._settings.temperature,
            search_mode=self._settings.search_mode,
        )
        exchange = Exchange(
            request,
            self._transport,
            user_message=user_msg,
            token=self._token,
            typewriter=self._typewriter_factory() if self.uses_typewriter() else None,
            fallback=FallbackDetector.from_settings(self._settings),
            on_fallback=self._handle_fallback,
            on_finalize=self._finalize,
        )
        self.active = exchange
        exchange.start()
        return exchange

    def stop(self) -> bool:
        if not self.busy:
            return False
        return self.active.stop()

    def set_model(self, model: str) -> None:
        """切换目标模型；进行中的交换先被中止。"""

        if model == self.model:
            return
        if self.busy:
            self.active.stop()
        log_event(logging.INFO, "Model switched", conversation_id=self.conversation_id, previous=self.model, model=model)
        self.model = model
        self._pending_model = None

    def _typewriter_factory(self) -> Callable[[Callable[[str], None]], Typewriter]:
        slice_chars = self._settings.typewriter_slice_chars
        interval = self._settings.typewriter_interval_ms / 1000.0

        def factory(sink: Callable[[str], None]) -> Typewriter:
            return Typewriter(sink, slice_chars=slice_chars, interval=interval)

        return factory

    def _handle_fallback(self, notice: FallbackNotice) -> None:
        if self._auto_switch:
            self._pending_model = notice.model
        if self._on_fallback is not None:
            self._on_fallback(notice)

    def _finalize(self, exchange: Exchange) -> None:
        user_msg = exchange.user_message
        to_store: List[ChatMessage] = []
        if user_msg is not None:
            self.history.append(user_msg)
            to_store.append(user_msg)
        text = exchange.text
        if exchange.state is ExchangeState.COMPLETED or text:
            assistant = ChatMessage(
                role="assistant",
                content=text,
                meta={"model": exchange.request.model, "state": exchange.state.value},
            )
            self.history.append(assistant)
            to_store.append(assistant)
        if self._pending_model and self._pending_model != self.model:
            pending, self._pending_model = self._pending_model, None
            log_event(logging.INFO, "Applying fallback model", conversation_id=self.conversation_id, model=pending)
            self.model = pending
        if self.active is exchange:
            self.active = None
        if self._message_log is not None and self.conversation_id and len(to_store) > 1:
            self._message_log.append(self.conversation_id, *to_store)
