"""单次交换的生命周期状态机。

状态：idle → building → in-flight → {completed | aborted | errored}

- in-flight 期间由后台任务驱动传输层，逐条增量经过搜索状态通道拆分；
  正文增量先（按需）进入打字机节流再推给调用方，降级检测器旁路观察。
- 状态事件与降级事件和正文走同一条有序路径：启用打字机时，它们排在
  先到达、仍在缓冲中的正文之后。
- 无论是否节流，全文都会累积到 finalize 缓冲。
- stop() 同步地把交换置为 aborted：取消网络读取、立刻冲刷打字机缓冲，
  已累积的部分文本保留并照常交给持久化回调。
- 持久化回调失败只记录日志，交换照常进入终止状态。
- 所有可变状态（取消句柄、累积缓冲、节流器）都属于 Exchange 实例本身。
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable, List, Optional
from uuid import uuid4

from relay_core.domain.exceptions import BusinessError
from relay_core.domain.models import ChatMessage, ExchangeEvent, ExchangeState, FallbackNotice
from relay_core.exchange.request import ExchangeRequest
from relay_core.infrastructure.logging.logger import log_event, logger
from relay_core.stream.signals import FallbackDetector, SearchStatusChannel
from relay_core.stream.typewriter import Typewriter
from relay_core.transport.base import ChatTransport


class Exchange:
    def __init__(
        self,
        request: ExchangeRequest,
        transport: ChatTransport,
        *,
        user_message: Optional[ChatMessage] = None,
        token: Optional[str] = None,
        typewriter: Optional[Callable[[Callable[[str], None]], Typewriter]] = None,
        fallback: Optional[FallbackDetector] = None,
        on_fallback: Optional[Callable[[FallbackNotice], None]] = None,
        on_finalize: Optional[Callable[[Exchange], None]] = None,
    ):
        self.id = f"x-{uuid4().hex}"
        self.request = request
        self.user_message = user_message
        self.state = ExchangeState.BUILDING
        self.interrupted = False
        self.error: Optional[str] = None
        self.fallback_notice: Optional[FallbackNotice] = None
        self._transport = transport
        self._token = token
        self._chunks: List[str] = []
        self._queue: asyncio.Queue[ExchangeEvent] = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._finished = asyncio.Event()
        self._status = SearchStatusChannel()
        self._fallback = fallback
        self._on_fallback = on_fallback
        self._on_finalize = on_finalize
        self._typewriter = typewriter(self._emit_content) if typewriter else None
        self._log(logging.INFO, "Exchange built", messages=len(request.messages), max_tokens=request.max_tokens)

    @property
    def text(self) -> str:
        """目前为止累积的全部正文。"""

        return "".join(self._chunks)

    @property
    def regulated(self) -> bool:
        return self._typewriter is not None

    def start(self) -> None:
        """building → in-flight：在当前事件循环上启动网络读取任务。"""

        if self.state is not ExchangeState.BUILDING:
            raise RuntimeError(f"cannot start exchange in state {self.state.value}")
        self.state = ExchangeState.IN_FLIGHT
        self._status.reset()
        self._log(logging.INFO, "Exchange in flight", regulated=self.regulated)
        self._task = asyncio.get_running_loop().create_task(self._pump())

    def stop(self) -> bool:
        """取消进行中的交换；不在 in-flight 状态时返回 False。"""

        if self.state is not ExchangeState.IN_FLIGHT:
            return False
        self.interrupted = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._finish(ExchangeState.ABORTED)
        return True

    async def events(self) -> AsyncIterator[ExchangeEvent]:
        """按顺序产出事件，直到（并包括）终止事件。只允许一个消费者。"""

        while True:
            event = await self._queue.get()
            yield event
            if event.terminal:
                return

    async def wait(self) -> ExchangeState:
        """等待交换到达终止状态（含持久化回调执行完毕）。"""

        await self._finished.wait()
        return self.state

    async def _pump(self) -> None:
        try:
            stream = self._transport.stream_deltas(self.request.to_payload(), token=self._token)
            async for delta in stream:
                if self.state is not ExchangeState.IN_FLIGHT:
                    break
                self._route(delta)
        except asyncio.CancelledError:
            if self.state is ExchangeState.IN_FLIGHT:
                self.interrupted = True
                self._finish(ExchangeState.ABORTED)
            raise
        except BusinessError as e:
            self._fail(e.message, code=e.code, http_status=e.http_status)
        except Exception as e:
            logger.exception("Exchange failed unexpectedly", extra={"extra": {"exchange_id": self.id}})
            self._fail(str(e) or "Request failed", code="UNEXPECTED")
        else:
            if self.state is ExchangeState.IN_FLIGHT:
                self._finish(ExchangeState.COMPLETED)

    def _route(self, delta: str) -> None:
        for event in self._status.route(delta):
            if event.kind != "delta":
                self._emit_control(event)
                continue
            self._chunks.append(event.text)
            if self._typewriter is not None:
                self._typewriter.push(event.text)
            else:
                self._emit_content(event.text)
            if self._fallback is not None:
                notice = self._fallback.inspect(event.text)
                if notice is not None:
                    self.fallback_notice = notice
                    self._emit_control(ExchangeEvent(kind="fallback", fallback=notice))
                    if self._on_fallback is not None:
                        self._on_fallback(notice)

    def _emit_content(self, text: str) -> None:
        self._queue.put_nowait(ExchangeEvent(kind="delta", text=text))

    def _emit_control(self, event: ExchangeEvent) -> None:
        if self._typewriter is not None:
            self._typewriter.defer(lambda: self._queue.put_nowait(event))
        else:
            self._queue.put_nowait(event)

    def _fail(self, message: str, **fields) -> None:
        if self.state is not ExchangeState.IN_FLIGHT:
            return
        self.error = message
        self.interrupted = True
        self._log(logging.WARNING, "Exchange errored", error=message, **fields)
        self._finish(ExchangeState.ERRORED)

    def _finish(self, state: ExchangeState) -> None:
        self.state = state
        try:
            if self._typewriter is not None:
                self._typewriter.drain()
            if self._status.current is not None:
                self._status.reset()
                self._queue.put_nowait(ExchangeEvent(kind="status", status=None))
            self._queue.put_nowait(ExchangeEvent(kind=state.value, text=self.text, error=self.error))
            self._log(logging.INFO, "Exchange finished", state=state.value, chars=sum(len(c) for c in self._chunks))
            if self._on_finalize is not None:
                self._finalize()
        finally:
            self._finished.set()

    def _finalize(self) -> None:
        try:
            self._on_finalize(self)
        except BusinessError as e:
            self._log(logging.ERROR, "Failed to persist exchange", code=e.code, error=e.message)
        except Exception:
            logger.exception("Failed to persist exchange", extra={"extra": {"exchange_id": self.id}})

    def _log(self, level: int, message: str, **fields) -> None:
        log_event(level, message, exchange_id=self.id, model=self.request.model,
                  conversation_id=self.request.conversation_id, **fields)
