"""打字机节流器。

网络增量到达的节奏很不均匀（有时一次几百字符，有时停顿很久）。
Typewriter 把收到的文本先追加进待发缓冲，再由一个周期定时器每次取出
固定长度的前缀交给 sink，形成稳定的“逐字输出”效果。

- 缓冲为空的 tick 会停止定时器；新文本到达时定时器重新启动。
- drain() 立即把剩余缓冲一次性交给 sink 并停止定时器，保证不丢内容。
- 只调整输出节奏，不改变顺序。defer() 登记的回调在它之前已缓冲的文本
  全部输出后才触发，用来让控制事件排在先到的正文之后。

定时器是运行在当前事件循环上的 asyncio.Task，push() 必须在事件循环内调用。
"""

from __future__ import annotations

import asyncio
from typing import Callable, List, Optional, Tuple


class Typewriter:
    def __init__(self, sink: Callable[[str], None], slice_chars: int = 12, interval: float = 0.03):
        if slice_chars < 1:
            raise ValueError("slice_chars must be >= 1")
        self._sink = sink
        self._slice_chars = slice_chars
        self._interval = interval
        self._buffer = ""
        # (距缓冲开头的字符偏移, 回调)，偏移递增
        self._marks: List[Tuple[int, Callable[[], None]]] = []
        self._timer: Optional[asyncio.Task] = None

    @property
    def pending(self) -> str:
        return self._buffer

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def push(self, text: str) -> None:
        if not text:
            return
        self._buffer += text
        if not self.running:
            self._timer = asyncio.get_running_loop().create_task(self._run())

    def defer(self, callback: Callable[[], None]) -> None:
        """当前缓冲输出完后调用 callback；缓冲为空时立即调用。"""

        if not self._buffer:
            callback()
            return
        self._marks.append((len(self._buffer), callback))

    def tick(self) -> bool:
        """输出一片；缓冲为空时返回 False。

        切片不会跨过 defer 登记的位置。
        """

        if not self._buffer:
            return False
        size = self._slice_chars
        if self._marks:
            size = min(size, self._marks[0][0])
        take = self._buffer[:size]
        self._buffer = self._buffer[size:]
        self._sink(take)
        self._advance(len(take))
        return True

    def drain(self) -> str:
        """停止定时器并一次性输出全部剩余内容，返回输出的文本。

        有 defer 回调夹在缓冲中间时，按回调位置分段输出。
        """

        self._stop_timer()
        remaining = self._buffer
        while self._buffer:
            size = self._marks[0][0] if self._marks else len(self._buffer)
            take, self._buffer = self._buffer[:size], self._buffer[size:]
            self._sink(take)
            self._advance(len(take))
        return remaining

    def _advance(self, consumed: int) -> None:
        marks = [(offset - consumed, cb) for offset, cb in self._marks]
        due = [cb for offset, cb in marks if offset <= 0]
        self._marks = [(offset, cb) for offset, cb in marks if offset > 0]
        for callback in due:
            callback()

    async def _run(self) -> None:
        me = asyncio.current_task()
        try:
            while True:
                await asyncio.sleep(self._interval)
                if not self.tick():
                    break
        finally:
            if self._timer is me:
                self._timer = None

    def _stop_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done():
            timer.cancel()
