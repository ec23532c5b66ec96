"""传输层抽象接口。

交换状态机不直接依赖 httpx，而是依赖此协议：

- stream_deltas(payload, token): 发送一次聊天请求，异步产出解码后的增量文本。
- 非 2xx 状态抛出 TransportError，网络故障抛出 NetworkError，
  缺少端点配置时在发起请求前抛出 ConfigurationError。

取消是协作式的：调用方取消正在迭代的任务，读取在下一个挂起点停止。
"""

from typing import Any, AsyncIterator, Dict, Optional, Protocol


class ChatTransport(Protocol):
    name: str

    def stream_deltas(self, payload: Dict[str, Any], token: Optional[str] = None) -> AsyncIterator[str]:
        ...
