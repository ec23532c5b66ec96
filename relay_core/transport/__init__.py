"""传输与线格式解码层。

该包下的模块负责：
- 定义传输抽象接口 (base)。
- 解码 SSE / 纯文本 / 单次 JSON 三种线格式 (wire)。
- 提供基于 httpx 的端点客户端 (http_client)。
"""

from relay_core.transport.base import ChatTransport
from relay_core.transport.http_client import RelayHttpClient
from relay_core.transport.wire import WireDecoder, WireMode, extract_single_shot

__all__ = ["ChatTransport", "RelayHttpClient", "WireDecoder", "WireMode", "extract_single_shot"]
