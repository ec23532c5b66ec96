"""基于 httpx 的聊天端点客户端。

本模块负责：

1. 拼接端点 URL（未配置基础 URL 时直接报 ConfigurationError，不发请求）。
2. POST JSON 请求体，可选携带 Bearer token。
3. 检查 HTTP 状态，非 2xx 统一包装为 TransportError（含状态码与响应体摘要）。
4. 把响应体交给 WireDecoder，按到达顺序产出增量文本。

本层不重试：失败只向调用方报告一次。
"""

import logging
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from relay_core.domain.exceptions import ConfigurationError, NetworkError, TransportError
from relay_core.infrastructure.logging.logger import log_event
from relay_core.transport.wire import WireDecoder, extract_single_shot


class RelayHttpClient:
    """聊天端点客户端实现。

    - name: 客户端名称（供日志/调试使用）。
    - stream_deltas: 对外统一调用入口，异步产出增量文本。
    """

    name = "relay-http"

    def __init__(self, settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        # Settings 里包含 api_base_url、chat_path、超时等配置
        self._settings = settings
        # 测试时可注入 httpx.MockTransport
        self._transport = transport

    def endpoint(self) -> str:
        base = (getattr(self._settings, "api_base_url", None) or "").strip().rstrip("/")
        if not base:
            raise ConfigurationError(code="MISSING_API_BASE", message="API base URL not configured")
        path = getattr(self._settings, "chat_path", "/chat") or "/chat"
        return f"{base}{path if path.startswith('/') else '/' + path}"

    @staticmethod
    def build_headers(token: Optional[str]) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def stream_deltas(self, payload: Dict[str, Any], token: Optional[str] = None) -> AsyncIterator[str]:
        """发送请求并逐个产出增量文本。"""

        url = self.endpoint()
        headers = self.build_headers(token or getattr(self._settings, "api_token", None))
        log_event(
            logging.INFO,
            "Dispatching chat request",
            url=url,
            model=payload.get("model"),
            message_count=len(payload.get("messages") or []),
            max_tokens=payload.get("max_tokens"),
        )
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.http_timeout,
                trust_env=False,
                transport=self._transport,
            ) as client:
                if not getattr(self._settings, "stream_responses", True):
                    resp = await client.post(url, json=payload, headers=headers)
                    if not resp.is_success:
                        raise self._status_error(resp, resp.text)
                    text = extract_single_shot(resp.text)
                    if text:
                        yield text
                    return
                async with client.stream("POST", url, json=payload, headers=headers) as resp:
                    if not resp.is_success:
                        body = await self._safe_read(resp)
                        raise self._status_error(resp, body)
                    decoder = WireDecoder(resp.headers.get("content-type"))
                    log_event(logging.DEBUG, "Decoding response", mode=decoder.mode.value)
                    async for delta in decoder.decode(resp.aiter_text()):
                        yield delta
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时、读取中断等
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or e.__class__.__name__)

    @staticmethod
    async def _safe_read(resp: httpx.Response) -> str:
        try:
            await resp.aread()
            return resp.text
        except httpx.HTTPError:
            return ""

    @staticmethod
    def _status_error(resp: httpx.Response, body: str) -> TransportError:
        err = TransportError.from_status(resp.status_code, resp.reason_phrase, body)
        log_event(logging.WARNING, "Upstream returned error status", http_status=resp.status_code, code=err.code)
        return err
