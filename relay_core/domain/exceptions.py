"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在会话层或 API 层做统一捕获与用户提示。

注意：本层不做任何自动重试，错误只向调用方报告一次。
"""

from typing import Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_WRITE_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 conversation_id、model 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


# 错误体摘要的最大长度，避免把整页 HTML 错误塞给调用方
BODY_EXCERPT_CHARS = 500


class TransportError(BusinessError):
    """上游返回非 2xx 状态码时抛出，对本次交换是致命错误。"""

    def __init__(self, code: str, message: str, http_status: int = 502, body_excerpt: str = "", **extra):
        self.body_excerpt = body_excerpt
        super().__init__(code=code, message=message, http_status=http_status, **extra)

    @classmethod
    def from_status(cls, status_code: int, reason: str, body: Optional[str]) -> "TransportError":
        excerpt = (body or "").strip()[:BODY_EXCERPT_CHARS]
        head = f"HTTP {status_code} {reason or ''}".strip()
        message = f"{head}: {excerpt or '<no body>'}"
        err_cls = RateLimitError if status_code == 429 else cls
        code = "RATE_LIMIT" if status_code == 429 else "API_ERROR"
        return err_cls(code=code, message=message, http_status=status_code, body_excerpt=excerpt)


class RateLimitError(TransportError):
    """上游限流（429）。是否退避重试由更上层决定。"""


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、读取超时等。"""


class ConfigurationError(BusinessError):
    """必需配置缺失（如未配置 API 基础 URL），在发起网络请求前抛出。"""


class DecodeError(BusinessError):
    """单个流帧无法解析。解码器内部吸收该错误并退回原始文本输出。"""
