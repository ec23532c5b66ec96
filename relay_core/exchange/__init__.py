"""交换编排层。

- content: 外发消息内容与身份 system 消息构造。
- request: building 阶段，产出裁剪后的 ExchangeRequest。
- lifecycle: 单次交换状态机 Exchange。
- session: 会话上下文 ChatSession，保证同一会话内至多一个进行中的交换。
"""

from relay_core.exchange.lifecycle import Exchange
from relay_core.exchange.request import ExchangeRequest, build_request
from relay_core.exchange.session import ChatSession

__all__ = ["ChatSession", "Exchange", "ExchangeRequest", "build_request"]
