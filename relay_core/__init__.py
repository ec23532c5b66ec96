"""Relay Core 顶层包。

该包实现聊天转发层的核心：把多轮对话裁剪到固定预算内发给上游模型端点，
把 SSE / 纯文本 / 单次 JSON 三种响应格式解码为统一的增量流，
按固定节奏（可选）推送给调用方，并管理单次交换的可取消生命周期。
"""

from relay_core.exchange import ChatSession, Exchange

__all__ = ["ChatSession", "Exchange"]
