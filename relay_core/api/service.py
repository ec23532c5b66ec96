"""对外 API 服务模块。

提供简化的函数接口供上层应用调用。
"""

from typing import Any, Dict, List, Optional
from uuid import uuid4

from relay_core.catalog.registry import StaticModelCatalog
from relay_core.config.settings import settings
from relay_core.domain.exceptions import BusinessError
from relay_core.domain.models import Attachment
from relay_core.exchange.session import ChatSession
from relay_core.infrastructure.logging.logger import logger
from relay_core.infrastructure.storage.json_store import JsonlMessageLog
from relay_core.transport.http_client import RelayHttpClient


_sessions: Dict[str, ChatSession] = {}
_message_log: Optional[JsonlMessageLog] = None


def get_session(conversation_id: Optional[str] = None, model: Optional[str] = None) -> ChatSession:
    """获取（或创建）某个会话上下文，同一 conversation_id 复用同一实例。"""
    global _message_log
    if _message_log is None:
        _message_log = JsonlMessageLog(root=settings.storage_root)
    cid = conversation_id or f"c-{uuid4().hex}"
    session = _sessions.get(cid)
    if session is None:
        session = ChatSession(
            RelayHttpClient(settings),
            conversation_id=cid,
            model=model,
            history=_message_log.list_messages(cid),
            catalog=StaticModelCatalog.from_settings(settings),
            message_log=_message_log,
            token=settings.api_token,
        )
        _sessions[cid] = session
    elif model:
        session.set_model(model)
    return session


async def relay_chat(
    user_input: str,
    conversation_id: Optional[str] = None,
    model: Optional[str] = None,
    attachment: Optional[Attachment] = None,
) -> Dict[str, Any]:
    """运行一轮对话直到结束。

    Args:
        user_input: 用户输入内容
        conversation_id: 会话ID（可选，不提供则创建新会话）
        model: 目标模型 key（可选，不提供则沿用会话当前模型）
        attachment: 附件（可选）

    Returns:
        包含会话ID、终止状态、回复全文、错误信息与降级通知的字典

    Raises:
        BusinessError: 消息为空，或该会话已有进行中的交换
    """
    session = get_session(conversation_id, model)
    exchange = session.submit(user_input, attachment)
    if exchange is None:
        code = "EXCHANGE_IN_FLIGHT" if session.busy else "EMPTY_MESSAGE"
        raise BusinessError(code=code, message="Submission rejected", conversation_id=session.conversation_id)

    searches: List[Dict[str, Any]] = []
    async for event in exchange.events():
        if event.kind == "status" and event.status is not None:
            searches.append({"state": event.status.state, "query": event.status.query})
    state = await exchange.wait()

    if exchange.error:
        logger.error(f"Chat failed: {exchange.error}", extra={"extra": {
            "conversation_id": session.conversation_id,
            "error": exchange.error,
        }})
    notice = exchange.fallback_notice
    return {
        "conversation_id": session.conversation_id,
        "state": state.value,
        "model": exchange.request.model,
        "content": exchange.text,
        "error": exchange.error,
        "searches": searches,
        "fallback": {"model": notice.model, "reason": notice.reason} if notice else None,
    }
