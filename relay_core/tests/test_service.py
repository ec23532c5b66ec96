import asyncio

import pytest

from relay_core.api import service
from relay_core.domain.exceptions import BusinessError
from relay_core.infrastructure.storage.json_store import JsonlMessageLog


class ScriptedTransport:
    name = "scripted"

    def __init__(self, settings):
        self.payloads = []

    async def stream_deltas(self, payload, token=None):
        self.payloads.append(payload)
        yield '[[[SEARCH_STATUS]]]{"state": "start", "query": "q"}'
        yield "reply to "
        yield payload["messages"][-1]["content"]


@pytest.fixture
def isolated_service(monkeypatch, tmp_path):
    monkeypatch.setattr(service, "_sessions", {})
    monkeypatch.setattr(service, "_message_log", JsonlMessageLog(root=tmp_path))
    monkeypatch.setattr(service, "RelayHttpClient", ScriptedTransport)
    return tmp_path


def test_relay_chat_runs_exchange_to_completion(isolated_service):
    result = asyncio.run(service.relay_chat("hello", conversation_id="c1"))
    assert result["conversation_id"] == "c1"
    assert result["state"] == "completed"
    assert result["content"] == "reply to hello"
    assert result["error"] is None
    assert result["searches"] == [{"state": "start", "query": "q"}]
    assert result["fallback"] is None


def test_relay_chat_reuses_session_history(isolated_service):
    asyncio.run(service.relay_chat("one", conversation_id="c2"))
    asyncio.run(service.relay_chat("two", conversation_id="c2", model="open:llama3-70b"))
    session = service.get_session("c2")
    assert session.model == "open:llama3-70b"
    assert [m.content for m in session.history] == ["one", "reply to one", "two", "reply to two"]
    sent = session._transport.payloads[-1]["messages"]
    assert [m["content"] for m in sent[1:]] == ["one", "reply to one", "two"]


def test_history_reloaded_from_message_log(isolated_service):
    asyncio.run(service.relay_chat("persist me", conversation_id="c3"))
    service._sessions.clear()
    session = service.get_session("c3")
    assert [m.role for m in session.history] == ["user", "assistant"]


def test_empty_message_rejected(isolated_service):
    with pytest.raises(BusinessError) as exc:
        asyncio.run(service.relay_chat("   ", conversation_id="c4"))
    assert exc.value.code == "EMPTY_MESSAGE"
