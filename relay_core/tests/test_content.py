import base64

from relay_core.domain.models import Attachment, ChatMessage, ImagePart, TextPart
from relay_core.exchange.content import (
    PREVIEW_MAX_CHARS,
    build_content,
    decode_text_preview,
    format_bytes,
    identity_text,
    truncate,
    with_identity,
)
from relay_core.exchange.request import build_request
from relay_core.domain.models import Budget


def _data_url(mime, text):
    return f"data:{mime};base64," + base64.b64encode(text.encode("utf-8")).decode("ascii")


def test_plain_text_is_trimmed():
    assert build_content("  hello \n") == "hello"


def test_image_attachment_becomes_multipart():
    image = Attachment(kind="image", name="cat.png", mime="image/png", size=10, src="data:image/png;base64,AAAA")
    assert build_content("what is this?", image) == [TextPart("what is this?"), ImagePart("data:image/png;base64,AAAA")]
    assert build_content("", image) == [ImagePart("data:image/png;base64,AAAA")]


def test_text_file_attachment_is_previewed():
    doc = Attachment(kind="file", name="notes.md", mime="text/markdown", size=2048, src=_data_url("text/markdown", "# Title"))
    content = build_content("summarise", doc)
    assert content.startswith("summarise\n\nFile attached: notes.md (text/markdown, 2.0 KB).")
    assert content.endswith("Content preview:\n# Title")


def test_binary_file_attachment_keeps_raw_data():
    src = "data:application/pdf;base64,JVBERi0xLjQ="
    pdf = Attachment(kind="file", name="a.pdf", mime="application/pdf", size=12, src=src)
    content = build_content("", pdf)
    assert content == f"File attached: a.pdf (application/pdf, 12 B).\n\nData (base64, may be truncated): {src}"


def test_preview_truncation():
    assert truncate("abc", 2) == "ab... [truncated]"
    assert truncate("ab", 2) == "ab"
    long = "x" * (PREVIEW_MAX_CHARS + 5)
    assert decode_text_preview(_data_url("application/json", long)).endswith("... [truncated]")
    assert decode_text_preview(_data_url("image/png", "x")) is None
    assert decode_text_preview("not a data url") is None


def test_format_bytes():
    assert format_bytes(512) == "512 B"
    assert format_bytes(1536) == "1.5 KB"
    assert format_bytes(3 * 1024 * 1024) == "3.0 MB"


def test_identity_inserted_when_no_system_message():
    history = [ChatMessage(role="user", content="hi")]
    out = with_identity(history, identity_text("GPT-4o Mini"))
    assert out[0].role == "system"
    assert out[0].content.startswith("You are GPT-4o Mini.")
    assert out[1] is history[0]
    assert len(history) == 1


def test_build_request_drops_empty_messages():
    history = [ChatMessage(role="user", content="earlier"), ChatMessage(role="assistant", content="")]
    outgoing = ChatMessage(role="user", content="now")
    request = build_request(
        history, outgoing, model="m", label="M", budget=Budget(), conversation_id="c1",
        temperature=0.5, search_mode="auto",
    )
    payload = request.to_payload()
    assert [m["content"] for m in payload["messages"][1:]] == ["earlier", "now"]
    assert payload["search"] == {"mode": "auto"}
    assert payload["temperature"] == 0.5


def test_identity_lands_on_latest_system_message():
    history = [
        ChatMessage(role="system", content="first"),
        ChatMessage(role="user", content="q"),
        ChatMessage(role="system", content="later system"),
        ChatMessage(role="assistant", content="a"),
    ]
    out = with_identity(history, "You are Model X.")
    assert [m.role for m in out] == ["user", "system", "assistant"]
    assert out[1].content == "You are Model X."
    assert out[1].id == history[2].id


def _system_contents(request):
    return [m.content for m in request.messages if m.role == "system"]


def test_identity_survives_over_budget_history_with_two_system_messages():
    history = [
        ChatMessage(role="system", content="first"),
        ChatMessage(role="user", content="u" * 50),
        ChatMessage(role="system", content="stale later system"),
        ChatMessage(role="assistant", content="a" * 50),
    ]
    request = build_request(
        history, ChatMessage(role="user", content="now"), model="m", label="Model X",
        budget=Budget(max_history_chars=200),
    )
    systems = _system_contents(request)
    assert len(systems) == 1
    assert systems[0].startswith("You are Model X.")
    assert request.messages[0].role == "system"
    assert request.messages[-1].content == "now"


def test_identity_single_system_message_when_history_fits():
    history = [
        ChatMessage(role="system", content="first"),
        ChatMessage(role="system", content="second"),
        ChatMessage(role="user", content="hi"),
    ]
    request = build_request(
        history, ChatMessage(role="user", content="again"), model="m", label="Model X", budget=Budget(),
    )
    assert len(_system_contents(request)) == 1
    assert _system_contents(request)[0].startswith("You are Model X.")
