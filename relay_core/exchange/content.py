"""外发消息内容构造。

- 图片附件：生成多段内容（文本段 + 图片段），供支持视觉的模型使用。
- 文件附件：把附件描述与（截断后的）内容直接拼进文本。文本类 MIME 的
  base64 data URL 会先解码成可读预览。
- 身份 system 消息：根据当前模型展示名生成，替换最新一条 system 消息的内容
  （不改变其位置），更早的 system 消息被丢弃；没有时插到最前面。
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import replace
from typing import List, Optional, Sequence

from relay_core.domain.models import Attachment, ChatMessage, ContentPart, ImagePart, MessageContent, TextPart

PREVIEW_MAX_CHARS = 200_000

_DATA_URL = re.compile(r"^data:(.*?);base64,(.*)$", re.IGNORECASE | re.DOTALL)
_TEXT_LIKE_MIME = re.compile(r"^text/|json$|xml$|csv$|markdown$", re.IGNORECASE)


def format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    units = ["KB", "MB", "GB"]
    measured = size / 1024
    index = 0
    while measured >= 1024 and index < len(units) - 1:
        measured /= 1024
        index += 1
    return f"{measured:.1f} {units[index]}"


def describe_attachment(attachment: Attachment) -> str:
    label = "Image" if attachment.kind == "image" else "File"
    return f"{label} attached: {attachment.name} ({attachment.mime}, {format_bytes(attachment.size)})."


def truncate(data: str, limit: int = PREVIEW_MAX_CHARS) -> str:
    return f"{data[:limit]}... [truncated]" if len(data) > limit else data


def decode_text_preview(src: str) -> Optional[str]:
    """文本类 data URL 解码为预览文本；其他情况返回 None。"""

    match = _DATA_URL.match(src)
    if not match:
        return None
    mime = match.group(1) or "application/octet-stream"
    if not _TEXT_LIKE_MIME.search(mime):
        return None
    try:
        decoded = base64.b64decode(match.group(2), validate=False).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    return truncate(decoded)


def build_content(text: str, attachment: Optional[Attachment] = None) -> MessageContent:
    trimmed = (text or "").strip()

    if attachment is not None and attachment.kind == "image" and attachment.src:
        parts: List[ContentPart] = []
        if trimmed:
            parts.append(TextPart(trimmed))
        parts.append(ImagePart(attachment.src))
        return parts

    pieces: List[str] = []
    if trimmed:
        pieces.append(trimmed)
    if attachment is not None and attachment.kind == "file":
        preview = decode_text_preview(attachment.src) if attachment.src else None
        sections = [describe_attachment(attachment)]
        if preview:
            sections.append(f"Content preview:\n{preview}")
        elif attachment.src:
            sections.append(f"Data (base64, may be truncated): {truncate(attachment.src)}")
        pieces.append("\n\n".join(sections))
    elif attachment is not None:
        pieces.append(describe_attachment(attachment))
    return "\n\n".join(pieces)


def is_empty(content: MessageContent) -> bool:
    return not content


def identity_text(label: str) -> str:
    return (
        f"You are {label}. Respond helpfully and concisely using that model's capabilities. "
        "Do not mention your model name unless explicitly asked."
    )


def with_identity(history: Sequence[ChatMessage], identity: str) -> List[ChatMessage]:
    """把身份写入最后一条 system 消息（位置不变），并丢弃更早的 system 消息。

    裁剪只保留最新的 system 消息，身份必须落在这一条上。
    没有 system 消息时插到最前。
    """

    out = list(history)
    last = next((i for i in range(len(out) - 1, -1, -1) if out[i].role == "system"), None)
    if last is None:
        out.insert(0, ChatMessage(role="system", content=identity))
        return out
    out[last] = replace(out[last], content=identity)
    return [m for i, m in enumerate(out) if m.role != "system" or i == last]
