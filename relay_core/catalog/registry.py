"""模型展示名目录。

模型 key（如 "basic:gpt-4o-mini"）是上游识别的标识，展示名（如 "GPT-4o Mini"）
只用于生成身份 system 消息。目录数据来自外部（配置文件或上层服务的模型列表），
本模块不关心它何时、如何被获取或缓存。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional


@dataclass
class ModelEntry:
    """单个模型的目录项。"""

    model_key: str
    display_name: str


class StaticModelCatalog:
    def __init__(self, entries: Iterable[ModelEntry] = ()):
        self._entries: Dict[str, ModelEntry] = {e.model_key.lower(): e for e in entries}

    @classmethod
    def from_mapping(cls, labels: Mapping[str, str]) -> StaticModelCatalog:
        return cls(ModelEntry(model_key=k, display_name=v) for k, v in labels.items())

    @classmethod
    def from_settings(cls, settings) -> StaticModelCatalog:
        """从配置中的 `models: [{model_key, display_name}]` 列表构建。"""

        entries = []
        for raw in getattr(settings, "models", None) or []:
            key = raw.get("model_key") or raw.get("modelKey")
            if not key:
                continue
            entries.append(ModelEntry(model_key=key, display_name=raw.get("display_name") or raw.get("displayName") or key))
        return cls(entries)

    def display_name(self, model_key: str) -> Optional[str]:
        """根据模型 key 查找展示名，key 不区分大小写。"""

        entry = self._entries.get(model_key.lower())
        return entry.display_name if entry else None
