"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置。

所有预算类常量（历史条数、字符预算、回复 token 上限）在进程启动时读取一次，
之后只读；超出预算一律静默裁剪，不视为错误。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("RELAY_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class RelaySettings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- 上游端点 ----
    api_base_url: Optional[str] = Field(
        default=None,
        description="聊天 API 基础 URL；未配置时在调用时抛出 ConfigurationError",
    )
    chat_path: str = Field(default="/chat", description="聊天端点路径")
    api_token: Optional[str] = Field(default=None, description="Bearer token（可选）")
    http_timeout: float = Field(default=60.0, ge=1.0, description="HTTP 超时时间（秒）")
    stream_responses: bool = Field(
        default=True,
        description="是否以流式读取响应；关闭后整体读取并按单次 JSON 解析",
    )

    # ---- 请求参数 ----
    default_model: str = Field(default="basic:gpt-4o-mini", description="默认模型 key")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="生成温度")
    search_mode: Optional[str] = Field(default=None, description="联网搜索模式，如 auto")

    # ---- 预算 ----
    max_history_messages: int = Field(default=60, ge=1, description="最多发送的历史消息条数")
    max_history_chars: int = Field(default=12_000, ge=1, description="历史消息字符预算")
    max_response_tokens_ceiling: int = Field(default=20_000, ge=1, description="回复 token 绝对上限")
    default_response_tokens: int = Field(default=4096, ge=1, description="默认回复 token 上限")
    image_part_chars: int = Field(default=2_000, ge=0, description="每张图片折算的字符成本")

    # ---- 打字机节流 ----
    typewriter_slice_chars: int = Field(default=12, ge=1, description="每次 tick 输出的字符数")
    typewriter_interval_ms: int = Field(default=30, ge=1, description="tick 间隔（毫秒）")
    typewriter_model_pattern: Optional[str] = Field(
        default="nano",
        description="模型 key 匹配该正则（忽略大小写）时启用打字机效果",
    )

    # ---- 上游降级检测 ----
    fallback_phrase: str = Field(default="gpt-5 daily limit reached", description="降级提示短语")
    fallback_model: str = Field(default="basic:gpt-4o-mini", description="建议切换的模型 key")
    fallback_reason: str = Field(default="quota-exceeded-gpt5", description="降级原因码")

    # ---- 模型目录（model_key -> display_name） ----
    models: List[Dict[str, str]] = Field(default_factory=list, description="模型展示名配置")

    storage_root: str = Field(default=".storage", description="存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("api_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().rstrip("/")
        return v or None

    @field_validator("chat_path")
    @classmethod
    def ensure_leading_slash(cls, v: str) -> str:
        return v if v.startswith("/") else f"/{v}"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = RelaySettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = RelaySettings
