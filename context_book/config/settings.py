"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
优先级：显式参数 > 环境变量 > .env > config.yaml。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional, TYPE_CHECKING

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from context_book.prompts import load_prompt

if TYPE_CHECKING:
    from context_book.domain.models import AnalyzeConfig


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CONTEXT_BOOK_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
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


class Settings(BaseSettings):
    """全局配置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    provider: str = Field(
        default="structured",
        description="默认 Provider：structured（Gemini）或 completion（OpenAI 兼容）",
    )
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="生成温度")
    custom_prompt: str = Field(
        default_factory=lambda: load_prompt("analyze_system"),
        description="分章分析所用的系统提示词",
    )

    # Gemini
    google_api_key: Optional[str] = Field(default=None, description="Gemini API 密钥（为空时由 SDK 读取环境变量）")
    google_model_id: str = Field(default="gemini-3-flash-preview", description="Gemini 模型 ID")

    # OpenAI 兼容
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI 兼容服务的 API 密钥")
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="OpenAI 兼容服务基础URL")
    openai_model_id: str = Field(default="gpt-4o", description="OpenAI 兼容模型 ID")

    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 连接/读取超时（秒）")
    request_timeout: float = Field(default=120.0, ge=1.0, description="单次请求的总时限（秒）")
    title_snippet_chars: int = Field(default=500, ge=1, description="生成标题时截取的原文长度")
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

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in {"structured", "completion"}:
            raise ValueError(f"Unknown provider: {v!r}")
        return v

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

    def to_analyze_config(self, keep_original: bool = False) -> "AnalyzeConfig":
        """根据当前配置构造一次请求使用的 AnalyzeConfig。"""

        from context_book.domain.models import AnalyzeConfig

        if self.provider == "completion":
            return AnalyzeConfig(
                provider="completion",
                temperature=self.temperature,
                custom_prompt=self.custom_prompt,
                model_id=self.openai_model_id,
                base_url=self.openai_base_url,
                api_key=self.openai_api_key,
                keep_original=keep_original,
                timeout_seconds=self.request_timeout,
            )
        return AnalyzeConfig(
            provider="structured",
            temperature=self.temperature,
            custom_prompt=self.custom_prompt,
            model_id=self.google_model_id,
            api_key=self.google_api_key,
            keep_original=keep_original,
            timeout_seconds=self.request_timeout,
        )


settings = Settings()
