"""统一的数据模型。

本模块定义了在不同 Provider 之间共享的标准数据结构：

- RawSegment / Segment: 分析结果中的一个章节（无 id / 带 id）。
- ChatMessage: 会话中的一条消息（user/model）。
- AnalyzeConfig: 一次分析或对话请求使用的 Provider 配置。
- StreamToken / ChatStatus / ChatAccumulator: 流式对话的输出与终止状态。

所有 Provider 适配器都只依赖这些模型，并负责在各自的 API JSON 与这些模型之间做转换。
"""

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Literal, Optional
from uuid import uuid4

from context_book.domain.exceptions import ConfigError


# 会话中的消息角色；发给 OpenAI 兼容服务时 model 会映射为 assistant
Role = Literal["user", "model"]
ProviderKind = Literal["structured", "completion"]


def new_id() -> str:
    return uuid4().hex


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RawSegment:
    """分析器返回的章节记录，尚未分配 id。"""

    title: str
    summary: str
    content: str = ""


@dataclass
class Segment:
    """最终的章节实体。

    - id: 组装时生成，永远不来自 Provider。
    - content: 仅在“保留原文”模式下非空。
    """

    id: str
    title: str
    summary: str
    content: str = ""


@dataclass
class ChatMessage:
    """一条会话消息。timestamp 为毫秒时间戳，在同一会话内单调不减。"""

    id: str
    role: Role
    text: str
    timestamp: int


@dataclass
class AnalyzeConfig:
    """一次请求使用的 Provider 配置。

    - provider: structured（Gemini，Schema 约束 JSON）或 completion（OpenAI 兼容）。
    - temperature: [0, 2]。
    - custom_prompt: 分章提示词；为空时使用内置默认提示词。
    - model_id / base_url / api_key: 具体厂商参数；completion 必须提供 api_key。
    - keep_original: 是否在章节中保留原文（content 字段）。
    - timeout_seconds: 单次请求总时限，超时视为失败。
    """

    provider: ProviderKind
    temperature: float
    custom_prompt: str
    model_id: str
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    keep_original: bool = False
    timeout_seconds: Optional[float] = None

    def validate(self) -> "AnalyzeConfig":
        """在任何网络调用之前校验配置，不合法时抛出 ConfigError。"""

        if self.provider not in ("structured", "completion"):
            raise ConfigError(code="UNKNOWN_PROVIDER", message=f"Unknown provider: {self.provider!r}")
        if not 0.0 <= self.temperature <= 2.0:
            raise ConfigError(
                code="INVALID_TEMPERATURE",
                message=f"temperature must be within [0, 2], got {self.temperature}",
            )
        if not self.model_id:
            raise ConfigError(code="MISSING_MODEL", message="model_id is required")
        if self.provider == "completion":
            if not (self.api_key or "").strip():
                raise ConfigError(code="MISSING_API_KEY", message="API Key is missing for Custom Provider")
            if not (self.base_url or "").strip():
                raise ConfigError(code="MISSING_BASE_URL", message="base_url is required for Custom Provider")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ConfigError(code="INVALID_TIMEOUT", message="timeout_seconds must be positive")
        return self

    def with_keep_original(self, keep_original: bool) -> "AnalyzeConfig":
        return replace(self, keep_original=keep_original)


class ChatStatus(str, Enum):
    """对话流的状态机：IDLE -> REQUESTING -> STREAMING -> {COMPLETED, FAILED, CANCELLED}。"""

    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ChatStatus.COMPLETED, ChatStatus.FAILED, ChatStatus.CANCELLED)


@dataclass(frozen=True)
class StreamToken:
    """模型输出的一个片段；每个序列的最后一个 token 的 is_final 为 True。"""

    text: str
    is_final: bool = False


@dataclass(frozen=True)
class ChatAccumulator:
    """显式的回复累加器：每个 token 返回一个新的值，不依赖闭包里的共享变量。"""

    text: str = ""
    token_count: int = 0

    def add(self, token: StreamToken) -> "ChatAccumulator":
        if not token.text:
            return self
        return ChatAccumulator(text=self.text + token.text, token_count=self.token_count + 1)


@dataclass
class ChatRequest:
    """一次对话请求：上下文前言 + 历史消息 + 新的用户消息。

    Provider 适配层负责把本结构转换成各家 API 所需的消息格式。
    """

    config: AnalyzeConfig
    context: str
    history: List[ChatMessage] = field(default_factory=list)
    user_message: str = ""
