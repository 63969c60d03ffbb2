"""Provider 抽象接口。

上层（分析流程、对话编排）不直接依赖具体厂商的 SDK 或 HTTP 细节，而是依赖此协议：

- 每类后端实现一个 ProviderClient（GeminiClient / OpenAICompatibleClient）。
- analyze: 把原始文本转成 RawSegment 列表（不带 id）。
- open_chat_stream: 发起流式对话请求并返回惰性的文本增量迭代器。
- complete_text: 一次简单的非流式补全（用于生成文档标题）。

这样两种后端是一个封闭的变体集合，调用方不需要到处判断 provider 字符串。
"""

import threading
import time
from typing import Iterator, List, Optional, Protocol

from context_book.domain.exceptions import DeadlineExceeded, RequestCancelled
from context_book.domain.models import AnalyzeConfig, ChatRequest, RawSegment


class RequestGuard:
    """取消信号 + 总时限。

    check() 在打开网络请求之前、以及流式解码的每一帧调用，
    已取消时抛出 RequestCancelled，超过时限时抛出 DeadlineExceeded。
    """

    def __init__(
        self,
        cancel_event: Optional[threading.Event] = None,
        timeout_seconds: Optional[float] = None,
        clock=time.monotonic,
    ):
        self._cancel_event = cancel_event
        self._clock = clock
        self._deadline = clock() + timeout_seconds if timeout_seconds else None

    @property
    def cancelled(self) -> bool:
        return bool(self._cancel_event is not None and self._cancel_event.is_set())

    def check(self) -> None:
        if self.cancelled:
            raise RequestCancelled(code="CANCELLED", message="Request cancelled")
        if self._deadline is not None and self._clock() > self._deadline:
            raise DeadlineExceeded(code="DEADLINE_EXCEEDED", message="Request deadline exceeded")


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。"""

    name: str

    def analyze(self, text: str, config: AnalyzeConfig) -> List[RawSegment]:
        ...

    def open_chat_stream(self, req: ChatRequest, guard: RequestGuard) -> Iterator[str]:
        """发起流式对话调用。

        请求失败（网络错误、非 2xx）在本方法返回之前抛出；
        返回的迭代器在读取过程中也可能抛出 NetworkError / RequestCancelled。
        """

        ...

    def complete_text(self, prompt: str, config: AnalyzeConfig) -> str:
        ...
