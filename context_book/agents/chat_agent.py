"""对话编排：上下文前言 + 历史 + 新消息 -> 后端流式调用 -> 惰性 token 序列。

状态机：IDLE -> REQUESTING -> STREAMING -> {COMPLETED, FAILED, CANCELLED}

- 请求或读取过程中的任何错误（网络错误、非 2xx、超时、SDK 解析失败）都不会以异常形式抛给调用方，
  而是产出一个人类可读的错误 token 并以 FAILED 结束，之前已产出的 token 保留。
- 终止状态通过 ChatStream.status 显式暴露，调用方可以区分“模型确实回答得很短”
  和“请求失败后替换的错误文本”。
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional
from uuid import uuid4

from context_book.config.settings import settings
from context_book.domain.document import Document
from context_book.domain.exceptions import BusinessError, RequestCancelled
from context_book.domain.models import (
    AnalyzeConfig,
    ChatAccumulator,
    ChatMessage,
    ChatRequest,
    ChatStatus,
    StreamToken,
)
from context_book.infrastructure.logging.logger import log_event
from context_book.prompts import load_prompt
from context_book.providers import ProviderClient, RequestGuard, create_provider


def build_context(document: Optional[Document]) -> str:
    """构造上下文前言：绑定了文档时给出按顺序的章节摘要目录，否则使用通用前言。"""

    if document is None:
        return load_prompt("chat_fallback")
    digest = "\n\n".join(
        f"Chapter {i}: {s.title}\nSummary: {s.summary}"
        for i, s in enumerate(document.segments, start=1)
    )
    return load_prompt("chat_document").format(digest=digest)


class ChatStream:
    """一次对话回复的 token 序列。

    只能迭代一次，不可重启；迭代结束后 status 一定是终止状态，
    FAILED 时 error 保存业务异常；非业务异常被包装为 code=STREAM_FAILED，原异常在 __cause__。
    """

    def __init__(
        self,
        opener: Callable[[RequestGuard], Iterator[str]],
        cancel_event: Optional[threading.Event] = None,
        timeout_seconds: Optional[float] = None,
        log_ctx: Optional[Dict[str, Any]] = None,
    ):
        self._opener = opener
        self._cancel_event = cancel_event
        self._timeout_seconds = timeout_seconds
        self._log_ctx = dict(log_ctx or {})
        self.status = ChatStatus.IDLE
        self.error: Optional[BusinessError] = None
        self._tokens = self._run()

    def __iter__(self) -> "ChatStream":
        return self

    def __next__(self) -> StreamToken:
        return next(self._tokens)

    def close(self) -> None:
        """提前结束读取；未到终止状态时视为取消。"""

        self._tokens.close()
        if not self.status.is_terminal:
            self.status = ChatStatus.CANCELLED

    def _run(self) -> Iterator[StreamToken]:
        start_time = time.time()
        # 总时限从第一次读取开始计算
        guard = RequestGuard(self._cancel_event, self._timeout_seconds)
        self.status = ChatStatus.REQUESTING
        token_count = 0
        source: Optional[Iterator[str]] = None
        try:
            guard.check()
            source = self._opener(guard)
            self.status = ChatStatus.STREAMING
            for text in source:
                token_count += 1
                yield StreamToken(text=text)
        except RequestCancelled:
            self.status = ChatStatus.CANCELLED
            self._log(logging.INFO, "Chat stream cancelled", token_count=token_count)
            yield StreamToken(text="", is_final=True)
            return
        except BusinessError as e:
            self._fail(e, token_count)
            yield StreamToken(text=f"Error: {e.message}", is_final=True)
            return
        except Exception as e:
            # SDK 解析失败、httpx 流错误等同样以错误文本结束，不中断调用方的迭代
            wrapped = BusinessError(code="STREAM_FAILED", message=str(e) or type(e).__name__, cause=type(e).__name__)
            wrapped.__cause__ = e
            self._fail(wrapped, token_count, exc_info=e)
            yield StreamToken(text=f"Error: {wrapped.message}", is_final=True)
            return
        finally:
            # 释放底层连接（提前 close 或失败时）
            close = getattr(source, "close", None)
            if close is not None:
                close()

        self.status = ChatStatus.COMPLETED
        self._log(
            logging.INFO,
            "Chat stream completed",
            token_count=token_count,
            elapsed_seconds=round(time.time() - start_time, 2),
        )
        yield StreamToken(text="", is_final=True)

    def _fail(self, error: BusinessError, token_count: int, exc_info: Any = None) -> None:
        self.status = ChatStatus.FAILED
        self.error = error
        log_event(
            logging.ERROR,
            "Chat stream failed",
            self._log_ctx,
            exc_info=exc_info,
            token_count=token_count,
            code=error.code,
            error=error.message,
        )

    def _log(self, level: int, message: str, **fields: Any) -> None:
        log_event(level, message, self._log_ctx, **fields)


@dataclass
class ChatReply:
    """非流式调用的结果：完整文本 + 终止状态。"""

    text: str
    status: ChatStatus
    error: Optional[BusinessError] = None


class ChatOrchestrator:
    """驱动任一后端生成对话回复。"""

    def __init__(
        self,
        config: Optional[AnalyzeConfig] = None,
        provider_client: Optional[ProviderClient] = None,
    ):
        self._config = config or settings.to_analyze_config()
        self._provider_client = provider_client

    @property
    def config(self) -> AnalyzeConfig:
        return self._config

    def _provider(self) -> ProviderClient:
        if self._provider_client is None:
            self._provider_client = create_provider(self._config)
        return self._provider_client

    def send(
        self,
        user_message: str,
        history: List[ChatMessage],
        document: Optional[Document] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ChatStream:
        """组装 [上下文, *历史, 新消息] 并返回惰性的 ChatStream。

        配置不合法时在这里同步抛出 ConfigError；网络调用在第一次读取时才发生。
        history 按值复制，本方法不保留调用方列表的引用。
        """

        config = self._config.validate()
        req = ChatRequest(
            config=config,
            context=build_context(document),
            history=list(history),
            user_message=user_message,
        )
        provider = self._provider()
        log_ctx = {
            "trace_id": f"tr-{uuid4().hex}",
            "provider": config.provider,
            "model": config.model_id,
            "document_id": document.id if document else None,
            "history_count": len(req.history),
        }
        return ChatStream(
            lambda guard: provider.open_chat_stream(req, guard),
            cancel_event=cancel_event,
            timeout_seconds=config.timeout_seconds,
            log_ctx=log_ctx,
        )

    def chat(
        self,
        user_message: str,
        history: List[ChatMessage],
        document: Optional[Document] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ChatReply:
        """收集整个流，返回完整回复。"""

        stream = self.send(user_message, history, document, cancel_event)
        acc = ChatAccumulator()
        for token in stream:
            acc = acc.add(token)
        return ChatReply(text=acc.text, status=stream.status, error=stream.error)
