"""会话级的对话入口。

一个 ChatSession 对应一段会话历史（绑定某个文档，或尚未生成文档的临时会话）。
send 会先追加用户消息和一条空的 model 占位消息，然后随着 token 到达
不断覆盖占位消息的文本；一个 token 都没收到时（例如请求前就被取消）占位消息会被移除。

同一会话同一时刻只允许一个 send 在进行：历史是“读-改-写”的共享状态，
并发的 send 会互相覆盖更新，所以这里用一把非阻塞的锁，冲突时抛出 ConversationBusyError。
"""

import threading
from dataclasses import replace
from typing import Callable, Iterator, List, Optional

from context_book.agents.chat_agent import ChatOrchestrator
from context_book.domain.document import Document
from context_book.domain.exceptions import ConversationBusyError
from context_book.domain.models import AnalyzeConfig, ChatAccumulator, ChatMessage, ChatStatus, new_id, now_ms


class ChatSession:
    def __init__(
        self,
        orchestrator: ChatOrchestrator,
        document: Optional[Document] = None,
        history: Optional[List[ChatMessage]] = None,
        on_update: Optional[Callable[[List[ChatMessage]], None]] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self._orchestrator = orchestrator
        self._document = document
        if history is None:
            history = list(document.chat_history) if document else []
        self._history: List[ChatMessage] = list(history)
        self._on_update = on_update
        self._clock = clock
        self._lock = threading.Lock()
        self.last_status: ChatStatus = ChatStatus.IDLE

    @property
    def history(self) -> List[ChatMessage]:
        """当前历史的副本。"""
        return list(self._history)

    @property
    def document(self) -> Optional[Document]:
        return self._document

    @property
    def config(self) -> AnalyzeConfig:
        return self._orchestrator.config

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def _next_timestamp(self) -> int:
        ts = self._clock()
        if self._history:
            ts = max(ts, self._history[-1].timestamp)
        return ts

    def send(self, text: str, cancel_event: Optional[threading.Event] = None) -> Iterator[ChatMessage]:
        """发送一条用户消息，逐步产出 model 回复消息的快照。

        锁在第一次读取时获取，在迭代结束（或生成器被关闭）时释放。
        结束后 last_status 保存本次的终止状态。
        """

        if not self._lock.acquire(blocking=False):
            raise ConversationBusyError(
                code="CONVERSATION_BUSY",
                message="Another message is still being answered in this conversation",
            )
        try:
            prior = list(self._history)
            # 配置错误在修改历史之前抛出
            stream = self._orchestrator.send(text, prior, self._document, cancel_event)
            user_msg = ChatMessage(id=new_id(), role="user", text=text, timestamp=self._next_timestamp())
            self._history.append(user_msg)
            reply = ChatMessage(id=new_id(), role="model", text="", timestamp=self._next_timestamp())
            self._history.append(reply)
            self._publish()
            self.last_status = ChatStatus.REQUESTING

            acc = ChatAccumulator()
            try:
                for token in stream:
                    acc = acc.add(token)
                    if not token.text:
                        continue
                    reply = replace(reply, text=acc.text)
                    self._replace_last(reply)
                    self._publish()
                    yield reply
            finally:
                stream.close()
                self.last_status = stream.status
                # 没有收到任何文本的占位消息不留在历史里
                if not acc.text:
                    self._remove(reply.id)
                    self._publish()
        finally:
            self._lock.release()

    def _replace_last(self, message: ChatMessage) -> None:
        for i in range(len(self._history) - 1, -1, -1):
            if self._history[i].id == message.id:
                self._history[i] = message
                return

    def _remove(self, message_id: str) -> None:
        self._history = [m for m in self._history if m.id != message_id]

    def _publish(self) -> None:
        if self._on_update is not None:
            self._on_update(list(self._history))
