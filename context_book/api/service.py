"""对外 API 服务模块。

提供简化的函数接口供上层应用（UI、脚本）调用：分析文本生成文档、与文档对话、列出文档。
"""

import threading
from dataclasses import asdict
from typing import Any, Dict, Iterator, List, Optional

from context_book.agents.analysis_agent import AnalysisAgent
from context_book.agents.chat_agent import ChatOrchestrator
from context_book.agents.chat_session import ChatSession
from context_book.config.settings import settings
from context_book.domain.document import Document, DocumentStore
from context_book.domain.models import AnalyzeConfig, ChatMessage, new_id, now_ms
from context_book.infrastructure.logging.logger import logger
from context_book.infrastructure.storage.json_store import JsonDocumentStore

# 尚未生成文档时的临时会话
DRAFT_SESSION_KEY = "__draft__"

_store: Optional[DocumentStore] = None
_sessions: Dict[str, ChatSession] = {}
_sessions_lock = threading.Lock()


def get_store() -> DocumentStore:
    """获取默认的文档存储实例（单例）。"""
    global _store
    if _store is None:
        _store = JsonDocumentStore(root=settings.storage_root)
    return _store


def analyze_document(
    text: str,
    keep_original: bool = False,
    config: Optional[AnalyzeConfig] = None,
) -> Dict[str, Any]:
    """分析原文并保存为新文档。

    Args:
        text: 原始长文本
        keep_original: 是否在章节中保留原文
        config: Provider 配置（可选，默认取全局配置）

    Returns:
        新文档的字典表示

    Raises:
        ConfigError / NetworkError / ParseError：分析失败时不会保存任何部分结果
    """
    agent = AnalysisAgent(config=config)
    try:
        segments = agent.analyze(text, keep_original=keep_original)
        title = agent.generate_title(text)
    except Exception as e:
        logger.error(f"Analysis failed: {e}", extra={"extra": {
            "provider": agent.config.provider,
            "error": str(e),
        }})
        raise

    # 生成文档前的临时对话并入新文档
    with _sessions_lock:
        draft = _sessions.pop(DRAFT_SESSION_KEY, None)
    now = now_ms()
    doc = Document(
        id=new_id(),
        title=title,
        segments=segments,
        chat_history=draft.history if draft else [],
        created_at=now,
        updated_at=now,
    )
    get_store().save_document(doc)
    return asdict(doc)


def open_session(document_id: Optional[str] = None, config: Optional[AnalyzeConfig] = None) -> ChatSession:
    """获取（或创建）某个文档的会话；同一文档在配置不变时返回同一个 ChatSession。

    传入的 config 与缓存会话的配置不同时，用新配置重建会话并保留已有历史；
    会话正在回答时沿用旧会话。
    """

    key = document_id or DRAFT_SESSION_KEY
    with _sessions_lock:
        session = _sessions.get(key)
        if session is not None and config is not None and config != session.config and not session.busy:
            session = ChatSession(
                ChatOrchestrator(config=config),
                document=session.document,
                history=session.history,
            )
            _sessions[key] = session
        if session is None:
            document = get_store().get_document(document_id) if document_id else None
            session = ChatSession(ChatOrchestrator(config=config), document=document)
            _sessions[key] = session
    return session


def close_session(document_id: Optional[str] = None) -> None:
    """从缓存中移除某个文档（或临时）会话；不存在时什么也不做。"""

    with _sessions_lock:
        _sessions.pop(document_id or DRAFT_SESSION_KEY, None)


def send_message(
    text: str,
    document_id: Optional[str] = None,
    cancel_event: Optional[threading.Event] = None,
    config: Optional[AnalyzeConfig] = None,
) -> Iterator[ChatMessage]:
    """向文档发送一条消息，逐步产出 model 回复的快照；结束后把历史写回存储。"""

    session = open_session(document_id, config=config)
    replies = session.send(text, cancel_event=cancel_event)
    try:
        for message in replies:
            yield message
    finally:
        replies.close()
        if document_id and not session.busy:
            get_store().update_chat_history(document_id, session.history)


def list_documents() -> List[Dict[str, Any]]:
    """列出所有文档（按更新时间倒序）。

    Returns:
        文档列表，每项包含 id, title, segment_count, created_at, updated_at
    """
    return [
        {
            "id": d.id,
            "title": d.title,
            "segment_count": len(d.segments),
            "created_at": d.created_at,
            "updated_at": d.updated_at,
        }
        for d in get_store().list_documents()
    ]


def get_document(document_id: str) -> Dict[str, Any]:
    return asdict(get_store().get_document(document_id))


def delete_document(document_id: str) -> None:
    """删除文档，同时丢弃它的缓存会话。"""

    get_store().delete_document(document_id)
    close_session(document_id)
