"""Context Book 顶层包。

把长文本（聊天记录、访谈稿、长文章）整理成带标题与摘要的“书”，
并支持基于章节结构的对话。两类后端：

- structured：Gemini，Schema 约束的 JSON 输出。
- completion：任意 OpenAI 兼容的 chat/completions 服务。
"""

from context_book.agents.analysis_agent import AnalysisAgent, SegmentAssembler
from context_book.agents.chat_agent import ChatOrchestrator, ChatStream
from context_book.agents.chat_session import ChatSession

__all__ = ["AnalysisAgent", "SegmentAssembler", "ChatOrchestrator", "ChatStream", "ChatSession"]
