"""文本分析流程：原文 -> 选择后端 -> 原始章节记录 -> 组装为 Segment。

同时提供文档标题生成。分析路径上的 ConfigError / NetworkError / ParseError
都是致命错误：整次调用失败，不返回部分章节。
"""

import logging
import time
from typing import Callable, Dict, Any, List, Optional
from uuid import uuid4

from context_book.config.settings import settings
from context_book.domain.exceptions import BusinessError
from context_book.domain.models import AnalyzeConfig, RawSegment, Segment, new_id
from context_book.infrastructure.logging.logger import log_event
from context_book.prompts import load_prompt
from context_book.providers import ProviderClient, create_provider

UNTITLED = "未命名文档"
FALLBACK_TITLE = "新文档"


class SegmentAssembler:
    """为每条记录生成新的 id，严格保持输入顺序（不排序、不去重、不合并同名标题）。"""

    def __init__(self, id_factory: Callable[[], str] = new_id):
        self._id_factory = id_factory

    def assemble(self, records: List[RawSegment]) -> List[Segment]:
        return [
            Segment(
                id=self._id_factory(),
                title=r.title,
                summary=r.summary,
                content=r.content,
            )
            for r in records
        ]


class AnalysisAgent:
    """把一段长文本整理为有序的章节列表。"""

    def __init__(
        self,
        config: Optional[AnalyzeConfig] = None,
        provider_client: Optional[ProviderClient] = None,
        assembler: Optional[SegmentAssembler] = None,
    ):
        self._config = config or settings.to_analyze_config()
        self._provider_client = provider_client
        self._assembler = assembler or SegmentAssembler()

    @property
    def config(self) -> AnalyzeConfig:
        return self._config

    def _provider(self) -> ProviderClient:
        if self._provider_client is None:
            self._provider_client = create_provider(self._config)
        return self._provider_client

    def analyze(self, text: str, keep_original: Optional[bool] = None) -> List[Segment]:
        """分析原文并返回章节。

        Args:
            text: 原始长文本（聊天记录、访谈稿、长文章等）
            keep_original: 是否保留原文；为 None 时使用配置中的值

        Returns:
            有序的 Segment 列表；空白输入直接返回空列表，不发请求。
        """

        if not text or not text.strip():
            return []
        config = self._config
        if keep_original is not None:
            config = config.with_keep_original(keep_original)
        config.validate()

        start_time = time.time()
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "provider": config.provider,
            "model": config.model_id,
        }
        log_event(
            logging.INFO,
            "Calling provider (analyze)",
            log_ctx,
            text_chars=len(text),
            keep_original=config.keep_original,
        )
        try:
            records = self._provider().analyze(text, config)
        except BusinessError as e:
            log_event(logging.ERROR, "Analysis failed", log_ctx, code=e.code, error=e.message)
            raise
        segments = self._assembler.assemble(records)
        log_event(
            logging.INFO,
            "Analysis completed",
            log_ctx,
            segment_count=len(segments),
            elapsed_seconds=round(time.time() - start_time, 2),
        )
        return segments

    def generate_title(self, text: str) -> str:
        """用文本开头生成一个 3-5 词的中文标题。

        模型返回空内容时用“未命名文档”，任何错误都退回“新文档”，不向上抛出。
        """

        snippet = text[: settings.title_snippet_chars]
        prompt = load_prompt("title")
        if self._config.provider == "structured":
            full_prompt = f"{prompt}: {snippet}"
        else:
            full_prompt = f"{prompt}\n\nText: {snippet}"
        try:
            title = self._provider().complete_text(full_prompt, self._config)
        except BusinessError as e:
            log_event(logging.WARNING, "Title generation failed", {"provider": self._config.provider}, error=e.message)
            return FALLBACK_TITLE
        return title or UNTITLED
