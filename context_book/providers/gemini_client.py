"""Gemini Provider 适配器（structured 后端）。

Gemini 支持把 JSON Schema 作为请求参数（response_schema），
所以分析时直接要求返回一个符合 Schema 的 JSON 数组：

    ARRAY<OBJECT{title: STRING, summary: STRING, content?: STRING}>

content 只有在“保留原文”模式下才出现在 Schema 中。
对话时使用 SDK 的流式接口，逐个产出 chunk.text。
"""

from typing import Any, Dict, Iterable, Iterator, List, Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from context_book.config.settings import settings
from context_book.domain.exceptions import ApiError, ConfigError, NetworkError, RateLimitError
from context_book.domain.models import AnalyzeConfig, ChatRequest, RawSegment
from context_book.infrastructure.logging.logger import logger
from context_book.prompts import build_analysis_prompt, wrap_source_text
from context_book.providers.base import RequestGuard
from context_book.providers.response_parser import parse_strict_array, sanitize_records


def build_segment_schema(keep_original: bool) -> types.Schema:
    """构造章节数组的 response_schema。"""

    properties: Dict[str, types.Schema] = {
        "title": types.Schema(type=types.Type.STRING, description="Chinese title."),
        "summary": types.Schema(type=types.Type.STRING, description="Chinese summary."),
    }
    required = ["title", "summary"]
    if keep_original:
        properties["content"] = types.Schema(type=types.Type.STRING, description="Original text.")
        required.append("content")
    return types.Schema(
        type=types.Type.ARRAY,
        items=types.Schema(type=types.Type.OBJECT, properties=properties, required=required),
    )


class GeminiClient:
    """Gemini 客户端实现。

    client 参数允许注入一个已经构造好的 genai.Client（或测试替身）；
    为空时按配置懒加载。
    """

    name = "structured"

    def __init__(self, cfg=settings, client: Optional[Any] = None):
        self._settings = cfg
        self._client = client

    def _get_client(self, config: AnalyzeConfig):
        if self._client is None:
            api_key = config.api_key or getattr(self._settings, "google_api_key", None)
            try:
                self._client = genai.Client(
                    api_key=api_key,
                    http_options=types.HttpOptions(timeout=int(self._settings.http_timeout * 1000)),
                )
            except ValueError as e:
                # SDK 在没有任何 API Key 时直接抛 ValueError
                raise ConfigError(code="MISSING_API_KEY", message=str(e))
        return self._client

    # ---- 非流式 ----

    def analyze(self, text: str, config: AnalyzeConfig) -> List[RawSegment]:
        config.validate()
        prompt = build_analysis_prompt(config.custom_prompt, config.keep_original)
        contents = [
            types.Content(
                role="user",
                parts=[
                    types.Part(text=prompt),
                    types.Part(text=f"\n\n{wrap_source_text(text)}"),
                ],
            )
        ]
        gen_config = types.GenerateContentConfig(
            temperature=config.temperature,
            response_mime_type="application/json",
            response_schema=build_segment_schema(config.keep_original),
        )
        client = self._get_client(config)
        try:
            response = client.models.generate_content(
                model=config.model_id,
                contents=contents,
                config=gen_config,
            )
        except genai_errors.APIError as e:
            raise self._api_error(e)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))

        items = parse_strict_array(response.text or "")
        # Schema 在摘要模式下不含 content，但仍然强制置空
        return sanitize_records(items, config.keep_original)

    def complete_text(self, prompt: str, config: AnalyzeConfig) -> str:
        config.validate()
        client = self._get_client(config)
        try:
            response = client.models.generate_content(model=config.model_id, contents=prompt)
        except genai_errors.APIError as e:
            raise self._api_error(e)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        return (response.text or "").strip()

    # ---- 流式 ----

    def open_chat_stream(self, req: ChatRequest, guard: RequestGuard) -> Iterator[str]:
        config = req.config.validate()
        guard.check()
        contents = [types.Content(role="user", parts=[types.Part(text=req.context)])]
        for m in req.history:
            if not m.text:
                continue
            contents.append(types.Content(role=m.role, parts=[types.Part(text=m.text)]))
        contents.append(types.Content(role="user", parts=[types.Part(text=req.user_message)]))

        client = self._get_client(config)
        try:
            stream = client.models.generate_content_stream(
                model=config.model_id,
                contents=contents,
                config=types.GenerateContentConfig(temperature=config.temperature),
            )
        except genai_errors.APIError as e:
            raise self._api_error(e)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        logger.info(
            "Opened structured stream",
            extra={"extra": {"provider": self.name, "model": config.model_id}},
        )
        return self._iter_stream(stream, guard)

    def _iter_stream(self, stream: Iterable[Any], guard: RequestGuard) -> Iterator[str]:
        try:
            for chunk in stream:
                guard.check()
                text = getattr(chunk, "text", None)
                if text:
                    yield text
        except genai_errors.APIError as e:
            raise self._api_error(e)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))

    @staticmethod
    def _api_error(e: "genai_errors.APIError") -> ApiError:
        status = getattr(e, "code", None) or 500
        message = f"Provider Error ({status}): {getattr(e, 'message', None) or e}"
        if status == 429:
            return RateLimitError(code="RATE_LIMIT", message=message, http_status=status)
        return ApiError(code="API_ERROR", message=message, http_status=status)
