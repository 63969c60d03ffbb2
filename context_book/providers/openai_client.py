"""OpenAI 兼容 Provider 适配器。

适用于所有实现了 chat/completions 端点的服务（OpenAI、DeepSeek、GLM、Kimi、Groq 等）：
- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>

本模块负责：

1. 分析：system 提示词 + user 原文，非流式请求，带 response_format=json_object。
   JSON 结构只靠提示词约束，返回的 content 需要走兜底解析链。
2. 对话：stream=True，把响应字节流交给 StreamDecoder 解码为文本增量。
3. 把网络错误 / 非 2xx 状态统一包装为 NetworkError / ApiError。
"""

from typing import Any, Dict, Iterator, List

import httpx

from context_book.config.settings import settings
from context_book.domain.exceptions import ApiError, NetworkError, ParseError, RateLimitError
from context_book.domain.models import AnalyzeConfig, ChatRequest, RawSegment
from context_book.infrastructure.logging.logger import logger
from context_book.prompts import build_analysis_prompt, wrap_source_text
from context_book.providers.base import RequestGuard
from context_book.providers.response_parser import extract_json_array, sanitize_records
from context_book.providers.sse import StreamDecoder, iter_tokens


class OpenAICompatibleClient:
    """OpenAI 兼容后端（completion）的客户端实现。"""

    name = "completion"

    def __init__(self, cfg=settings):
        # Settings 里包含 http 超时等配置
        self._settings = cfg

    # ---- 非流式 ----

    def analyze(self, text: str, config: AnalyzeConfig) -> List[RawSegment]:
        """把原文拆分为章节记录。

        步骤：
        1. 校验配置（缺少 API Key 时在发请求前失败）。
        2. 构造 system/user 两条消息与请求 payload。
        3. 发送请求并捕获网络错误/非 2xx。
        4. 从 message.content 中解析 JSON 数组并清洗字段。
        """

        config.validate()
        prompt = build_analysis_prompt(config.custom_prompt, config.keep_original)
        payload = {
            "model": config.model_id,
            "messages": [
                {"role": "system", "content": prompt},
                {"role": "user", "content": wrap_source_text(text)},
            ],
            "temperature": config.temperature,
            "response_format": {"type": "json_object"},
        }
        data = self._post(config, payload)
        content = self._message_content(data)
        if not content:
            raise ParseError(code="EMPTY_RESPONSE", message="Empty response from OpenAI provider")
        items = extract_json_array(content)
        return sanitize_records(items, config.keep_original)

    def complete_text(self, prompt: str, config: AnalyzeConfig) -> str:
        config.validate()
        payload = {
            "model": config.model_id,
            "messages": [{"role": "user", "content": prompt}],
        }
        data = self._post(config, payload)
        return (self._message_content(data) or "").strip()

    # ---- 流式 ----

    def open_chat_stream(self, req: ChatRequest, guard: RequestGuard) -> Iterator[str]:
        """发起流式请求；状态码检查通过后返回 token 迭代器。"""

        config = req.config.validate()
        guard.check()
        payload = {
            "model": config.model_id,
            "messages": self._chat_messages(req),
            "temperature": config.temperature,
            "stream": True,
        }
        client = httpx.Client(timeout=self._settings.http_timeout, trust_env=False)
        try:
            request = client.build_request(
                "POST",
                self._endpoint(config),
                json=payload,
                headers=self._headers(config),
            )
            resp = client.send(request, stream=True)
        except httpx.RequestError as e:
            client.close()
            raise NetworkError(code="NETWORK_ERROR", message=str(e))

        if not 200 <= resp.status_code < 300:
            try:
                body = resp.read().decode("utf-8", errors="replace")
            finally:
                resp.close()
                client.close()
            raise self._status_error(resp.status_code, body)

        logger.info(
            "Opened completion stream",
            extra={"extra": {"provider": self.name, "model": config.model_id}},
        )
        return self._iter_stream(client, resp, guard)

    def _iter_stream(self, client: httpx.Client, resp: httpx.Response, guard: RequestGuard) -> Iterator[str]:
        decoder = StreamDecoder()
        try:
            for token in iter_tokens(resp.iter_bytes(), decoder=decoder, check=guard.check):
                yield token
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        finally:
            if decoder.skipped_frames:
                logger.warning(
                    "Skipped unparseable SSE frames",
                    extra={"extra": {"provider": self.name, "count": len(decoder.skipped_frames)}},
                )
            resp.close()
            client.close()

    # ---- 辅助方法 ----

    @staticmethod
    def _endpoint(config: AnalyzeConfig) -> str:
        base = (config.base_url or "").rstrip("/")
        return f"{base}/chat/completions"

    @staticmethod
    def _headers(config: AnalyzeConfig) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {config.api_key}",
        }

    def _post(self, config: AnalyzeConfig, payload: Dict[str, Any]) -> Dict[str, Any]:
        timeout = config.timeout_seconds or self._settings.http_timeout
        try:
            with httpx.Client(timeout=timeout, trust_env=False) as client:
                resp = client.post(
                    self._endpoint(config),
                    json=payload,
                    headers=self._headers(config),
                )
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        if not 200 <= resp.status_code < 300:
            raise self._status_error(resp.status_code, resp.text)
        try:
            return resp.json()
        except ValueError as e:
            raise ParseError(code="INVALID_JSON", message=f"Provider returned a non-JSON body: {e}")

    @staticmethod
    def _status_error(status_code: int, body: str) -> ApiError:
        message = f"Provider Error ({status_code}): {body}"
        if status_code == 429:
            # 限流错误交给上层决定是否重试
            return RateLimitError(code="RATE_LIMIT", message=message, http_status=status_code, body=body)
        return ApiError(code="API_ERROR", message=message, http_status=status_code, body=body)

    @staticmethod
    def _message_content(data: Any) -> str:
        """取出 choices[0].message.content，缺失时返回空串。"""

        if not isinstance(data, dict):
            return ""
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return ""
        message = choices[0].get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        return content if isinstance(content, str) else ""

    @staticmethod
    def _chat_messages(req: ChatRequest) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": req.context}]
        # 空文本的历史消息（旧数据里被中断的回复）不发送
        for m in req.history:
            if not m.text:
                continue
            # OpenAI 协议没有 model 角色
            role = "assistant" if m.role == "model" else "user"
            messages.append({"role": role, "content": m.text})
        messages.append({"role": "user", "content": req.user_message})
        return messages
