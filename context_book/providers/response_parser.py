"""模型响应的 JSON 解析与章节记录清洗。

两类 Provider 的约束强度不同：

- structured：Schema 约束，整个响应必须就是一个 JSON 数组（parse_strict_array）。
- completion：只靠提示词约束，JSON 可能被包在 markdown 代码块里、
  挂在任意包装 key 下（例如 {"chapters": [...]}），需要走兜底链（extract_json_array）。
"""

import json
import logging
import re
from typing import Any, List

from context_book.domain.exceptions import NotArrayError, ParseError
from context_book.domain.models import RawSegment

logger = logging.getLogger("context_book.providers.response_parser")

# 第一个 ```json ... ``` 或 ``` ... ``` 代码块
_FENCED_BLOCK_RE = re.compile(r"```(?:json)?([\s\S]*?)```")

NO_TITLE = "No Title"
NO_SUMMARY = "No Summary"


def strip_code_fence(text: str) -> str:
    """若文本以代码块标记开头，只保留第一个代码块内的内容，丢弃前后的说明文字。"""

    cleaned = text.strip()
    if cleaned.startswith("```"):
        match = _FENCED_BLOCK_RE.search(cleaned)
        if match and match.group(1).strip():
            cleaned = match.group(1).strip()
    return cleaned


def extract_json(text: str) -> Any:
    """去掉代码块后解析 JSON，失败时抛出 ParseError。"""

    cleaned = strip_code_fence(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ParseError(code="INVALID_JSON", message=f"Response is not valid JSON: {e}", raw=cleaned[:200])


def extract_json_array(text: str) -> List[Any]:
    """兜底解析链：代码块 -> JSON -> 第一个数组属性 -> NotArrayError。

    只在对象自身的属性中按存储顺序查找，不会递归进入嵌套对象。
    """

    parsed = extract_json(text)
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        for key, value in parsed.items():
            if isinstance(value, list):
                logger.info("Unwrapped JSON array from key %r", key)
                return value
    raise NotArrayError(
        code="NOT_ARRAY",
        message="Model did not return a JSON Array. Please tweak the model or prompt.",
    )


def parse_strict_array(text: str) -> List[Any]:
    """structured 模式：整个响应必须是一个 JSON 数组。"""

    if not text or not text.strip():
        raise ParseError(code="EMPTY_RESPONSE", message="No response from AI")
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(code="INVALID_JSON", message=f"Response is not valid JSON: {e}", raw=text[:200])
    if not isinstance(parsed, list):
        raise ParseError(code="NOT_ARRAY", message="Structured response is not a JSON array")
    return parsed


def _text_field(item: Any, key: str) -> str:
    if not isinstance(item, dict):
        return ""
    value = item.get(key)
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def sanitize_records(items: List[Any], keep_original: bool) -> List[RawSegment]:
    """把原始记录清洗为 RawSegment。

    缺失的 title/summary 用占位文本替代，而不是让整批失败；
    非保留原文模式下 content 一律置空，不管模型返回了什么。
    """

    records: List[RawSegment] = []
    for item in items:
        records.append(
            RawSegment(
                title=_text_field(item, "title") or NO_TITLE,
                summary=_text_field(item, "summary") or NO_SUMMARY,
                content=_text_field(item, "content") if keep_original else "",
            )
        )
    return records
