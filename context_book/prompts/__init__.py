"""提示词加载工具。

按语言(locale) 从 prompts/zh 目录读取提示词模板：

- analyze_system: 文本分章的默认系统提示词（可被用户的 custom_prompt 覆盖）。
- chat_document / chat_fallback: 对话时的上下文前言。
- title: 文档标题生成提示词。
"""

from functools import lru_cache
from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent


@lru_cache(maxsize=None)
def load_prompt(name: str, locale: str = "zh") -> str:
    """根据名称和语言加载提示词文本（去掉首尾空白）。"""

    fname = PROMPTS_DIR / locale / f"{name}.md"
    return fname.read_text(encoding="utf-8").strip()


def build_analysis_prompt(custom_prompt: str, keep_original: bool) -> str:
    """拼接最终的分析提示词：用户提示词 + 是否保留原文的要求 + JSON 数组约束。"""

    requirement = (
        "Requirement: Include 'content' field with original text."
        if keep_original
        else "Requirement: Do NOT include full content, only summaries."
    )
    base = custom_prompt.strip() or load_prompt("analyze_system")
    return f"{base}\n\n{requirement}\n\nThe output MUST be a valid JSON array of objects."


def wrap_source_text(text: str) -> str:
    return f"[START OF TEXT]\n{text}\n[END OF TEXT]"
