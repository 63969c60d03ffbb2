"""把章节导出为可复制的纯文本（目录 / 摘要 / 原文）。"""

from typing import Iterable, List, Optional

from .models import Segment

SECTION_SEPARATOR = "\n\n---\n\n"


def _select(segments: List[Segment], ids: Optional[Iterable[str]]) -> List[Segment]:
    if ids is None:
        return list(segments)
    wanted = set(ids)
    return [s for s in segments if s.id in wanted]


def render_toc(segments: List[Segment]) -> str:
    return "\n".join(f"{i}. {s.title}" for i, s in enumerate(segments, start=1))


def render_summaries(segments: List[Segment], ids: Optional[Iterable[str]] = None) -> str:
    """按文档顺序导出选中章节的标题与摘要；ids 为 None 时导出全部。"""

    return SECTION_SEPARATOR.join(
        f"Title: {s.title}\nSummary: {s.summary}" for s in _select(segments, ids)
    )


def render_originals(segments: List[Segment], ids: Optional[Iterable[str]] = None) -> str:
    """导出选中章节的原文；摘要模式下 content 为空的章节会被跳过。"""

    return SECTION_SEPARATOR.join(s.content for s in _select(segments, ids) if s.content)
