"""SSE 增量解码器。

OpenAI 兼容服务的流式响应是以换行分隔的 SSE 帧：

    data: {"choices":[{"delta":{"content":"..."}}]}

    data: [DONE]

传输层可能在任意字节处切分（一行、一个 JSON 对象，甚至一个 UTF-8 字符的中间），
StreamDecoder 只处理完整的行，把不完整的尾部留在缓冲区等待下一个分片，
因此解码结果与分片方式无关。本模块不依赖网络，是一个纯状态机。
"""

import codecs
import json
from typing import Callable, Iterable, Iterator, List, Optional, Union

from context_book.domain.exceptions import StreamProtocolError

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

Chunk = Union[str, bytes]


class StreamDecoder:
    """把原始分片解码为文本增量（token）。

    - feed(chunk): 追加分片，返回本次新得到的 token 列表。
    - finish(): 传输结束时调用，处理缓冲区里最后一行（没有换行结尾的情况）。
    - done: 收到 [DONE] 之后为 True，之后的分片全部忽略。
    - skipped_frames: 被跳过的无法解析的帧（StreamProtocolError），不会中断整个流。
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.done = False
        self.skipped_frames: List[StreamProtocolError] = []

    def feed(self, chunk: Chunk) -> List[str]:
        if self.done:
            return []
        if isinstance(chunk, bytes):
            chunk = self._utf8.decode(chunk)
        self._buffer += chunk
        lines = self._buffer.split("\n")
        # 最后一段可能是半行，留到下一个分片
        self._buffer = lines.pop()
        return self._process_lines(lines)

    def finish(self) -> List[str]:
        if self.done:
            return []
        tail = self._buffer + self._utf8.decode(b"", final=True)
        self._buffer = ""
        return self._process_lines([tail])

    def _process_lines(self, lines: List[str]) -> List[str]:
        tokens: List[str] = []
        for line in lines:
            trimmed = line.strip()
            # 空行、注释(":")、心跳以及其他字段一律丢弃
            if not trimmed.startswith(DATA_PREFIX):
                continue
            data_str = trimmed[len(DATA_PREFIX):].strip()
            if data_str == DONE_SENTINEL:
                self.done = True
                self._buffer = ""
                break
            token = self._parse_frame(data_str)
            if token:
                tokens.append(token)
        return tokens

    def _parse_frame(self, data_str: str) -> Optional[str]:
        try:
            payload = json.loads(data_str)
        except json.JSONDecodeError as e:
            self.skip_unparseable_frame(data_str, str(e))
            return None
        return extract_delta_content(payload)

    def skip_unparseable_frame(self, data_str: str, reason: str) -> None:
        """记录无法解析的帧，解码继续。"""

        self.skipped_frames.append(
            StreamProtocolError(code="MALFORMED_SSE_FRAME", message=reason, frame=data_str[:200])
        )


def extract_delta_content(payload: object) -> Optional[str]:
    """取出 choices[0].delta.content；结构不符时返回 None。"""

    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if isinstance(content, str) and content:
        return content
    return None


def iter_tokens(
    chunks: Iterable[Chunk],
    decoder: Optional[StreamDecoder] = None,
    check: Optional[Callable[[], None]] = None,
) -> Iterator[str]:
    """把分片迭代器包装为惰性的 token 迭代器。

    check 会在每个分片和每个 token 之前调用，可以通过抛出异常实现取消或超时。
    遇到 [DONE] 后立即停止读取。
    """

    decoder = decoder or StreamDecoder()
    for chunk in chunks:
        if check:
            check()
        for token in decoder.feed(chunk):
            if check:
                check()
            yield token
        if decoder.done:
            return
    for token in decoder.finish():
        yield token
