import pytest

from context_book.domain.exceptions import RequestCancelled
from context_book.providers.sse import StreamDecoder, iter_tokens


HI_STREAM = b'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\ndata: [DONE]\n\n'


def _decode(chunks):
    decoder = StreamDecoder()
    tokens = []
    for chunk in chunks:
        tokens.extend(decoder.feed(chunk))
        if decoder.done:
            break
    tokens.extend(decoder.finish())
    return tokens, decoder


def test_single_frame_then_done():
    tokens, decoder = _decode([HI_STREAM])
    assert tokens == ["Hi"]
    assert decoder.done


@pytest.mark.parametrize("cut", range(1, len(HI_STREAM)))
def test_split_at_every_byte_boundary(cut):
    tokens, decoder = _decode([HI_STREAM[:cut], HI_STREAM[cut:]])
    assert tokens == ["Hi"]
    assert decoder.done


def test_one_byte_per_chunk():
    chunks = [HI_STREAM[i:i + 1] for i in range(len(HI_STREAM))]
    tokens, _ = _decode(chunks)
    assert tokens == ["Hi"]


def test_multibyte_character_split_across_chunks():
    raw = 'data: {"choices":[{"delta":{"content":"你好"}}]}\n\n'.encode("utf-8")
    cut = raw.index("你".encode("utf-8")) + 1
    tokens, _ = _decode([raw[:cut], raw[cut:]])
    assert tokens == ["你好"]


def test_malformed_frame_is_skipped_and_recorded():
    stream = (
        'data: {"choices":[{"delta":{"content":"A"}}]}\n\n'
        "data: not-json\n\n"
        'data: {"choices":[{"delta":{"content":"B"}}]}\n\n'
    )
    tokens, decoder = _decode([stream])
    assert tokens == ["A", "B"]
    assert len(decoder.skipped_frames) == 1
    assert decoder.skipped_frames[0].code == "MALFORMED_SSE_FRAME"


def test_non_data_lines_and_empty_deltas_are_ignored():
    stream = (
        ": keep-alive\n\n"
        "event: ping\n"
        'data: {"choices":[{"delta":{"role":"assistant"}}]}\n\n'
        'data: {"choices":[{"delta":{"content":""}}]}\n\n'
        'data: {"choices":[{"delta":{"content":"ok"}}]}\n\n'
    )
    tokens, decoder = _decode([stream])
    assert tokens == ["ok"]
    assert decoder.skipped_frames == []


def test_nothing_after_done_sentinel():
    decoder = StreamDecoder()
    first = decoder.feed('data: {"choices":[{"delta":{"content":"a"}}]}\ndata: [DONE]\n')
    later = decoder.feed('data: {"choices":[{"delta":{"content":"b"}}]}\n')
    assert first == ["a"]
    assert later == []
    assert decoder.finish() == []


def test_finish_flushes_unterminated_last_line():
    decoder = StreamDecoder()
    assert decoder.feed('data: {"choices":[{"delta":{"content":"tail"}}]}') == []
    assert decoder.finish() == ["tail"]


def test_iter_tokens_stops_reading_after_done():
    pulled = []

    def chunks():
        for c in ['data: {"choices":[{"delta":{"content":"x"}}]}\n', "data: [DONE]\n", "never"]:
            pulled.append(c)
            yield c

    assert list(iter_tokens(chunks())) == ["x"]
    assert "never" not in pulled


def test_iter_tokens_check_can_abort():
    calls = {"n": 0}

    def check():
        calls["n"] += 1
        if calls["n"] > 1:
            raise RequestCancelled(code="CANCELLED", message="stop")

    frames = [
        'data: {"choices":[{"delta":{"content":"1"}}]}\n',
        'data: {"choices":[{"delta":{"content":"2"}}]}\n',
    ]
    seen = []
    with pytest.raises(RequestCancelled):
        for token in iter_tokens(frames, check=check):
            seen.append(token)
    assert seen == []
