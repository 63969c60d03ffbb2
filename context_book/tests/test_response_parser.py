import json

import pytest

from context_book.domain.exceptions import NotArrayError, ParseError
from context_book.providers.response_parser import (
    extract_json_array,
    parse_strict_array,
    sanitize_records,
)


@pytest.mark.parametrize(
    "records",
    [
        [],
        [{"title": "A", "summary": "B"}],
        [{"title": "第一章", "summary": "摘要", "content": "原文\n第二行"}, {"title": "T2", "summary": "S2"}],
    ],
)
def test_fenced_array_round_trip(records):
    text = "```json\n" + json.dumps(records, ensure_ascii=False) + "\n```"
    assert extract_json_array(text) == records


def test_unwraps_first_array_property():
    text = '{"chapters":[{"title":"A","summary":"B"}]}'
    assert extract_json_array(text) == [{"title": "A", "summary": "B"}]


def test_first_array_property_in_stored_order():
    text = '{"meta": {"n": 2}, "first": [1], "second": [2]}'
    assert extract_json_array(text) == [1]


def test_prose_around_fenced_block_is_discarded():
    text = '```\n[{"title": "A", "summary": "B"}]\n```\nHope this helps!'
    assert extract_json_array(text) == [{"title": "A", "summary": "B"}]


def test_object_without_array_is_not_array_error():
    with pytest.raises(NotArrayError) as exc:
        extract_json_array('{"title": "A", "summary": "B"}')
    assert exc.value.code == "NOT_ARRAY"


def test_invalid_json_is_parse_error():
    with pytest.raises(ParseError):
        extract_json_array("Sure! Here are the chapters: ...")


def test_strict_array_rejects_objects_and_empty():
    with pytest.raises(ParseError):
        parse_strict_array('{"chapters": []}')
    with pytest.raises(ParseError):
        parse_strict_array("")
    assert parse_strict_array('[{"title": "A"}]') == [{"title": "A"}]


def test_sanitize_fills_placeholders():
    records = sanitize_records([{"content": "x"}, {"title": "", "summary": "S"}, "garbage"], keep_original=True)
    assert [(r.title, r.summary) for r in records] == [
        ("No Title", "No Summary"),
        ("No Title", "S"),
        ("No Title", "No Summary"),
    ]
    assert records[0].content == "x"
    assert records[1].content == ""


def test_sanitize_drops_content_in_summary_mode():
    records = sanitize_records(
        [{"title": "A", "summary": "B", "content": "verbatim"}, {"title": "C", "summary": "D"}],
        keep_original=False,
    )
    assert all(r.content == "" for r in records)
