import httpx
import pytest

from context_book.domain.exceptions import (
    ApiError,
    ConfigError,
    NetworkError,
    NotArrayError,
    ParseError,
    RateLimitError,
)
from context_book.domain.models import AnalyzeConfig, ChatMessage, ChatRequest
from context_book.providers.base import RequestGuard
from context_book.providers.openai_client import OpenAICompatibleClient


class SettingsStub:
    http_timeout = 1.0


def _config(**overrides):
    values = dict(
        provider="completion",
        temperature=0.3,
        custom_prompt="Split the text into chapters.",
        model_id="deepseek-chat",
        base_url="https://api.deepseek.com/",
        api_key="sk-test",
        keep_original=False,
    )
    values.update(overrides)
    return AnalyzeConfig(**values)


class Resp:
    def __init__(self, status_code=200, data=None, text=""):
        self.status_code = status_code
        self._data = data
        self.text = text

    def json(self):
        return self._data


class StreamResp:
    def __init__(self, status_code=200, chunks=(), body=b""):
        self.status_code = status_code
        self._chunks = list(chunks)
        self._body = body
        self.closed = False

    def iter_bytes(self):
        for chunk in self._chunks:
            yield chunk

    def read(self):
        return self._body

    def close(self):
        self.closed = True


def _fake_client(captured, post_response=None, stream_response=None, error=None):
    class Client:
        def __init__(self, *a, **kw):
            captured["client_kwargs"] = kw

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, url, json=None, headers=None, **_):
            if error:
                raise error
            captured["url"] = url
            captured["payload"] = json
            captured["headers"] = headers
            return post_response

        def build_request(self, method, url, json=None, headers=None, **_):
            return {"method": method, "url": url, "json": json, "headers": headers}

        def send(self, request, stream=False):
            if error:
                raise error
            captured["request"] = request
            captured["stream"] = stream
            return stream_response

        def close(self):
            captured["closed"] = True

    return Client


def _content_response(content):
    return Resp(data={"choices": [{"message": {"role": "assistant", "content": content}}]})


def test_analyze_payload_and_headers(monkeypatch):
    captured = {}
    content = '[{"title": "A", "summary": "B", "content": "dropped"}]'
    monkeypatch.setattr("httpx.Client", _fake_client(captured, post_response=_content_response(content)))

    records = OpenAICompatibleClient(SettingsStub()).analyze("raw text", _config())

    assert captured["url"] == "https://api.deepseek.com/chat/completions"
    assert captured["headers"]["Authorization"] == "Bearer sk-test"
    assert captured["headers"]["Content-Type"] == "application/json"
    payload = captured["payload"]
    assert payload["model"] == "deepseek-chat"
    assert payload["temperature"] == 0.3
    assert payload["response_format"] == {"type": "json_object"}
    assert [m["role"] for m in payload["messages"]] == ["system", "user"]
    assert payload["messages"][0]["content"].startswith("Split the text into chapters.")
    assert payload["messages"][1]["content"] == "[START OF TEXT]\nraw text\n[END OF TEXT]"
    assert len(records) == 1
    assert records[0].title == "A"
    assert records[0].content == ""


def test_analyze_unwraps_fenced_wrapper_object(monkeypatch):
    captured = {}
    content = '```json\n{"segments": [{"title": "T1", "summary": "S1", "content": "C1"}, {"summary": "S2"}]}\n```'
    monkeypatch.setattr("httpx.Client", _fake_client(captured, post_response=_content_response(content)))

    records = OpenAICompatibleClient(SettingsStub()).analyze("x", _config(keep_original=True))

    assert [(r.title, r.summary, r.content) for r in records] == [
        ("T1", "S1", "C1"),
        ("No Title", "S2", ""),
    ]


def test_analyze_not_array(monkeypatch):
    captured = {}
    monkeypatch.setattr("httpx.Client", _fake_client(captured, post_response=_content_response('{"title": "A"}')))
    with pytest.raises(NotArrayError):
        OpenAICompatibleClient(SettingsStub()).analyze("x", _config())


def test_analyze_missing_api_key_fails_before_network(monkeypatch):
    class Client:
        def __init__(self, *a, **kw):
            raise AssertionError("network must not be touched")

    monkeypatch.setattr("httpx.Client", Client)
    with pytest.raises(ConfigError) as exc:
        OpenAICompatibleClient(SettingsStub()).analyze("x", _config(api_key=""))
    assert exc.value.code == "MISSING_API_KEY"


def test_analyze_http_error_carries_status_and_body(monkeypatch):
    captured = {}
    monkeypatch.setattr("httpx.Client", _fake_client(captured, post_response=Resp(status_code=401, text="bad key")))
    with pytest.raises(ApiError) as exc:
        OpenAICompatibleClient(SettingsStub()).analyze("x", _config())
    assert exc.value.http_status == 401
    assert exc.value.message == "Provider Error (401): bad key"


def test_analyze_rate_limit(monkeypatch):
    captured = {}
    monkeypatch.setattr("httpx.Client", _fake_client(captured, post_response=Resp(status_code=429, text="slow down")))
    with pytest.raises(RateLimitError):
        OpenAICompatibleClient(SettingsStub()).analyze("x", _config())


def test_analyze_transport_error(monkeypatch):
    captured = {}
    error = httpx.ConnectError("connection refused")
    monkeypatch.setattr("httpx.Client", _fake_client(captured, error=error))
    with pytest.raises(NetworkError) as exc:
        OpenAICompatibleClient(SettingsStub()).analyze("x", _config())
    assert exc.value.code == "NETWORK_ERROR"


def test_chat_stream_decodes_sse_bytes(monkeypatch):
    captured = {}
    body = (
        b'data: {"choices":[{"delta":{"content":"\xe4\xbd\xa0"}}]}\n\n'
        b'data: {"choices":[{"delta":{"content":"\xe5\xa5\xbd"}}]}\n\n'
        b"data: [DONE]\n\n"
    )
    chunks = [body[:17], body[17:50], body[50:]]
    stream_resp = StreamResp(chunks=chunks)
    monkeypatch.setattr("httpx.Client", _fake_client(captured, stream_response=stream_resp))

    req = ChatRequest(
        config=_config(),
        context="ctx",
        history=[
            ChatMessage(id="1", role="user", text="q1", timestamp=1),
            ChatMessage(id="2", role="model", text="a1", timestamp=2),
        ],
        user_message="q2",
    )
    tokens = list(OpenAICompatibleClient(SettingsStub()).open_chat_stream(req, RequestGuard()))

    assert tokens == ["你", "好"]
    payload = captured["request"]["json"]
    assert payload["stream"] is True
    assert [m["role"] for m in payload["messages"]] == ["system", "user", "assistant", "user"]
    assert payload["messages"][-1]["content"] == "q2"
    assert captured["stream"] is True
    assert stream_resp.closed
    assert captured["closed"]


def test_chat_stream_status_error_raised_on_open(monkeypatch):
    captured = {}
    stream_resp = StreamResp(status_code=500, body=b"upstream down")
    monkeypatch.setattr("httpx.Client", _fake_client(captured, stream_response=stream_resp))
    req = ChatRequest(config=_config(), context="ctx", user_message="hi")

    with pytest.raises(ApiError) as exc:
        OpenAICompatibleClient(SettingsStub()).open_chat_stream(req, RequestGuard())
    assert exc.value.message == "Provider Error (500): upstream down"
    assert stream_resp.closed


@pytest.mark.parametrize("data", [
    {"choices": {"message": {"content": "[]"}}},
    {"choices": "[]"},
    {"choices": [{"message": "[]"}]},
    [],
])
def test_analyze_malformed_body_is_parse_error(monkeypatch, data):
    captured = {}
    monkeypatch.setattr("httpx.Client", _fake_client(captured, post_response=Resp(data=data)))
    with pytest.raises(ParseError) as exc:
        OpenAICompatibleClient(SettingsStub()).analyze("x", _config())
    assert exc.value.code == "EMPTY_RESPONSE"


def test_chat_messages_skip_empty_history_turns():
    req = ChatRequest(
        config=_config(),
        context="ctx",
        history=[
            ChatMessage(id="1", role="user", text="q1", timestamp=1),
            ChatMessage(id="2", role="model", text="", timestamp=2),
        ],
        user_message="q2",
    )
    messages = OpenAICompatibleClient._chat_messages(req)
    assert [(m["role"], m["content"]) for m in messages] == [
        ("system", "ctx"),
        ("user", "q1"),
        ("user", "q2"),
    ]
