import json

import httpx
import pytest

from chat_core.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from chat_core.domain.models import ChatRequest, FileAttachment
from chat_core.providers.dify_client import DifyClient
from chat_core.session.controller import ChatController


class SettingsStub:
    dify_api_key = "app-0123456789"
    http_timeout = 1.0
    dify_base_url = "https://api.dify.ai/v1"


class FakeResponse:
    def __init__(self, status_code=200, data=None, chunks=None, text=""):
        self.status_code = status_code
        self._data = data or {}
        self._chunks = list(chunks or [])
        self.text = text

    def json(self):
        return self._data

    def read(self):
        return self.text.encode("utf-8")

    def iter_bytes(self):
        for chunk in self._chunks:
            yield chunk


class HtmlResponse(FakeResponse):
    def json(self):
        raise json.JSONDecodeError("Expecting value", self.text, 0)


class StreamContext:
    def __init__(self, response):
        self._response = response

    def __enter__(self):
        return self._response

    def __exit__(self, *args):
        return False


def _fake_client(response=None, captured=None, error=None):
    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, url, **kw):
            if captured is not None:
                captured["url"] = url
                captured.update(kw)
            if error is not None:
                raise error
            return response

        def stream(self, method, url, **kw):
            if captured is not None:
                captured["url"] = url
                captured.update(kw)
            if error is not None:
                raise error
            return StreamContext(response)

    return Client


def test_dify_client_blocking(monkeypatch):
    captured = {}
    resp = FakeResponse(data={"answer": "ok", "conversation_id": "conv-1", "message_id": "m-1"})
    monkeypatch.setattr("httpx.Client", _fake_client(resp, captured))
    req = ChatRequest(query="hi", user="u1", response_mode="blocking", conversation_id="conv-1")
    res = DifyClient(SettingsStub()).chat(req)
    assert res.answer == "ok"
    assert res.conversation_id == "conv-1"
    assert captured["url"] == "https://api.dify.ai/v1/chat-messages"
    assert captured["json"]["response_mode"] == "blocking"
    assert captured["json"]["conversation_id"] == "conv-1"
    assert captured["headers"]["Authorization"] == "Bearer app-0123456789"


def test_dify_client_payload_with_files(monkeypatch):
    captured = {}
    monkeypatch.setattr("httpx.Client", _fake_client(FakeResponse(data={"answer": ""}), captured))
    req = ChatRequest(query="hi", user="u1", files=[FileAttachment(upload_file_id="f-1")], inputs={"k": "v"})
    DifyClient(SettingsStub()).chat(req)
    payload = captured["json"]
    assert "conversation_id" not in payload
    assert payload["inputs"] == {"k": "v"}
    assert payload["files"] == [{"type": "document", "transfer_method": "local_file", "upload_file_id": "f-1"}]


def test_dify_client_stream(monkeypatch):
    body = (
        b'data: {"event": "message", "answer": "hel", "conversation_id": "c1"}\n\n'
        b'data: {"event": "message", "answer": "lo"}\n\n'
        b"data: {not json\n\n"
        b'data: {"event": "message_end", "conversation_id": "c1"}\n\n'
        b"data: [DONE]\n\n"
    )
    chunks = [body[i : i + 11] for i in range(0, len(body), 11)]
    captured = {}
    monkeypatch.setattr("httpx.Client", _fake_client(FakeResponse(chunks=chunks), captured))
    events = list(DifyClient(SettingsStub()).chat_stream(ChatRequest(query="hi", user="u1")))
    assert [e.kind for e in events] == ["message", "message", "end"]
    assert "".join(e.answer for e in events) == "hello"
    assert captured["json"]["response_mode"] == "streaming"


def test_dify_client_rate_limit(monkeypatch):
    monkeypatch.setattr("httpx.Client", _fake_client(FakeResponse(status_code=429)))
    with pytest.raises(RateLimitError):
        DifyClient(SettingsStub()).chat(ChatRequest(query="hi", user="u1"))


def test_dify_client_stream_api_error(monkeypatch):
    monkeypatch.setattr("httpx.Client", _fake_client(FakeResponse(status_code=500, text="server down")))
    with pytest.raises(ApiError) as exc:
        list(DifyClient(SettingsStub()).chat_stream(ChatRequest(query="hi", user="u1")))
    assert exc.value.http_status == 500
    assert "server down" in exc.value.message


def test_dify_client_network_error(monkeypatch):
    monkeypatch.setattr("httpx.Client", _fake_client(error=httpx.ConnectError("refused")))
    with pytest.raises(NetworkError):
        list(DifyClient(SettingsStub()).chat_stream(ChatRequest(query="hi", user="u1")))


def test_dify_client_requires_api_key():
    class NoKey(SettingsStub):
        dify_api_key = None

    with pytest.raises(ValidationError):
        DifyClient(NoKey()).chat(ChatRequest(query="hi", user="u1"))


def test_dify_client_upload_file(monkeypatch, tmp_path):
    record = tmp_path / "record.pdf"
    record.write_bytes(b"%PDF-1.4")
    captured = {}
    monkeypatch.setattr("httpx.Client", _fake_client(FakeResponse(data={"id": "file-123"}), captured))
    file_id = DifyClient(SettingsStub()).upload_file(record, "u1")
    assert file_id == "file-123"
    assert captured["url"] == "https://api.dify.ai/v1/files/upload"
    assert captured["data"] == {"user": "u1"}
    assert captured["files"]["file"][0] == "record.pdf"


def test_dify_client_upload_failure_returns_none(monkeypatch, tmp_path):
    record = tmp_path / "record.pdf"
    record.write_bytes(b"%PDF-1.4")
    monkeypatch.setattr("httpx.Client", _fake_client(FakeResponse(status_code=413, text="too large")))
    assert DifyClient(SettingsStub()).upload_file(record, "u1") is None
    assert DifyClient(SettingsStub()).upload_file(tmp_path / "missing.pdf", "u1") is None


def test_dify_client_non_json_body_raises_api_error(monkeypatch):
    monkeypatch.setattr("httpx.Client", _fake_client(HtmlResponse(text="<html>gateway</html>")))
    with pytest.raises(ApiError) as exc:
        DifyClient(SettingsStub()).chat(ChatRequest(query="hi", user="u1"))
    assert exc.value.code == "BAD_RESPONSE"
    assert "gateway" in exc.value.message


def test_dify_client_non_object_body_raises_api_error(monkeypatch):
    resp = FakeResponse()
    resp.json = lambda: ["not", "an", "object"]
    monkeypatch.setattr("httpx.Client", _fake_client(resp))
    with pytest.raises(ApiError) as exc:
        DifyClient(SettingsStub()).chat(ChatRequest(query="hi", user="u1"))
    assert exc.value.code == "BAD_RESPONSE"


def test_dify_client_upload_non_json_body_returns_none(monkeypatch, tmp_path):
    record = tmp_path / "record.pdf"
    record.write_bytes(b"%PDF-1.4")
    monkeypatch.setattr("httpx.Client", _fake_client(HtmlResponse(text="<html>gateway</html>")))
    assert DifyClient(SettingsStub()).upload_file(record, "u1") is None


def test_gateway_page_in_blocking_turn_stores_error_reply(monkeypatch):
    class ControllerSettings(SettingsStub):
        error_reply = "服务不可用"
        stream_error_reply = "回复中断"
        empty_reply = "空回复"
        default_user = "anonymous"
        title_max_length = 30

    monkeypatch.setattr("httpx.Client", _fake_client(HtmlResponse(text="<html>gateway</html>")))
    cfg = ControllerSettings()
    ctl = ChatController(DifyClient(cfg), settings=cfg)
    final = ctl.run_turn("hi", streaming=False)
    assert final.content == "服务不可用"
    assert final.pending is False
