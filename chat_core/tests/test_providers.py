import random

from chat_core.domain.models import ChatRequest
from chat_core.providers import create_provider
from chat_core.providers.dify_client import DifyClient
from chat_core.providers.mock_client import MOCK_HINT, MockClient


def test_create_provider_with_api_key(monkeypatch):
    class DummySettings:
        dify_api_key = "app-0123456789"
        http_timeout = 1.0
        dify_base_url = "https://api.dify.ai/v1"

    monkeypatch.setattr("chat_core.providers.settings", DummySettings())
    provider = create_provider()
    assert isinstance(provider, DifyClient)


def test_create_provider_without_key_falls_back_to_mock():
    class DummySettings:
        dify_api_key = None
        mock_stream_delay = 0.0

    provider = create_provider(DummySettings())
    assert isinstance(provider, MockClient)


def test_mock_client_streams_words():
    class DummySettings:
        mock_stream_delay = 0.0

    client = MockClient(DummySettings(), rng=random.Random(1))
    events = list(client.chat_stream(ChatRequest(query="hi", user="u")))
    assert events[-1].kind == "end"
    text = "".join(e.answer for e in events if e.kind == "message")
    assert text.endswith(MOCK_HINT)
    assert client.chat(ChatRequest(query="hi", user="u")).answer.endswith(MOCK_HINT)
    assert client.upload_file("a.pdf", "u").startswith("mock-file-id-")
