import pytest
import requests

from studio import llm_client
from studio.errors import ProviderError


class _Resp:
    def __init__(self, status_code=200, data=None, headers=None, text=""):
        self.status_code = status_code
        self._data = data
        self.headers = headers or {}
        self.text = text

    def json(self):
        if self._data is None:
            raise ValueError("no json")
        return self._data


@pytest.fixture(autouse=True)
def _keyed(monkeypatch):
    monkeypatch.setattr(llm_client, "OPENROUTER_API_KEY", "fake-key")
    monkeypatch.setattr(llm_client, "_sleep_if_backing_off", lambda: None)
    llm_client._reset_backoff()
    yield
    llm_client._reset_backoff()


def test_complete_returns_assistant_text(monkeypatch):
    seen = {}

    def fake_post(url, headers=None, json=None, timeout=None):
        seen.update(url=url, headers=headers, body=json, timeout=timeout)
        return _Resp(data={"choices": [{"message": {"content": "hello"}}]})

    monkeypatch.setattr(llm_client.requests, "post", fake_post)
    assert llm_client.complete("m1", "sys", "usr") == "hello"
    assert seen["headers"]["Authorization"] == "Bearer fake-key"
    assert seen["body"]["model"] == "m1"
    assert [m["role"] for m in seen["body"]["messages"]] == ["system", "user"]
    assert seen["body"]["max_tokens"] == llm_client.LLM_MAX_TOKENS


def test_missing_key_raises(monkeypatch):
    monkeypatch.setattr(llm_client, "OPENROUTER_API_KEY", "")
    with pytest.raises(ProviderError):
        llm_client.complete("m1", "s", "u")


def test_transport_error_raises(monkeypatch):
    def fake_post(*args, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(llm_client.requests, "post", fake_post)
    with pytest.raises(ProviderError):
        llm_client.complete("m1", "s", "u")


def test_rate_limit_registers_backoff(monkeypatch):
    monkeypatch.setattr(
        llm_client.requests, "post", lambda *a, **k: _Resp(status_code=429, headers={"Retry-After": "5"})
    )
    with pytest.raises(ProviderError) as info:
        llm_client.complete("m1", "s", "u")
    assert info.value.status == 429
    assert llm_client._BACKOFF_DELAY == 5.0
    assert llm_client._BACKOFF_UNTIL > 0


def test_empty_content_raises(monkeypatch):
    monkeypatch.setattr(
        llm_client.requests, "post", lambda *a, **k: _Resp(data={"choices": [{"message": {"content": "  "}}]})
    )
    with pytest.raises(ProviderError):
        llm_client.complete("m1", "s", "u")


def test_content_parts_are_joined():
    data = {"choices": [{"message": {"content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]}}]}
    assert llm_client._extract_text(data) == "ab"


def test_status_shape():
    info = llm_client.status()
    assert info["has_token"] is True
    assert info["using"] == "openrouter"
    assert info["models"]
