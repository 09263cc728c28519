"""Tests for the completion clients."""

import httpx
import pytest

from arena.config import Settings
from arena.llm import (
    ANTHROPIC_VERSION,
    AgentApiError,
    AnthropicClient,
    Completion,
    OpenAIClient,
    build_client,
)


def _respond(monkeypatch, status=200, json=None, captured=None):
    async def mock_post(self, url, **kwargs):
        if captured is not None:
            captured["url"] = url
            captured.update(kwargs)
        return httpx.Response(status, json=json, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx.AsyncClient, "post", mock_post)


def _raise(monkeypatch, exc):
    async def mock_post(self, url, **kwargs):
        raise exc

    monkeypatch.setattr(httpx.AsyncClient, "post", mock_post)


class TestOpenAIClient:
    async def test_success(self, monkeypatch):
        captured = {}
        _respond(monkeypatch, json={
            "choices": [{"message": {"content": "Central control. MOVE: e4"}}],
            "usage": {"prompt_tokens": 120, "completion_tokens": 30, "total_tokens": 150},
        }, captured=captured)
        client = OpenAIClient(base_url="http://fake/v1/", model="gpt-test", api_key="sk-test")
        result = await client.complete("Your move")
        assert result == Completion(text="Central control. MOVE: e4", tokens=150)
        assert captured["url"] == "http://fake/v1/chat/completions"
        assert captured["headers"]["Authorization"] == "Bearer sk-test"
        assert captured["json"]["model"] == "gpt-test"
        assert captured["json"]["messages"] == [{"role": "user", "content": "Your move"}]

    async def test_empty_content_is_not_an_error(self, monkeypatch):
        _respond(monkeypatch, json={"choices": [{"message": {"content": None}}]})
        client = OpenAIClient(base_url="http://fake", model="m")
        result = await client.complete("p")
        assert result.text == ""
        assert result.tokens == 0

    async def test_no_api_key_sends_no_auth_header(self, monkeypatch):
        captured = {}
        _respond(monkeypatch, json={"choices": [{"message": {"content": "x"}}]}, captured=captured)
        await OpenAIClient(base_url="http://fake", model="m").complete("p")
        assert "Authorization" not in captured["headers"]

    async def test_timeout_raises_api_error(self, monkeypatch):
        _raise(monkeypatch, httpx.ReadTimeout("timed out"))
        client = OpenAIClient(base_url="http://fake", model="m", timeout=0.01)
        with pytest.raises(AgentApiError, match="timed out"):
            await client.complete("p")

    async def test_connection_error_raises_api_error(self, monkeypatch):
        _raise(monkeypatch, httpx.ConnectError("refused"))
        with pytest.raises(AgentApiError, match="Network error"):
            await OpenAIClient(base_url="http://fake", model="m").complete("p")

    async def test_http_error_raises_api_error(self, monkeypatch):
        _respond(monkeypatch, status=500, json={"error": {"message": "overloaded"}})
        with pytest.raises(AgentApiError, match="HTTP 500: overloaded"):
            await OpenAIClient(base_url="http://fake", model="m").complete("p")

    async def test_malformed_envelope_raises_api_error(self, monkeypatch):
        _respond(monkeypatch, json={"unexpected": True})
        with pytest.raises(AgentApiError, match="Unexpected response structure"):
            await OpenAIClient(base_url="http://fake", model="m").complete("p")


class TestAnthropicClient:
    async def test_success(self, monkeypatch):
        captured = {}
        _respond(monkeypatch, json={
            "content": [{"type": "text", "text": "MOVE: d4"}],
            "usage": {"input_tokens": 100, "output_tokens": 12},
        }, captured=captured)
        client = AnthropicClient(base_url="https://api.anthropic.test/v1", model="claude-test",
                                 api_key="sk-ant-test", max_tokens=256)
        result = await client.complete("Your move")
        assert result == Completion(text="MOVE: d4", tokens=112)
        assert captured["url"] == "https://api.anthropic.test/v1/messages"
        assert captured["headers"]["x-api-key"] == "sk-ant-test"
        assert captured["headers"]["anthropic-version"] == ANTHROPIC_VERSION
        assert captured["json"]["max_tokens"] == 256

    async def test_missing_content_raises_api_error(self, monkeypatch):
        _respond(monkeypatch, json={"type": "message"})
        with pytest.raises(AgentApiError):
            await AnthropicClient(base_url="http://fake", model="m").complete("p")


class TestTestConnection:
    async def test_success(self, monkeypatch):
        _respond(monkeypatch, json={"choices": [{"message": {"content": "Hello"}}]})
        ok, message = await OpenAIClient(base_url="http://fake", model="gpt-test").test_connection()
        assert ok is True
        assert "gpt-test" in message

    @pytest.mark.parametrize("status, expected", [
        (401, "Invalid API key"),
        (403, "Permission denied"),
        (404, "Model not found"),
        (429, "Rate limit exceeded"),
        (500, "API error"),
    ])
    async def test_status_messages(self, monkeypatch, status, expected):
        _respond(monkeypatch, status=status, json={"error": {"message": "nope"}})
        ok, message = await OpenAIClient(base_url="http://fake", model="m").test_connection()
        assert ok is False
        assert expected in message

    async def test_network_error(self, monkeypatch):
        _raise(monkeypatch, httpx.ConnectError("refused"))
        ok, message = await AnthropicClient(base_url="http://fake", model="m").test_connection()
        assert ok is False
        assert message.startswith("Network error")


class TestBuildClient:
    def test_openai_default(self, monkeypatch):
        monkeypatch.setenv("LLM_MODEL", "gpt-test")
        monkeypatch.delenv("LLM_PROVIDER", raising=False)
        client = build_client(Settings(_env_file=None))
        assert isinstance(client, OpenAIClient)
        assert client.model == "gpt-test"

    def test_anthropic(self, monkeypatch):
        monkeypatch.setenv("LLM_MODEL", "claude-test")
        monkeypatch.setenv("LLM_PROVIDER", "anthropic")
        client = build_client(Settings(_env_file=None))
        assert isinstance(client, AnthropicClient)
