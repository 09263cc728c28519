"""Completion clients for the agent LLM.

Two wire formats are supported: OpenAI-compatible chat completions (which
also covers Ollama, OpenRouter, litellm and friends) and the Anthropic
messages API. Transport failures raise AgentApiError; an empty answer is
returned as an empty Completion so the caller can treat it as a bad move.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from arena.config import Settings

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class AgentApiError(Exception):
    """The completion request failed (network, timeout, HTTP or envelope)."""


@dataclass
class Completion:
    text: str
    tokens: int


class CompletionClient(ABC):
    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        max_tokens: int = 1000,
        temperature: float = 0.7,
    ):
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._api_key = api_key
        self._timeout = timeout
        self._max_tokens = max_tokens
        self._temperature = temperature

    @property
    def model(self) -> str:
        return self._model

    @abstractmethod
    def _request(self, prompt: str, max_tokens: int) -> tuple[str, dict, dict]:
        """Return (path, headers, json payload) for a completion request."""

    @abstractmethod
    def _parse(self, data: dict) -> Completion:
        ...

    async def _post(self, prompt: str, max_tokens: int) -> dict:
        path, headers, payload = self._request(prompt, max_tokens)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(f"{self._base_url}{path}", json=payload, headers=headers)
            resp.raise_for_status()
            return resp.json()

    async def complete(self, prompt: str) -> Completion:
        try:
            data = await self._post(prompt, self._max_tokens)
            return self._parse(data)
        except httpx.TimeoutException as e:
            raise AgentApiError(f"LLM request timed out after {self._timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise AgentApiError(
                f"LLM request failed with HTTP {e.response.status_code}: {_error_message(e.response)}"
            ) from e
        except httpx.HTTPError as e:
            raise AgentApiError(f"Network error: {e}") from e
        except (KeyError, IndexError, ValueError, TypeError) as e:
            raise AgentApiError(f"Unexpected response structure from LLM API: {e!r}") from e

    async def test_connection(self) -> tuple[bool, str]:
        """Make a minimal request and describe the outcome for a human."""
        try:
            await self._post("Hi", 10)
        except httpx.HTTPStatusError as e:
            return False, _describe_status(e.response)
        except httpx.HTTPError as e:
            return False, f"Network error: {e}"
        return True, f"Connected successfully to {self._model}"


class OpenAIClient(CompletionClient):
    def _request(self, prompt, max_tokens):
        headers = {}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        payload = {
            "model": self._model,
            "max_tokens": max_tokens,
            "temperature": self._temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        return "/chat/completions", headers, payload

    def _parse(self, data):
        content = data["choices"][0]["message"].get("content") or ""
        usage = data.get("usage") or {}
        return Completion(text=content, tokens=int(usage.get("total_tokens") or 0))


class AnthropicClient(CompletionClient):
    def _request(self, prompt, max_tokens):
        headers = {"anthropic-version": ANTHROPIC_VERSION}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        payload = {
            "model": self._model,
            "max_tokens": max_tokens,
            "temperature": self._temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        return "/messages", headers, payload

    def _parse(self, data):
        blocks = data["content"]
        text = "\n".join(b["text"] for b in blocks if b.get("type") == "text")
        usage = data.get("usage") or {}
        tokens = int(usage.get("input_tokens") or 0) + int(usage.get("output_tokens") or 0)
        return Completion(text=text, tokens=tokens)


def _error_message(resp: httpx.Response) -> str:
    try:
        error = resp.json().get("error") or {}
    except ValueError:
        return resp.text[:200]
    if isinstance(error, dict):
        return error.get("message") or error.get("type") or "Unknown API error"
    return str(error)


def _describe_status(resp: httpx.Response) -> str:
    if resp.status_code == 401:
        return "Invalid API key. Please check your API key."
    if resp.status_code == 403:
        return "Permission denied. Check your API key has access to this model."
    if resp.status_code == 404:
        return "Model not found. Please check your model name."
    if resp.status_code == 429:
        return "Rate limit exceeded. Please try again later."
    return f"API error: {_error_message(resp)}"


def build_client(settings: Settings) -> CompletionClient:
    cls = AnthropicClient if settings.llm_provider == "anthropic" else OpenAIClient
    return cls(
        base_url=settings.effective_llm_base_url,
        model=settings.llm_model,
        api_key=settings.llm_api_key,
        timeout=settings.llm_timeout,
        max_tokens=settings.llm_max_tokens,
        temperature=settings.llm_temperature,
    )
