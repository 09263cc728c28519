"""Centralized application configuration.

All settings are read from environment variables (or a .env.arena file).
LLM_MODEL is required; the arena cannot pick an agent model on its own.
LLM_BASE_URL falls back to the public endpoint of the selected provider.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_BASE_URLS = {
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com/v1",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env.arena", env_file_encoding="utf-8",
    )

    # Agent LLM (OpenAI-compatible endpoints or Anthropic messages API)
    llm_provider: Literal["openai", "anthropic"] = "openai"
    llm_model: str
    llm_base_url: str | None = None
    llm_api_key: str | None = None
    llm_timeout: float = 30.0
    llm_max_tokens: int = 1000
    llm_temperature: float = 0.7
    llm_cost_per_1k_tokens_cents: float = Field(default=0.0, ge=0.0)

    # Agent move acquisition
    agent_max_attempts: int = Field(default=3, ge=1)

    # Stockfish
    stockfish_path: str = "stockfish"
    engine_handshake_timeout: float = 5.0
    engine_movetime_ms: int = 1000
    engine_move_timeout: float = 5.0
    engine_quit_timeout: float = 2.0

    # Match
    max_plies: int | None = None

    @property
    def effective_llm_base_url(self) -> str:
        """LLM base URL, falling back to the provider's public endpoint."""
        return self.llm_base_url or _DEFAULT_BASE_URLS[self.llm_provider]
