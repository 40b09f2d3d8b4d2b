"""Configuration models for the chat agent."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_PROVENANCE_CHARS = 64


class ChunkingConfig(BaseModel):
    """Configures character-window chunking.

    `overlap` must stay below `chunk_size`; the chunker rejects degenerate
    combinations with `ConfigurationError`.
    """

    chunk_size: int = Field(default=1200, ge=1)
    overlap: int = Field(default=120, ge=0)


class RetrievalConfig(BaseModel):
    """Configures query-time lookup used by the `rag_retrieve` tool."""

    top_k: int = Field(default=4, ge=1)


class AgentConfig(BaseModel):
    """Configures the dispatcher loop and latency/cost targets."""

    max_rounds: int = Field(default=5, ge=1)
    max_parallel_tools: int = Field(default=4, ge=1)
    max_tool_result_chars: int = Field(default=16000, ge=100)
    model_timeout_seconds: float = Field(default=60.0, gt=0.0)
    target_latency_seconds: float = Field(default=8.0, gt=0.0)


class Settings(BaseSettings):
    """Process-wide settings sourced from the environment and `.env`."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_file: Path | None = None

    openai_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("CHAT_AGENT_OPENAI_API_KEY", "OPENAI_API_KEY"),
    )
    chat_model: str = "gpt-4o-mini"
    embedder: Literal["hashing", "openai"] = "hashing"
    embedding_model: str = "text-embedding-3-small"
    hashing_dimension: int = Field(default=256, ge=8)
    web_search_backend: Literal["none", "duckduckgo"] = "duckduckgo"
    image_model: str = "dall-e-3"

    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)

    @model_validator(mode="after")
    def _tool_results_fit_retrieved_chunks(self) -> Settings:
        # Each retrieved chunk is returned whole, plus a provenance prefix.
        needed = self.retrieval.top_k * (self.chunking.chunk_size + _PROVENANCE_CHARS)
        if self.agent.max_tool_result_chars < needed:
            raise ValueError(
                f"agent.max_tool_result_chars ({self.agent.max_tool_result_chars}) must be at "
                f"least {needed} to hold {self.retrieval.top_k} chunks of "
                f"{self.chunking.chunk_size} characters"
            )
        return self

    model_config = SettingsConfigDict(
        env_prefix="CHAT_AGENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def load_settings(env_file: str | Path | None = None) -> Settings:
    """Reload settings, optionally from a specific `.env` file."""
    global _settings
    if env_file:
        _settings = Settings(_env_file=env_file)
    else:
        _settings = Settings()
    return _settings
