"""Configuration models for the retrieval and orchestration core."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

ModelType = Literal["llm", "vlm"]


class CacheConfig(BaseModel):
    """Configures memoizing caches for repeatable model calls."""

    max_size: int = Field(default=100, ge=1)
    ttl_seconds: float = Field(default=30 * 60, gt=0.0)


class RetrievalConfig(BaseModel):
    """Configures multi-collection retrieval."""

    top_k: int = Field(default=5, ge=1)
    collections: list[str] = Field(default_factory=lambda: ["notes", "faqs"])
    candidate_multiplier: int = Field(default=2, ge=1)


class ToolSessionConfig(BaseModel):
    """Configures the stateful tool-service client."""

    session_ttl_seconds: float = Field(default=10 * 60, gt=0.0)
    request_timeout_seconds: float = Field(default=30.0, gt=0.0)
    client_name: str = "reader-agent"
    client_version: str = "0.1.0"
    search_keywords: list[str] = Field(default_factory=lambda: ["search", "bing"])


class OrchestratorConfig(BaseModel):
    """Configures the turn pipeline."""

    retrieval_timeout_seconds: float = Field(default=5.0, gt=0.0)


class ModelProvider(BaseModel):
    """One configured model provider (an OpenAI-compatible endpoint)."""

    id: str
    name: str = ""
    type: str = "openai_compatible"
    base_url: str = ""
    api_key: str | None = None
    models: list[str] = Field(default_factory=list)
    chat_model: str | None = None
    embedding_model: str | None = None
    enabled: bool = True


class ToolServiceConfig(BaseModel):
    """One external tool service reachable over the JSON-RPC tool protocol."""

    id: str
    name: str = ""
    server_url: str = ""
    api_key: str | None = None
    enabled: bool = True
    description: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.id


class LegacyChatSettings(BaseModel):
    type: ModelType = "llm"
    model: str = ""


class LegacyEmbeddingSettings(BaseModel):
    model: str = ""


class LLMConfig(BaseModel):
    """Per-call overrides supplied by the caller."""

    base_url: str | None = None
    api_key: str | None = None
    chat_model: str | None = None
    chat_type: ModelType | None = None
    embedding_model: str | None = None
    provider: str | None = None


class Settings(BaseModel):
    """User-level settings: providers, active selections, tool services.

    The single-model `chat`, `embedding`, `base_url` and `api_key` fields are
    the legacy layout and act as the last resolution fallback.
    """

    providers: list[ModelProvider] = Field(default_factory=list)
    default_provider_id: str | None = None
    active_chat_provider_id: str | None = None
    active_embedding_provider_id: str | None = None

    provider: str = "openai_compatible"
    base_url: str = ""
    api_key: str | None = None
    chat: LegacyChatSettings = Field(default_factory=LegacyChatSettings)
    embedding: LegacyEmbeddingSettings = Field(default_factory=LegacyEmbeddingSettings)

    tool_services: list[ToolServiceConfig] = Field(default_factory=list)

    def get_provider(self, provider_id: str | None) -> ModelProvider | None:
        if not provider_id:
            return None
        for provider in self.providers:
            if provider.id == provider_id:
                return provider
        return None

    def enabled_tool_services(self, service_ids: list[str]) -> list[ToolServiceConfig]:
        wanted = set(service_ids)
        return [
            service
            for service in self.tool_services
            if service.id in wanted and service.enabled and service.server_url
        ]

    @classmethod
    def load(cls, path: str | Path) -> "Settings":
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls.model_validate(payload)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build single-provider settings from OPENAI_* environment variables."""
        base_url = os.getenv("OPENAI_BASE_URL", "")
        api_key = os.getenv("OPENAI_API_KEY")
        chat_model = os.getenv("OPENAI_MODEL", "")
        embedding_model = os.getenv("OPENAI_EMBEDDING_MODEL", "")
        if not base_url and api_key:
            base_url = "https://api.openai.com/v1"
        if not base_url:
            return cls()

        provider = ModelProvider(
            id="env",
            name="Environment",
            base_url=base_url,
            api_key=api_key,
            models=[chat_model] if chat_model else [],
            chat_model=chat_model or None,
            embedding_model=embedding_model or None,
        )
        return cls(
            providers=[provider],
            default_provider_id=provider.id,
            active_chat_provider_id=provider.id,
            active_embedding_provider_id=provider.id,
        )
