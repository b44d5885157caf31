"""Model and endpoint resolution from settings and per-call overrides.

Each lookup is an ordered tuple of small resolver functions; the first one
returning a model wins. A resolver also reports the provider it read the
model from, and the client for that model is built against the same
provider's endpoint.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from reader_agent.config import LLMConfig, ModelProvider, ModelType, Settings
from reader_agent.errors import ConfigurationError
from reader_agent.llm.client import LangChainLLMClient, LLMClient

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ModelChoice:
    """A resolved model name and the provider that serves it.

    `provider` is None when the model came from a per-call override or from
    the legacy single-model settings.
    """

    model: str
    provider: ModelProvider | None = None


ModelResolver = Callable[[Settings, LLMConfig | None], ModelChoice | None]
ClientFactory = Callable[[str, str | None], LLMClient]


def _choice(model: str | None, provider: ModelProvider | None = None) -> ModelChoice | None:
    cleaned = _clean(model)
    return ModelChoice(cleaned, provider) if cleaned else None


def _override_chat_model(settings: Settings, override: LLMConfig | None) -> ModelChoice | None:
    return _choice(override.chat_model) if override else None


def _default_provider_chat_model(settings: Settings, override: LLMConfig | None) -> ModelChoice | None:
    provider = settings.get_provider(settings.default_provider_id)
    return _choice(provider.chat_model, provider) if provider else None


def _active_chat_provider_chat_model(settings: Settings, override: LLMConfig | None) -> ModelChoice | None:
    provider = settings.get_provider(settings.active_chat_provider_id)
    return _choice(provider.chat_model, provider) if provider else None


def _first_listed_model(settings: Settings, override: LLMConfig | None) -> ModelChoice | None:
    for provider_id in (settings.default_provider_id, settings.active_chat_provider_id):
        provider = settings.get_provider(provider_id)
        if provider is not None and provider.models:
            return _choice(provider.models[0], provider)
    return None


def _legacy_chat_model(settings: Settings, override: LLMConfig | None) -> ModelChoice | None:
    return _choice(settings.chat.model)


def _override_embedding_model(settings: Settings, override: LLMConfig | None) -> ModelChoice | None:
    return _choice(override.embedding_model) if override else None


def _active_embedding_provider_model(settings: Settings, override: LLMConfig | None) -> ModelChoice | None:
    provider = settings.get_provider(settings.active_embedding_provider_id)
    return _choice(provider.embedding_model, provider) if provider else None


def _default_provider_embedding_model(settings: Settings, override: LLMConfig | None) -> ModelChoice | None:
    provider = settings.get_provider(settings.default_provider_id)
    return _choice(provider.embedding_model, provider) if provider else None


def _legacy_embedding_model(settings: Settings, override: LLMConfig | None) -> ModelChoice | None:
    return _choice(settings.embedding.model)


CHAT_MODEL_RESOLVERS: tuple[ModelResolver, ...] = (
    _override_chat_model,
    _default_provider_chat_model,
    _active_chat_provider_chat_model,
    _first_listed_model,
    _legacy_chat_model,
)

EMBEDDING_MODEL_RESOLVERS: tuple[ModelResolver, ...] = (
    _override_embedding_model,
    _active_embedding_provider_model,
    _default_provider_embedding_model,
    _legacy_embedding_model,
)


def resolve_chat_choice(settings: Settings, override: LLMConfig | None = None) -> ModelChoice:
    choice = _first_match(CHAT_MODEL_RESOLVERS, settings, override)
    if choice is None:
        raise ConfigurationError(
            "Chat model is not configured. Select a chat model for a provider in settings."
        )
    return choice


def resolve_embedding_choice(settings: Settings, override: LLMConfig | None = None) -> ModelChoice:
    choice = _first_match(EMBEDDING_MODEL_RESOLVERS, settings, override)
    if choice is None:
        raise ConfigurationError(
            "Embedding model is not configured. Select an embedding model in settings."
        )
    return choice


def resolve_chat_model(settings: Settings, override: LLMConfig | None = None) -> str:
    return resolve_chat_choice(settings, override).model


def resolve_embedding_model(settings: Settings, override: LLMConfig | None = None) -> str:
    return resolve_embedding_choice(settings, override).model


def resolve_chat_type(settings: Settings, override: LLMConfig | None = None) -> ModelType:
    if override is not None and override.chat_type:
        return override.chat_type
    return settings.chat.type


def resolve_endpoint(
    settings: Settings,
    provider_id: str | None = None,
    override: LLMConfig | None = None,
) -> tuple[str, str | None]:
    """Return `(base_url, api_key)` when no resolved provider pins the endpoint."""

    if override is not None and override.base_url:
        return override.base_url, override.api_key

    candidates = (
        provider_id or (override.provider if override else None),
        settings.default_provider_id,
        settings.active_chat_provider_id,
    )
    for candidate in candidates:
        provider: ModelProvider | None = settings.get_provider(candidate)
        if provider is not None and provider.enabled and provider.base_url:
            return provider.base_url, provider.api_key

    if settings.base_url:
        return settings.base_url, settings.api_key

    raise ConfigurationError(
        "LLM base URL is not configured. Add a provider with a base URL in settings."
    )


def endpoint_for(
    settings: Settings,
    choice: ModelChoice,
    override: LLMConfig | None = None,
) -> tuple[str, str | None]:
    """The endpoint serving `choice`: its own provider, else the general lookup."""

    if override is not None and override.base_url:
        return override.base_url, override.api_key
    provider = choice.provider
    if provider is None:
        return resolve_endpoint(settings, None, override)
    if not provider.enabled or not provider.base_url:
        raise ConfigurationError(
            f"Provider '{provider.name or provider.id}' serves model {choice.model} "
            "but has no usable base URL. Enable it and set a base URL in settings."
        )
    return provider.base_url, provider.api_key


def create_client_for(
    settings: Settings,
    choice: ModelChoice,
    override: LLMConfig | None = None,
    factory: ClientFactory = LangChainLLMClient,
) -> LLMClient:
    base_url, api_key = endpoint_for(settings, choice, override)
    logger.debug(f"[LLM] Using endpoint {base_url} for {choice.model}")
    return factory(base_url, api_key)


def _first_match(
    resolvers: tuple[ModelResolver, ...],
    settings: Settings,
    override: LLMConfig | None,
) -> ModelChoice | None:
    for resolver in resolvers:
        choice = resolver(settings, override)
        if choice is not None:
            return choice
    return None


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None
