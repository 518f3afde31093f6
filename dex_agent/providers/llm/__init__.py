from typing import Any, Dict, Optional, Type

from .anthropic import AnthropicProvider
from .base import (
    Conversation,
    ForcedTool,
    LLMProvider,
    LLMProviderAPIError,
    LLMProviderAuthError,
    LLMProviderConnectionError,
    LLMProviderError,
    LLMProviderRateLimitError,
    ProviderTurn,
    ToolCall,
    ToolDefinition,
)
from .openai_compat import OpenAICompatibleProvider, OpenAIProvider, OpenRouterProvider

PROVIDER_ALIAS_MAP: Dict[str, str] = {
    "claude": "anthropic",
    "gpt": "openai",
}

PROVIDER_DISPLAY_NAMES: Dict[str, str] = {
    "anthropic": "Anthropic",
    "openai": "OpenAI",
    "openrouter": "OpenRouter",
}


def canonical_provider_name(name: str) -> str:
    """Normalize provider aliases to their canonical identifier."""

    return PROVIDER_ALIAS_MAP.get(name.strip().lower(), name.strip().lower())


# Registry of available LLM providers
PROVIDER_REGISTRY: Dict[str, Type[LLMProvider]] = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "openrouter": OpenRouterProvider,
}


class LLMProviderFactory:
    """Factory for creating LLM provider instances."""

    @staticmethod
    def create_provider(
        provider_name: str,
        api_key: str,
        model: Optional[str] = None,
        **kwargs: Any,
    ) -> LLMProvider:
        provider_key = canonical_provider_name(provider_name)
        if provider_key not in PROVIDER_REGISTRY:
            available_providers = ", ".join(PROVIDER_REGISTRY.keys())
            raise ValueError(
                f"Unsupported provider '{provider_name}'. "
                f"Available providers: {available_providers}"
            )

        if not model:
            raise ValueError(f"No model provided for provider '{provider_key}'.")

        provider_class = PROVIDER_REGISTRY[provider_key]
        return provider_class(api_key=api_key, model=model, **kwargs)


def get_available_providers() -> Dict[str, Dict[str, Any]]:
    """Return metadata about supported LLM providers."""

    from ...config import settings  # Local import to avoid circular dependency

    providers_info: Dict[str, Dict[str, Any]] = {}
    for provider_name in PROVIDER_REGISTRY:
        display_name = PROVIDER_DISPLAY_NAMES.get(provider_name, provider_name.title())
        providers_info[provider_name] = {
            "status": "available" if settings.api_key_for(provider_name) else "missing_api_key",
            "default_model": settings.resolve_default_model(provider_name),
            "display_name": display_name,
            "models": settings.provider_models_catalog.get(provider_name, []),
        }
    return providers_info


def get_llm_provider(
    provider_name: Optional[str] = None,
    model: Optional[str] = None,
    api_key: Optional[str] = None,
    **kwargs: Any,
) -> LLMProvider:
    """Instantiate a provider, filling the model and key from configuration.

    Raises:
        ValueError: unknown provider, or no API key supplied or configured.
    """

    from ...config import settings

    resolved_provider = canonical_provider_name(provider_name or settings.llm_provider)
    if resolved_provider not in PROVIDER_REGISTRY:
        raise ValueError(f"Unsupported provider '{provider_name}'.")

    resolved_key = (api_key or "").strip() or settings.api_key_for(resolved_provider)
    if not resolved_key:
        raise ValueError(f"No API key configured for provider: {resolved_provider}")

    resolved_model = (model or "").strip() or settings.resolve_default_model(resolved_provider)

    return LLMProviderFactory.create_provider(
        provider_name=resolved_provider,
        api_key=resolved_key,
        model=resolved_model,
        **kwargs,
    )


__all__ = [
    "Conversation",
    "ForcedTool",
    "LLMProvider",
    "LLMProviderError",
    "LLMProviderAPIError",
    "LLMProviderAuthError",
    "LLMProviderConnectionError",
    "LLMProviderRateLimitError",
    "ProviderTurn",
    "ToolCall",
    "ToolDefinition",
    "AnthropicProvider",
    "OpenAICompatibleProvider",
    "OpenAIProvider",
    "OpenRouterProvider",
    "LLMProviderFactory",
    "canonical_provider_name",
    "get_available_providers",
    "get_llm_provider",
    "PROVIDER_REGISTRY",
]
