import os

from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Ensure we pick up legacy environment variable aliases."""

        super().model_post_init(__context)

        if not self.openrouter_api_key:
            fallback = os.getenv("OPENROUTER_KEY")
            if fallback:
                object.__setattr__(self, "openrouter_api_key", fallback)

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="auto", description="Log renderer: json, console or auto")

    # Tool Backend
    tool_backend_url: str = Field(
        default="http://127.0.0.1:8787",
        description="Base URL of the DEX tool backend",
    )
    tool_schema_path: str = Field(default="/api/agent/schema", description="Tool schema endpoint path")
    tool_execute_path: str = Field(default="/api/agent/tool", description="Tool execution endpoint path")
    tool_timeout_seconds: float = Field(default=30.0, description="Tool backend request timeout")

    # Retry behaviour
    tool_max_attempts: int = Field(default=3, ge=1, description="Max attempts per tool call")
    tool_retry_base_delay: float = Field(default=0.25, description="Base backoff delay for tool retries (seconds)")
    provider_max_attempts: int = Field(default=3, ge=1, description="Max attempts per provider request")
    provider_retry_base_delay: float = Field(default=0.3, description="Base backoff delay for provider retries (seconds)")

    # Conversation Guards
    pending_action_ttl_seconds: float = Field(
        default=300.0,
        description="Seconds before an unconfirmed action expires",
    )
    max_tool_rounds: int = Field(default=6, ge=1, description="Max provider rounds per turn")
    session_idle_ttl_seconds: float = Field(
        default=3600.0,
        description="Seconds before an idle conversation session is closed",
    )

    # LLM Provider Settings
    llm_provider: str = Field(default="openrouter", description="Default LLM provider")
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openrouter_api_key: str = Field(
        default="",
        description="OpenRouter API key",
        validation_alias=AliasChoices("openrouter_api_key", "OPENROUTER_API_KEY"),
    )
    anthropic_api_key: str = Field(default="", description="Anthropic API key")
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="OpenAI API base URL")
    openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1", description="OpenRouter API base URL")
    openrouter_referer: str = Field(default="http://localhost", description="HTTP-Referer sent to OpenRouter")
    openrouter_title: str = Field(default="dex-agent", description="X-Title sent to OpenRouter")
    anthropic_max_tokens: int = Field(default=1024, description="Maximum tokens for Anthropic responses")
    provider_timeout_seconds: float = Field(default=60.0, description="LLM provider request timeout")

    provider_models_catalog: Dict[str, List[Dict[str, Any]]] = Field(
        default_factory=lambda: {
            "openrouter": [
                {
                    "id": "openai/gpt-4o-mini",
                    "label": "GPT-4o mini (OpenRouter)",
                    "description": "Fast routed default.",
                    "default": True,
                },
            ],
            "openai": [
                {
                    "id": "gpt-4o-mini",
                    "label": "GPT-4o mini",
                    "description": "Fast tool-calling model.",
                    "default": True,
                },
            ],
            "anthropic": [
                {
                    "id": "claude-3-7-sonnet-latest",
                    "label": "Claude 3.7 Sonnet",
                    "description": "Balanced depth and latency for daily use.",
                    "default": True,
                },
            ],
        },
        description="Provider models metadata surfaced to clients",
    )

    @property
    def has_openai_key(self) -> bool:
        return bool(self.openai_api_key)

    @property
    def has_openrouter_key(self) -> bool:
        return bool(self.openrouter_api_key)

    @property
    def has_anthropic_key(self) -> bool:
        return bool(self.anthropic_api_key)

    def api_key_for(self, provider: str) -> str:
        """Return the configured API key for a canonical provider name."""
        provider_lower = provider.lower()
        if provider_lower == "anthropic":
            return self.anthropic_api_key
        if provider_lower == "openai":
            return self.openai_api_key
        if provider_lower == "openrouter":
            return self.openrouter_api_key
        return ""

    def resolve_default_model(self, provider: str) -> Optional[str]:
        provider_lower = provider.lower()
        options = self.provider_models_catalog.get(provider_lower, [])
        for option in options:
            default_flag = option.get("default")
            if isinstance(default_flag, str):
                is_default = default_flag.lower() in {"true", "1", "yes"}
            else:
                is_default = bool(default_flag)
            if is_default:
                return option.get("id")
        if options:
            return options[0].get("id")
        return None


# Global settings instance
settings = Settings()
