import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from pydantic import BaseModel, Field

from ...config import settings
from ...core.recovery import RetryConfig, RetryStrategy, classify_error, run_cancellable
from ...types import ChatMessage, ToolSpec


# =============================================================================
# Tool Calling Models
# =============================================================================

class ToolDefinition(BaseModel):
    """Definition of a tool that can be called by the LLM"""
    name: str
    description: str = ""
    parameters: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})

    @classmethod
    def from_spec(cls, spec: ToolSpec) -> "ToolDefinition":
        return cls(name=spec.name, description=spec.description, parameters=spec.parameters)

    def to_openai_format(self) -> Dict[str, Any]:
        """Convert to the OpenAI function-calling tool format"""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def to_anthropic_format(self) -> Dict[str, Any]:
        """Convert to Anthropic's tool schema format"""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters,
        }


class ToolCall(BaseModel):
    """A tool call requested by the LLM"""
    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ForcedTool(BaseModel):
    """A tool the provider must call on the first round of a turn"""
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)

    def hint(self) -> str:
        return f'Forced action hint: call tool "{self.name}" with arguments {json.dumps(self.arguments)}.'


class ProviderTurn(BaseModel):
    """One assistant response, normalized across wire protocols"""
    text: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    assistant_message: Dict[str, Any] = Field(
        default_factory=dict,
        description="Assistant message in the provider's wire shape, echoed back next round",
    )
    model: Optional[str] = None
    finish_reason: Optional[str] = None


# =============================================================================
# Errors
# =============================================================================

class LLMProviderError(Exception):
    """Base exception for LLM provider errors"""

    recoverable = False

    def __init__(self, message: str, *, provider: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.status_code = status_code


class LLMProviderRateLimitError(LLMProviderError):
    """Raised when hitting rate limits"""
    pass


class LLMProviderAuthError(LLMProviderError):
    """Raised when authentication fails"""
    pass


class LLMProviderAPIError(LLMProviderError):
    """Raised when API request fails"""
    pass


class LLMProviderConnectionError(LLMProviderError):
    """Raised when the provider could not be reached"""

    recoverable = True


def provider_error_for_status(provider: str, status: int, body: str) -> LLMProviderError:
    message = f"{provider} error: {status} {body}".strip()
    if status in (401, 403):
        return LLMProviderAuthError(message, provider=provider, status_code=status)
    if status == 429:
        return LLMProviderRateLimitError(message, provider=provider, status_code=status)
    return LLMProviderAPIError(message, provider=provider, status_code=status)


# =============================================================================
# Provider Interface
# =============================================================================

Conversation = List[Dict[str, Any]]


class LLMProvider(ABC):
    """Abstract base class for tool-calling chat providers.

    A provider owns the wire shape of the conversation: it builds the initial
    message list, sends one round, and appends the assistant turn and tool
    results in the form its API expects.
    """

    name: str = "provider"

    def __init__(self, api_key: str, model: str, **kwargs: Any):
        self.api_key = api_key
        self.model = model
        self.logger = structlog.stdlib.get_logger(f"dex_agent.llm.{self.name}")
        self.retry = RetryStrategy(
            RetryConfig(
                max_attempts=kwargs.pop("max_attempts", settings.provider_max_attempts),
                initial_delay_seconds=kwargs.pop("retry_base_delay", settings.provider_retry_base_delay),
            )
        )
        self._setup_client(**kwargs)

    @abstractmethod
    def _setup_client(self, **kwargs: Any) -> None:
        """Initialize the provider-specific client"""

    @abstractmethod
    def start_conversation(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        wallet_address: Optional[str] = None,
    ) -> Conversation:
        """Build the initial wire-shaped message list"""

    @abstractmethod
    def add_hint(self, conversation: Conversation, text: str) -> None:
        """Append an out-of-band instruction for the model"""

    @abstractmethod
    async def _send(
        self,
        conversation: Conversation,
        tools: Sequence[ToolDefinition],
        forced_tool: Optional[str],
    ) -> ProviderTurn:
        """Issue exactly one request to the provider"""

    @abstractmethod
    def append_assistant(self, conversation: Conversation, turn: ProviderTurn) -> None:
        """Echo an assistant turn containing tool calls back into the conversation"""

    @abstractmethod
    def append_tool_results(
        self,
        conversation: Conversation,
        results: Sequence[Tuple[ToolCall, Dict[str, Any]]],
    ) -> None:
        """Answer every tool call of the last assistant turn"""

    async def complete(
        self,
        conversation: Conversation,
        tools: Sequence[ToolDefinition],
        *,
        forced_tool: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ProviderTurn:
        """Send one round with transient-failure retries."""

        def _log_failure(attempt: int, error: BaseException, retryable: bool) -> None:
            context = classify_error(error)
            self.logger.warning(
                "provider_error",
                provider=self.name,
                attempt=attempt,
                status=context.status_code,
                retryable=retryable,
                message=str(error),
            )

        return await self.retry.execute(
            lambda: run_cancellable(self._send(conversation, tools, forced_tool), cancel_event),
            cancel_event=cancel_event,
            on_failure=_log_failure,
        )

    async def aclose(self) -> None:
        return None
