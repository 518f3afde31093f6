import json
from typing import Any, Dict, List, Optional, Sequence, Tuple

import anthropic
from anthropic import AsyncAnthropic

from ...config import settings
from ...core.recovery import ProtocolError
from ...types import ChatMessage
from .base import (
    Conversation,
    LLMProvider,
    LLMProviderAPIError,
    LLMProviderAuthError,
    LLMProviderConnectionError,
    LLMProviderRateLimitError,
    ProviderTurn,
    ToolCall,
    ToolDefinition,
)


class AnthropicProvider(LLMProvider):
    """Anthropic Claude provider speaking the native tool-use protocol"""

    name = "anthropic"

    def __init__(self, api_key: str, model: Optional[str] = None, **kwargs: Any):
        if not model:
            raise ValueError("AnthropicProvider requires a model to be specified")
        self.max_tokens = kwargs.pop("max_tokens", settings.anthropic_max_tokens)
        self.system_prompt = ""
        super().__init__(api_key, model, **kwargs)

    def _setup_client(self, **kwargs: Any) -> None:
        """Initialize the Anthropic client; retries are handled by our own strategy."""
        client = kwargs.get("client")
        if client is not None:
            self.client = client
            return
        try:
            self.client = AsyncAnthropic(
                api_key=self.api_key,
                max_retries=0,
                timeout=settings.provider_timeout_seconds,
            )
        except Exception as e:
            self.logger.error("anthropic_client_init_failed", error=str(e))
            raise LLMProviderAuthError(f"Failed to initialize Anthropic client: {e}", provider=self.name)

    def start_conversation(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        wallet_address: Optional[str] = None,
    ) -> Conversation:
        system_parts = [system_prompt]
        conversation: Conversation = []
        if wallet_address:
            conversation.append(
                {
                    "role": "user",
                    "content": f"Context: walletAddress={wallet_address}. Use this wallet directly.",
                }
            )
        for msg in messages:
            if msg.role == "system":
                system_parts.append(msg.content)
            elif msg.role in ("user", "assistant"):
                conversation.append({"role": msg.role, "content": msg.content})
        self.system_prompt = "\n".join(part for part in system_parts if part)
        return conversation

    def add_hint(self, conversation: Conversation, text: str) -> None:
        conversation.append({"role": "user", "content": text})

    async def _send(
        self,
        conversation: Conversation,
        tools: Sequence[ToolDefinition],
        forced_tool: Optional[str],
    ) -> ProviderTurn:
        request_params: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": self.system_prompt,
            "messages": conversation,
        }
        if tools:
            request_params["tools"] = [t.to_anthropic_format() for t in tools]
        if forced_tool:
            request_params["tool_choice"] = {"type": "tool", "name": forced_tool}

        try:
            response = await self.client.messages.create(**request_params)
        except anthropic.AuthenticationError as e:
            raise LLMProviderAuthError(f"anthropic error: 401 {e}", provider=self.name, status_code=401) from e
        except anthropic.RateLimitError as e:
            raise LLMProviderRateLimitError(f"anthropic error: 429 {e}", provider=self.name, status_code=429) from e
        except anthropic.APIStatusError as e:
            raise LLMProviderAPIError(
                f"anthropic error: {e.status_code} {e}",
                provider=self.name,
                status_code=e.status_code,
            ) from e
        except anthropic.APIConnectionError as e:
            raise LLMProviderConnectionError(f"anthropic request error: {e}", provider=self.name) from e

        blocks: List[Dict[str, Any]] = []
        text_parts: List[str] = []
        tool_calls: List[ToolCall] = []

        for block in getattr(response, "content", None) or []:
            block_type = getattr(block, "type", None)
            if block_type == "text":
                text_parts.append(block.text)
                blocks.append({"type": "text", "text": block.text})
            elif block_type == "tool_use":
                arguments = block.input if isinstance(getattr(block, "input", None), dict) else {}
                tool_calls.append(ToolCall(id=block.id, name=block.name, arguments=arguments))
                blocks.append({"type": "tool_use", "id": block.id, "name": block.name, "input": arguments})

        if getattr(response, "content", None) is None:
            raise ProtocolError("anthropic response had no content.", provider=self.name)

        return ProviderTurn(
            text="\n".join(text_parts),
            tool_calls=tool_calls,
            assistant_message={"role": "assistant", "content": blocks},
            model=getattr(response, "model", None) or self.model,
            finish_reason=getattr(response, "stop_reason", None),
        )

    def append_assistant(self, conversation: Conversation, turn: ProviderTurn) -> None:
        conversation.append(turn.assistant_message)

    def append_tool_results(
        self,
        conversation: Conversation,
        results: Sequence[Tuple[ToolCall, Dict[str, Any]]],
    ) -> None:
        conversation.append(
            {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": call.id,
                        "content": json.dumps(result),
                    }
                    for call, result in results
                ],
            }
        )

    async def aclose(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()
