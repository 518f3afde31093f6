"""Async provider for OpenAI-compatible chat completion APIs (OpenAI, OpenRouter)."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from ...config import settings
from ...core.recovery import ProtocolError, ToolArgumentsError
from ...types import ChatMessage
from .base import (
    Conversation,
    LLMProvider,
    LLMProviderConnectionError,
    ProviderTurn,
    ToolCall,
    ToolDefinition,
    provider_error_for_status,
)


class OpenAICompatibleProvider(LLMProvider):
    """Function-calling chat loop over ``POST /chat/completions``."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        **kwargs: Any,
    ) -> None:
        self.base_url = (base_url or self.default_base_url()).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.provider_timeout_seconds
        self._transport = transport
        self._chat_completions_path = "/chat/completions"
        super().__init__(api_key, model, **kwargs)

    def default_base_url(self) -> str:
        return settings.openai_base_url

    def extra_headers(self) -> Dict[str, str]:
        return {}

    def _setup_client(self, **kwargs: Any) -> None:
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
                **self.extra_headers(),
            },
        )

    def start_conversation(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        wallet_address: Optional[str] = None,
    ) -> Conversation:
        conversation: Conversation = [{"role": "system", "content": system_prompt}]
        if wallet_address:
            conversation.append(
                {
                    "role": "system",
                    "content": f"Request context walletAddress: {wallet_address}. Use this wallet directly.",
                }
            )
        for msg in messages:
            # Caller-side tool messages have no tool_call_id and are not valid on the wire.
            if msg.role == "tool":
                continue
            conversation.append({"role": msg.role, "content": msg.content})
        return conversation

    def add_hint(self, conversation: Conversation, text: str) -> None:
        conversation.append({"role": "system", "content": text})

    async def _post(self, path: str, json: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._client.post(path, json=json)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise provider_error_for_status(self.name, exc.response.status_code, exc.response.text) from exc
        except httpx.RequestError as exc:
            raise LLMProviderConnectionError(f"{self.name} request error: {exc}", provider=self.name) from exc

    async def _send(
        self,
        conversation: Conversation,
        tools: Sequence[ToolDefinition],
        forced_tool: Optional[str],
    ) -> ProviderTurn:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": conversation,
        }
        if tools:
            payload["tools"] = [tool.to_openai_format() for tool in tools]
            payload["tool_choice"] = (
                {"type": "function", "function": {"name": forced_tool}} if forced_tool else "auto"
            )

        data = await self._post(self._chat_completions_path, json=payload)

        choices = data.get("choices") or []
        message = choices[0].get("message") if choices and isinstance(choices[0], dict) else None
        if not isinstance(message, dict):
            raise ProtocolError(f"{self.name} response had no message.", provider=self.name)

        raw_calls = message.get("tool_calls") or []
        tool_calls = [self._parse_tool_call(raw) for raw in raw_calls]

        assistant_message: Dict[str, Any] = {"role": "assistant", "content": message.get("content") or ""}
        if raw_calls:
            assistant_message["tool_calls"] = raw_calls

        return ProviderTurn(
            text=_normalize_content(message.get("content")),
            tool_calls=tool_calls,
            assistant_message=assistant_message,
            model=data.get("model") or self.model,
            finish_reason=choices[0].get("finish_reason"),
        )

    def _parse_tool_call(self, raw: Dict[str, Any]) -> ToolCall:
        function = raw.get("function") or {}
        name = function.get("name") or ""
        raw_arguments = function.get("arguments") or "{}"
        if isinstance(raw_arguments, dict):
            arguments = raw_arguments
        else:
            try:
                arguments = json.loads(raw_arguments)
            except json.JSONDecodeError as exc:
                raise ToolArgumentsError(name, str(raw_arguments), provider=self.name) from exc
        if not isinstance(arguments, dict):
            raise ToolArgumentsError(name, str(raw_arguments), provider=self.name)
        return ToolCall(id=str(raw.get("id") or ""), name=name, arguments=arguments)

    def append_assistant(self, conversation: Conversation, turn: ProviderTurn) -> None:
        conversation.append(turn.assistant_message)

    def append_tool_results(
        self,
        conversation: Conversation,
        results: Sequence[Tuple[ToolCall, Dict[str, Any]]],
    ) -> None:
        for call, result in results:
            conversation.append(
                {
                    "role": "tool",
                    "tool_call_id": call.id,
                    "content": json.dumps(result),
                }
            )

    async def __aenter__(self) -> "OpenAICompatibleProvider":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self._client.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()


class OpenAIProvider(OpenAICompatibleProvider):
    """Direct OpenAI chat completions."""

    name = "openai"


class OpenRouterProvider(OpenAICompatibleProvider):
    """OpenRouter's OpenAI-compatible endpoint."""

    name = "openrouter"

    def default_base_url(self) -> str:
        return settings.openrouter_base_url

    def extra_headers(self) -> Dict[str, str]:
        return {
            "HTTP-Referer": settings.openrouter_referer,
            "X-Title": settings.openrouter_title,
        }


def _normalize_content(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: List[str] = []
        for item in content:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict) and item.get("text") is not None:
                parts.append(str(item["text"]))
        return "".join(parts)
    return str(content)
