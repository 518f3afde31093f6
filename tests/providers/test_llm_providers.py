"""Tests for LLM provider wire formats, error mapping and the registry."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import anthropic
import httpx
import pytest

from dex_agent.config import settings
from dex_agent.core.recovery import ProtocolError, ToolArgumentsError
from dex_agent.providers.llm import (
    AnthropicProvider,
    LLMProviderAPIError,
    LLMProviderAuthError,
    LLMProviderConnectionError,
    LLMProviderRateLimitError,
    OpenAIProvider,
    OpenRouterProvider,
    ToolCall,
    ToolDefinition,
    canonical_provider_name,
    get_available_providers,
    get_llm_provider,
)
from dex_agent.types import ChatMessage

from fakes import ScriptedChatCompletions, anthropic_provider, openai_text, openai_tool_calls

TOOLS = [ToolDefinition(name="get_balance", description="Balances")]
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"


def anthropic_status_error(cls, status):
    response = httpx.Response(status, request=httpx.Request("POST", ANTHROPIC_URL))
    return cls("boom", response=response, body=None)


class TestRegistry:
    """Provider selection and configuration lookup."""

    @pytest.mark.parametrize(
        "name, expected",
        [("Claude", "anthropic"), ("gpt", "openai"), (" openrouter ", "openrouter"), ("anthropic", "anthropic")],
    )
    def test_aliases(self, name, expected):
        assert canonical_provider_name(name) == expected

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unsupported provider"):
            get_llm_provider("mystery", api_key="k")

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.setattr(settings, "openai_api_key", "")

        with pytest.raises(ValueError, match="No API key configured for provider: openai"):
            get_llm_provider("openai")

    def test_configured_key_and_default_model(self, monkeypatch):
        monkeypatch.setattr(settings, "openrouter_api_key", "or-key")

        provider = get_llm_provider("openrouter")

        assert isinstance(provider, OpenRouterProvider)
        assert provider.api_key == "or-key"
        assert provider.model == "openai/gpt-4o-mini"

    def test_explicit_key_and_model_win(self):
        provider = get_llm_provider("claude", model="claude-x", api_key="sk-1")

        assert isinstance(provider, AnthropicProvider)
        assert provider.model == "claude-x"
        assert provider.api_key == "sk-1"

    def test_available_providers(self, monkeypatch):
        monkeypatch.setattr(settings, "anthropic_api_key", "")
        monkeypatch.setattr(settings, "openai_api_key", "sk-openai")

        providers = get_available_providers()

        assert set(providers) == {"anthropic", "openai", "openrouter"}
        assert providers["openai"]["status"] == "available"
        assert providers["anthropic"]["status"] == "missing_api_key"
        assert providers["anthropic"]["default_model"] == "claude-3-7-sonnet-latest"


class TestOpenAICompatible:
    """Chat completions request and response handling."""

    def test_conversation_shape(self):
        provider = OpenAIProvider(api_key="k")
        conversation = provider.start_conversation(
            "SYSTEM",
            [
                ChatMessage(role="user", content="hi"),
                ChatMessage(role="tool", content="stray"),
                ChatMessage(role="assistant", content="hello"),
            ],
            "0xabc",
        )

        assert conversation == [
            {"role": "system", "content": "SYSTEM"},
            {"role": "system", "content": "Request context walletAddress: 0xabc. Use this wallet directly."},
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ]

    @pytest.mark.asyncio
    async def test_request_payload(self):
        llm = ScriptedChatCompletions(openai_text("ok"))
        provider = OpenAIProvider(api_key="secret", model="gpt-test", transport=llm.transport)

        turn = await provider.complete([{"role": "user", "content": "hi"}], TOOLS, forced_tool="get_balance")

        assert turn.text == "ok"
        assert turn.tool_calls == []
        request = llm.requests[0]
        assert request["model"] == "gpt-test"
        assert request["tools"] == [
            {
                "type": "function",
                "function": {
                    "name": "get_balance",
                    "description": "Balances",
                    "parameters": {"type": "object", "properties": {}},
                },
            }
        ]
        assert request["tool_choice"] == {"type": "function", "function": {"name": "get_balance"}}
        assert llm.headers[0]["authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_tool_calls_parsed(self):
        llm = ScriptedChatCompletions(openai_tool_calls(("c1", "get_balance", {"marketIndex": 1})))
        provider = OpenAIProvider(api_key="k", transport=llm.transport)

        turn = await provider.complete([], TOOLS)

        assert turn.tool_calls == [ToolCall(id="c1", name="get_balance", arguments={"marketIndex": 1})]
        assert turn.assistant_message["tool_calls"][0]["id"] == "c1"

    @pytest.mark.asyncio
    async def test_non_object_arguments_rejected(self):
        llm = ScriptedChatCompletions(openai_tool_calls(("c1", "get_balance", "[1, 2]")))
        provider = OpenAIProvider(api_key="k", transport=llm.transport)

        with pytest.raises(ToolArgumentsError):
            await provider.complete([], TOOLS)

    @pytest.mark.asyncio
    async def test_missing_message(self):
        llm = ScriptedChatCompletions({"choices": []})
        provider = OpenAIProvider(api_key="k", transport=llm.transport)

        with pytest.raises(ProtocolError):
            await provider.complete([], TOOLS)

    @pytest.mark.parametrize(
        "status, error",
        [(401, LLMProviderAuthError), (403, LLMProviderAuthError), (400, LLMProviderAPIError)],
    )
    @pytest.mark.asyncio
    async def test_status_errors(self, status, error):
        llm = ScriptedChatCompletions((status, "nope"))
        provider = OpenAIProvider(api_key="k", transport=llm.transport, retry_base_delay=0.0)

        with pytest.raises(error) as exc_info:
            await provider.complete([], TOOLS)

        assert exc_info.value.status_code == status
        assert exc_info.value.message == f"openai error: {status} nope"

    @pytest.mark.asyncio
    async def test_rate_limit_retried_then_raised(self):
        llm = ScriptedChatCompletions(*[(429, "slow down")] * 3)
        provider = OpenRouterProvider(api_key="k", transport=llm.transport, retry_base_delay=0.0)

        with pytest.raises(LLMProviderRateLimitError):
            await provider.complete([], TOOLS)

        assert len(llm.requests) == 3

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = OpenAIProvider(
            api_key="k",
            transport=httpx.MockTransport(refuse),
            max_attempts=2,
            retry_base_delay=0.0,
        )

        with pytest.raises(LLMProviderConnectionError):
            await provider.complete([], TOOLS)

    def test_tool_results(self):
        provider = OpenAIProvider(api_key="k")
        conversation = []

        provider.append_tool_results(
            conversation,
            [(ToolCall(id="a", name="x"), {"ok": True}), (ToolCall(id="b", name="y"), {"ok": False})],
        )

        assert conversation == [
            {"role": "tool", "tool_call_id": "a", "content": '{"ok": true}'},
            {"role": "tool", "tool_call_id": "b", "content": '{"ok": false}'},
        ]


class TestAnthropic:
    """Native tool-use protocol over the SDK client."""

    def test_model_required(self):
        with pytest.raises(ValueError):
            AnthropicProvider(api_key="k", model=None)

    @pytest.mark.asyncio
    async def test_tool_use_parsed(self):
        response = SimpleNamespace(
            content=[
                SimpleNamespace(type="text", text="Let me check."),
                SimpleNamespace(type="tool_use", id="tu_1", name="get_balance", input={"scope": "vault"}),
            ],
            model="claude-test",
            stop_reason="tool_use",
        )
        provider = anthropic_provider(response)

        turn = await provider.complete([{"role": "user", "content": "hi"}], TOOLS)

        assert turn.text == "Let me check."
        assert turn.tool_calls == [ToolCall(id="tu_1", name="get_balance", arguments={"scope": "vault"})]
        assert turn.assistant_message["content"][1] == {
            "type": "tool_use",
            "id": "tu_1",
            "name": "get_balance",
            "input": {"scope": "vault"},
        }
        kwargs = provider.client.messages.create.await_args.kwargs
        assert kwargs["tools"] == [{"name": "get_balance", "description": "Balances", "input_schema": {"type": "object", "properties": {}}}]
        assert kwargs["max_tokens"] == settings.anthropic_max_tokens

    @pytest.mark.asyncio
    async def test_missing_content(self):
        provider = anthropic_provider(SimpleNamespace(content=None, model="m", stop_reason=None))

        with pytest.raises(ProtocolError):
            await provider.complete([], TOOLS)

    @pytest.mark.parametrize(
        "sdk_error, expected, status",
        [
            (anthropic.AuthenticationError, LLMProviderAuthError, 401),
            (anthropic.RateLimitError, LLMProviderRateLimitError, 429),
            (anthropic.InternalServerError, LLMProviderAPIError, 500),
        ],
    )
    @pytest.mark.asyncio
    async def test_sdk_errors_mapped(self, sdk_error, expected, status):
        provider = anthropic_provider(*[anthropic_status_error(sdk_error, status)] * 3)

        with pytest.raises(expected) as exc_info:
            await provider.complete([], TOOLS)

        assert exc_info.value.status_code == status
        assert exc_info.value.provider == "anthropic"

    @pytest.mark.asyncio
    async def test_transient_error_then_success(self):
        provider = anthropic_provider(
            anthropic_status_error(anthropic.InternalServerError, 503),
            SimpleNamespace(content=[SimpleNamespace(type="text", text="ok")], model="m", stop_reason="end_turn"),
        )

        turn = await provider.complete([], TOOLS)

        assert turn.text == "ok"
        assert provider.client.messages.create.await_count == 2

    @pytest.mark.asyncio
    async def test_connection_error(self):
        error = anthropic.APIConnectionError(request=httpx.Request("POST", ANTHROPIC_URL))
        client = SimpleNamespace(messages=SimpleNamespace(create=AsyncMock(side_effect=error)))
        provider = AnthropicProvider(api_key="k", model="m", client=client, max_attempts=1)

        with pytest.raises(LLMProviderConnectionError):
            await provider.complete([], TOOLS)
