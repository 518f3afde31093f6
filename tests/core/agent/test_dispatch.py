"""Tests for the provider tool-calling loop."""

import asyncio
import json

import httpx
import pytest

from dex_agent.core.agent.confirmation import PendingConfirmation
from dex_agent.core.agent.dispatch import ProviderDispatcher
from dex_agent.core.agent.executor import AgentState, ToolExecutor
from dex_agent.core.agent.prompts import DEFAULT_SYSTEM_PROMPT
from dex_agent.core.recovery import RetryConfig, ToolArgumentsError, ToolLoopExceededError, TurnCancelledError
from dex_agent.providers.llm import LLMProviderAuthError, OpenAIProvider
from dex_agent.types import ChatMessage, TurnRequest

from fakes import (
    BALANCE_RESULT,
    WALLET,
    FakeToolBackend,
    ScriptedChatCompletions,
    anthropic_provider,
    anthropic_text,
    anthropic_tool_use,
    openai_text,
    openai_tool_calls,
)

OVERVIEW_RESULT = {"ok": True, "data": {"marketIndex": 0, "bestBid": 1, "bestAsk": 3, "midPrice": 2, "spreadBps": 10}}


def turn(text, wallet=WALLET, cancel_event=None):
    return TurnRequest(
        messages=[ChatMessage(role="user", content=text)],
        wallet_address=wallet,
        cancel_event=cancel_event,
    )


def openai(llm):
    return OpenAIProvider(api_key="test-key", transport=llm.transport, retry_base_delay=0.0)


@pytest.fixture
def backend():
    return FakeToolBackend().on("get_balance", BALANCE_RESULT).on("get_market_overview", OVERVIEW_RESULT)


@pytest.fixture
def dispatcher(backend):
    state = AgentState()
    executor = ToolExecutor(backend.client(), state, RetryConfig(max_attempts=3, initial_delay_seconds=0.0))
    return ProviderDispatcher(executor, PendingConfirmation(state))


class TestOpenAIDispatch:
    """Loop behaviour over the chat completions wire shape."""

    @pytest.mark.asyncio
    async def test_forced_tool_only_on_first_round(self, dispatcher, backend):
        llm = ScriptedChatCompletions(
            openai_tool_calls(("call_1", "get_balance", {})),
            openai_text("You have 120 BASE available."),
        )

        reply = await dispatcher.run(turn("what's my balance?"), openai(llm))

        assert reply == "You have 120 BASE available."
        first, second = llm.requests
        assert first["tool_choice"] == {"type": "function", "function": {"name": "get_balance"}}
        assert second["tool_choice"] == "auto"

        assert first["messages"][0] == {"role": "system", "content": DEFAULT_SYSTEM_PROMPT}
        assert first["messages"][1]["content"] == f"Request context walletAddress: {WALLET}. Use this wallet directly."
        assert first["messages"][-1]["content"].startswith('Forced action hint: call tool "get_balance"')
        assert {tool["function"]["name"] for tool in first["tools"]} >= {"get_balance", "place_order"}

        tool_message = second["messages"][-1]
        assert tool_message["role"] == "tool"
        assert tool_message["tool_call_id"] == "call_1"
        assert json.loads(tool_message["content"])["userMessage"].startswith("Here is your balance:")
        assert second["messages"][-2]["tool_calls"][0]["id"] == "call_1"

        assert backend.calls_for("get_balance")[0]["args"] == {"walletAddress": WALLET, "marketIndex": 0}

    @pytest.mark.asyncio
    async def test_no_forced_tool_without_wallet(self, dispatcher):
        llm = ScriptedChatCompletions(openai_text("Connect a wallet first."))

        await dispatcher.run(turn("what's my balance?", wallet=None), openai(llm))

        assert llm.requests[0]["tool_choice"] == "auto"

    @pytest.mark.asyncio
    async def test_round_cap(self, backend):
        state = AgentState()
        executor = ToolExecutor(backend.client(), state, RetryConfig(max_attempts=3, initial_delay_seconds=0.0))
        dispatcher = ProviderDispatcher(executor, PendingConfirmation(state), max_rounds=2)
        llm = ScriptedChatCompletions(
            openai_tool_calls(("c1", "get_market_overview", {})),
            openai_tool_calls(("c2", "get_market_overview", {})),
            openai_text("never reached"),
        )

        with pytest.raises(ToolLoopExceededError) as exc_info:
            await dispatcher.run(turn("tell me about the market"), openai(llm))

        assert str(exc_info.value) == "openai tool loop exceeded max iterations (2)."
        assert len(llm.requests) == 2

    @pytest.mark.asyncio
    async def test_needs_confirmation_parks_action(self, dispatcher, backend):
        order = {"side": "buy", "orderType": "limit", "amountBase": 10, "priceInQuotePerBase": 2}
        backend.on("place_order", {"ok": False, "needsConfirmation": True, "data": order})
        llm = ScriptedChatCompletions(
            openai_tool_calls(("c1", "place_order", {**order, "confirm": False})),
            openai_text("Please confirm the LIMIT BUY of 10 BASE at 2."),
        )

        reply = await dispatcher.run(turn("place a limit buy please"), openai(llm))

        assert reply == "Please confirm the LIMIT BUY of 10 BASE at 2."
        pending = dispatcher.confirmation.pending
        assert pending.name == "place_order"
        assert pending.args == order
        assert pending.wallet_address == WALLET

    @pytest.mark.asyncio
    async def test_model_cannot_confirm_in_the_same_turn(self, dispatcher, backend):
        order = {"side": "buy", "orderType": "limit", "amountBase": 10, "priceInQuotePerBase": 2}
        backend.on("place_order", {"ok": False, "needsConfirmation": True, "data": order})
        llm = ScriptedChatCompletions(
            openai_tool_calls(("c1", "place_order", {**order, "confirm": False})),
            openai_tool_calls(("c2", "place_order", {**order, "confirm": True})),
            openai_text("Please confirm the LIMIT BUY of 10 BASE at 2."),
        )

        reply = await dispatcher.run(turn("place a limit buy please"), openai(llm))

        assert reply == "Please confirm the LIMIT BUY of 10 BASE at 2."
        assert [call["args"].get("confirm") for call in backend.calls_for("place_order")] == [False]
        blocked = json.loads(llm.requests[2]["messages"][-1]["content"])
        assert blocked["ok"] is False
        assert blocked["needsConfirmation"] is True
        assert dispatcher.confirmation.pending.args == order

    @pytest.mark.asyncio
    async def test_confirm_in_the_proposing_round_is_blocked(self, dispatcher, backend):
        order = {"orderId": "9"}
        backend.on("cancel_order", {"ok": False, "needsConfirmation": True, "data": order})
        llm = ScriptedChatCompletions(
            openai_tool_calls(
                ("c1", "cancel_order", {**order, "confirm": False}),
                ("c2", "cancel_order", {**order, "confirm": True}),
            ),
            openai_text("Reply yes to cancel order #9."),
        )

        await dispatcher.run(turn("cancel my order 9"), openai(llm))

        assert [call["args"].get("confirm") for call in backend.calls_for("cancel_order")] == [False]
        assert dispatcher.confirmation.pending.name == "cancel_order"

    @pytest.mark.asyncio
    async def test_confirmed_call_clears_pending(self, dispatcher, backend):
        dispatcher.confirmation.propose("cancel_order", {"orderId": "9"}, WALLET)
        backend.on("cancel_order", {"ok": True, "data": {"orderId": "9", "statusAfterCancel": "cancelled"}})
        llm = ScriptedChatCompletions(
            openai_tool_calls(("c1", "cancel_order", {"orderId": "9", "confirm": True})),
            openai_text("Order 9 cancelled."),
        )

        await dispatcher.run(turn("please cancel it now"), openai(llm))

        assert dispatcher.confirmation.pending is None

    @pytest.mark.asyncio
    async def test_executed_order_is_enriched(self, dispatcher, backend):
        backend.on("place_order", {"ok": True, "data": {"orderId": "77", "marketIndex": 0}})
        backend.on("get_order_status", {"ok": True, "data": {"orderId": "77", "status": "open", "filledBase": 1, "remainingBase": 9}})
        backend.on("get_order_insight", {"ok": True, "data": {"orderId": "77", "side": "buy"}})
        llm = ScriptedChatCompletions(
            openai_tool_calls(("c1", "place_order", {"side": "buy", "amountBase": 10, "confirm": True})),
            openai_text("Done."),
        )

        await dispatcher.run(turn("place it"), openai(llm))

        result = json.loads(llm.requests[1]["messages"][-1]["content"])
        assert result["data"]["latestStatus"]["status"] == "open"
        assert result["data"]["statusDetail"]["side"] == "buy"
        assert "- **Filled Now:** 1 BASE" in result["userMessage"]

    @pytest.mark.asyncio
    async def test_failed_insight_keeps_original_result(self, dispatcher, backend):
        backend.on("place_order", {"ok": True, "data": {"orderId": "77", "marketIndex": 0}, "userMessage": "Order 77 placed."})
        backend.on("get_order_status", {"ok": True, "data": {"orderId": "77", "status": "open", "marketIndex": 0}})
        backend.on("get_order_insight", (404, {"error": "order not indexed yet"}))
        llm = ScriptedChatCompletions(
            openai_tool_calls(("c1", "place_order", {"side": "buy", "amountBase": 10, "confirm": True})),
            openai_text("Done."),
        )

        await dispatcher.run(turn("place it"), openai(llm))

        assert len(backend.calls_for("get_order_status")) == 1
        assert len(backend.calls_for("get_order_insight")) == 1
        result = json.loads(llm.requests[1]["messages"][-1]["content"])
        assert result["userMessage"] == "Order 77 placed."
        assert "statusDetail" not in result["data"]
        assert "latestStatus" not in result["data"]

    @pytest.mark.asyncio
    async def test_tool_failure_is_fed_back(self, dispatcher, backend):
        backend.on("place_order", (400, {"error": "insufficient balance"}))
        llm = ScriptedChatCompletions(
            openai_tool_calls(("c1", "place_order", {"side": "buy", "amountBase": 1000})),
            openai_text("You do not have enough funds for that."),
        )

        reply = await dispatcher.run(turn("buy a lot"), openai(llm))

        assert reply == "You do not have enough funds for that."
        result = json.loads(llm.requests[1]["messages"][-1]["content"])
        assert result["ok"] is False
        assert result["message"] == "insufficient balance"
        assert result["userMessage"] == "The action failed due to insufficient balance for this market."

    @pytest.mark.asyncio
    async def test_unreachable_backend_is_fed_back(self, dispatcher, backend):
        def refuse(body):
            raise httpx.ConnectError("connection refused")

        backend.on("get_market_overview", refuse)
        llm = ScriptedChatCompletions(
            openai_tool_calls(("c1", "get_market_overview", {})),
            openai_text("The DEX backend is unreachable right now."),
        )

        reply = await dispatcher.run(turn("tell me about the market"), openai(llm))

        assert reply == "The DEX backend is unreachable right now."
        assert len(backend.calls_for("get_market_overview")) == 3
        result = json.loads(llm.requests[1]["messages"][-1]["content"])
        assert result["ok"] is False
        assert result["message"] == "Tool backend unreachable: connection refused"
        assert result["userMessage"] == (
            "I couldn't complete get_market_overview: Tool backend unreachable: connection refused."
        )

    @pytest.mark.asyncio
    async def test_fenced_json_reply_is_unwrapped(self, dispatcher):
        llm = ScriptedChatCompletions(openai_text('Sure:\n```json\n{"userMessage": "Markets listed."}\n```'))

        assert await dispatcher.run(turn("hello"), openai(llm)) == "Markets listed."

    @pytest.mark.asyncio
    async def test_blank_reply_falls_back_to_last_summary(self, dispatcher):
        llm = ScriptedChatCompletions(
            openai_tool_calls(("c1", "get_market_overview", {})),
            openai_text("{}"),
        )

        reply = await dispatcher.run(turn("tell me about the market"), openai(llm))

        assert reply == "Market #0 overview: best bid 1, best ask 3, mid 2, spread 10 bps."

    @pytest.mark.asyncio
    async def test_transient_provider_error_is_retried(self, dispatcher):
        llm = ScriptedChatCompletions((503, "overloaded"), openai_text("hi"))

        assert await dispatcher.run(turn("hello"), openai(llm)) == "hi"
        assert len(llm.requests) == 2

    @pytest.mark.asyncio
    async def test_auth_error_is_not_retried(self, dispatcher):
        llm = ScriptedChatCompletions((401, "invalid api key"))

        with pytest.raises(LLMProviderAuthError):
            await dispatcher.run(turn("hello"), openai(llm))

        assert len(llm.requests) == 1

    @pytest.mark.asyncio
    async def test_unparseable_arguments_are_fatal(self, dispatcher, backend):
        llm = ScriptedChatCompletions(openai_tool_calls(("c1", "get_balance", "{not json")))

        with pytest.raises(ToolArgumentsError):
            await dispatcher.run(turn("hello"), openai(llm))

        assert len(llm.requests) == 1
        assert backend.calls_for("get_balance") == []

    @pytest.mark.asyncio
    async def test_cancelled_turn(self, dispatcher, backend):
        event = asyncio.Event()
        event.set()
        llm = ScriptedChatCompletions(openai_text("never"))

        with pytest.raises(TurnCancelledError):
            await dispatcher.run(turn("hello", cancel_event=event), openai(llm))

        assert llm.requests == []
        assert backend.calls == []


class TestAnthropicDispatch:
    """Loop behaviour over the messages/tool_use wire shape."""

    @pytest.mark.asyncio
    async def test_tool_results_share_one_user_message(self, dispatcher, backend):
        provider = anthropic_provider(
            anthropic_tool_use(
                ("tu_1", "get_balance", {}),
                ("tu_2", "get_market_overview", {}),
                text="Checking.",
            ),
            anthropic_text("Balance and market fetched."),
        )

        reply = await dispatcher.run(turn("what's my balance?"), provider)

        assert reply == "Balance and market fetched."
        create = provider.client.messages.create
        assert create.await_count == 2
        first_call, second_call = create.await_args_list

        assert first_call.kwargs["tool_choice"] == {"type": "tool", "name": "get_balance"}
        assert "tool_choice" not in second_call.kwargs
        assert first_call.kwargs["system"] == DEFAULT_SYSTEM_PROMPT
        assert first_call.kwargs["tools"][0].keys() == {"name", "description", "input_schema"}

        messages = second_call.kwargs["messages"]
        assert messages[0] == {
            "role": "user",
            "content": f"Context: walletAddress={WALLET}. Use this wallet directly.",
        }
        assistant, results = messages[-2], messages[-1]
        assert assistant["role"] == "assistant"
        assert [block["type"] for block in assistant["content"]] == ["text", "tool_use", "tool_use"]
        assert results["role"] == "user"
        assert [block["tool_use_id"] for block in results["content"]] == ["tu_1", "tu_2"]
        assert json.loads(results["content"][0]["content"])["ok"] is True

    @pytest.mark.asyncio
    async def test_system_messages_join_the_system_prompt(self, dispatcher):
        provider = anthropic_provider(anthropic_text("Hi."))
        request = TurnRequest(
            messages=[
                ChatMessage(role="system", content="Answer in French."),
                ChatMessage(role="user", content="hello"),
            ]
        )

        await dispatcher.run(request, provider)

        kwargs = provider.client.messages.create.await_args.kwargs
        assert kwargs["system"] == f"{DEFAULT_SYSTEM_PROMPT}\nAnswer in French."
        assert kwargs["messages"] == [{"role": "user", "content": "hello"}]
