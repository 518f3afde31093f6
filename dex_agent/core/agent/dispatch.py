"""
Provider Dispatch Loop

Drives a tool-calling conversation with a language model provider: every
tool the model requests is executed, its result fed back, and the loop ends
on the first round without tool calls.
"""

from typing import Any, Dict, List, Optional, Tuple

import structlog

from ...config import settings
from ...providers.llm import ForcedTool, LLMProvider, ToolCall, ToolDefinition
from ...types import ToolResult, TurnRequest
from ..recovery import ToolExecutionError, ToolLoopExceededError, raise_if_cancelled
from .confirmation import PendingConfirmation
from .executor import ToolExecutor
from .intents import derive_confirmation_tool, derive_forced_tool
from .lifecycle import enrich_lifecycle_result
from .prompts import DEFAULT_SYSTEM_PROMPT
from .summaries import classify_tool_error, is_blank_reply, normalize_assistant_reply

AWAITING_CONFIRMATION_MESSAGE = "Awaiting user confirmation. Ask the user to reply yes or no before confirming."


class ProviderDispatcher:
    """Runs the bounded model/tool loop for one turn."""

    def __init__(
        self,
        executor: ToolExecutor,
        confirmation: PendingConfirmation,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        max_rounds: Optional[int] = None,
    ):
        self.executor = executor
        self.confirmation = confirmation
        self.system_prompt = system_prompt
        self.max_rounds = max_rounds or settings.max_tool_rounds
        self.logger = structlog.stdlib.get_logger("dex_agent.dispatch")

    def _forced_tool(self, request: TurnRequest) -> Optional[ForcedTool]:
        derived = derive_confirmation_tool(request.messages, request.wallet_address) or derive_forced_tool(
            request.messages, request.wallet_address
        )
        if derived is None:
            return None
        forced = ForcedTool(name=derived["name"], arguments=derived["arguments"])
        market_index = forced.arguments.get("marketIndex")
        has_index = isinstance(market_index, int) and not isinstance(market_index, bool)
        if not has_index and self.executor.state.active_market_index is not None:
            forced.arguments["marketIndex"] = self.executor.state.active_market_index
        return forced

    async def run(self, request: TurnRequest, provider: LLMProvider) -> str:
        """Run the loop and return the user-visible reply.

        Raises:
            ToolLoopExceededError: the model still wanted tools after the last round.
            TurnCancelledError: the turn's cancel event fired.
        """
        cancel_event = request.cancel_event
        wallet = request.wallet_address

        await self.executor.ensure_markets(wallet, cancel_event)
        specs = await self.executor.ensure_tools(cancel_event)
        tools = [ToolDefinition.from_spec(spec) for spec in specs]

        conversation = provider.start_conversation(self.system_prompt, request.messages, wallet)
        forced = self._forced_tool(request)
        if forced is not None:
            provider.add_hint(conversation, forced.hint())
            self.logger.info("forced_tool", provider=provider.name, tool=forced.name)

        summaries: List[str] = []
        # Set once a call of this turn came back needing confirmation; only the
        # user can confirm it, on a later turn.
        awaiting_user = False
        for round_index in range(self.max_rounds):
            raise_if_cancelled(cancel_event)
            turn = await provider.complete(
                conversation,
                tools,
                forced_tool=forced.name if forced is not None and round_index == 0 else None,
                cancel_event=cancel_event,
            )

            if not turn.tool_calls:
                reply = normalize_assistant_reply(turn.text)
                if is_blank_reply(reply) and summaries:
                    return summaries[-1]
                return reply

            provider.append_assistant(conversation, turn)
            results: List[Tuple[ToolCall, Dict[str, Any]]] = []
            for call in turn.tool_calls:
                raise_if_cancelled(cancel_event)
                if awaiting_user and call.arguments.get("confirm") is True:
                    self.logger.warning("confirm_blocked", provider=provider.name, tool=call.name)
                    blocked = ToolResult(ok=False, needs_confirmation=True, message=AWAITING_CONFIRMATION_MESSAGE)
                    results.append((call, blocked.to_wire()))
                    continue

                try:
                    result = await self.executor.execute_with_retry(call.name, call.arguments, wallet, cancel_event)
                except ToolExecutionError as e:
                    # Reported back to the model as a failed tool result.
                    self.logger.warning("tool_failed", provider=provider.name, tool=call.name, status=e.status_code)
                    result = ToolResult(ok=False, message=e.message, user_message=classify_tool_error(call.name, e.message))
                else:
                    result = await enrich_lifecycle_result(self.executor, call.name, result, wallet, cancel_event)

                if result.needs_confirmation:
                    self.confirmation.propose(call.name, call.arguments, wallet)
                    awaiting_user = True
                elif call.arguments.get("confirm") is True and self.confirmation.pending is not None:
                    self.confirmation.clear()

                if result.user_message and result.user_message.strip():
                    summaries.append(result.user_message.strip())
                results.append((call, result.to_wire()))
            provider.append_tool_results(conversation, results)

        self.logger.error("tool_loop_exceeded", provider=provider.name, max_rounds=self.max_rounds)
        raise ToolLoopExceededError(provider.name, self.max_rounds)
