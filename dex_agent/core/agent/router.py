"""
Deterministic Router

Answers pattern-matched requests straight from the tool backend, without a
language model round trip.
"""

import math
from typing import Any, Dict, Optional

import structlog

from ...types import ToolResult, TurnRequest
from .confirmation import PendingConfirmation
from .executor import ToolExecutor
from .intents import DeterministicIntent, IntentType, detect_intent, detect_scope
from .summaries import summarize_tool_result


class DeterministicRouter:
    """Maps a detected intent onto a single tool call and its summary."""

    def __init__(self, executor: ToolExecutor, confirmation: PendingConfirmation):
        self.executor = executor
        self.confirmation = confirmation
        self.logger = structlog.stdlib.get_logger("dex_agent.router")

    @property
    def state(self):
        return self.executor.state

    async def route(self, request: TurnRequest, intent: Optional[DeterministicIntent] = None) -> Optional[str]:
        """Return the reply for a deterministic intent, or ``None`` to fall through."""
        intent = intent or detect_intent(request.messages)
        if intent is None:
            return None

        wallet = request.wallet_address
        cancel_event = request.cancel_event
        await self.executor.ensure_markets(wallet, cancel_event)

        if intent.type is IntentType.SWITCH_MARKET:
            self.logger.info("intent_route", type=intent.type.value, market_index=intent.market_index)
            if not self.executor.market_exists(intent.market_index):
                return f"Market #{intent.market_index} is not available. Ask me to list markets."
            self.state.active_market_index = intent.market_index
            return f"Switched to market #{intent.market_index}."

        if intent.market_index is not None:
            self.state.active_market_index = intent.market_index
        market_index = self.state.active_market_index if self.state.active_market_index is not None else 0
        self.logger.info("intent_route", type=intent.type.value, market_index=market_index)

        if intent.type is IntentType.CURRENT_MARKET:
            if self.state.active_market_index is None:
                return "No active market selected yet. Ask me to list markets."
            return f"You are on market #{self.state.active_market_index}."

        if intent.type is IntentType.LIST_MARKETS:
            return await self._call("list_markets", {}, request)

        if intent.type is IntentType.BALANCE:
            last_user = request.last_user_message()
            args = {
                "walletAddress": wallet,
                "scope": detect_scope(last_user.content if last_user else ""),
                "marketIndex": market_index,
            }
            return await self._call("get_balance", args, request)

        if intent.type is IntentType.ORDERS_OVERVIEW:
            args = {"walletAddress": wallet, "marketIndex": market_index, "maxRows": 200}
            return await self._call("get_wallet_orders_overview", args, request)

        if intent.type is IntentType.ORDER_STATUS:
            args = {"orderId": intent.order_id, "marketIndex": market_index}
            return await self._call("get_order_insight", args, request)

        if intent.type is IntentType.CANCEL_ORDER:
            args = {"orderId": intent.order_id, "marketIndex": market_index}
            return await self._call_guarded("cancel_order", args, request)

        if intent.type is IntentType.MARKET_OVERVIEW:
            return await self._call("get_market_overview", {"marketIndex": market_index}, request)

        if intent.type is IntentType.DEPTH:
            return await self._call("get_orderbook_depth", {"marketIndex": market_index, "levels": 10}, request)

        if intent.type is IntentType.DEX_STATUS:
            return await self._call("get_dex_status", {"marketIndex": market_index, "depthLevels": 10}, request)

        if intent.type is IntentType.PRICE_RECOMMENDATION:
            args = {"marketIndex": market_index, "side": intent.side, "strategy": "balanced"}
            return await self._call("get_price_recommendation", args, request)

        if intent.type is IntentType.PLACE_ORDER:
            return await self._call_guarded("place_order", self._place_order_args(intent, market_index, wallet), request)

        return None

    @staticmethod
    def _place_order_args(intent: DeterministicIntent, market_index: int, wallet: Optional[str]) -> Dict[str, Any]:
        args: Dict[str, Any] = {
            "marketIndex": market_index,
            "walletAddress": wallet,
            "side": intent.side,
            "orderType": intent.order_type,
            "amountBase": intent.amount_base,
        }
        if intent.price is not None:
            args["priceInQuotePerBase"] = intent.price
            if intent.order_type == "market" and intent.side == "buy":
                # Quote cap leaves 20% headroom over the quoted notional.
                args["maxQuoteAmount"] = math.ceil(intent.amount_base * intent.price * 1.2)
        return args

    async def _execute(self, name: str, args: Dict[str, Any], request: TurnRequest) -> ToolResult:
        clean = {k: v for k, v in args.items() if v is not None}
        return await self.executor.execute_with_retry(name, clean, request.wallet_address, request.cancel_event)

    async def _call(self, name: str, args: Dict[str, Any], request: TurnRequest) -> str:
        result = await self._execute(name, args, request)
        return summarize_tool_result(name, result.to_wire())

    async def _call_guarded(self, name: str, args: Dict[str, Any], request: TurnRequest) -> str:
        """Preflight a state-changing call with ``confirm=False``."""
        result = await self._execute(name, {**args, "confirm": False}, request)
        if result.needs_confirmation:
            self.confirmation.propose(
                name,
                {k: v for k, v in args.items() if v is not None},
                request.wallet_address,
            )
        return summarize_tool_result(name, result.to_wire())
