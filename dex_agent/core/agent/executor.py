"""
Tool Executor

Normalizes tool arguments, calls the tool backend with transient-failure
retries and keeps the active market index in sync with what the backend
reports.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from ...config import settings
from ...providers.tool_backend import ToolBackendClient
from ...types import ToolResult, ToolSpec
from ..recovery import RetryConfig, RetryStrategy, classify_error
from .summaries import summarize_tool_result

WALLET_TOOLS = frozenset(
    {
        "get_balance",
        "place_order",
        "cancel_order",
        "list_orders",
        "get_wallet_orders_overview",
        "smart_place_order",
    }
)

MARKET_TOOLS = WALLET_TOOLS | frozenset(
    {
        "get_order_status",
        "watch_order_status",
        "get_order_insight",
        "get_orderbook_depth",
        "get_dex_status",
        "get_market_overview",
        "get_price_recommendation",
        "get_currency_info",
    }
)

_POSITIVE_NUMBER_FIELDS = ("amountBase", "priceInQuotePerBase", "maxQuoteAmount")


@dataclass(frozen=True)
class PendingAction:
    """A state-changing tool call waiting for the user's go-ahead."""

    id: int
    name: str
    args: Dict[str, Any]
    wallet_address: Optional[str]
    created_at: float = field(default_factory=time.time)


@dataclass
class AgentState:
    """Mutable state owned by a single orchestrator."""

    active_market_index: Optional[int] = None
    markets: Optional[List[Dict[str, Any]]] = None
    tools: Optional[List[ToolSpec]] = None
    pending_action: Optional[PendingAction] = None
    pending_action_seq: int = 0


def _positive_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")) or number <= 0:
        return None
    return int(number) if number.is_integer() else number


class ToolExecutor:
    """Executes named tools against the backend on behalf of one orchestrator."""

    def __init__(
        self,
        client: ToolBackendClient,
        state: Optional[AgentState] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.client = client
        self.state = state or AgentState()
        self.logger = structlog.stdlib.get_logger("dex_agent.tools")
        self.retry = RetryStrategy(
            retry_config
            or RetryConfig(
                max_attempts=settings.tool_max_attempts,
                initial_delay_seconds=settings.tool_retry_base_delay,
            )
        )

    def _safe_log(self, event: str, level: str = "info", **fields: Any) -> None:
        """Emit a structured log line; a broken log sink never aborts a tool call."""
        try:
            getattr(self.logger, level)(event, **fields)
        except Exception:  # noqa: BLE001
            pass

    def normalize_args(
        self,
        name: str,
        args: Optional[Dict[str, Any]],
        wallet_address: Optional[str],
    ) -> Dict[str, Any]:
        out = dict(args or {})

        if wallet_address and name in WALLET_TOOLS and not isinstance(out.get("walletAddress"), str):
            out["walletAddress"] = wallet_address

        market_index = out.get("marketIndex")
        has_number = isinstance(market_index, (int, float)) and not isinstance(market_index, bool)
        if name in MARKET_TOOLS and not has_number and self.state.active_market_index is not None:
            out["marketIndex"] = self.state.active_market_index

        if isinstance(out.get("marketIndex"), str):
            try:
                out["marketIndex"] = int(float(out["marketIndex"]))
            except ValueError:
                pass

        for key in _POSITIVE_NUMBER_FIELDS:
            if key in out:
                number = _positive_number(out[key])
                if number is not None:
                    out[key] = number

        if out.get("orderId") is not None:
            out["orderId"] = str(out["orderId"])

        return out

    async def execute(
        self,
        name: str,
        args: Optional[Dict[str, Any]] = None,
        wallet_address: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ToolResult:
        """Run one tool call (no retries).

        Raises:
            ToolExecutionError: the backend answered with a non-2xx status or
                could not be reached.
        """
        normalized = self.normalize_args(name, args, wallet_address)
        started = time.monotonic()
        payload = await self.client.execute(name, normalized, wallet_address, cancel_event)

        user_message = payload.get("userMessage")
        if not (isinstance(user_message, str) and user_message.strip()):
            payload = {**payload, "userMessage": summarize_tool_result(name, payload)}
        result = ToolResult.model_validate(payload)

        if result.market_index is not None:
            self.state.active_market_index = result.market_index

        self._safe_log(
            "tool_call",
            tool=name,
            ok=result.ok,
            ms=int((time.monotonic() - started) * 1000),
            market_index=result.market_index if result.market_index is not None else normalized.get("marketIndex"),
        )
        return result

    async def execute_with_retry(
        self,
        name: str,
        args: Optional[Dict[str, Any]] = None,
        wallet_address: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ToolResult:
        """Run a tool call, retrying transient backend failures with backoff."""

        def _log_failure(attempt: int, error: BaseException, retryable: bool) -> None:
            context = classify_error(error)
            self._safe_log(
                "tool_error",
                level="warning",
                tool=name,
                attempt=attempt,
                status=context.status_code,
                retryable=retryable,
                message=str(error),
            )

        return await self.retry.execute(
            lambda: self.execute(name, args, wallet_address, cancel_event),
            cancel_event=cancel_event,
            on_failure=_log_failure,
        )

    async def ensure_markets(
        self,
        wallet_address: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[Dict[str, Any]]:
        """Fetch the market list once and seed the active market from it."""
        if self.state.markets:
            return self.state.markets

        result = await self.execute_with_retry("list_markets", {}, wallet_address, cancel_event)
        data = result.payload
        markets = [m for m in data.get("markets") or [] if isinstance(m, dict)]
        self.state.markets = markets

        default_index = data.get("defaultMarketIndex")
        if isinstance(default_index, int) and not isinstance(default_index, bool):
            self.state.active_market_index = default_index
        elif self.state.active_market_index is None and markets and markets[0].get("index") is not None:
            self.state.active_market_index = int(markets[0]["index"])
        return markets

    async def ensure_tools(self, cancel_event: Optional[asyncio.Event] = None) -> List[ToolSpec]:
        if self.state.tools is None:
            self.state.tools = await self.client.fetch_schema(cancel_event)
        return self.state.tools

    def market_exists(self, market_index: int) -> bool:
        for market in self.state.markets or []:
            try:
                if int(market.get("index")) == market_index:
                    return True
            except (TypeError, ValueError):
                continue
        return False


__all__ = [
    "AgentState",
    "MARKET_TOOLS",
    "PendingAction",
    "ToolExecutor",
    "WALLET_TOOLS",
]
