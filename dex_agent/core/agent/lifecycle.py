"""Post-execution enrichment for order-lifecycle tools."""

import asyncio
from typing import Optional

import structlog

from ...types import ToolResult
from ..recovery import TurnCancelledError
from .executor import ToolExecutor
from .summaries import format_execution_message

LIFECYCLE_TOOLS = frozenset({"place_order", "smart_place_order", "cancel_order"})

logger = structlog.stdlib.get_logger("dex_agent.lifecycle")


async def enrich_lifecycle_result(
    executor: ToolExecutor,
    tool_name: str,
    result: ToolResult,
    wallet_address: Optional[str] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> ToolResult:
    """Attach the latest order status and insight to an executed order action.

    Only applies to successful, confirmed lifecycle calls that produced an
    ``orderId``. Lookup failures leave ``result`` untouched.
    """
    if tool_name not in LIFECYCLE_TOOLS or not result.ok or result.needs_confirmation:
        return result
    order_id = result.order_id
    if not order_id:
        return result

    lookup = {"orderId": order_id, "marketIndex": result.market_index}
    status, insight = await asyncio.gather(
        executor.execute_with_retry("get_order_status", lookup, wallet_address, cancel_event),
        executor.execute_with_retry("get_order_insight", lookup, wallet_address, cancel_event),
        return_exceptions=True,
    )
    for outcome in (status, insight):
        if isinstance(outcome, TurnCancelledError):
            raise outcome
    failures = [outcome for outcome in (status, insight) if isinstance(outcome, BaseException)]
    if failures:
        logger.info(
            "lifecycle_enrichment_failed",
            tool=tool_name,
            order_id=order_id,
            errors=[str(failure) for failure in failures],
        )
        return result

    wire = result.to_wire()
    wire["data"] = {
        **result.payload,
        "statusDetail": insight.payload,
        "latestStatus": status.payload,
    }
    wire["userMessage"] = format_execution_message(tool_name, wire, status.to_wire())
    return ToolResult.model_validate(wire)
