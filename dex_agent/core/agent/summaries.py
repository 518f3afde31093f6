"""
Human-readable renderings of tool results.

Every tool result handed to the user or echoed to a model carries a
``userMessage``; when the backend does not supply one it comes from
:func:`summarize_tool_result`.
"""

import json
import re
from collections import Counter
from typing import Any, Dict, Mapping, Optional

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_JSON_PUNCTUATION_RE = re.compile(r'^[\s{}\[\]":,`]+$')

MISSING = "n/a"


def _obj(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _fmt(value: Any, default: str = MISSING) -> str:
    """Render a scalar for display; whole floats lose their trailing ``.0``."""
    if value is None:
        return default
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def classify_tool_error(tool_name: str, message: Optional[str]) -> str:
    """Map a raw backend error onto a message a trader can act on."""
    message = message or "unknown error"
    lower = message.lower()
    if "unknown marketindex" in lower or "unknown market" in lower:
        return "I couldn't find that market. Ask me to list markets and pick one by index."
    if "invalid wallet address" in lower:
        return "The wallet address format is invalid."
    if "insufficient" in lower or "balance" in lower:
        return "The action failed due to insufficient balance for this market."
    if "no market quotes available" in lower:
        return "There are no live quotes in this market yet, so pricing/execution is unavailable right now."
    if "maxquoteamount is required" in lower:
        return "Buy market orders need a max quote cap. Provide one or ask for a smart recommendation first."
    if tool_name == "place_order" and "priceinquoteperbase is required" in lower:
        return "Limit/FOK/IOC orders require a price. Please provide one."
    return f"I couldn't complete {tool_name}: {message}."


def normalize_assistant_reply(raw: Optional[str]) -> str:
    """Unwrap a reply the model sent as a JSON envelope, bare or fenced."""
    trimmed = (raw or "").strip()
    candidates = [trimmed]
    fenced = _FENCED_JSON_RE.search(trimmed)
    if fenced and fenced.group(1):
        candidates.append(fenced.group(1).strip())

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if not isinstance(parsed, dict):
            continue
        for key in ("userMessage", "message"):
            value = parsed.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return trimmed


def is_blank_reply(text: str) -> bool:
    """True for an empty reply or one made only of JSON punctuation."""
    return not text or _JSON_PUNCTUATION_RE.match(text) is not None


def _order_lines(
    order_id: Any,
    data: Mapping[str, Any],
    *,
    status: Any,
    filled: Any,
    remaining: Any,
    market_label: str = "",
    terminal_footer: str,
    open_footer: str,
) -> str:
    detail = _obj(data.get("statusDetail")) if data.get("statusDetail") else data
    impact = _obj(data.get("executionImpact"))
    order_type = _fmt(data.get("orderType"), "limit").upper()
    side = _fmt(detail.get("side", data.get("side"))).upper()
    amount = _fmt(data.get("amountBase", detail.get("amountBase")))
    price = _fmt(detail.get("limitPrice", data.get("priceInQuotePerBase")), "market")
    if impact.get("hadExecutionImpact"):
        impact_line = f"- **Balance Impact:** BASE {_fmt(impact.get('deltaBase'))}, QUOTE {_fmt(impact.get('deltaQuote'))}"
    else:
        impact_line = "- **Balance Impact:** none observed yet"
    outcome = data.get("inferredOutcome") or "unknown"

    header = [
        f"**Order Submitted** (#{_fmt(order_id, '?')}){market_label}",
        f"- **Type:** {order_type} {side}",
        f"- **Requested:** {amount} BASE @ {price}",
    ]
    if str(status) == "closed_or_not_found":
        return "\n".join(
            header
            + [
                "- **Status:** terminal/not-found in active order storage",
                "- **Fill Details:** unavailable from direct lookup",
                impact_line,
                f"- **Inferred Outcome:** {outcome}",
                "",
                terminal_footer,
            ]
        )
    return "\n".join(
        header
        + [
            f"- **Status:** {_fmt(status, 'submitted')}",
            f"- **Filled Now:** {_fmt(filled)} BASE",
            f"- **Remaining:** {_fmt(remaining)} BASE",
            impact_line,
            f"- **Inferred Outcome:** {outcome}",
            "",
            open_footer,
        ]
    )


def summarize_tool_result(tool_name: str, result: Mapping[str, Any]) -> str:
    """Produce the ``userMessage`` for a raw tool result envelope."""
    data = _obj(result.get("data"))
    ok = result.get("ok")

    if ok is False and result.get("needsConfirmation"):
        if tool_name in ("place_order", "smart_place_order"):
            side = _fmt(data.get("side"), "").upper()
            amount = _fmt(data.get("amountBase"), "?")
            order_type = _fmt(data.get("orderType"), "order").upper()
            strategy = f" ({data['strategy']})" if data.get("strategy") else ""
            return f"You are about to place a {order_type} {side} order for {amount} BASE{strategy}. Confirm to proceed."
        if tool_name == "cancel_order":
            return f"You are about to cancel order #{_fmt(data.get('orderId'), '?')}. Confirm to proceed."

    if ok is False:
        return classify_tool_error(tool_name, result.get("message"))

    if tool_name == "list_markets":
        markets = data.get("markets") if isinstance(data.get("markets"), list) else []
        if not markets:
            return "No markets are configured."
        rows = ", ".join(
            f"#{_fmt(m.get('index'), '?')} {m.get('baseSymbol') or 'BASE'}/{m.get('quoteSymbol') or 'QUOTE'}"
            for m in map(_obj, markets)
        )
        return f"Configured markets ({_fmt(data.get('count', len(markets)))}): {rows}."

    if tool_name == "get_balance":
        vault = _obj(data.get("vault"))
        vault_base = _obj(vault.get("base"))
        vault_quote = _obj(vault.get("quote"))
        book = _obj(data.get("orderbook"))
        return " ".join(
            [
                "Here is your balance:",
                f"Vault: base {_fmt(vault_base.get('available'))} (reserved {_fmt(vault_base.get('reserved'))}), "
                f"quote {_fmt(vault_quote.get('available'))} (reserved {_fmt(vault_quote.get('reserved'))}).",
                f"Orderbook (market #{_fmt(data.get('marketIndex'), '0')}): "
                f"base {_fmt(book.get('base'))}, quote {_fmt(book.get('quote'))}.",
            ]
        )

    if tool_name in ("place_order", "smart_place_order"):
        detail = _obj(data.get("statusDetail")) if data.get("statusDetail") else data
        return _order_lines(
            data.get("orderId"),
            data,
            status=data.get("status"),
            filled=detail.get("filledBase"),
            remaining=detail.get("remainingBase"),
            terminal_footer="Use `get_wallet_orders_overview` and balance checks for final execution impact.",
            open_footer=f"You can ask: `watch order #{_fmt(data.get('orderId'), '?')} status`.",
        )

    if tool_name == "cancel_order":
        return (
            f"Cancellation submitted for order #{_fmt(data.get('orderId'), '?')}. "
            f"Current status is {_fmt(data.get('statusAfterCancel'), 'unknown')}."
        )

    if tool_name in ("get_order_status", "get_order_insight"):
        order_id = _fmt(data.get("orderId"), "?")
        if str(data.get("status")) == "closed_or_not_found":
            return (
                f"Order #{order_id} is in terminal/not-found state. Active-book fill details are unavailable; "
                "use balances and wallet order overview to assess final execution impact."
            )
        distance = _obj(data.get("analytics")).get("distanceFromMidBps")
        extra = f" Distance from mid-price: {float(distance):.2f} bps." if isinstance(distance, (int, float)) else ""
        return (
            f"Order #{order_id}: {_fmt(data.get('side'))} {_fmt(data.get('status'))}, "
            f"amount {_fmt(data.get('amountBase'))}, filled {_fmt(data.get('filledBase'))}, "
            f"remaining {_fmt(data.get('remainingBase'))}, limit {_fmt(data.get('limitPrice'))}.{extra}"
        )

    if tool_name == "watch_order_status":
        history = data.get("history") if isinstance(data.get("history"), list) else []
        last = _obj(history[-1]) if history else {}
        final_status = data.get("finalStatus") or last.get("status") or "unknown"
        return (
            f"Order #{_fmt(data.get('orderId'), '?')} monitoring finished after "
            f"{_fmt(data.get('polls', len(history)))} polls. Final status: {final_status}, "
            f"filled {_fmt(last.get('filledBase'))}, remaining {_fmt(last.get('remainingBase'))}."
        )

    if tool_name == "list_orders":
        orders = data.get("orders") if isinstance(data.get("orders"), list) else []
        counts = Counter(str(_obj(order).get("status") or "unknown") for order in orders)
        breakdown = ", ".join(f"{status}={count}" for status, count in counts.items()) or "none"
        return (
            f"Found {_fmt(data.get('returned', len(orders)))} orders "
            f"(status filter: {_fmt(data.get('statusFilter'), 'any')}, side filter: {_fmt(data.get('sideFilter'), 'any')}). "
            f"Breakdown: {breakdown}."
        )

    if tool_name == "get_wallet_orders_overview":
        totals = _obj(data.get("totals"))
        return (
            f"Wallet order overview: {_fmt(data.get('discoveredOrders'), '0')} orders found. "
            f"Open exposure {_fmt(totals.get('openBase'))} BASE, filled {_fmt(totals.get('filledBase'))} BASE, "
            f"open notional {_fmt(totals.get('openNotionalQuote'))} QUOTE."
        )

    if tool_name == "get_market_overview":
        return (
            f"Market #{_fmt(data.get('marketIndex'), '0')} overview: best bid {_fmt(data.get('bestBid'))}, "
            f"best ask {_fmt(data.get('bestAsk'))}, mid {_fmt(data.get('midPrice'))}, "
            f"spread {_fmt(data.get('spreadBps'))} bps."
        )

    if tool_name == "get_orderbook_depth":
        depth = _obj(data.get("depth"))
        bids = depth.get("bids") if isinstance(depth.get("bids"), list) else []
        asks = depth.get("asks") if isinstance(depth.get("asks"), list) else []
        top_bid = _obj(bids[0]) if bids else {}
        top_ask = _obj(asks[0]) if asks else {}
        return (
            f"Market #{_fmt(data.get('marketIndex'), '0')} depth scanned {_fmt(data.get('scannedOrders'))} orders. "
            f"Top bid {_fmt(top_bid.get('price'))} ({_fmt(top_bid.get('sizeBase'))} BASE), "
            f"top ask {_fmt(top_ask.get('price'))} ({_fmt(top_ask.get('sizeBase'))} BASE)."
        )

    if tool_name == "get_dex_status":
        market = _obj(data.get("market"))
        liquidity = _obj(data.get("liquidity"))
        book_shape = "two-sided book available" if market.get("isTwoSided") else "book is one-sided"
        return (
            f"Market #{_fmt(data.get('marketIndex'), '0')} status: {book_shape}, "
            f"bid {_fmt(market.get('bestBid'))}, ask {_fmt(market.get('bestAsk'))}, "
            f"spread {_fmt(market.get('spreadBps'))} bps. "
            f"Open liquidity: buy {_fmt(liquidity.get('openBuyBase'))} BASE vs "
            f"sell {_fmt(liquidity.get('openSellBase'))} BASE "
            f"(buy imbalance {_fmt(liquidity.get('imbalanceBuyPct'))}%)."
        )

    if tool_name == "get_price_recommendation":
        return (
            f"Market #{_fmt(data.get('marketIndex'), '0')}: recommended {_fmt(data.get('side'))} price is "
            f"{_fmt(data.get('recommendedPrice'))} using {_fmt(data.get('strategy'))} strategy. "
            f"Reason: {_fmt(data.get('reason'))}."
        )

    if tool_name == "get_currency_info":
        base = _obj(data.get("base"))
        quote = _obj(data.get("quote"))
        return (
            f"Market currencies: {base.get('symbol') or 'BASE'} ({_fmt(base.get('decimals'), '?')} decimals) "
            f"and {quote.get('symbol') or 'QUOTE'} ({_fmt(quote.get('decimals'), '?')} decimals)."
        )

    return f"Tool {tool_name} completed successfully."


def format_execution_message(
    tool_name: str,
    result: Mapping[str, Any],
    status_result: Optional[Mapping[str, Any]] = None,
) -> str:
    """Render the outcome of an action that actually executed."""
    if not result.get("ok"):
        return f"I tried to execute {tool_name}, but it failed: {result.get('message') or 'unknown error'}"

    data = _obj(result.get("data"))
    status_data = _obj((status_result or {}).get("data"))

    if tool_name in ("place_order", "smart_place_order"):
        market_index = data.get("marketIndex")
        market_label = (
            f" (market #{market_index})"
            if isinstance(market_index, int) and not isinstance(market_index, bool)
            else ""
        )
        detail = _obj(data.get("statusDetail"))
        return _order_lines(
            data.get("orderId") if data.get("orderId") is not None else "unknown",
            data,
            status=status_data.get("status") or data.get("status") or "submitted",
            filled=status_data.get("filledBase", detail.get("filledBase")),
            remaining=status_data.get("remainingBase", detail.get("remainingBase")),
            market_label=market_label,
            terminal_footer="Use balances and wallet overview to verify final effect.",
            open_footer="You can ask me to watch this order status.",
        )

    if tool_name == "cancel_order":
        return (
            f"Cancel request sent for order #{_fmt(data.get('orderId'), 'unknown')}. "
            f"Current status: {_fmt(data.get('statusAfterCancel'), 'unknown')}."
        )

    return f"Action {tool_name} executed successfully."
