"""
Deterministic intent detection.

Pure functions over the latest user message. Nothing here performs I/O; the
router decides what to do with a detected intent.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Sequence

from ...types import ChatMessage


class IntentType(str, Enum):
    SWITCH_MARKET = "switch_market"
    CURRENT_MARKET = "current_market"
    LIST_MARKETS = "list_markets"
    BALANCE = "balance"
    ORDERS_OVERVIEW = "orders_overview"
    CANCEL_ORDER = "cancel_order"
    ORDER_STATUS = "order_status"
    MARKET_OVERVIEW = "market_overview"
    DEPTH = "depth"
    DEX_STATUS = "dex_status"
    PRICE_RECOMMENDATION = "price_recommendation"
    PLACE_ORDER = "place_order"


@dataclass(frozen=True)
class DeterministicIntent:
    """A user request answerable without the language model."""

    type: IntentType
    market_index: Optional[int] = None
    order_id: Optional[str] = None
    side: Optional[str] = None
    amount_base: Optional[float] = None
    price: Optional[float] = None
    order_type: Optional[str] = None


# Tool whose error message is classified when the deterministic path fails.
INTENT_TOOL_NAMES: Dict[IntentType, str] = {
    IntentType.BALANCE: "get_balance",
    IntentType.ORDERS_OVERVIEW: "get_wallet_orders_overview",
    IntentType.ORDER_STATUS: "get_order_insight",
    IntentType.CANCEL_ORDER: "cancel_order",
    IntentType.MARKET_OVERVIEW: "get_market_overview",
    IntentType.DEPTH: "get_orderbook_depth",
    IntentType.DEX_STATUS: "get_dex_status",
    IntentType.PRICE_RECOMMENDATION: "get_price_recommendation",
    IntentType.PLACE_ORDER: "place_order",
}

CONFIRM_PHRASES = frozenset({"yes", "y", "confirm", "confirmed", "ok", "go ahead", "proceed"})
REJECT_PHRASES = frozenset({"no", "n", "cancel", "stop", "never mind", "dont", "don't"})

_MARKET_INDEX_RE = re.compile(r"market\s*#?\s*(\d+)", re.IGNORECASE)
_ORDER_ID_RE = re.compile(r"(?:order(?:\s*#|\s+id\s*)?|#)\s*(\d+)", re.IGNORECASE)

_SWITCH_VERB_RE = re.compile(r"switch|use|select|set", re.IGNORECASE)
_CURRENT_MARKET_RE = re.compile(r"what market|active market", re.IGNORECASE)
_CURRENT_MARKET_EXCLUDE_RE = re.compile(r"overview|status|depth", re.IGNORECASE)
_LIST_MARKETS_RE = re.compile(r"list markets|available markets|show markets|what markets", re.IGNORECASE)
_BALANCE_RE = re.compile(r"\bbalance\b|how much do i have|\bfunds\b", re.IGNORECASE)
_ORDERS_OVERVIEW_RE = re.compile(r"open orders|my orders|order history|recent orders", re.IGNORECASE)
_ORDER_STATUS_RE = re.compile(r"order status|status of order|watch order|order\s*#\s*\d+", re.IGNORECASE)
_MARKET_OVERVIEW_RE = re.compile(r"market overview|best bid|best ask|mid price|spread", re.IGNORECASE)
_DEPTH_RE = re.compile(r"depth|orderbook", re.IGNORECASE)
_DEX_STATUS_RE = re.compile(r"dex status|market status|health", re.IGNORECASE)
_RECOMMEND_RE = re.compile(r"(recommend|smart).*(buy|sell|bid|ask)", re.IGNORECASE)
_PLACE_ORDER_RE = re.compile(
    r"\b(buy|sell)\b.*?([0-9]+(?:\.[0-9]+)?)\s*base(?:.*?(?:at|price)\s*([0-9]+(?:\.[0-9]+)?))?",
    re.IGNORECASE,
)

_SMART_PROPOSAL_RE = re.compile(
    r"smart\s+(bid|ask).+?for\s+([0-9]+(?:\.[0-9]+)?)\s+base.+?(passive|balanced|aggressive)",
    re.IGNORECASE,
)
_CANCEL_PROPOSAL_RE = re.compile(r"cancel.+order(?:\s*#| id[:\s]*)\s*([0-9]+)", re.IGNORECASE)
_BALANCE_HINT_WORDS = ("balance", "how much do i have", "funds")


def last_message(messages: Sequence[ChatMessage], role: str) -> Optional[ChatMessage]:
    for message in reversed(messages):
        if message.role == role:
            return message
    return None


def _has_word(text: str, word: str) -> bool:
    return re.search(rf"\b{re.escape(word)}\b", text, re.IGNORECASE) is not None


def extract_market_index(text: str) -> Optional[int]:
    match = _MARKET_INDEX_RE.search(text or "")
    return int(match.group(1)) if match else None


def extract_order_id(text: str) -> Optional[str]:
    match = _ORDER_ID_RE.search(text or "")
    return str(int(match.group(1))) if match else None


def detect_scope(text: str) -> str:
    """Which balance bucket the user asked about: vault, orderbook or both."""
    lower = (text or "").lower()
    has_vault = "vault" in lower
    has_orderbook = "orderbook" in lower or "exchange" in lower
    if has_vault and not has_orderbook:
        return "vault"
    if has_orderbook and not has_vault:
        return "orderbook"
    return "both"


def is_confirm_phrase(text: Optional[str]) -> bool:
    return (text or "").strip().lower() in CONFIRM_PHRASES


def is_reject_phrase(text: Optional[str]) -> bool:
    return (text or "").strip().lower() in REJECT_PHRASES


def detect_intent(messages: Sequence[ChatMessage]) -> Optional[DeterministicIntent]:
    """Match the latest user message against the fixed intent table.

    Patterns are tried in precedence order and the first match wins. Returns
    ``None`` when nothing matches, including cancel or status requests that
    carry no order id.
    """
    last_user = last_message(messages, "user")
    if last_user is None:
        return None

    raw = last_user.content or ""
    text = raw.lower()
    market_index = extract_market_index(raw)

    if _has_word(text, "market") and _SWITCH_VERB_RE.search(text) and market_index is not None:
        return DeterministicIntent(IntentType.SWITCH_MARKET, market_index=market_index)

    if _CURRENT_MARKET_RE.search(text) and not _CURRENT_MARKET_EXCLUDE_RE.search(text):
        return DeterministicIntent(IntentType.CURRENT_MARKET)

    if _LIST_MARKETS_RE.search(text):
        return DeterministicIntent(IntentType.LIST_MARKETS)

    if _BALANCE_RE.search(text):
        return DeterministicIntent(IntentType.BALANCE, market_index=market_index)

    if _ORDERS_OVERVIEW_RE.search(text):
        return DeterministicIntent(IntentType.ORDERS_OVERVIEW, market_index=market_index)

    if "cancel" in text and "order" in text:
        order_id = extract_order_id(raw)
        if order_id:
            return DeterministicIntent(IntentType.CANCEL_ORDER, market_index=market_index, order_id=order_id)

    if _ORDER_STATUS_RE.search(text):
        order_id = extract_order_id(raw)
        if order_id:
            return DeterministicIntent(IntentType.ORDER_STATUS, market_index=market_index, order_id=order_id)

    if _MARKET_OVERVIEW_RE.search(text):
        return DeterministicIntent(IntentType.MARKET_OVERVIEW, market_index=market_index)

    if _DEPTH_RE.search(text):
        return DeterministicIntent(IntentType.DEPTH, market_index=market_index)

    if _DEX_STATUS_RE.search(text):
        return DeterministicIntent(IntentType.DEX_STATUS, market_index=market_index)

    recommend = _RECOMMEND_RE.search(raw)
    if recommend:
        side = "sell" if recommend.group(2).lower() in ("sell", "ask") else "buy"
        return DeterministicIntent(IntentType.PRICE_RECOMMENDATION, market_index=market_index, side=side)

    place = _PLACE_ORDER_RE.search(raw)
    if place:
        return DeterministicIntent(
            IntentType.PLACE_ORDER,
            market_index=market_index,
            side=place.group(1).lower(),
            amount_base=float(place.group(2)),
            price=float(place.group(3)) if place.group(3) else None,
            order_type="market" if "market" in text else "limit",
        )

    return None


def derive_forced_tool(
    messages: Sequence[ChatMessage],
    wallet_address: Optional[str],
) -> Optional[Dict[str, Any]]:
    """Force ``get_balance`` when a wallet is known and the user asks about funds."""
    if not wallet_address:
        return None
    last_user = last_message(messages, "user")
    if last_user is None:
        return None
    text = (last_user.content or "").lower()
    if not any(word in text for word in _BALANCE_HINT_WORDS):
        return None

    arguments: Dict[str, Any] = {"walletAddress": wallet_address}
    market_index = extract_market_index(last_user.content)
    if market_index is not None:
        arguments["marketIndex"] = market_index
    arguments["scope"] = detect_scope(last_user.content)
    return {"name": "get_balance", "arguments": arguments}


def derive_confirmation_tool(
    messages: Sequence[ChatMessage],
    wallet_address: Optional[str],
) -> Optional[Dict[str, Any]]:
    """Turn a bare "yes" into the action the previous assistant reply proposed."""
    last_user = last_message(messages, "user")
    if last_user is None or not is_confirm_phrase(last_user.content):
        return None

    previous = last_message(messages, "assistant")
    proposal = previous.content if previous else ""
    if not proposal:
        return None

    wallet_args: Dict[str, Any] = {"walletAddress": wallet_address} if wallet_address else {}

    smart = _SMART_PROPOSAL_RE.search(proposal)
    if smart:
        return {
            "name": "smart_place_order",
            "arguments": {
                **wallet_args,
                "side": "buy" if smart.group(1).lower() == "bid" else "sell",
                "amountBase": float(smart.group(2)),
                "strategy": smart.group(3).lower(),
                "confirm": True,
            },
        }

    cancel = _CANCEL_PROPOSAL_RE.search(proposal)
    if cancel:
        return {
            "name": "cancel_order",
            "arguments": {
                **wallet_args,
                "orderId": cancel.group(1),
                "confirm": True,
            },
        }

    return None
