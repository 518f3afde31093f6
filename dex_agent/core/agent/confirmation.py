"""
Pending Confirmation

A state-changing tool call that the backend refused to run without explicit
consent is parked here until the next user turn says yes, no, or something
unrelated. At most one action is ever pending.
"""

import time
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

import structlog

from ...config import settings
from ...types import ToolResult, TurnRequest
from ..recovery import ToolExecutionError, TurnCancelledError
from .executor import AgentState, PendingAction, ToolExecutor
from .intents import is_confirm_phrase, is_reject_phrase
from .summaries import classify_tool_error, format_execution_message

EXPIRED_MESSAGE = "That pending confirmation expired. Please send the action again."
REJECTED_MESSAGE = "Cancelled. I did not execute the pending action."
STILL_NEEDS_CONFIRMATION_MESSAGE = (
    "The action still needs missing parameters. Please provide side/type/amount/price clearly, then confirm."
)


class ConfirmationState(str, Enum):
    IDLE = "idle"
    AWAITING_CONFIRMATION = "awaiting_confirmation"


class ConfirmationTrigger(str, Enum):
    PROPOSE = "propose"
    REPLACE = "replace"
    CONFIRM = "confirm"
    REJECT = "reject"
    EXPIRE = "expire"
    CLEAR = "clear"


class InvalidConfirmationTransition(Exception):
    """Raised when a trigger is not allowed from the current state."""

    def __init__(self, state: ConfirmationState, trigger: ConfirmationTrigger):
        super().__init__(f"Cannot {trigger.value} while {state.value}")
        self.state = state
        self.trigger = trigger


class PendingConfirmation:
    """Two-state machine guarding the single pending action of an orchestrator."""

    TRANSITIONS: Dict[Tuple[ConfirmationState, ConfirmationTrigger], ConfirmationState] = {
        (ConfirmationState.IDLE, ConfirmationTrigger.PROPOSE): ConfirmationState.AWAITING_CONFIRMATION,
        (ConfirmationState.IDLE, ConfirmationTrigger.CLEAR): ConfirmationState.IDLE,
        (ConfirmationState.AWAITING_CONFIRMATION, ConfirmationTrigger.REPLACE): ConfirmationState.AWAITING_CONFIRMATION,
        (ConfirmationState.AWAITING_CONFIRMATION, ConfirmationTrigger.CONFIRM): ConfirmationState.IDLE,
        (ConfirmationState.AWAITING_CONFIRMATION, ConfirmationTrigger.REJECT): ConfirmationState.IDLE,
        (ConfirmationState.AWAITING_CONFIRMATION, ConfirmationTrigger.EXPIRE): ConfirmationState.IDLE,
        (ConfirmationState.AWAITING_CONFIRMATION, ConfirmationTrigger.CLEAR): ConfirmationState.IDLE,
    }

    def __init__(
        self,
        state: AgentState,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._agent_state = state
        self.ttl_seconds = settings.pending_action_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self.logger = structlog.stdlib.get_logger("dex_agent.confirmation")

    @property
    def state(self) -> ConfirmationState:
        if self._agent_state.pending_action is None:
            return ConfirmationState.IDLE
        return ConfirmationState.AWAITING_CONFIRMATION

    @property
    def pending(self) -> Optional[PendingAction]:
        return self._agent_state.pending_action

    def _transition(self, trigger: ConfirmationTrigger) -> ConfirmationState:
        target = self.TRANSITIONS.get((self.state, trigger))
        if target is None:
            raise InvalidConfirmationTransition(self.state, trigger)
        return target

    def propose(self, name: str, args: Optional[Dict[str, Any]], wallet_address: Optional[str]) -> PendingAction:
        """Park an action; a second proposal replaces the first."""
        replacing = self.state is ConfirmationState.AWAITING_CONFIRMATION
        trigger = ConfirmationTrigger.REPLACE if replacing else ConfirmationTrigger.PROPOSE
        self._transition(trigger)

        previous = self._agent_state.pending_action
        self._agent_state.pending_action_seq += 1
        action = PendingAction(
            id=self._agent_state.pending_action_seq,
            name=name,
            args={k: v for k, v in (args or {}).items() if k != "confirm"},
            wallet_address=wallet_address,
            created_at=self._clock(),
        )
        self._agent_state.pending_action = action

        if previous is not None:
            self.logger.info("pending_replaced", previous_id=previous.id, previous_tool=previous.name, id=action.id, tool=name)
        else:
            self.logger.info("pending_set", id=action.id, tool=name)
        return action

    def clear(self, trigger: ConfirmationTrigger = ConfirmationTrigger.CLEAR) -> None:
        self._transition(trigger)
        self._agent_state.pending_action = None

    def is_expired(self) -> bool:
        action = self._agent_state.pending_action
        if action is None:
            return False
        return self._clock() - action.created_at > self.ttl_seconds


class PendingConfirmationResolver:
    """Resolves a pending action against the user's latest message."""

    def __init__(self, executor: ToolExecutor, confirmation: PendingConfirmation):
        self.executor = executor
        self.confirmation = confirmation
        self.logger = structlog.stdlib.get_logger("dex_agent.confirmation")

    async def resolve(self, request: TurnRequest) -> Optional[str]:
        """Return a reply when the turn was about the pending action, else ``None``."""
        pending = self.confirmation.pending
        if pending is None:
            return None

        if self.confirmation.is_expired():
            self.confirmation.clear(ConfirmationTrigger.EXPIRE)
            self.logger.info("pending_expired", id=pending.id, tool=pending.name)
            return EXPIRED_MESSAGE

        last_user = request.last_user_message()
        if last_user is None:
            return None

        if is_reject_phrase(last_user.content):
            self.confirmation.clear(ConfirmationTrigger.REJECT)
            self.logger.info("pending_rejected", id=pending.id, tool=pending.name)
            return REJECTED_MESSAGE

        if not is_confirm_phrase(last_user.content):
            return None

        wallet_address = request.wallet_address or pending.wallet_address
        cancel_event = request.cancel_event
        try:
            result = await self.executor.execute_with_retry(
                pending.name,
                {**pending.args, "confirm": True},
                wallet_address,
                cancel_event,
            )
        except ToolExecutionError as e:
            self.logger.warning("pending_execution_failed", id=pending.id, tool=pending.name, error=str(e))
            return classify_tool_error(pending.name, e.message)

        if result.needs_confirmation:
            self.confirmation.clear(ConfirmationTrigger.CLEAR)
            return STILL_NEEDS_CONFIRMATION_MESSAGE

        status_result: Optional[ToolResult] = None
        insight_result: Optional[ToolResult] = None
        order_id = result.order_id
        if order_id:
            market_index = result.market_index
            if market_index is None:
                market_index = pending.args.get("marketIndex")
            lookup = {"orderId": order_id, "marketIndex": market_index}
            try:
                status_result = await self.executor.execute_with_retry(
                    "get_order_status", lookup, wallet_address, cancel_event
                )
                insight_result = await self.executor.execute_with_retry(
                    "get_order_insight", lookup, wallet_address, cancel_event
                )
            except TurnCancelledError:
                raise
            except Exception as e:  # noqa: BLE001
                self.logger.info("pending_status_lookup_failed", order_id=order_id, error=str(e))

        self.confirmation.clear(ConfirmationTrigger.CONFIRM)
        self.logger.info("pending_confirmed", id=pending.id, tool=pending.name, order_id=order_id)
        primary = insight_result or result
        return format_execution_message(
            pending.name,
            primary.to_wire(),
            status_result.to_wire() if status_result is not None else None,
        )
