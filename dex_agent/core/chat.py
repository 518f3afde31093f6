"""
Chat sessions for the HTTP surface.

Each conversation id owns one :class:`Orchestrator`, so the active market and
any pending confirmation survive between requests. A conversation runs at most
one turn at a time.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

import structlog

from ..config import settings
from ..providers.llm import canonical_provider_name
from ..types import ChatTurnRequest, ChatTurnResponse, TurnRequest
from .agent import Orchestrator

_logger = structlog.stdlib.get_logger("dex_agent.chat")


class ConversationBusyError(Exception):
    """A turn is already running for this conversation."""

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation {conversation_id} is already processing a turn")
        self.conversation_id = conversation_id


@dataclass
class ChatSession:
    conversation_id: str
    orchestrator: Orchestrator
    busy: bool = False
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    last_used: float = field(default_factory=time.monotonic)


OrchestratorFactory = Callable[[], Orchestrator]

_sessions: Dict[str, ChatSession] = {}
_orchestrator_factory: OrchestratorFactory = Orchestrator


def set_orchestrator_factory(factory: Optional[OrchestratorFactory]) -> None:
    """Swap how new sessions build their orchestrator (``None`` restores the default)."""
    global _orchestrator_factory
    _orchestrator_factory = factory or Orchestrator


def get_session(conversation_id: str) -> Optional[ChatSession]:
    return _sessions.get(conversation_id)


def _get_or_create_session(conversation_id: Optional[str]) -> ChatSession:
    conversation_id = conversation_id or str(uuid.uuid4())
    session = _sessions.get(conversation_id)
    if session is None:
        session = ChatSession(conversation_id=conversation_id, orchestrator=_orchestrator_factory())
        _sessions[conversation_id] = session
        _logger.info("session_created", conversation_id=conversation_id)
    return session


async def run_chat(request: ChatTurnRequest) -> ChatTurnResponse:
    """Run one turn for a conversation.

    Raises:
        ConversationBusyError: another turn of the same conversation is running.
    """
    if request.conversation_id not in _sessions:
        await evict_idle_sessions()
    session = _get_or_create_session(request.conversation_id)
    if session.busy:
        raise ConversationBusyError(session.conversation_id)

    session.busy = True
    session.cancel_event = asyncio.Event()
    provider = canonical_provider_name(request.llm_provider or settings.llm_provider)
    try:
        reply = await session.orchestrator.run(
            TurnRequest(
                messages=request.messages,
                provider=provider,
                model=request.llm_model,
                api_key=request.api_key,
                wallet_address=request.wallet_address,
                cancel_event=session.cancel_event,
            )
        )
    finally:
        session.busy = False
        session.last_used = time.monotonic()

    return ChatTurnResponse(
        reply=reply,
        conversation_id=session.conversation_id,
        llm_provider=provider,
        pending_confirmation=session.orchestrator.pending_confirmation,
        active_market_index=session.orchestrator.active_market_index,
    )


def cancel_turn(conversation_id: str) -> bool:
    """Signal the running turn of a conversation to stop; False when idle."""
    session = _sessions.get(conversation_id)
    if session is None or not session.busy:
        return False
    session.cancel_event.set()
    return True


async def evict_idle_sessions(now: Optional[float] = None) -> int:
    """Close sessions idle for longer than ``session_idle_ttl_seconds``.

    Sessions with a running turn are kept. Returns how many were closed.
    """
    now = time.monotonic() if now is None else now
    ttl = settings.session_idle_ttl_seconds
    stale = [
        conversation_id
        for conversation_id, session in _sessions.items()
        if not session.busy and now - session.last_used > ttl
    ]
    for conversation_id in stale:
        session = _sessions.pop(conversation_id)
        await session.orchestrator.aclose()
        _logger.info("session_evicted", conversation_id=conversation_id, idle_s=round(now - session.last_used, 1))
    return len(stale)


async def reset_conversation(conversation_id: str) -> bool:
    session = _sessions.pop(conversation_id, None)
    if session is None:
        return False
    session.cancel_event.set()
    await session.orchestrator.aclose()
    _logger.info("session_reset", conversation_id=conversation_id)
    return True


async def close_all_sessions() -> None:
    for conversation_id in list(_sessions):
        await reset_conversation(conversation_id)
