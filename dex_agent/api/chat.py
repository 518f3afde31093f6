from typing import Any, Dict

import structlog
from fastapi import APIRouter, HTTPException

from ..core.chat import ConversationBusyError, cancel_turn, reset_conversation, run_chat
from ..core.recovery import (
    ProtocolError,
    ProviderAuthFailure,
    ProviderRateLimited,
    TurnCancelledError,
)
from ..providers.llm import LLMProviderError
from ..types import ChatTurnRequest, ChatTurnResponse

router = APIRouter()

logger = structlog.stdlib.get_logger("dex_agent.api.chat")


@router.post("/chat")
async def chat_endpoint(request: ChatTurnRequest) -> ChatTurnResponse:
    """Run one assistant turn for a conversation."""

    try:
        return await run_chat(request)
    except ConversationBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ProviderAuthFailure as e:
        raise HTTPException(status_code=401, detail=e.message)
    except ProviderRateLimited as e:
        raise HTTPException(status_code=429, detail=e.message)
    except TurnCancelledError as e:
        raise HTTPException(status_code=499, detail=e.message)
    except ProtocolError as e:
        raise HTTPException(status_code=502, detail=e.message)
    except LLMProviderError as e:
        raise HTTPException(status_code=502, detail=e.message)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("chat_failed", error=str(e))
        raise HTTPException(status_code=500, detail=f"Chat processing failed: {str(e)}")


@router.post("/chat/{conversation_id}/cancel")
async def cancel_endpoint(conversation_id: str) -> Dict[str, Any]:
    """Ask the running turn of a conversation to stop."""

    return {"conversation_id": conversation_id, "cancelled": cancel_turn(conversation_id)}


@router.post("/chat/{conversation_id}/reset")
async def reset_endpoint(conversation_id: str) -> Dict[str, Any]:
    """Drop a conversation's state (active market, pending confirmation, caches)."""

    if not await reset_conversation(conversation_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"conversation_id": conversation_id, "reset": True}
