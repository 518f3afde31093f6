from typing import Optional

from pydantic import BaseModel, Field


class ChatTurnResponse(BaseModel):
    reply: str = Field(description="Assistant reply for this turn")
    conversation_id: str = Field(description="Conversation identifier to send with the next turn")
    llm_provider: Optional[str] = Field(default=None, description="Canonical identifier of the LLM provider used")
    pending_confirmation: bool = Field(
        default=False,
        description="Whether an action is waiting for the user's yes/no",
    )
    active_market_index: Optional[int] = Field(default=None, description="Market the conversation is currently about")
