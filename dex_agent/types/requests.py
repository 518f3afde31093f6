import asyncio
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "tool", "system"] = Field(description="Message role")
    content: str = Field(default="", description="Message content")


class TurnRequest(BaseModel):
    """Input for a single orchestrator turn."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    messages: List[ChatMessage] = Field(description="Chat conversation history, oldest first")
    provider: Optional[str] = Field(default=None, description="LLM provider: anthropic, openai or openrouter")
    model: Optional[str] = Field(default=None, description="Explicit model override for this turn")
    api_key: Optional[str] = Field(default=None, description="Provider API key; falls back to configured keys")
    wallet_address: Optional[str] = Field(default=None, description="Wallet address used for account tools")
    cancel_event: Optional[asyncio.Event] = Field(
        default=None,
        exclude=True,
        description="Set to abort the turn between network calls",
    )

    def last_user_message(self) -> Optional[ChatMessage]:
        for message in reversed(self.messages):
            if message.role == "user":
                return message
        return None

    def last_assistant_message(self) -> Optional[ChatMessage]:
        for message in reversed(self.messages):
            if message.role == "assistant":
                return message
        return None


class ChatTurnRequest(BaseModel):
    conversation_id: Optional[str] = Field(default=None, description="Conversation identifier; a new one is minted when omitted")
    messages: List[ChatMessage] = Field(description="Chat conversation history")
    llm_provider: Optional[str] = Field(default=None, description="Override the default LLM provider for this turn")
    llm_model: Optional[str] = Field(default=None, description="Override the default LLM model for this turn")
    api_key: Optional[str] = Field(default=None, description="Provider API key supplied by the client")
    wallet_address: Optional[str] = Field(default=None, description="Optional wallet address for account tools")
