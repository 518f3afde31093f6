from .requests import ChatMessage, ChatTurnRequest, TurnRequest
from .responses import ChatTurnResponse
from .tools import ToolResult, ToolSpec

__all__ = [
    "ChatMessage",
    "ChatTurnRequest",
    "ChatTurnResponse",
    "ToolResult",
    "ToolSpec",
    "TurnRequest",
]
