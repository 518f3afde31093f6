from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ToolSpec(BaseModel):
    """Tool schema entry served by the tool backend."""

    name: str
    description: str = ""
    parameters: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


class ToolResult(BaseModel):
    """Uniform envelope returned by every tool invocation.

    Unknown keys sent by the backend are preserved so they round-trip to the
    model unchanged.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    ok: bool = False
    data: Optional[Any] = None
    message: Optional[str] = None
    needs_confirmation: bool = Field(default=False, alias="needsConfirmation")
    user_message: Optional[str] = Field(default=None, alias="userMessage")

    @property
    def payload(self) -> Dict[str, Any]:
        """``data`` as a dict, never ``None``."""
        return self.data if isinstance(self.data, dict) else {}

    @property
    def order_id(self) -> Optional[str]:
        order_id = self.payload.get("orderId")
        if order_id is None or order_id == "":
            return None
        return str(order_id)

    @property
    def market_index(self) -> Optional[int]:
        value = self.payload.get("marketIndex")
        if isinstance(value, bool) or not isinstance(value, int):
            return None
        return value

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
