"""Async client for the DEX tool backend (schema + execution endpoints)."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Dict, List, Optional

import httpx

from ..config import settings
from ..core.recovery import ToolBackendUnavailableError, ToolExecutionError, run_cancellable
from ..types import ToolSpec


class ToolBackendClient:
    """Thin wrapper around the tool backend's ``/api/agent`` endpoints."""

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        schema_path: Optional[str] = None,
        execute_path: Optional[str] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or settings.tool_backend_url).rstrip("/")
        self.schema_path = schema_path or settings.tool_schema_path
        self.execute_path = execute_path or settings.tool_execute_path
        self.timeout_s = timeout_s if timeout_s is not None else settings.tool_timeout_seconds
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_s,
            transport=transport,
            headers={
                "accept": "application/json",
                "content-type": "application/json",
            },
        )

    async def fetch_schema(self, cancel_event: Optional[asyncio.Event] = None) -> List[ToolSpec]:
        response = await self._send(
            self._client.get(self.schema_path, headers={"cache-control": "no-store"}),
            cancel_event,
        )
        if response.is_error:
            raise ToolExecutionError(
                f"Failed to load tool schema: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        payload = _json_or_empty(response)
        tools = payload.get("tools")
        if not isinstance(tools, list):
            return []
        return [ToolSpec.model_validate(tool) for tool in tools if isinstance(tool, dict) and tool.get("name")]

    async def execute(
        self,
        name: str,
        args: Dict[str, Any],
        wallet_address: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Dict[str, Any]:
        """POST one tool call and return the raw JSON envelope.

        Raises:
            ToolExecutionError: on any non-2xx response, carrying the status.
            ToolBackendUnavailableError: the backend could not be reached.
        """
        body: Dict[str, Any] = {"name": name, "args": args or {}}
        if wallet_address:
            body["walletAddress"] = wallet_address

        response = await self._send(self._client.post(self.execute_path, json=body), cancel_event, tool_name=name)
        payload = _json_or_empty(response)
        if response.is_error:
            message = payload.get("error") if isinstance(payload.get("error"), str) else None
            raise ToolExecutionError(
                message or f"Tool {name} failed",
                status_code=response.status_code,
                tool_name=name,
            )
        return payload

    async def _send(
        self,
        request: Awaitable[httpx.Response],
        cancel_event: Optional[asyncio.Event],
        tool_name: Optional[str] = None,
    ) -> httpx.Response:
        try:
            return await run_cancellable(request, cancel_event)
        except httpx.RequestError as e:
            raise ToolBackendUnavailableError(
                f"Tool backend unreachable: {str(e) or type(e).__name__}",
                tool_name=tool_name,
            ) from e

    async def ping(self) -> bool:
        try:
            response = await self._client.get(self.schema_path)
        except httpx.HTTPError:
            return False
        return response.is_success

    async def __aenter__(self) -> "ToolBackendClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self._client.aclose()

    async def close(self) -> None:
        await self._client.aclose()


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}
