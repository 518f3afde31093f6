from typing import Any, Dict

from fastapi import APIRouter

from ..config import settings
from ..providers.tool_backend import ToolBackendClient

router = APIRouter()


@router.get("/healthz")
async def health_check() -> Dict[str, Any]:
    """Health check endpoint that verifies the tool backend is reachable"""

    async with ToolBackendClient(timeout_s=5.0) as client:
        backend_ok = await client.ping()

    return {
        "status": "healthy" if backend_ok else "degraded",
        "tool_backend": {
            "url": settings.tool_backend_url,
            "status": "healthy" if backend_ok else "unreachable",
        },
        "default_provider": settings.llm_provider,
    }
