"""
Turn Orchestrator

Entry point for one user turn: settle a pending confirmation, answer a
deterministic intent, or hand the conversation to a language model provider.
"""

import uuid
from typing import Callable, Optional, Tuple

import structlog

from ...config import settings
from ...providers.llm import (
    LLMProvider,
    LLMProviderAuthError,
    LLMProviderError,
    LLMProviderRateLimitError,
    canonical_provider_name,
    get_llm_provider,
)
from ...providers.tool_backend import ToolBackendClient
from ...types import TurnRequest
from ..recovery import (
    ProviderAuthFailure,
    ProviderRateLimited,
    ToolExecutionError,
    TurnCancelledError,
)
from .confirmation import PendingConfirmation, PendingConfirmationResolver
from .dispatch import ProviderDispatcher
from .executor import AgentState, ToolExecutor
from .graph import build_turn_graph
from .intents import INTENT_TOOL_NAMES, detect_intent
from .prompts import DEFAULT_SYSTEM_PROMPT
from .router import DeterministicRouter
from .summaries import classify_tool_error

ProviderFactory = Callable[..., LLMProvider]

AUTH_FAILURE_MESSAGES = {
    "openrouter": "OpenRouter authentication failed (401). Check your API key and account.",
    "anthropic": "Anthropic authentication failed (401). Check your API key.",
    "openai": "OpenAI authentication failed (401). Check your API key.",
}
RATE_LIMITED_MESSAGE = "Provider rate limit reached (429). Retry shortly or switch provider/model."


class Orchestrator:
    """
    Owns the per-conversation state (active market, caches, pending action)
    and runs turns through the LangGraph pipeline in :mod:`.graph`.

    One orchestrator must only run one turn at a time.
    """

    def __init__(
        self,
        tool_client: Optional[ToolBackendClient] = None,
        *,
        provider_factory: ProviderFactory = get_llm_provider,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        max_rounds: Optional[int] = None,
        confirmation: Optional[PendingConfirmation] = None,
    ):
        self.state = AgentState()
        self.tool_client = tool_client or ToolBackendClient()
        self.executor = ToolExecutor(self.tool_client, self.state)
        self.confirmation = confirmation or PendingConfirmation(self.state)
        self.resolver = PendingConfirmationResolver(self.executor, self.confirmation)
        self.router = DeterministicRouter(self.executor, self.confirmation)
        self.dispatcher = ProviderDispatcher(
            self.executor,
            self.confirmation,
            system_prompt=system_prompt,
            max_rounds=max_rounds,
        )
        self.provider_factory = provider_factory
        self.logger = structlog.stdlib.get_logger("dex_agent.orchestrator")
        self._turn_graph = build_turn_graph(self)

    @property
    def active_market_index(self) -> Optional[int]:
        return self.state.active_market_index

    @property
    def pending_confirmation(self) -> bool:
        return self.state.pending_action is not None

    async def run(self, request: TurnRequest) -> str:
        """Run one turn and return the reply to show the user.

        Raises:
            TurnCancelledError: the request's cancel event fired.
            ProtocolError: the model broke the tool protocol or ran out of rounds.
            ProviderAuthFailure: the provider rejected the API key.
            ProviderRateLimited: the provider kept throttling the turn.
        """
        turn_id = uuid.uuid4().hex[:12]
        self.logger.info(
            "turn_start",
            turn_id=turn_id,
            provider=request.provider or settings.llm_provider,
            active_market_index=self.state.active_market_index,
        )
        try:
            result_state = await self._turn_graph.ainvoke({'request': request, 'turn_id': turn_id})
        except TurnCancelledError:
            self.logger.info("turn_end", turn_id=turn_id, path="cancelled")
            raise
        except Exception as e:
            self.logger.info("turn_end", turn_id=turn_id, path="error", error=str(e))
            raise

        reply = result_state.get('reply') or ""
        self.logger.info(
            "turn_end",
            turn_id=turn_id,
            path=result_state.get('path'),
            active_market_index=self.state.active_market_index,
        )
        return reply

    async def _route_deterministic(self, request: TurnRequest) -> Tuple[Optional[str], Optional[str]]:
        intent = detect_intent(request.messages)
        if intent is None:
            return None, None
        try:
            reply = await self.router.route(request, intent)
        except TurnCancelledError:
            raise
        except Exception as e:  # noqa: BLE001
            tool_name = INTENT_TOOL_NAMES.get(intent.type, "tool")
            message = e.message if isinstance(e, ToolExecutionError) else str(e)
            self.logger.warning("deterministic_error", tool=tool_name, error=message)
            return classify_tool_error(tool_name, message), "deterministic_error"
        return reply, "deterministic"

    async def _run_provider(self, request: TurnRequest, provider_name: str, model: Optional[str]) -> str:
        provider = self.provider_factory(provider_name, model, api_key=request.api_key)
        try:
            return await self.dispatcher.run(request, provider)
        finally:
            await provider.aclose()

    async def _dispatch_provider(self, request: TurnRequest, turn_id: str) -> Tuple[str, str]:
        provider_name = canonical_provider_name(request.provider or settings.llm_provider)
        try:
            return await self._run_provider(request, provider_name, request.model), provider_name
        except TurnCancelledError:
            raise
        except Exception as error:
            if request.model:
                self.logger.info(
                    "provider_model_fallback",
                    turn_id=turn_id,
                    provider=provider_name,
                    model=request.model,
                    error=str(error),
                )
                try:
                    return await self._run_provider(request, provider_name, None), provider_name
                except TurnCancelledError:
                    raise
                except Exception as fallback_error:
                    self.logger.warning("provider_fallback_failed", turn_id=turn_id, error=str(fallback_error))
            mapped = self._map_provider_error(error, provider_name)
            if mapped is error:
                raise
            raise mapped from error

    @staticmethod
    def _map_provider_error(error: Exception, provider_name: str) -> Exception:
        if not isinstance(error, LLMProviderError):
            return error
        status = getattr(error, "status_code", None)
        provider = canonical_provider_name(getattr(error, "provider", None) or provider_name)
        if status == 401 or (isinstance(error, LLMProviderAuthError) and status is None):
            message = AUTH_FAILURE_MESSAGES.get(provider)
            if message:
                return ProviderAuthFailure(message, provider=provider)
        if isinstance(error, LLMProviderRateLimitError) or status == 429:
            return ProviderRateLimited(RATE_LIMITED_MESSAGE, provider=provider)
        return error

    async def aclose(self) -> None:
        await self.tool_client.close()
