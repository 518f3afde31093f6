"""LangGraph pipeline for a single orchestrator turn.

Each node may settle the turn by producing a reply; the first reply wins and
ends the graph.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional, TypedDict

from langgraph.graph import END, StateGraph

if TYPE_CHECKING:  # pragma: no cover
    from .orchestrator import Orchestrator
    from ...types.requests import TurnRequest
else:  # pragma: no cover - runtime fallbacks for type hints
    Orchestrator = Any  # type: ignore
    TurnRequest = Any  # type: ignore


class TurnState(TypedDict, total=False):
    """State passed between turn nodes."""

    request: "TurnRequest"
    turn_id: str
    reply: Optional[str]
    path: Optional[str]


def build_turn_graph(orchestrator: "Orchestrator"):
    """Compile the turn pipeline.

    Flow:
        resolve_pending → route_deterministic → dispatch_provider

    ``resolve_pending`` and ``route_deterministic`` jump straight to END when
    they produce a reply.
    """

    graph: StateGraph[TurnState] = StateGraph(TurnState)

    async def resolve_pending(state: TurnState) -> TurnState:
        reply = await orchestrator.resolver.resolve(state['request'])
        if reply:
            return {'reply': reply, 'path': 'confirmation'}
        return {}

    async def route_deterministic(state: TurnState) -> TurnState:
        reply, path = await orchestrator._route_deterministic(state['request'])  # pylint: disable=protected-access
        if reply:
            return {'reply': reply, 'path': path}
        return {}

    async def dispatch_provider(state: TurnState) -> TurnState:
        reply, path = await orchestrator._dispatch_provider(  # pylint: disable=protected-access
            state['request'],
            state['turn_id'],
        )
        return {'reply': reply, 'path': path}

    graph.add_node('resolve_pending', resolve_pending)
    graph.add_node('route_deterministic', route_deterministic)
    graph.add_node('dispatch_provider', dispatch_provider)

    graph.set_entry_point('resolve_pending')

    def _settled(state: TurnState) -> str:
        return 'settled' if state.get('reply') else 'continue'

    graph.add_conditional_edges(
        'resolve_pending',
        _settled,
        {
            'settled': END,
            'continue': 'route_deterministic',
        },
    )
    graph.add_conditional_edges(
        'route_deterministic',
        _settled,
        {
            'settled': END,
            'continue': 'dispatch_provider',
        },
    )
    graph.add_edge('dispatch_provider', END)

    return graph.compile()
