"""
DEX Trading Agent

This package contains the turn orchestrator that routes user messages to a
pending confirmation, a deterministic tool call, or a tool-calling language
model loop.
"""

from .confirmation import ConfirmationState, PendingConfirmation, PendingConfirmationResolver
from .dispatch import ProviderDispatcher
from .executor import AgentState, PendingAction, ToolExecutor
from .intents import DeterministicIntent, IntentType, detect_intent
from .orchestrator import Orchestrator
from .router import DeterministicRouter

__all__ = [
    "AgentState",
    "ConfirmationState",
    "DeterministicIntent",
    "DeterministicRouter",
    "IntentType",
    "Orchestrator",
    "PendingAction",
    "PendingConfirmation",
    "PendingConfirmationResolver",
    "ProviderDispatcher",
    "ToolExecutor",
    "detect_intent",
]
