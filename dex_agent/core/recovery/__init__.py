"""
Error Recovery Module

Provides error classification, retry logic and cooperative cancellation for
tool backend and LLM provider calls.
"""

from .cancellation import raise_if_cancelled, run_cancellable, sleep_cancellable
from .errors import (
    TRANSIENT_STATUS_CODES,
    ErrorCategory,
    ErrorContext,
    ProtocolError,
    ProviderAuthFailure,
    ProviderRateLimited,
    RecoverableError,
    ToolArgumentsError,
    ToolBackendUnavailableError,
    ToolExecutionError,
    ToolLoopExceededError,
    TurnCancelledError,
    UnrecoverableError,
    classify_error,
    is_transient_error,
)
from .strategies import RetryConfig, RetryStrategy

__all__ = [
    # Errors
    "TRANSIENT_STATUS_CODES",
    "ErrorCategory",
    "ErrorContext",
    "RecoverableError",
    "UnrecoverableError",
    "ToolExecutionError",
    "ToolBackendUnavailableError",
    "TurnCancelledError",
    "ProtocolError",
    "ToolLoopExceededError",
    "ToolArgumentsError",
    "ProviderAuthFailure",
    "ProviderRateLimited",
    "classify_error",
    "is_transient_error",
    # Strategies
    "RetryConfig",
    "RetryStrategy",
    # Cancellation
    "raise_if_cancelled",
    "run_cancellable",
    "sleep_cancellable",
]
