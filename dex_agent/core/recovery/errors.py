"""
Error Classification

Defines the error types shared by the tool executor and the provider loop.
Errors are classified as transient (retry with backoff) or fatal (surface
immediately).
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx


TRANSIENT_STATUS_CODES = frozenset({408, 409, 425, 429, 500, 502, 503, 504})

_TRANSIENT_MESSAGE = re.compile(
    r"timeout|temporar|rate limit|overloaded|networkerror|failed to fetch",
    re.IGNORECASE,
)


class ErrorCategory(str, Enum):
    """Categories of errors for recovery decisions."""

    NETWORK = "network"           # Network/connectivity issues
    RATE_LIMIT = "rate_limit"     # HTTP 429 / provider throttling
    TIMEOUT = "timeout"           # Operation timed out
    SERVER = "server"             # Transient upstream 5xx / 408 / 409 / 425
    TOOL = "tool"                 # Tool-domain error (bad market, balance, ...)
    PROTOCOL = "protocol"         # Malformed model output or exhausted round budget
    AUTHENTICATION = "authentication"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Additional context about an error."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = False
    status_code: Optional[int] = None
    suggested_action: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class RecoverableError(Exception):
    """Base class for errors that can be retried."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.status_code = status_code
        self.context = ErrorContext(category=category, recoverable=True, status_code=status_code)


class UnrecoverableError(Exception):
    """Base class for errors that must never be retried."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.context = context or ErrorContext(category=category, recoverable=False)


class ToolExecutionError(Exception):
    """Non-2xx response from the tool backend.

    Whether it is retried depends on ``status_code`` and the message, see
    :func:`is_transient_error`.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, tool_name: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.tool_name = tool_name


class ToolBackendUnavailableError(ToolExecutionError):
    """The tool backend could not be reached (connection failure or timeout)."""

    recoverable = True


class TurnCancelledError(Exception):
    """The caller cancelled the turn; no partial reply is produced."""

    def __init__(self, message: str = "Turn cancelled"):
        super().__init__(message)
        self.message = message


class ProtocolError(UnrecoverableError):
    """The model or provider broke the tool-calling protocol."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(
            message,
            category=ErrorCategory.PROTOCOL,
            context=ErrorContext(
                category=ErrorCategory.PROTOCOL,
                recoverable=False,
                details={"provider": provider} if provider else {},
            ),
        )
        self.provider = provider


class ToolLoopExceededError(ProtocolError):
    """The model kept requesting tools past the round budget."""

    def __init__(self, provider: str, max_rounds: int):
        super().__init__(f"{provider} tool loop exceeded max iterations ({max_rounds}).", provider=provider)
        self.max_rounds = max_rounds


class ToolArgumentsError(ProtocolError):
    """The model sent tool arguments that are not valid JSON."""

    def __init__(self, tool_name: str, raw_arguments: str, provider: Optional[str] = None):
        super().__init__(f"Unparseable arguments for tool {tool_name}: {raw_arguments!r}", provider=provider)
        self.tool_name = tool_name
        self.raw_arguments = raw_arguments


def is_transient_error(status_code: Optional[int], message: Optional[str]) -> bool:
    """True when a failure is likely to succeed on retry."""
    if status_code in TRANSIENT_STATUS_CODES:
        return True
    return bool(_TRANSIENT_MESSAGE.search(message or ""))


def classify_error(error: BaseException) -> ErrorContext:
    """
    Classify an exception and return its error context.

    Cancellation and protocol errors are never recoverable; everything else
    goes through the status/message transient check.
    """
    if isinstance(error, TurnCancelledError):
        return ErrorContext(category=ErrorCategory.CANCELLED, recoverable=False)

    if isinstance(error, (RecoverableError, UnrecoverableError)):
        return error.context

    if getattr(error, "recoverable", False) is True:
        return ErrorContext(
            category=ErrorCategory.NETWORK,
            recoverable=True,
            suggested_action="Retry with backoff",
        )

    if isinstance(error, httpx.TimeoutException):
        return ErrorContext(
            category=ErrorCategory.TIMEOUT,
            recoverable=True,
            suggested_action="Retry with backoff",
        )

    if isinstance(error, httpx.TransportError):
        return ErrorContext(
            category=ErrorCategory.NETWORK,
            recoverable=True,
            suggested_action="Check connectivity to the upstream service",
        )

    status_code = getattr(error, "status_code", None)
    if not isinstance(status_code, int):
        status_code = None
    message = str(error)

    if is_transient_error(status_code, message):
        if status_code == 429 or "rate limit" in message.lower():
            category = ErrorCategory.RATE_LIMIT
        elif status_code is not None:
            category = ErrorCategory.SERVER
        elif "timeout" in message.lower():
            category = ErrorCategory.TIMEOUT
        else:
            category = ErrorCategory.NETWORK
        return ErrorContext(
            category=category,
            recoverable=True,
            status_code=status_code,
            suggested_action="Retry with backoff",
        )

    if status_code in (401, 403):
        return ErrorContext(
            category=ErrorCategory.AUTHENTICATION,
            recoverable=False,
            status_code=status_code,
            suggested_action="Check the API key",
        )

    if isinstance(error, ToolExecutionError):
        return ErrorContext(category=ErrorCategory.TOOL, recoverable=False, status_code=status_code)

    return ErrorContext(category=ErrorCategory.UNKNOWN, recoverable=False, status_code=status_code)


class ProviderAuthFailure(UnrecoverableError):
    """The provider rejected the API key, even after the default-model fallback."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(
            message,
            category=ErrorCategory.AUTHENTICATION,
            context=ErrorContext(
                category=ErrorCategory.AUTHENTICATION,
                recoverable=False,
                status_code=401,
                suggested_action="Check the API key",
            ),
        )
        self.provider = provider
        self.status_code = 401


class ProviderRateLimited(UnrecoverableError):
    """The provider kept throttling the turn after retries and the fallback."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(
            message,
            category=ErrorCategory.RATE_LIMIT,
            context=ErrorContext(
                category=ErrorCategory.RATE_LIMIT,
                recoverable=False,
                status_code=429,
                suggested_action="Retry shortly or switch provider/model",
            ),
        )
        self.provider = provider
        self.status_code = 429
