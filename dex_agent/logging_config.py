"""
Structured logging for the orchestrator.

Every component logs through ``structlog.stdlib.get_logger("dex_agent.<part>")``
with key/value events (``turn_start``, ``tool_call``, ``provider_error``,
``pending_set`` ...). ``LOG_FORMAT`` picks JSON lines or a console renderer;
``auto`` uses the console only at DEBUG level.
"""

import logging
import sys
from typing import Any, List, MutableMapping, Optional

import structlog

from .config import settings

SERVICE_NAME = "dex-agent"

# Third-party loggers that are too chatty at INFO.
NOISY_LOGGERS = ("uvicorn.access", "httpcore", "httpx", "anthropic")


def _add_service(_: Any, __: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _use_json(level: int, log_format: str) -> bool:
    log_format = log_format.lower()
    if log_format == "json":
        return True
    if log_format == "console":
        return False
    return level != logging.DEBUG


def setup_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Configure structlog and route stdlib logging through it.

    Args:
        log_level: Override ``settings.log_level``.
        log_format: ``json``, ``console`` or ``auto``; overrides ``settings.log_format``.
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    json_logs = _use_json(level, log_format or settings.log_format)

    processors: List[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _add_service,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_logs:
        processors.append(structlog.processors.format_exc_info)
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
