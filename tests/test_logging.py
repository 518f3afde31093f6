import json
import logging

import structlog
from fastapi import FastAPI
from fastapi.testclient import TestClient

from dex_agent.logging_config import setup_logging
from dex_agent.middleware import RequestLoggingMiddleware
from dex_agent.middleware.logging_middleware import _conversation_id


def test_json_logs_carry_service_name(capsys):
    setup_logging("INFO", "json")

    structlog.stdlib.get_logger("dex_agent.test").info("turn_start", turn_id="abc")

    line = capsys.readouterr().out.strip().splitlines()[-1]
    event = json.loads(line)
    assert event["event"] == "turn_start"
    assert event["turn_id"] == "abc"
    assert event["service"] == "dex-agent"
    assert event["level"] == "info"


def test_noisy_loggers_quieted():
    setup_logging("DEBUG", "console")

    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger().level == logging.DEBUG


def test_conversation_id_from_path():
    assert _conversation_id("/chat/c-42/reset") == "c-42"
    assert _conversation_id("/chat/c-42/cancel") == "c-42"
    assert _conversation_id("/chat") is None


def test_request_id_header_is_echoed():
    app = FastAPI()
    app.add_middleware(RequestLoggingMiddleware)

    @app.get("/ping")
    async def ping():
        return {"ok": True}

    with TestClient(app) as client:
        response = client.get("/ping", headers={"x-request-id": "req-1"})

    assert response.headers["x-request-id"] == "req-1"
