#  Agent Watch - Structured Logging Tests
#
#  Tests for JSON formatter and context variable propagation.
#
#  Depends on: agentwatch/logging_config.py
#  Used by:    pytest

import json
import logging

from agentwatch.logging_config import (
    JSONFormatter,
    agent_id_var,
    request_id_var,
    set_agent_id,
    set_request_id,
    setup_logging,
)


def _record(msg: str, level=logging.INFO, exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(
        name="test", level=level, pathname="", lineno=0,
        msg=msg, args=(), exc_info=exc_info,
    )


class TestJSONFormatter:
    def test_output_is_valid_json(self):
        data = json.loads(JSONFormatter().format(_record("hello world")))
        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "hello world"
        assert data["timestamp"].endswith("Z")

    def test_request_id_included_when_set(self):
        token = request_id_var.set("req-abc123")
        try:
            data = json.loads(JSONFormatter().format(_record("with request")))
            assert data["request_id"] == "req-abc123"
        finally:
            request_id_var.reset(token)

    def test_agent_id_included_when_set(self):
        token = agent_id_var.set("agent-7")
        try:
            data = json.loads(JSONFormatter().format(_record("with agent")))
            assert data["agent_id"] == "agent-7"
        finally:
            agent_id_var.reset(token)

    def test_context_vars_absent_when_not_set(self):
        set_request_id(None)
        set_agent_id(None)
        data = json.loads(JSONFormatter().format(_record("no context")))
        assert "request_id" not in data
        assert "agent_id" not in data

    def test_exception_included(self):
        try:
            raise ValueError("test error")
        except ValueError:
            import sys
            exc_info = sys.exc_info()

        data = json.loads(JSONFormatter().format(_record("oops", logging.ERROR, exc_info)))
        assert "ValueError" in data["exception"]


class TestSetupLogging:
    def test_json_format(self):
        logger = logging.getLogger("agentwatch")
        logger.handlers.clear()

        setup_logging("INFO", "json")
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)
        assert logger.level == logging.INFO

        logger.handlers.clear()

    def test_text_format(self):
        logger = logging.getLogger("agentwatch")
        logger.handlers.clear()

        setup_logging("DEBUG", "text")
        assert len(logger.handlers) == 1
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)
        assert logger.level == logging.DEBUG

        logger.handlers.clear()

    def test_idempotent(self):
        """Calling setup_logging twice doesn't duplicate handlers."""
        logger = logging.getLogger("agentwatch")
        logger.handlers.clear()

        setup_logging("INFO", "json")
        setup_logging("INFO", "json")
        assert len(logger.handlers) == 1

        logger.handlers.clear()

    def test_watchdog_quieted(self):
        logger = logging.getLogger("agentwatch")
        logger.handlers.clear()
        setup_logging("DEBUG", "text")
        assert logging.getLogger("watchdog").level == logging.WARNING
        logger.handlers.clear()


class TestRequestIDMiddleware:
    async def test_request_id_header_returned(self, app_client):
        resp = await app_client.get("/api/health")
        assert resp.status_code == 200
        rid = resp.headers.get("x-request-id")
        assert rid is not None
        assert len(rid) == 12  # uuid hex[:12]
