"""
Tests for structured logging and correlation ids.
"""

import json
import logging

import pytest
from httpx import AsyncClient

from cryptodash.shared.logging import (
    CORRELATION_ID_HEADER,
    StructuredFormatter,
    correlation_id_var,
)


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("cryptodash.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    def test_extra_fields_are_emitted(self) -> None:
        payload = json.loads(StructuredFormatter().format(_record(event_type="audit_write_failed")))

        assert payload["message"] == "hello world"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "cryptodash.test"
        assert payload["event_type"] == "audit_write_failed"

    def test_correlation_id_included(self) -> None:
        token = correlation_id_var.set("abc-123")
        try:
            payload = json.loads(StructuredFormatter().format(_record()))
        finally:
            correlation_id_var.reset(token)

        assert payload["correlation_id"] == "abc-123"

    def test_colliding_extra_is_prefixed(self) -> None:
        payload = json.loads(StructuredFormatter().format(_record(level="custom")))

        assert payload["level"] == "INFO"
        assert payload["extra_level"] == "custom"


class TestCorrelationMiddleware:
    @pytest.mark.asyncio
    async def test_echoes_incoming_id(self, async_client: AsyncClient) -> None:
        response = await async_client.get("/health", headers={CORRELATION_ID_HEADER: "req-42"})

        assert response.headers[CORRELATION_ID_HEADER] == "req-42"

    @pytest.mark.asyncio
    async def test_generates_id(self, async_client: AsyncClient) -> None:
        response = await async_client.get("/health")

        assert len(response.headers[CORRELATION_ID_HEADER]) == 36
