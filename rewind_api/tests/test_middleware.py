"""Tests for the JSON log formatter and the request logging middleware."""

from __future__ import annotations

import json
import logging
import sys

import pytest
from httpx import AsyncClient

from rewind_api.middleware.json_formatter import JSONFormatter


@pytest.fixture
def formatter() -> JSONFormatter:
    return JSONFormatter()


def _record(msg: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="rewind.test",
        level=logging.INFO,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Structured output from the formatter."""

    def test_basic_fields(self, formatter: JSONFormatter) -> None:
        data = json.loads(formatter.format(_record()))
        assert data["level"] == "INFO"
        assert data["logger"] == "rewind.test"
        assert data["message"] == "hello"
        assert "timestamp" in data
        assert "exc_info" not in data

    def test_extra_fields_copied(self, formatter: JSONFormatter) -> None:
        output = formatter.format(_record(group_id="g1", snapshot_id="sales_deadbeef", request={"path": "/x"}))
        data = json.loads(output)
        assert data["group_id"] == "g1"
        assert data["snapshot_id"] == "sales_deadbeef"
        assert data["request"] == {"path": "/x"}

    def test_exception_included(self, formatter: JSONFormatter) -> None:
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()
        output = formatter.format(record)
        assert "\n" not in output
        assert "ValueError: boom" in json.loads(output)["exc_info"]


class TestRequestLogging:
    """Access log records and the correlation header."""

    @pytest.mark.asyncio
    async def test_correlation_id_echoed(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/settings", headers={"X-Correlation-ID": "abc-123"})
        assert resp.headers["X-Correlation-ID"] == "abc-123"

    @pytest.mark.asyncio
    async def test_correlation_id_generated(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/settings")
        assert len(resp.headers["X-Correlation-ID"]) == 36

    @pytest.mark.asyncio
    async def test_mutation_logged_with_masked_headers(
        self,
        client: AsyncClient,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        with caplog.at_level(logging.INFO, logger="rewind.access"):
            await client.delete("/api/v1/history", headers={"Authorization": "Bearer secret", "X-User": "dana"})

        records = [r for r in caplog.records if r.name == "rewind.access"]
        assert len(records) == 1
        payload = records[0].request
        assert payload["method"] == "DELETE"
        assert payload["status_code"] == 200
        assert payload["user"] == "dana"
        assert payload["headers"]["authorization"] == "***"

    @pytest.mark.asyncio
    async def test_not_found_logged_as_warning(
        self,
        client: AsyncClient,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        with caplog.at_level(logging.DEBUG, logger="rewind.access"):
            await client.get("/api/v1/groups/missing/snapshots")
        records = [r for r in caplog.records if r.name == "rewind.access"]
        assert records[-1].levelno == logging.WARNING
