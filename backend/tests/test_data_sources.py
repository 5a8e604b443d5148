from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager

import httpx
import pytest

from telemetry_copilot.core.errors import DataSourceError
from telemetry_copilot.services import data_sources
from telemetry_copilot.services.data_sources import ApplicationInsightsExecutor, PostgresExecutor

APP_ID = "00000000-app"

RESPONSE = {
    "tables": [
        {
            "name": "PrimaryResult",
            "columns": [{"name": "timestamp", "type": "datetime"}, {"name": "duration", "type": "real"}],
            "rows": [
                ["2024-01-01T00:00:00Z", 120.5],
                ["2024-01-01T00:05:00Z", 98.0],
                ["2024-01-01T00:10:00Z", 143.2],
            ],
        }
    ]
}


def _executor(handler, **kwargs) -> ApplicationInsightsExecutor:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ApplicationInsightsExecutor(app_id=APP_ID, api_key="secret", client=client, **kwargs)


async def test_execute_posts_query_and_parses_tables():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=RESPONSE)

    result = await _executor(handler).execute("requests | take 3")

    assert seen[0].method == "POST"
    assert seen[0].url.path == f"/v1/apps/{APP_ID}/query"
    assert json.loads(seen[0].content) == {"query": "requests | take 3"}
    assert result.total_rows == 3
    assert [c.name for c in result.first_table.columns] == ["timestamp", "duration"]


async def test_rows_are_capped():
    result = await _executor(lambda request: httpx.Response(200, json=RESPONSE), max_rows=2).execute(
        "requests | take 3"
    )
    assert result.total_rows == 2


async def test_http_error_carries_status_and_message():
    body = {"error": {"code": "BadArgumentError", "message": "'foo' is not a known table"}}
    executor = _executor(lambda request: httpx.Response(400, json=body))

    with pytest.raises(DataSourceError) as exc_info:
        await executor.execute("foo | take 1")

    assert exc_info.value.status_code == 400
    assert "'foo' is not a known table" in str(exc_info.value)


async def test_transport_error_becomes_data_source_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(DataSourceError) as exc_info:
        await _executor(handler).execute("requests | take 1")
    assert exc_info.value.status_code is None


async def test_policy_violation_never_reaches_the_api():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=RESPONSE)

    with pytest.raises(DataSourceError, match="policy"):
        await _executor(handler).execute(".drop table requests")
    assert calls == []


async def test_malformed_rows_are_a_data_source_error():
    bad = {"tables": [{"name": "t", "columns": [{"name": "a"}], "rows": [[1, 2]]}]}
    with pytest.raises(DataSourceError):
        await _executor(lambda request: httpx.Response(200, json=bad)).execute("requests")


async def test_schema_failure_returns_none():
    executor = _executor(lambda request: httpx.Response(503, text="unavailable"))
    assert await executor.get_schema() is None


async def test_schema_fetched_from_metadata():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/metadata")
        return httpx.Response(200, json={"tables": [{"name": "requests"}]})

    assert await _executor(handler).get_schema() == {"tables": [{"name": "requests"}]}


# ── Postgres ─────────────────────────────────────────────────────


class _TimingOutConnection:
    def __init__(self) -> None:
        self.closed = False

    @asynccontextmanager
    async def transaction(self, **_kw):
        yield

    async def prepare(self, sql, timeout=None):
        raise asyncio.TimeoutError()

    async def close(self) -> None:
        self.closed = True


async def test_postgres_connect_timeout_becomes_data_source_error(monkeypatch):
    async def connect(*_args, **_kw):
        raise asyncio.TimeoutError()

    monkeypatch.setattr(data_sources.asyncpg, "connect", connect)
    with pytest.raises(DataSourceError, match="connection failed"):
        await PostgresExecutor(dsn="postgresql://u@h/db", timeout_s=0.1).execute("SELECT * FROM requests")


async def test_postgres_query_timeout_becomes_data_source_error(monkeypatch):
    conn = _TimingOutConnection()

    async def connect(*_args, **_kw):
        return conn

    monkeypatch.setattr(data_sources.asyncpg, "connect", connect)
    with pytest.raises(DataSourceError, match="Database error"):
        await PostgresExecutor(dsn="postgresql://u@h/db", timeout_s=0.1).execute("SELECT * FROM requests")
    assert conn.closed
