"""
Data executors – run finished queries against a telemetry store.

    • ApplicationInsightsExecutor – KQL over the Application Insights
      REST query API (httpx).
    • PostgresExecutor – read-only SQL against a Postgres telemetry
      store (asyncpg).

Both re-check the read-only policy before running anything, cap the
number of rows returned, and raise ``DataSourceError`` on any failure.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import asyncpg
import httpx

from telemetry_copilot.core.config import settings
from telemetry_copilot.core.errors import DataSourceError
from telemetry_copilot.core.logging import get_logger
from telemetry_copilot.security.query_policy import validate_query
from telemetry_copilot.services.collaborators import DataExecutor
from telemetry_copilot.services.results import Column, ExecutionResult, Table

logger = get_logger(__name__)


def _check_policy(query: str, dialect: str) -> None:
    validation = validate_query(query, dialect)
    if not validation.valid:
        raise DataSourceError(f"Query policy violation: {'; '.join(validation.errors)}")
    for warning in validation.warnings:
        logger.warning("Query policy warning: %s", warning)


# ── Application Insights ─────────────────────────────────────────


class ApplicationInsightsExecutor(DataExecutor):
    def __init__(
        self,
        *,
        app_id: str,
        api_key: str,
        endpoint: str = "https://api.applicationinsights.io/v1",
        max_rows: int = 1000,
        timeout_s: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = f"{endpoint.rstrip('/')}/apps/{app_id}"
        self._max_rows = max_rows
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s),
            headers={"x-api-key": api_key},
        )

    @classmethod
    def from_settings(cls) -> "ApplicationInsightsExecutor":
        return cls(
            app_id=settings.APPINSIGHTS_APP_ID,
            api_key=settings.APPINSIGHTS_API_KEY,
            endpoint=settings.APPINSIGHTS_ENDPOINT,
            max_rows=settings.QUERY_MAX_ROWS,
            timeout_s=settings.DATA_SOURCE_TIMEOUT_S,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def execute(self, query: str) -> ExecutionResult:
        _check_policy(query, "kql")

        t0 = time.perf_counter()
        try:
            response = await self._client.post(f"{self._base_url}/query", json={"query": query})
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            detail = _error_detail(exc.response)
            logger.error("Application Insights query failed (%d): %s", exc.response.status_code, detail)
            raise DataSourceError(
                f"Application Insights query failed: {detail}",
                status_code=exc.response.status_code,
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Application Insights request error: %s", exc)
            raise DataSourceError(f"Application Insights request failed: {exc}") from exc

        result = self._to_result(payload)
        logger.info(
            "Application Insights query: tables=%d rows=%d ms=%d",
            len(result.tables), result.total_rows, round((time.perf_counter() - t0) * 1000),
        )
        return result

    async def get_schema(self) -> dict[str, Any] | None:
        try:
            response = await self._client.get(f"{self._base_url}/metadata")
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError):
            logger.warning("Application Insights schema unavailable", exc_info=True)
            return None

    def _to_result(self, payload: dict[str, Any]) -> ExecutionResult:
        try:
            result = ExecutionResult.from_dict(payload)
        except (AttributeError, TypeError, ValueError) as exc:
            raise DataSourceError(f"Unexpected Application Insights response: {exc}") from exc

        for table in result.tables:
            if table.row_count > self._max_rows:
                logger.warning(
                    "Truncating table %s from %d to %d rows", table.name, table.row_count, self._max_rows,
                )
                table.rows = table.rows[: self._max_rows]
        return result


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] or response.reason_phrase
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error.get("code") or error)
    return str(body)[:500]


# ── Postgres ─────────────────────────────────────────────────────


_SCHEMA_SQL = """
SELECT table_name, column_name, data_type
FROM information_schema.columns
WHERE table_schema = 'public'
ORDER BY table_name, ordinal_position
"""


class PostgresExecutor(DataExecutor):
    def __init__(
        self,
        *,
        dsn: str,
        max_rows: int = 1000,
        timeout_s: float = 60.0,
    ) -> None:
        self._dsn = dsn.replace("postgresql+asyncpg://", "postgresql://")
        self._max_rows = max_rows
        self._timeout_s = timeout_s

    @classmethod
    def from_settings(cls) -> "PostgresExecutor":
        return cls(
            dsn=settings.DATABASE_URL,
            max_rows=settings.QUERY_MAX_ROWS,
            timeout_s=settings.DATA_SOURCE_TIMEOUT_S,
        )

    async def _connect(self) -> asyncpg.Connection:
        try:
            return await asyncpg.connect(self._dsn, timeout=self._timeout_s)
        except (OSError, asyncio.TimeoutError, asyncpg.PostgresError) as exc:
            logger.error("Postgres connection failed: %s", exc)
            raise DataSourceError(f"Database connection failed: {exc}") from exc

    async def execute(self, query: str) -> ExecutionResult:
        _check_policy(query, "sql")

        clean_sql = query.strip().rstrip(";").strip()
        # Always wrap, so a user-supplied LIMIT cannot exceed the cap
        limited_sql = f"SELECT * FROM ({clean_sql}) _q LIMIT {self._max_rows + 1}"

        conn = await self._connect()
        try:
            t0 = time.perf_counter()
            async with conn.transaction(readonly=True):
                stmt = await conn.prepare(limited_sql, timeout=self._timeout_s)
                columns = [Column(name=a.name, type=a.type.name) for a in stmt.get_attributes()]
                records = await stmt.fetch(timeout=self._timeout_s)
            db_ms = round((time.perf_counter() - t0) * 1000)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as exc:
            logger.error("SQL execution error: %s | SQL: %s", exc, clean_sql[:200])
            raise DataSourceError(f"Database error: {exc}") from exc
        finally:
            await conn.close()

        if len(records) > self._max_rows:
            logger.warning("Result truncated to %d rows", self._max_rows)
        rows = [list(r.values()) for r in records[: self._max_rows]]

        logger.info("Postgres query: rows=%d ms=%d", len(rows), db_ms)
        return ExecutionResult(tables=[Table(name="PrimaryResult", columns=columns, rows=rows)])

    async def get_schema(self) -> dict[str, Any] | None:
        try:
            conn = await self._connect()
        except DataSourceError:
            return None
        try:
            records = await conn.fetch(_SCHEMA_SQL)
        except asyncpg.PostgresError:
            logger.warning("Postgres schema unavailable", exc_info=True)
            return None
        finally:
            await conn.close()

        tables: dict[str, dict[str, str]] = {}
        for r in records:
            tables.setdefault(r["table_name"], {})[r["column_name"]] = r["data_type"]
        return {"tables": tables}


def build_executor() -> DataExecutor:
    """Executor for the configured ``DATA_SOURCE``."""
    if settings.query_dialect == "sql":
        return PostgresExecutor.from_settings()
    return ApplicationInsightsExecutor.from_settings()
