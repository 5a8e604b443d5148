"""
Read-only query policy for generated or edited queries.

SQL (Postgres telemetry store):
    1. Must start with SELECT or WITH … SELECT.
    2. No multiple statements (no semicolons except trailing).
    3. No DDL / DML / session keywords.

KQL (Application Insights):
    1. No control commands (``.drop``, ``.set`` …).
    2. No external-request plugins.

Both dialects warn, without failing, when a query reads a table that
is not a known telemetry table.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

# ── Known tables ─────────────────────────────────────────────────

KQL_TABLES: set[str] = {
    "requests", "dependencies", "exceptions", "traces", "pageviews",
    "customevents", "custommetrics", "performancecounters",
    "availabilityresults", "browsertimings",
    "apprequests", "appdependencies", "appexceptions", "apptraces",
    "apppageviews", "appevents", "appmetrics", "appperformancecounters",
    "appavailabilityresults", "appbrowsertimings",
    # tabular sources that are not tables
    "union", "print", "range", "datatable", "search", "find",
}

SQL_TABLES: set[str] = {
    "requests", "dependencies", "exceptions", "traces", "page_views",
    "custom_events", "custom_metrics", "performance_counters",
    "availability_results",
}

SQL_FORBIDDEN_KEYWORDS: set[str] = {
    "INSERT", "UPDATE", "DELETE", "DROP", "ALTER", "TRUNCATE",
    "CREATE", "GRANT", "REVOKE", "EXEC", "EXECUTE", "CALL",
    "COPY", "VACUUM", "REINDEX", "CLUSTER", "COMMENT",
    "SET", "RESET", "BEGIN", "COMMIT", "ROLLBACK", "SAVEPOINT",
    "LOCK", "NOTIFY", "LISTEN", "UNLISTEN", "MERGE",
}

KQL_FORBIDDEN_PLUGINS: set[str] = {
    "sql_request", "http_request", "http_request_post",
    "cosmosdb_sql_request", "mysql_request", "postgresql_request",
}


# ── Result ───────────────────────────────────────────────────────


@dataclass
class ValidationResult:
    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def fail(self, message: str) -> None:
        self.valid = False
        self.errors.append(message)


# ── Public API ───────────────────────────────────────────────────


def validate_query(query: str, dialect: str) -> ValidationResult:
    """Validate *query* for *dialect* (``"sql"`` or ``"kql"``)."""
    if dialect == "sql":
        return validate_sql(query)
    return validate_kql(query)


def validate_sql(sql: str) -> ValidationResult:
    result = ValidationResult()
    cleaned = (sql or "").strip().rstrip(";").strip()
    if not cleaned:
        result.fail("Empty query.")
        return result

    stripped = _remove_sql_strings_and_comments(cleaned)
    upper = stripped.strip().upper()

    if not (upper.startswith("SELECT") or upper.startswith("WITH")):
        result.fail("SQL must start with SELECT or WITH.")

    if ";" in stripped:
        result.fail("Multiple statements detected (semicolon in body).")

    for kw in sorted(SQL_FORBIDDEN_KEYWORDS):
        if re.search(rf"\b{kw}\b", upper):
            result.fail(f"Forbidden keyword: {kw}")
            break

    ctes = {m.group(1).lower() for m in _CTE_RE.finditer(stripped)}
    for table in sorted(_sql_table_names(stripped) - ctes):
        if table not in SQL_TABLES:
            result.warnings.append(f"Unknown table: {table}")
    return result


def validate_kql(kql: str) -> ValidationResult:
    result = ValidationResult()
    if not (kql or "").strip():
        result.fail("Empty query.")
        return result

    stripped = _remove_kql_strings_and_comments(kql)

    for statement in re.split(r"[;\n]", stripped):
        if statement.strip().startswith("."):
            result.fail("Control commands are not allowed.")
            break

    plugin = _KQL_PLUGIN_RE.search(stripped)
    if plugin and plugin.group(1).lower() in KQL_FORBIDDEN_PLUGINS:
        result.fail(f"Plugin not allowed: {plugin.group(1)}")

    source = _kql_source_table(stripped)
    if source and source.lower() not in KQL_TABLES:
        result.warnings.append(f"Unknown table: {source}")
    return result


# ── Internals ────────────────────────────────────────────────────

_CTE_RE = re.compile(r"(?:WITH|,)\s*([a-zA-Z_][a-zA-Z0-9_]*)\s+AS\s*\(", re.IGNORECASE)
_SQL_TABLE_RE = re.compile(r"(?:FROM|JOIN)\s+([a-zA-Z_][a-zA-Z0-9_.]*)", re.IGNORECASE)
_KQL_PLUGIN_RE = re.compile(r"\bevaluate\s+([a-zA-Z_][a-zA-Z0-9_]*)", re.IGNORECASE)
_KQL_LET_RE = re.compile(r"^\s*let\s+[^;]*;", re.IGNORECASE)


def _remove_sql_strings_and_comments(sql: str) -> str:
    sql = re.sub(r"--.*$", "", sql, flags=re.MULTILINE)
    sql = re.sub(r"/\*.*?\*/", "", sql, flags=re.DOTALL)
    return re.sub(r"'[^']*'", "''", sql)


def _remove_kql_strings_and_comments(kql: str) -> str:
    kql = re.sub(r"//.*$", "", kql, flags=re.MULTILINE)
    kql = re.sub(r'"(?:\\.|[^"\\])*"', '""', kql)
    return re.sub(r"'(?:\\.|[^'\\])*'", "''", kql)


def _sql_table_names(sql: str) -> set[str]:
    """Best-effort FROM / JOIN table names; schema prefixes dropped."""
    tables: set[str] = set()
    for match in _SQL_TABLE_RE.finditer(sql):
        name = match.group(1).lower().split(".")[-1]
        if name.upper() not in {"SELECT", "LATERAL", "UNNEST", "GENERATE_SERIES"}:
            tables.add(name)
    return tables


def _kql_source_table(kql: str) -> str | None:
    """First identifier of the tabular expression, after any ``let`` statements."""
    body = kql.strip()
    while True:
        match = _KQL_LET_RE.match(body)
        if not match:
            break
        body = body[match.end():].lstrip()
    ident = re.match(r"([A-Za-z_][A-Za-z0-9_]*)", body)
    return ident.group(1) if ident else None
