from __future__ import annotations

import pytest

from telemetry_copilot.security.query_policy import validate_kql, validate_query, validate_sql

# ── SQL ──────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "sql",
    [
        "SELECT * FROM requests LIMIT 10",
        "select name, count(*) from exceptions group by name;",
        "WITH slow AS (SELECT * FROM requests WHERE duration > 1000) SELECT count(*) FROM slow",
        "SELECT r.name FROM requests r JOIN dependencies d ON d.operation_id = r.operation_id",
    ],
)
def test_valid_sql(sql):
    result = validate_sql(sql)
    assert result.valid, result.errors
    assert result.warnings == []


@pytest.mark.parametrize(
    "sql, message",
    [
        ("DELETE FROM requests", "SQL must start with SELECT or WITH."),
        ("SELECT 1; DROP TABLE requests", "Multiple statements detected (semicolon in body)."),
        ("WITH x AS (DELETE FROM requests RETURNING *) SELECT * FROM x", "Forbidden keyword: DELETE"),
        ("", "Empty query."),
        ("  ;  ", "Empty query."),
    ],
)
def test_rejected_sql(sql, message):
    result = validate_sql(sql)
    assert not result.valid
    assert message in result.errors


def test_keywords_inside_strings_and_comments_are_ignored():
    sql = "SELECT * FROM traces WHERE message = 'DROP TABLE; now' -- DELETE later"
    assert validate_sql(sql).valid


def test_unknown_sql_table_warns_without_failing():
    result = validate_sql("SELECT * FROM pg_shadow")
    assert result.valid
    assert result.warnings == ["Unknown table: pg_shadow"]


def test_schema_prefix_is_dropped():
    assert validate_sql("SELECT * FROM public.requests").warnings == []


# ── KQL ──────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "kql",
    [
        "requests | where timestamp > ago(1h) | summarize count() by bin(timestamp, 5m)",
        "let threshold = 1000;\nrequests | where duration > threshold",
        "AppRequests | take 10",
        "union requests, dependencies | count",
        'traces | where message has ".drop table"',
    ],
)
def test_valid_kql(kql):
    result = validate_kql(kql)
    assert result.valid, result.errors
    assert result.warnings == []


def test_control_command_rejected():
    result = validate_kql(".drop table requests")
    assert not result.valid
    assert "Control commands are not allowed." in result.errors


def test_control_command_after_query_rejected():
    assert not validate_kql("requests | take 1;\n.set-or-append t <| requests").valid


def test_external_plugin_rejected():
    result = validate_kql('requests | evaluate http_request("https://example.com")')
    assert not result.valid
    assert result.errors == ["Plugin not allowed: http_request"]


def test_analytics_plugin_allowed():
    assert validate_kql("requests | evaluate autocluster()").valid


def test_unknown_kql_table_warns_without_failing():
    result = validate_kql("let n = 5;\nMyCustomLogs_CL | take n")
    assert result.valid
    assert result.warnings == ["Unknown table: MyCustomLogs_CL"]


def test_empty_kql_rejected():
    assert validate_kql("  \n").errors == ["Empty query."]


def test_validate_query_dispatches_on_dialect():
    assert not validate_query("DELETE FROM requests", "sql").valid
    assert validate_query("requests | take 1", "kql").valid
    assert not validate_query(".show tables", "kql").valid
