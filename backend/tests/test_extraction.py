from __future__ import annotations

from telemetry_copilot.analysis.extraction import (
    Malformed,
    Parsed,
    extract_json_object,
    parse_model_output,
    strip_fences,
)
from telemetry_copilot.analysis.models import Priority
from telemetry_copilot.analysis.schemas import InsightResponse, PatternResponse

RAW = (
    '{"trends": [{"description": "Latency rises after 10:00 {peak}", "confidence": 0.8}], '
    '"anomalies": [{"type": "spike", "description": "p95 jumps", "severity": "HIGH", "affectedRows": [3]}], '
    '"correlations": []}'
)


def test_fenced_json_with_prose_matches_raw_json():
    wrapped = f"Here is what I found:\n```json\n{RAW}\n```\nLet me know if you need more detail {{or not}}."

    raw_outcome = parse_model_output(RAW, PatternResponse)
    wrapped_outcome = parse_model_output(wrapped, PatternResponse)

    assert isinstance(raw_outcome, Parsed)
    assert isinstance(wrapped_outcome, Parsed)
    assert wrapped_outcome.value == raw_outcome.value


def test_bare_fence_is_accepted():
    assert extract_json_object(f"```\n{RAW}\n```") == RAW


def test_fenced_block_preferred_over_earlier_braces():
    text = 'Using {placeholder} syntax.\n```json\n{"summary": "ok"}\n```'
    assert extract_json_object(text) == '{"summary": "ok"}'


def test_braces_inside_strings_do_not_end_the_object():
    text = 'prefix {"description": "a } inside \\" quotes {", "n": 1} suffix'
    assert extract_json_object(text) == '{"description": "a } inside \\" quotes {", "n": 1}'


def test_unbalanced_prefix_is_skipped():
    text = 'broken { here, but then {"summary": "fine"}'
    # The first brace never closes, so the scan restarts at the next one
    assert extract_json_object(text) == '{"summary": "fine"}'


def test_no_json_is_malformed_without_json():
    outcome = parse_model_output("Traffic looks normal today.", InsightResponse)
    assert isinstance(outcome, Malformed)
    assert outcome.had_json is False
    assert outcome.raw_text == "Traffic looks normal today."


def test_invalid_json_is_malformed_with_json():
    outcome = parse_model_output('{"summary": "ok",}', InsightResponse)
    assert isinstance(outcome, Malformed)
    assert outcome.had_json is True
    assert "invalid JSON" in outcome.reason


def test_schema_mismatch_is_malformed():
    outcome = parse_model_output('{"trends": "not a list"}', PatternResponse)
    assert isinstance(outcome, Malformed)
    assert outcome.had_json is True


def test_schema_normalises_model_quirks():
    outcome = parse_model_output(RAW, PatternResponse)
    anomaly = outcome.value.anomalies[0]
    assert anomaly.severity == "high"
    assert anomaly.affected_rows == [3]


def test_trend_confidence_is_normalised():
    raw = (
        '{"trends": ['
        '{"description": "a", "confidence": "high"},'
        '{"description": "b", "confidence": -1},'
        '{"description": "c", "confidence": "0.4"},'
        '{"description": "d", "confidence": 250}'
        ']}'
    )
    outcome = parse_model_output(raw, PatternResponse)
    assert [t.confidence for t in outcome.value.trends] == [None, 0.0, 0.4, 1.0]


def test_insight_schema_accepts_snake_and_camel_case():
    camel = parse_model_output(
        '{"keyFindings": ["a"], "followUpQueries": [{"query": "q", "priority": "High"}]}',
        InsightResponse,
    )
    snake = parse_model_output(
        '{"key_findings": ["a"], "follow_up_queries": [{"query": "q", "priority": "high"}], "recommendations": null}',
        InsightResponse,
    )
    assert camel.value == snake.value
    assert camel.value.follow_up_queries[0].priority is Priority.HIGH


def test_unknown_priority_defaults_to_medium():
    outcome = parse_model_output('{"followUpQueries": [{"query": "q", "priority": "urgent"}]}', InsightResponse)
    assert outcome.value.follow_up_queries[0].priority is Priority.MEDIUM


def test_strip_fences():
    assert strip_fences("```kql\nrequests | take 1\n```") == "requests | take 1"
    assert strip_fences("```\nrequests | take 1\n```") == "requests | take 1"
    assert strip_fences("  requests  ") == "requests"
