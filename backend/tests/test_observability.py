from __future__ import annotations

from telemetry_copilot.services.observability import NoOpTracer, _sanitise, active_span, span_scope


def test_sanitise_drops_secrets_and_truncates():
    clean = _sanitise({"api_key": "sk-123", "rows": [[1]], "query": "x" * 5000, "ids": list(range(80))})

    assert "api_key" not in clean
    assert "rows" not in clean
    assert clean["query"].endswith("…[truncated]")
    assert len(clean["ids"]) == 50


def test_span_scope_sets_and_restores_active_span():
    outer, inner = object(), object()
    assert active_span() is None
    with span_scope(outer):
        assert active_span() is outer
        with span_scope(inner):
            assert active_span() is inner
        assert active_span() is outer
    assert active_span() is None


def test_noop_tracer_absorbs_calls():
    tracer = NoOpTracer()
    trace = tracer.start_trace(name="refinement", session_id="abc")
    span = tracer.start_span(trace, name="generate", input={"question": "q"})
    tracer.log_generation(span, name="llm.call_json", usage={"input": 1, "output": 1})
    tracer.end_span(span, output={"query": "requests"})
    tracer.finalize_trace(trace, output={"state": "cancelled"})
    tracer.flush()
