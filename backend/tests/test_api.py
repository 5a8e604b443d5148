from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import FakeExecutor
from telemetry_copilot.core.errors import DataSourceError
from telemetry_copilot.core.middleware import REQUEST_ID_HEADER
from telemetry_copilot.main import create_app
from telemetry_copilot.refinement.engine import RefinementEngine
from telemetry_copilot.refinement.store import SessionStore
from telemetry_copilot.services.observability import NoOpTracer


@pytest.fixture
def store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def client(engine, analysis_engine, store) -> TestClient:
    app = create_app(refinement_engine=engine, analysis_engine=analysis_engine, session_store=store)
    return TestClient(app)


def _start(client: TestClient) -> dict:
    response = client.post("/api/refinements", json={"question": "slow requests in the last hour"})
    assert response.status_code == 201, response.text
    return response.json()


# ── Start ────────────────────────────────────────────────────────


def test_start_returns_reviewing_session(client, store, generator):
    body = _start(client)

    assert body["state"] == "reviewing"
    assert body["attempt_number"] == 1
    assert body["candidate"]["query_text"] == generator.initial.query_text
    assert body["available_actions"] == ["execute", "explain", "regenerate", "edit", "history", "cancel"]
    assert body["session_id"] in store


def test_start_rejects_blank_question(client):
    assert client.post("/api/refinements", json={"question": ""}).status_code == 422
    assert client.post("/api/refinements", json={"question": "   "}).status_code == 422


def test_start_generation_failure_is_502(client, generator):
    generator.generate_error = RuntimeError("provider down")
    response = client.post("/api/refinements", json={"question": "slow requests"})
    assert response.status_code == 502


# ── Actions ──────────────────────────────────────────────────────


def test_regenerate_then_execute(client):
    session_id = _start(client)["session_id"]

    regenerated = client.post(f"/api/refinements/{session_id}/actions", json={"action": "regenerate"}).json()
    assert regenerated["attempt_number"] == 2
    assert regenerated["candidate"]["query_text"] == "requests | take 20"

    executed = client.post(
        f"/api/refinements/{session_id}/actions",
        json={"action": "execute", "analysis_mode": "statistical"},
    ).json()
    assert executed["state"] == "executed"
    assert executed["available_actions"] == []
    assert executed["result"]["tables"][0]["name"] == "PrimaryResult"
    assert executed["analysis"]["statistical"]["summary"]["total_rows"] == 5
    assert [h["action"] for h in executed["history"]] == ["generated", "regenerated", "executed"]


def test_edit_and_history_selection(client):
    session_id = _start(client)["session_id"]
    url = f"/api/refinements/{session_id}/actions"

    edited = client.post(url, json={"action": "edit", "query": "requests | take 3"}).json()
    assert edited["candidate"]["confidence"] == 0.5
    assert edited["warnings"]

    restored = client.post(url, json={"action": "history", "index": 0}).json()
    assert restored["candidate"]["reasoning"] == "Restored from history (generated)"

    history = client.get(f"/api/refinements/{session_id}/history").json()
    assert [h["action"] for h in history] == ["generated", "edited"]


def test_explain_with_options(client, generator):
    session_id = _start(client)["session_id"]
    body = client.post(
        f"/api/refinements/{session_id}/actions",
        json={"action": "explain", "language": "es", "technical_level": "advanced"},
    ).json()

    assert body["explanation"] == generator.explanation
    assert generator.calls[-1][1].language == "es"


def test_unknown_action_is_422(client):
    session_id = _start(client)["session_id"]
    response = client.post(f"/api/refinements/{session_id}/actions", json={"action": "delete"})
    assert response.status_code == 422


def test_unknown_session_is_404(client):
    assert client.post("/api/refinements/nope/actions", json={"action": "execute"}).status_code == 404
    assert client.get("/api/refinements/nope/history").status_code == 404
    assert client.delete("/api/refinements/nope").status_code == 404


def test_action_on_cancelled_session_is_409(client):
    session_id = _start(client)["session_id"]
    url = f"/api/refinements/{session_id}/actions"

    assert client.post(url, json={"action": "cancel"}).json()["state"] == "cancelled"
    assert client.post(url, json={"action": "execute"}).status_code == 409


def test_execution_failure_is_502_and_ends_session(generator, analysis_engine, store):
    executor = FakeExecutor(error=DataSourceError("Semantic error", status_code=400))
    engine = RefinementEngine(generator, executor, analysis_engine=analysis_engine, tracer=NoOpTracer())
    client = TestClient(create_app(refinement_engine=engine, analysis_engine=analysis_engine, session_store=store))

    session_id = _start(client)["session_id"]
    response = client.post(f"/api/refinements/{session_id}/actions", json={"action": "execute"})

    assert response.status_code == 502
    assert "Semantic error" in response.json()["detail"]
    assert session_id not in store


def test_unexpected_execution_failure_ends_session(generator, analysis_engine, store):
    executor = FakeExecutor(error=RuntimeError("driver crashed"))
    engine = RefinementEngine(generator, executor, analysis_engine=analysis_engine, tracer=NoOpTracer())
    app = create_app(refinement_engine=engine, analysis_engine=analysis_engine, session_store=store)
    client = TestClient(app, raise_server_exceptions=False)

    session_id = _start(client)["session_id"]
    response = client.post(f"/api/refinements/{session_id}/actions", json={"action": "execute"})

    assert response.status_code == 500
    assert session_id not in store


def test_delete_ends_session(client, store):
    session_id = _start(client)["session_id"]
    assert client.delete(f"/api/refinements/{session_id}").json() == {"ended": session_id}
    assert session_id not in store


# ── Analysis & info ──────────────────────────────────────────────


def test_standalone_analysis(client, sample_result):
    response = client.post(
        "/api/analysis",
        json={"result": sample_result.to_dict(), "query": "requests | take 5", "mode": "statistical"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["statistical"]["numerical"]["column"] == "duration"
    assert "patterns" not in body


def test_analysis_rejects_ragged_rows(client):
    bad = {"tables": [{"name": "t", "columns": [{"name": "a"}], "rows": [[1, 2]]}]}
    response = client.post("/api/analysis", json={"result": bad, "mode": "statistical"})
    assert response.status_code == 422


def test_missing_engine_is_503():
    client = TestClient(create_app(session_store=SessionStore()))
    assert client.post("/api/refinements", json={"question": "anything"}).status_code == 503


def test_version_and_request_id(client):
    response = client.get("/api/version", headers={REQUEST_ID_HEADER: "abc-123"})
    assert response.status_code == 200
    assert set(response.json()) == {"app", "version", "environment", "data_source", "dialect"}
    assert response.headers[REQUEST_ID_HEADER] == "abc-123"
