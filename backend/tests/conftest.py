from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from telemetry_copilot.analysis.engine import AnalysisEngine
from telemetry_copilot.analysis.insights import InsightExtractor
from telemetry_copilot.refinement.engine import RefinementEngine
from telemetry_copilot.refinement.models import (
    Candidate,
    ExplanationOptions,
    RefinementPolicy,
    RegenerationContext,
)
from telemetry_copilot.services.collaborators import DataExecutor, QueryGenerator, TextCompleter
from telemetry_copilot.services.observability import NoOpTracer
from telemetry_copilot.services.results import Column, ExecutionResult, Table

INITIAL_QUERY = "requests | where timestamp > ago(1h) | summarize count() by bin(timestamp, 5m)"


class FakeGenerator(QueryGenerator, TextCompleter):
    """Scriptable generator; records every call."""

    def __init__(
        self,
        initial: Candidate | None = None,
        *,
        regenerations: list[Candidate] | None = None,
        completions: list[str] | None = None,
    ) -> None:
        self.initial = initial or Candidate(INITIAL_QUERY, 0.9, "Counts requests per 5 minutes")
        self.regenerations = list(regenerations or [])
        self.completions = list(completions or [])
        self.explanation = "Counts requests in 5 minute bins over the last hour."
        self.generate_error: Exception | None = None
        self.regenerate_error: Exception | None = None
        self.explain_error: Exception | None = None
        self.complete_error: Exception | None = None
        self.calls: list[tuple[str, Any]] = []

    async def generate(self, question: str, schema: dict[str, Any] | None = None) -> Candidate:
        self.calls.append(("generate", question))
        if self.generate_error:
            raise self.generate_error
        return self.initial

    async def regenerate(
        self, question: str, context: RegenerationContext, schema: dict[str, Any] | None = None
    ) -> Candidate:
        self.calls.append(("regenerate", context))
        if self.regenerate_error:
            raise self.regenerate_error
        if self.regenerations:
            return self.regenerations.pop(0)
        n = context.attempt_number
        return Candidate(f"requests | take {n * 10}", 0.8, f"Alternative {n}")

    async def explain(self, query: str, options: ExplanationOptions) -> str:
        self.calls.append(("explain", options))
        if self.explain_error:
            raise self.explain_error
        return self.explanation

    async def complete(self, prompt: str) -> str:
        self.calls.append(("complete", prompt))
        if self.complete_error:
            raise self.complete_error
        return self.completions.pop(0) if self.completions else ""


class FakeExecutor(DataExecutor):
    def __init__(self, result: ExecutionResult | None = None, error: Exception | None = None) -> None:
        self.result = result or ExecutionResult(tables=[])
        self.error = error
        self.queries: list[str] = []

    async def execute(self, query: str) -> ExecutionResult:
        self.queries.append(query)
        if self.error:
            raise self.error
        return self.result


def make_result(values: list[Any], *, start: datetime | None = None, step_minutes: int = 5) -> ExecutionResult:
    """One table: timestamp + duration columns, one row per value."""
    start = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
    rows = [[start + timedelta(minutes=i * step_minutes), v] for i, v in enumerate(values)]
    return ExecutionResult(tables=[
        Table(
            name="PrimaryResult",
            columns=[Column("timestamp", "datetime"), Column("duration", "real")],
            rows=rows,
        )
    ])


@pytest.fixture
def policy() -> RefinementPolicy:
    return RefinementPolicy()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def sample_result() -> ExecutionResult:
    return make_result([150, 200, 180, 2500, 175])


@pytest.fixture
def executor(sample_result: ExecutionResult) -> FakeExecutor:
    return FakeExecutor(sample_result)


@pytest.fixture
def analysis_engine(generator: FakeGenerator) -> AnalysisEngine:
    return AnalysisEngine(InsightExtractor(generator))


@pytest.fixture
def engine(
    generator: FakeGenerator,
    executor: FakeExecutor,
    policy: RefinementPolicy,
    analysis_engine: AnalysisEngine,
) -> RefinementEngine:
    return RefinementEngine(
        generator, executor, policy, analysis_engine=analysis_engine, tracer=NoOpTracer(),
    )
