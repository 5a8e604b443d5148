"""
Interfaces the refinement loop and the analysis engine depend on.

Concrete implementations live in ``query_generator`` (OpenAI-backed)
and ``data_sources`` (Application Insights, Postgres); tests plug in
fakes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from telemetry_copilot.refinement.models import (
    Candidate,
    ExplanationOptions,
    RegenerationContext,
)
from telemetry_copilot.services.results import ExecutionResult


class QueryGenerator(ABC):
    """Turns natural language into candidate queries and explains them."""

    @abstractmethod
    async def generate(self, question: str, schema: dict[str, Any] | None = None) -> Candidate:
        """Generate a first candidate for *question*."""

    @abstractmethod
    async def regenerate(
        self,
        question: str,
        context: RegenerationContext,
        schema: dict[str, Any] | None = None,
    ) -> Candidate:
        """Generate a different candidate, given the previous attempt."""

    @abstractmethod
    async def explain(self, query: str, options: ExplanationOptions) -> str:
        """Explain *query* in the requested language and level."""


class DataExecutor(ABC):
    """Runs a finished query against a tabular data source."""

    @abstractmethod
    async def execute(self, query: str) -> ExecutionResult:
        """Run *query*.  Raises DataSourceError on failure."""

    async def get_schema(self) -> dict[str, Any] | None:
        """Schema hint for the generator; ``None`` when unavailable."""
        return None


class TextCompleter(ABC):
    """Generic prompt → text completion, reused for result analysis."""

    @abstractmethod
    async def complete(self, prompt: str) -> str:
        """Return the model's free-form answer to *prompt*."""
