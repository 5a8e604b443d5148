"""
States of a refinement session.

``Reviewing`` is re-entered after every non-terminal action; ``Executed``,
``Failed`` (the query ran and raised) and ``Cancelled`` are terminal.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Union

from telemetry_copilot.refinement.models import Candidate
from telemetry_copilot.services.results import ExecutionResult


@dataclass(frozen=True)
class Reviewing:
    name: ClassVar[str] = "reviewing"

    candidate: Candidate
    attempt_number: int = 1


@dataclass(frozen=True)
class Executed:
    name: ClassVar[str] = "executed"

    candidate: Candidate
    result: ExecutionResult
    execution_time_ms: int


@dataclass(frozen=True)
class Failed:
    name: ClassVar[str] = "failed"

    candidate: Candidate
    error: str


@dataclass(frozen=True)
class Cancelled:
    name: ClassVar[str] = "cancelled"

    candidate: Candidate


RefinementState = Union[Reviewing, Executed, Failed, Cancelled]


def is_terminal(state: RefinementState) -> bool:
    return not isinstance(state, Reviewing)
