"""
Value types for the query-refinement loop.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

EDITED_CONFIDENCE = 0.5
EDITED_REASONING = "Manually edited query"


class RefinementAction(str, Enum):
    """Actions a caller can issue while a candidate is under review."""

    EXECUTE = "execute"
    EXPLAIN = "explain"
    REGENERATE = "regenerate"
    EDIT = "edit"
    HISTORY = "history"
    CANCEL = "cancel"


class ActionKind(str, Enum):
    """What happened to a query; recorded in the session history."""

    GENERATED = "generated"
    EDITED = "edited"
    REGENERATED = "regenerated"
    EXECUTED = "executed"
    EXPLAINED = "explained"


class TechnicalLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


@dataclass(frozen=True)
class Candidate:
    """A generated (or edited) query plus the generator's confidence."""

    query_text: str
    confidence: float
    reasoning: str | None = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")

    @classmethod
    def edited(cls, query_text: str) -> "Candidate":
        return cls(query_text=query_text, confidence=EDITED_CONFIDENCE, reasoning=EDITED_REASONING)


@dataclass(frozen=True)
class RegenerationContext:
    previous_query_text: str
    previous_reasoning: str | None
    attempt_number: int


@dataclass(frozen=True)
class ActionRecord:
    query: str
    confidence: float
    action: ActionKind
    reason: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class ExplanationOptions:
    language: str = "en"
    technical_level: TechnicalLevel = TechnicalLevel.INTERMEDIATE
    include_examples: bool = True


@dataclass(frozen=True)
class RefinementPolicy:
    """Knobs for the review loop.  Built from settings by the app."""

    confidence_threshold: float = 0.7
    max_regeneration_attempts: int = 3
    allow_editing: bool = True
    history_max_entries: int = 50
    explanation: ExplanationOptions = field(default_factory=ExplanationOptions)

    @classmethod
    def from_settings(cls, settings) -> "RefinementPolicy":
        return cls(
            confidence_threshold=settings.CONFIDENCE_THRESHOLD,
            max_regeneration_attempts=settings.MAX_REGENERATION_ATTEMPTS,
            allow_editing=settings.ALLOW_EDITING,
            history_max_entries=settings.HISTORY_MAX_ENTRIES,
            explanation=ExplanationOptions(
                language=settings.EXPLAIN_LANGUAGE,
                technical_level=TechnicalLevel(settings.EXPLAIN_TECHNICAL_LEVEL),
                include_examples=settings.EXPLAIN_INCLUDE_EXAMPLES,
            ),
        )
