"""
Error taxonomy shared by the refinement loop, the analysis engine and
the data-source adapters.

    • GenerationError        – query generator failed or returned nothing usable.
    • DataSourceError        – query execution failed (never retried locally).
    • InvalidTransitionError – an action was applied to a state that does not allow it.
    • SessionNotFoundError   – unknown or expired refinement session id.

Validation problems (empty edit, exhausted regeneration budget) are not
exceptions; they come back as no-op outcomes.
"""

from __future__ import annotations


class GenerationError(RuntimeError):
    """The query generator failed or produced an unusable candidate."""


class DataSourceError(RuntimeError):
    """The data source rejected or failed to run a query."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvalidTransitionError(RuntimeError):
    """Raised when an action is not valid for the current refinement state."""


class SessionNotFoundError(KeyError):
    """Raised when a refinement session id is unknown or has expired."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Refinement session not found: {self.session_id}"
