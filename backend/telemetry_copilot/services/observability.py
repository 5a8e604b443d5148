"""
Langfuse tracing for refinement sessions.

One trace per session, one span per action (generate, regenerate,
explain, execute, analyze), LLM generations nested under the span of
the action that triggered them.  With ``LANGFUSE_ENABLED`` off or keys
missing, ``get_tracer()`` hands out a ``NoOpTracer``.

Only query text, row counts, timings and attempt numbers leave the
process; credentials and result rows are filtered out.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator

from telemetry_copilot.core.config import settings
from telemetry_copilot.core.logging import get_logger

logger = get_logger(__name__)

_REDACT_KEYS = frozenset({
    "password", "secret", "token", "api_key", "x-api-key",
    "openai_api_key", "azure_openai_api_key", "appinsights_api_key",
    "database_url", "langfuse_secret_key", "langfuse_public_key",
    "rows",
})

_MAX_STR = 4_000
_MAX_LIST = 50


def _sanitise(data: dict | None) -> dict | None:
    """Drop credential-like keys; clip long strings and lists."""
    if data is None:
        return None
    clean: dict[str, Any] = {}
    for key, value in data.items():
        if key.lower() in _REDACT_KEYS:
            continue
        if isinstance(value, str) and len(value) > _MAX_STR:
            value = value[:_MAX_STR] + "…[truncated]"
        elif isinstance(value, list) and len(value) > _MAX_LIST:
            value = value[:_MAX_LIST]
        clean[key] = value
    return clean


def _fields(**values: Any) -> dict[str, Any]:
    """SDK keyword arguments with unset values left out and dicts sanitised."""
    return {
        key: _sanitise(value) if isinstance(value, dict) and key != "usage" else value
        for key, value in values.items()
        if value is not None and value != ""
    }


class _NoOpSpan:
    """Absorbs the span/trace calls the real tracer would make."""

    def end(self, **_kw: Any) -> None:
        pass

    def update(self, **_kw: Any) -> None:
        pass

    def event(self, **_kw: Any) -> None:
        pass

    def generation(self, **_kw: Any) -> "_NoOpSpan":
        return self

    def span(self, **_kw: Any) -> "_NoOpSpan":
        return self


# ── Tracers ──────────────────────────────────────────────────────


class NoOpTracer:
    """Tracer interface; every call is a no-op."""

    def start_trace(self, *, name: str, session_id: str, metadata: dict | None = None) -> Any:
        return _NoOpSpan()

    def start_span(
        self, trace: Any, *, name: str, input: dict | str | None = None, metadata: dict | None = None
    ) -> Any:
        return _NoOpSpan()

    def end_span(
        self,
        span: Any,
        *,
        output: dict | str | None = None,
        level: str | None = None,
        status_message: str | None = None,
    ) -> None:
        pass

    def log_generation(self, parent: Any, *, name: str, **details: Any) -> None:
        pass

    def log_event(
        self, parent: Any, *, name: str, metadata: dict | None = None, level: str | None = None
    ) -> None:
        pass

    def finalize_trace(
        self, trace: Any, *, output: dict | str | None = None, level: str | None = None
    ) -> None:
        pass

    def flush(self) -> None:
        pass


class LangfuseTracer(NoOpTracer):
    """Langfuse SDK v2 (``trace`` / ``span`` / ``generation``)."""

    def __init__(self) -> None:
        from langfuse import Langfuse  # lazy import

        self._client = Langfuse(
            public_key=settings.LANGFUSE_PUBLIC_KEY,
            secret_key=settings.LANGFUSE_SECRET_KEY,
            host=settings.LANGFUSE_HOST,
        )
        logger.info("Langfuse tracing on (host=%s)", settings.LANGFUSE_HOST)

    def start_trace(self, *, name: str, session_id: str, metadata: dict | None = None) -> Any:
        return self._client.trace(**_fields(name=name, session_id=session_id, metadata=metadata))

    def start_span(
        self, trace: Any, *, name: str, input: dict | str | None = None, metadata: dict | None = None
    ) -> Any:
        return trace.span(**_fields(name=name, input=input, metadata=metadata))

    def end_span(
        self,
        span: Any,
        *,
        output: dict | str | None = None,
        level: str | None = None,
        status_message: str | None = None,
    ) -> None:
        span.end(**_fields(output=output, level=level, status_message=status_message))

    def log_generation(self, parent: Any, *, name: str, **details: Any) -> None:
        """*details*: model, input, output, usage, metadata."""
        parent.generation(**_fields(name=name, **details))

    def log_event(
        self, parent: Any, *, name: str, metadata: dict | None = None, level: str | None = None
    ) -> None:
        parent.event(**_fields(name=name, metadata=metadata, level=level))

    def finalize_trace(
        self, trace: Any, *, output: dict | str | None = None, level: str | None = None
    ) -> None:
        trace.update(**_fields(output=output, level=level))

    def flush(self) -> None:
        try:
            self._client.flush()
        except Exception:
            logger.warning("Langfuse flush failed", exc_info=True)


_tracer_instance: NoOpTracer | None = None


def get_tracer() -> NoOpTracer:
    """Process-wide tracer, created on first use."""
    global _tracer_instance
    if _tracer_instance is None:
        _tracer_instance = _build_tracer()
    return _tracer_instance


def _build_tracer() -> NoOpTracer:
    if not (settings.LANGFUSE_ENABLED and settings.LANGFUSE_PUBLIC_KEY and settings.LANGFUSE_SECRET_KEY):
        logger.info("Langfuse disabled; tracing is a no-op")
        return NoOpTracer()
    try:
        return LangfuseTracer()
    except Exception:
        logger.warning("Langfuse init failed; tracing is a no-op", exc_info=True)
        return NoOpTracer()


# ── Active span ──────────────────────────────────────────────────

_active_span: ContextVar[Any] = ContextVar("active_span", default=None)


def active_span() -> Any:
    """Span of the refinement action currently awaiting the model, if any."""
    return _active_span.get()


@contextmanager
def span_scope(span: Any) -> Iterator[Any]:
    """Make *span* the parent for LLM generations logged inside the block."""
    token = _active_span.set(span)
    try:
        yield span
    finally:
        _active_span.reset(token)
