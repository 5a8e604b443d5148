"""
OpenAI / Azure OpenAI chat wrapper.

Two async primitives:
    • call_llm_json(system, user, …) → dict   – JSON mode, parsed response.
    • call_llm_text(system, user, …) → dict   – free-form text.

Both return token usage, latency and the finish reason alongside the
payload; the query generator derives a fallback confidence from the
finish reason.  Each call is logged as a Langfuse generation under the
active action span.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any

from openai import AsyncAzureOpenAI, AsyncOpenAI

from telemetry_copilot.core.config import settings
from telemetry_copilot.core.logging import get_logger
from telemetry_copilot.services.observability import active_span, get_tracer

logger = get_logger(__name__)

_client: AsyncOpenAI | None = None


def _get_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        if settings.LLM_PROVIDER.lower() == "azure":
            _client = AsyncAzureOpenAI(
                api_key=settings.AZURE_OPENAI_API_KEY,
                azure_endpoint=settings.AZURE_OPENAI_ENDPOINT,
                api_version=settings.AZURE_OPENAI_API_VERSION,
            )
        else:
            _client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
    return _client


def _default_model() -> str:
    if settings.LLM_PROVIDER.lower() == "azure":
        return settings.AZURE_OPENAI_DEPLOYMENT or settings.OPENAI_MODEL
    return settings.OPENAI_MODEL


@dataclass
class _Reply:
    text: str
    finish_reason: str | None
    tokens_in: int
    tokens_out: int
    llm_ms: int

    def stats(self) -> dict[str, Any]:
        return {
            "finish_reason": self.finish_reason,
            "tokens_in": self.tokens_in,
            "tokens_out": self.tokens_out,
            "llm_ms": self.llm_ms,
        }


async def _chat(
    name: str,
    system: str,
    user: str,
    *,
    model: str | None,
    temperature: float,
    max_tokens: int,
    json_mode: bool,
    parent_span: Any,
) -> _Reply:
    model = model or _default_model()
    extra: dict[str, Any] = {"response_format": {"type": "json_object"}} if json_mode else {}

    t0 = time.perf_counter()
    response = await _get_client().chat.completions.create(
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ],
        **extra,
    )
    choice = response.choices[0]
    usage = response.usage
    reply = _Reply(
        text=choice.message.content or "",
        finish_reason=choice.finish_reason,
        tokens_in=usage.prompt_tokens if usage else 0,
        tokens_out=usage.completion_tokens if usage else 0,
        llm_ms=round((time.perf_counter() - t0) * 1000),
    )

    logger.info(
        "%s: model=%s in=%d out=%d ms=%d finish=%s",
        name, model, reply.tokens_in, reply.tokens_out, reply.llm_ms, reply.finish_reason,
    )
    parent = parent_span if parent_span is not None else active_span()
    if parent is not None:
        get_tracer().log_generation(
            parent,
            name=name,
            model=model,
            input={"system_chars": len(system), "user_chars": len(user)},
            output={"chars": len(reply.text)},
            usage={"input": reply.tokens_in, "output": reply.tokens_out},
            metadata={"temperature": temperature, "finish_reason": reply.finish_reason},
        )
    return reply


async def call_llm_json(
    system: str,
    user: str,
    *,
    model: str | None = None,
    temperature: float = 0.3,
    max_tokens: int = 1000,
    parent_span: Any = None,
) -> dict[str, Any]:
    """
    Call the LLM in JSON mode and parse the reply.

    Returns a dict with ``result``, ``finish_reason``, ``tokens_in``,
    ``tokens_out`` and ``llm_ms``.  Raises ValueError if the reply is
    not a JSON object.
    """
    reply = await _chat(
        "llm.call_json", system, user,
        model=model, temperature=temperature, max_tokens=max_tokens,
        json_mode=True, parent_span=parent_span,
    )
    try:
        parsed = json.loads(reply.text or "{}")
    except json.JSONDecodeError as exc:
        logger.error("LLM returned invalid JSON: %s", reply.text[:200])
        raise ValueError(f"LLM returned invalid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValueError("LLM returned JSON that is not an object")
    return {"result": parsed, **reply.stats()}


async def call_llm_text(
    system: str,
    user: str,
    *,
    model: str | None = None,
    temperature: float = 0.3,
    max_tokens: int = 1500,
    parent_span: Any = None,
) -> dict[str, Any]:
    """Call the LLM and return the raw reply under ``text``, plus usage stats."""
    reply = await _chat(
        "llm.call_text", system, user,
        model=model, temperature=temperature, max_tokens=max_tokens,
        json_mode=False, parent_span=parent_span,
    )
    return {"text": reply.text, **reply.stats()}
