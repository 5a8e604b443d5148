from __future__ import annotations

import math

import pytest

from telemetry_copilot.core.errors import GenerationError
from telemetry_copilot.refinement.models import ExplanationOptions, RegenerationContext, TechnicalLevel
from telemetry_copilot.services import llm
from telemetry_copilot.services.query_generator import OpenAIQueryGenerator, confidence_from


class FakeLLM:
    """Stands in for ``services.llm`` calls; records the arguments."""

    def __init__(self, result=None, *, finish_reason="stop", text="", error=None):
        self.result = result if result is not None else {}
        self.finish_reason = finish_reason
        self.text = text
        self.error = error
        self.calls = []

    async def json(self, system, user, **kwargs):
        self.calls.append((system, user, kwargs))
        if self.error:
            raise self.error
        return {"result": self.result, "finish_reason": self.finish_reason,
                "tokens_in": 10, "tokens_out": 5, "llm_ms": 1}

    async def text_call(self, system, user, **kwargs):
        self.calls.append((system, user, kwargs))
        if self.error:
            raise self.error
        return {"text": self.text, "finish_reason": self.finish_reason,
                "tokens_in": 10, "tokens_out": 5, "llm_ms": 1}


@pytest.fixture
def fake_llm(monkeypatch):
    fake = FakeLLM()
    monkeypatch.setattr(llm, "call_llm_json", fake.json)
    monkeypatch.setattr(llm, "call_llm_text", fake.text_call)
    return fake


# ── Confidence ───────────────────────────────────────────────────


@pytest.mark.parametrize(
    "reported, finish_reason, expected",
    [
        (0.42, "stop", 0.42),
        ("0.9", None, 0.9),
        (1.7, "stop", 1.0),
        (-0.2, "stop", 0.0),
        (None, "stop", 0.85),
        (None, "length", 0.6),
        (None, "content_filter", 0.7),
        ("high", None, 0.7),
        (math.nan, "stop", 0.85),
    ],
)
def test_confidence_from(reported, finish_reason, expected):
    assert confidence_from(reported, finish_reason) == expected


# ── Generate / regenerate ────────────────────────────────────────


async def test_generate_builds_candidate(fake_llm):
    fake_llm.result = {
        "query": "```kql\nexceptions | summarize count() by problemId\n```",
        "confidence": 0.8,
        "reasoning": "Groups exceptions by problem id",
    }
    candidate = await OpenAIQueryGenerator().generate("top errors", {"tables": ["exceptions"]})

    assert candidate.query_text == "exceptions | summarize count() by problemId"
    assert candidate.confidence == 0.8
    assert candidate.reasoning == "Groups exceptions by problem id"
    system, user, kwargs = fake_llm.calls[0]
    assert "KQL" in system
    assert "exceptions" in system
    assert "top errors" in user
    assert kwargs["temperature"] == 0.3


async def test_generate_without_confidence_uses_finish_reason(fake_llm):
    fake_llm.result = {"sql": "SELECT 1"}
    fake_llm.finish_reason = "length"
    candidate = await OpenAIQueryGenerator(dialect="sql").generate("anything")
    assert candidate.query_text == "SELECT 1"
    assert candidate.confidence == 0.6
    assert candidate.reasoning is None


async def test_generate_without_query_raises(fake_llm):
    fake_llm.result = {"confidence": 0.9, "reasoning": "no idea"}
    with pytest.raises(GenerationError):
        await OpenAIQueryGenerator().generate("top errors")


async def test_provider_error_is_wrapped(fake_llm):
    fake_llm.error = ValueError("LLM returned invalid JSON: ...")
    with pytest.raises(GenerationError) as exc_info:
        await OpenAIQueryGenerator().generate("top errors")
    assert isinstance(exc_info.value.__cause__, ValueError)


async def test_regenerate_sends_previous_attempt(fake_llm):
    fake_llm.result = {"query": "exceptions | take 20", "confidence": 0.7}
    context = RegenerationContext(
        previous_query_text="exceptions | take 10",
        previous_reasoning="Too narrow",
        attempt_number=2,
    )
    candidate = await OpenAIQueryGenerator().regenerate("top errors", context)

    assert candidate.query_text == "exceptions | take 20"
    _, user, kwargs = fake_llm.calls[0]
    assert "exceptions | take 10" in user
    assert kwargs["temperature"] == 0.5


# ── Explain / complete ───────────────────────────────────────────


async def test_explain_returns_text(fake_llm):
    fake_llm.text = "  Counts exceptions by problem.  "
    options = ExplanationOptions(language="ja", technical_level=TechnicalLevel.BEGINNER)
    text = await OpenAIQueryGenerator().explain("exceptions | count", options)

    assert text == "Counts exceptions by problem."
    system, user, _ = fake_llm.calls[0]
    assert "日本語" in system
    assert "exceptions | count" in user


async def test_empty_explanation_raises(fake_llm):
    fake_llm.text = "   "
    with pytest.raises(GenerationError):
        await OpenAIQueryGenerator().explain("exceptions | count", ExplanationOptions())


async def test_complete_passes_text_through(fake_llm):
    fake_llm.text = '{"summary": "ok"}'
    assert await OpenAIQueryGenerator().complete("analyse this") == '{"summary": "ok"}'
