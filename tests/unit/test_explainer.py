"""Unit tests for the text-generation client and its fallbacks"""

import json

import httpx

from merchant_credit.config import Settings
from merchant_credit.infrastructure.clients.explainer import (
    SCORE_FALLBACK_EXPLANATION,
    SCORE_FALLBACK_RECOMMENDATION,
    ChatCompletionExplainer,
    NullExplainer,
    anomaly_fallback,
    build_explainer,
)


def _explainer(handler) -> ChatCompletionExplainer:
    return ChatCompletionExplainer(
        base_url="https://llm.test/v1/",
        api_key="sk-test",
        model="test-model",
        timeout=2.0,
        transport=httpx.MockTransport(handler),
    )


def _completion(content: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


def test_anomaly_fallback_text():
    assert anomaly_fallback("Daily Revenue") == (
        "A change was detected in Daily Revenue. Monitor transaction trends regularly."
    )


async def test_null_explainer_returns_fallbacks():
    explainer = NullExplainer()

    score = await explainer.explain_score({"credit_score": 70})
    anomaly = await explainer.explain_anomaly({"metric_name": "Settlement Days"})

    assert score.explanation == SCORE_FALLBACK_EXPLANATION
    assert score.recommendation == SCORE_FALLBACK_RECOMMENDATION
    assert anomaly == anomaly_fallback("Settlement Days")


async def test_explain_score_parses_json_reply():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return _completion('Here you go: {"summary": "Stable revenue.", "improvement_suggestion": "Keep refunds low."}')

    result = await _explainer(handler).explain_score({"credit_score": 82, "risk_band": "Low"})

    assert result.explanation == "Stable revenue."
    assert result.recommendation == "Keep refunds low."
    request = seen[0]
    assert str(request.url) == "https://llm.test/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    assert json.loads(request.content)["model"] == "test-model"


async def test_explain_score_falls_back_on_server_error():
    result = await _explainer(lambda request: httpx.Response(500, text="boom")).explain_score({})

    assert result.explanation == SCORE_FALLBACK_EXPLANATION
    assert result.recommendation == SCORE_FALLBACK_RECOMMENDATION


async def test_explain_score_falls_back_on_non_json_content():
    result = await _explainer(lambda request: _completion("The merchant looks fine.")).explain_score({})
    assert result.explanation == SCORE_FALLBACK_EXPLANATION


async def test_explain_score_falls_back_on_missing_fields():
    result = await _explainer(lambda request: _completion('{"summary": "Only half"}')).explain_score({})
    assert result.recommendation == SCORE_FALLBACK_RECOMMENDATION


async def test_explain_anomaly_returns_text():
    analysis = await _explainer(lambda request: _completion("  Revenue fell sharply.  ")).explain_anomaly(
        {"metric_name": "Daily Revenue"}
    )
    assert analysis == "Revenue fell sharply."


async def test_explain_anomaly_falls_back_on_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    analysis = await _explainer(handler).explain_anomaly({"metric_name": "Refund Rate (%)"})

    assert analysis == anomaly_fallback("Refund Rate (%)")


async def test_explain_anomaly_falls_back_on_malformed_body():
    analysis = await _explainer(lambda request: httpx.Response(200, json={"choices": []})).explain_anomaly(
        {"metric_name": "Credit Score"}
    )
    assert analysis == anomaly_fallback("Credit Score")


def test_build_explainer_selects_implementation():
    assert isinstance(build_explainer(Settings(llm_api_key=None, llm_base_url=None)), NullExplainer)
    configured = build_explainer(Settings(llm_api_key="sk", llm_base_url="https://llm.test/v1"))
    assert isinstance(configured, ChatCompletionExplainer)
