"""Optional text-generation collaborator for score and anomaly explanations"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Protocol

import httpx

from merchant_credit.config import Settings, settings
from merchant_credit.domain.exceptions import ExplainerUnavailableError
from merchant_credit.infrastructure.observability.metrics import explainer_fallback_counter

SCORE_FALLBACK_EXPLANATION = "Score calculated by the transaction-based credit intelligence layer."
SCORE_FALLBACK_RECOMMENDATION = "Improve transaction consistency and minimize refunds."

SYSTEM_PROMPT = (
    "You are a credit intelligence assistant inside a payment gateway. "
    "Explain transaction behaviour neutrally. Never approve, reject or price credit."
)

JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def anomaly_fallback(metric_name: str) -> str:
    return f"A change was detected in {metric_name}. Monitor transaction trends regularly."


@dataclass
class ScoreExplanation:
    explanation: str
    recommendation: str


FALLBACK_SCORE_EXPLANATION = ScoreExplanation(SCORE_FALLBACK_EXPLANATION, SCORE_FALLBACK_RECOMMENDATION)


class TextExplainer(Protocol):
    """Capability interface the scoring and alerting services depend on"""

    async def explain_score(self, fields: Mapping[str, Any]) -> ScoreExplanation:
        ...

    async def explain_anomaly(self, context: Mapping[str, Any]) -> str:
        ...


class NullExplainer:
    """Used when no text-generation service is configured"""

    async def explain_score(self, fields: Mapping[str, Any]) -> ScoreExplanation:
        return FALLBACK_SCORE_EXPLANATION

    async def explain_anomaly(self, context: Mapping[str, Any]) -> str:
        return anomaly_fallback(str(context.get("metric_name", "a monitored metric")))


class ChatCompletionExplainer:
    """Client for an OpenAI-compatible chat completions endpoint"""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model or settings.llm_model
        self.timeout = timeout or settings.llm_timeout_seconds
        self.transport = transport

    async def _complete(self, prompt: str, max_tokens: int) -> str:
        """
        Run one chat completion.

        Raises:
            ExplainerUnavailableError: On timeout, HTTP errors, or malformed response
        """
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={
                        "model": self.model,
                        "messages": [
                            {"role": "system", "content": SYSTEM_PROMPT},
                            {"role": "user", "content": prompt},
                        ],
                        "temperature": 0.4,
                        "max_tokens": max_tokens,
                    },
                )
                response.raise_for_status()
                content = response.json()["choices"][0]["message"]["content"]
            except httpx.TimeoutException as e:
                raise ExplainerUnavailableError(f"Explainer timeout after {self.timeout}s") from e
            except (httpx.HTTPStatusError, httpx.RequestError) as e:
                raise ExplainerUnavailableError(f"Explainer request failed: {e}") from e
            except (KeyError, IndexError, TypeError, ValueError) as e:
                raise ExplainerUnavailableError(f"Malformed explainer response: {e}") from e

        if not isinstance(content, str) or not content.strip():
            raise ExplainerUnavailableError("Explainer returned empty content")
        return content.strip()

    async def explain_score(self, fields: Mapping[str, Any]) -> ScoreExplanation:
        prompt = (
            "Explain this merchant credit readiness result. Reply with JSON "
            '{"summary": "", "improvement_suggestion": ""}.\n'
            f"{json.dumps(dict(fields), default=str)}"
        )
        try:
            content = await self._complete(prompt, max_tokens=500)
            match = JSON_OBJECT.search(content)
            if match is None:
                raise ExplainerUnavailableError("No JSON object in explainer reply")
            parsed: Dict[str, Any] = json.loads(match.group(0))
            summary = parsed.get("summary")
            suggestion = parsed.get("improvement_suggestion")
            if not summary or not suggestion:
                raise ExplainerUnavailableError("Explainer reply is missing fields")
            return ScoreExplanation(explanation=str(summary), recommendation=str(suggestion))
        except (ExplainerUnavailableError, ValueError, AttributeError) as e:
            logging.warning(f"Score explanation fell back to default: {e}")
            explainer_fallback_counter.labels(operation="score").inc()
            return FALLBACK_SCORE_EXPLANATION

    async def explain_anomaly(self, context: Mapping[str, Any]) -> str:
        prompt = (
            "Briefly explain this transaction early-warning signal and suggest one "
            f"monitoring action.\n{json.dumps(dict(context), default=str)}"
        )
        try:
            return await self._complete(prompt, max_tokens=300)
        except ExplainerUnavailableError as e:
            logging.warning(f"Anomaly explanation fell back to default: {e}")
            explainer_fallback_counter.labels(operation="anomaly").inc()
            return anomaly_fallback(str(context.get("metric_name", "a monitored metric")))


def build_explainer(config: Settings = settings) -> TextExplainer:
    """Chat client when credentials are configured, otherwise the null object"""
    if config.llm_api_key and config.llm_base_url:
        return ChatCompletionExplainer(
            base_url=config.llm_base_url,
            api_key=config.llm_api_key,
            model=config.llm_model,
            timeout=config.llm_timeout_seconds,
        )
    return NullExplainer()
