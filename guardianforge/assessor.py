"""
Risk assessment engine.

Turns a significant balance delta into a bounded RiskAssessment with one
call to the reasoning service (Groq, OpenAI-compatible chat completions).

Design decisions:
- Uses async httpx for the HTTP call.
- Low temperature and a short max_tokens keep responses structurally stable.
- The response is free text; extract_json_object() pulls out the first
  balanced JSON object that carries a riskScore. Everything else is ignored.
- Every failure (transport, status, envelope, parse) degrades to the
  fallback assessment {0, NONE}.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any, Iterator

import httpx

from guardianforge.config import DEFAULT_LLM_BASE_URL, DEFAULT_LLM_MODEL, LLMConfig
from guardianforge.exceptions import AssessmentFailure, ReasoningAPIError, ReasoningTimeoutError
from guardianforge.models import (
    AnomalyType,
    BalanceDelta,
    MonitoredWallet,
    RiskAssessment,
)

logger = logging.getLogger(__name__)

TRANSPORT_FAILURE_REASONING = "reasoning service error"
MAX_REASONING_CHARS = 500

PROMPT_TEMPLATE = """You are a blockchain security AI. Analyze this wallet activity:

Wallet: {wallet}
Balance Change: {change} ETH

Respond ONLY with JSON (no markdown):
{{"riskScore": <0-100>, "anomalyType": <0-5>, "reasoning": "<brief>"}}

Risk: 0-30 low, 31-50 moderate, 51-70 high, 71-100 critical
Large outflows are higher risk than inflows.
AnomalyType: 0=NONE, 1=LARGE_TX, 2=FAILED_SIG, 3=SUS_CONTRACT, 4=RAPID_TX, 5=HIGH_RISK"""

# Short names used in the prompt legend, accepted back from the model.
_ANOMALY_ALIASES: dict[str, AnomalyType] = {
    "LARGE_TX": AnomalyType.LARGE_TRANSACTION,
    "FAILED_SIG": AnomalyType.FAILED_SIGNATURE,
    "SUS_CONTRACT": AnomalyType.SUSPICIOUS_CONTRACT,
    "RAPID_TX": AnomalyType.RAPID_TRANSACTIONS,
    "HIGH_RISK": AnomalyType.HIGH_RISK_INTERACTION,
}


def build_prompt(wallet: str, change: str) -> str:
    """Fixed-schema prompt embedding the wallet and the signed, formatted delta."""
    return PROMPT_TEMPLATE.format(wallet=wallet, change=change)


# ── JSON object extraction ───────────────────────────────────────────────────


def extract_json_object(text: str, required_key: str = "riskScore") -> dict[str, Any] | None:
    """
    Return the first well-formed JSON object in text that contains required_key.

    Candidates are found by brace matching that respects JSON strings, so
    braces inside string values, nested objects, code fences and trailing
    commentary are all handled. A candidate that fails to decode, or decodes
    without required_key, is skipped and scanning resumes at the next '{'.
    """
    for start, end in _object_spans(text):
        try:
            obj = json.loads(text[start:end])
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict) and required_key in obj:
            return obj
    return None


def _object_spans(text: str) -> Iterator[tuple[int, int]]:
    start = text.find("{")
    while start != -1:
        end = _match_brace(text, start)
        if end is not None:
            yield start, end
        start = text.find("{", start + 1)


def _match_brace(text: str, start: int) -> int | None:
    """Index one past the '}' closing the '{' at start, or None if unbalanced."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return None


# ── Validation ───────────────────────────────────────────────────────────────


def sanitize_assessment(obj: dict[str, Any] | None) -> RiskAssessment:
    """
    Validate a decoded model response.

    1. Missing object or unusable riskScore → fallback {0, NONE}
    2. riskScore clamped into [0, 100]
    3. Unknown or missing anomalyType → NONE
    """
    if obj is None:
        return RiskAssessment.fallback()

    score = _coerce_score(obj.get("riskScore"))
    if score is None:
        return RiskAssessment.fallback()

    return RiskAssessment(
        risk_score=max(0, min(100, score)),
        anomaly_type=_coerce_anomaly_type(obj.get("anomalyType")),
        reasoning=_clean_reasoning(obj.get("reasoning")),
    )


def _coerce_score(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value):
            return None
        if math.isinf(value):
            return 100 if value > 0 else 0
        return round(value)
    return None


def _coerce_anomaly_type(value: Any) -> AnomalyType:
    if isinstance(value, bool) or value is None:
        return AnomalyType.NONE
    if isinstance(value, str):
        name = value.strip().upper()
        if name in AnomalyType.__members__:
            return AnomalyType[name]
        if name in _ANOMALY_ALIASES:
            return _ANOMALY_ALIASES[name]
        if name.isdigit():
            value = int(name)
        else:
            return AnomalyType.NONE
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, int) and value in AnomalyType._value2member_map_:
        return AnomalyType(value)
    return AnomalyType.NONE


def _clean_reasoning(value: Any) -> str:
    if value is None:
        return ""
    text = " ".join(str(value).split())
    if len(text) > MAX_REASONING_CHARS:
        text = text[: MAX_REASONING_CHARS - 3] + "..."
    return text


# ── Reasoning service client ─────────────────────────────────────────────────


class ReasoningClient:
    """
    Async client for an OpenAI-compatible chat completions endpoint.

    One request per call; no retries. Errors are raised as AssessmentFailure
    subclasses for the assessor to absorb.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_LLM_BASE_URL,
        model: str = DEFAULT_LLM_MODEL,
        temperature: float = 0.1,
        max_tokens: int = 200,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._url = base_url.rstrip("/") + "/chat/completions"
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_config(cls, config: LLMConfig) -> ReasoningClient:
        return cls(
            api_key=config.api_key,
            base_url=config.base_url,
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout_secs,
        )

    @property
    def url(self) -> str:
        return self._url

    async def complete(self, prompt: str) -> str:
        """Send prompt as a single user message; return the reply text."""
        try:
            resp = await self._client.post(
                self._url,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={
                    "model": self._model,
                    "messages": [{"role": "user", "content": prompt}],
                    "temperature": self._temperature,
                    "max_tokens": self._max_tokens,
                },
            )
        except httpx.TimeoutException as e:
            raise ReasoningTimeoutError(f"Reasoning service timeout: {e}") from e
        except httpx.HTTPError as e:
            raise ReasoningAPIError(f"Cannot reach reasoning service: {e}") from e

        if resp.status_code == 429:
            raise ReasoningAPIError("Reasoning service rate limit exceeded", status_code=429)
        if not resp.is_success:
            raise ReasoningAPIError(
                f"Reasoning service returned HTTP {resp.status_code}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ReasoningAPIError(
                f"Malformed reasoning service response: {e}",
                status_code=resp.status_code,
            ) from e
        return content or ""

    async def close(self) -> None:
        await self._client.aclose()


class RiskAssessor:
    """Produces a fresh RiskAssessment per significant delta. Never raises."""

    def __init__(self, client: ReasoningClient) -> None:
        self._client = client

    async def assess(self, wallet: MonitoredWallet, delta: BalanceDelta) -> RiskAssessment:
        return await self.assess_change(wallet.address, delta.formatted())

    async def assess_change(self, wallet: str, change: str) -> RiskAssessment:
        """Assess a delta already formatted in native units (e.g. "-8.2")."""
        prompt = build_prompt(wallet, change)
        try:
            text = await self._client.complete(prompt)
        except AssessmentFailure as e:
            logger.warning("Assessment for %s fell back to NONE: %s", wallet, e.message)
            return RiskAssessment.fallback(TRANSPORT_FAILURE_REASONING)

        obj = extract_json_object(text)
        if obj is None:
            logger.warning("No JSON object in reasoning response for %s: %.200r", wallet, text)
        return sanitize_assessment(obj)
