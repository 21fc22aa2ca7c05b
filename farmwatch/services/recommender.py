"""
Language-model recommendations for fan speed and light status.

PromptRecommendationClient renders the advisory prompts, sends them through a
JSON-capable prompt backend and validates the answer with pydantic. Any payload
that does not match the output schema raises RecommendationInvalid; transport
problems are the backend's job and surface as RecommendationUnavailable.

GuardedAdvisor wraps any RecommendationClient with a per-call timeout and a
bounded retry on RecommendationUnavailable only.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Awaitable, Callable, Optional, Protocol, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.timeutil import now_utc
from ..domain.errors import RecommendationInvalid, RecommendationUnavailable
from ..domain.interfaces import RecommendationClient
from ..domain.models import FanRecommendation, LightRecommendation, SensorReading

logger = logging.getLogger(__name__)

T = TypeVar("T")


# --- Output schemas ---

class FanAdvice(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore")

    recommendedFanSpeed: float = Field(ge=0, le=100)
    explanation: str


class LightAdvice(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore")

    recommendedLightStatus: bool
    explanation: str


class AssistantAnswer(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore")

    answer: str = Field(min_length=1)


# --- Prompts ---

FAN_SYSTEM = (
    "You are an assistant that helps farm managers keep poultry houses healthy. "
    "You answer with a single JSON object and nothing else."
)

FAN_PROMPT = """Analyze the sensor data below and recommend a fan speed as a percentage (0-100) that keeps the poultry comfortable. Add a brief explanation.

Sensor data:
- Temperature: {temperatureCelsius} Celsius
- Humidity: {humidity}%
- Oxygen: {oxygen}%

Ideal ranges for poultry:
- Temperature: 18-24 Celsius
- Humidity: 50-70%
- Oxygen: above 90%

Respond with this JSON format:
{{"recommendedFanSpeed": number, "explanation": string}}"""

LIGHT_SYSTEM = (
    "You are an assistant that helps farm managers optimize lighting for plant health. "
    "You answer with a single JSON object and nothing else."
)

LIGHT_PROMPT = """Analyze the light reading below and recommend whether the lights should be on or off. Add a brief explanation.

Light data:
- Light intensity: {lux} Lux

Plants generally need between 2,000 and 10,000 Lux depending on type and growth stage; seedlings need less.

Respond with this JSON format:
{{"recommendedLightStatus": boolean, "explanation": string}}"""

ASSISTANT_SYSTEM = "You are a helpful assistant answering questions about a poultry farm."

ASSISTANT_PROMPT = """Question: {question}

Respond with this JSON format:
{{"answer": string}}"""


class PromptBackend(Protocol):
    async def complete_json(self, system_prompt: str, user_prompt: str) -> str:
        """Return the raw model text. Raise RecommendationUnavailable on transport failure."""
        ...


_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)

M = TypeVar("M", bound=BaseModel)


def parse_output(raw: str, schema: type[M]) -> M:
    """Validate model text against *schema*, tolerating a markdown code fence."""
    text = (raw or "").strip()
    m = _FENCE.match(text)
    if m:
        text = m.group(1)
    try:
        return schema.model_validate_json(text)
    except ValidationError as e:
        logger.warning("Model output failed %s validation: %s", schema.__name__, e.errors()[:3])
        raise RecommendationInvalid(f"{schema.__name__} validation failed: {e.error_count()} error(s)", raw=raw) from e


class PromptRecommendationClient:
    def __init__(self, backend: PromptBackend, clock: Callable = now_utc) -> None:
        self._backend = backend
        self._clock = clock

    async def recommend_fan_speed(self, reading: SensorReading) -> FanRecommendation:
        payload = {
            "temperatureCelsius": reading.temperature_c,
            "humidity": reading.humidity_pct,
            "oxygen": reading.oxygen_pct,
        }
        raw = await self._backend.complete_json(FAN_SYSTEM, FAN_PROMPT.format(**payload))
        advice = parse_output(raw, FanAdvice)
        return FanRecommendation(
            speed_pct=int(round(advice.recommendedFanSpeed)),
            explanation=advice.explanation,
            based_on=reading,
            created_at=self._clock(),
        )

    async def recommend_light_status(self, reading: SensorReading) -> LightRecommendation:
        raw = await self._backend.complete_json(LIGHT_SYSTEM, LIGHT_PROMPT.format(lux=reading.light_lux))
        advice = parse_output(raw, LightAdvice)
        return LightRecommendation(
            on=advice.recommendedLightStatus,
            explanation=advice.explanation,
            based_on=reading,
            created_at=self._clock(),
        )

    async def answer_question(self, question: str) -> str:
        # json.dumps keeps quotes and newlines in the question from breaking the prompt
        prompt = ASSISTANT_PROMPT.format(question=json.dumps(question)[1:-1])
        raw = await self._backend.complete_json(ASSISTANT_SYSTEM, prompt)
        return parse_output(raw, AssistantAnswer).answer


class GuardedAdvisor:
    """Timeout plus bounded retry around another RecommendationClient."""

    def __init__(self, inner: RecommendationClient, timeout_s: float = 20.0, retries: int = 1) -> None:
        self._inner = inner
        self.timeout_s = timeout_s
        self.retries = max(0, retries)

    async def _call(self, label: str, fn: Callable[[], Awaitable[T]]) -> T:
        attempts = 1 + self.retries
        last: Optional[RecommendationUnavailable] = None
        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.wait_for(fn(), timeout=self.timeout_s)
            except asyncio.TimeoutError:
                last = RecommendationUnavailable(f"{label} timed out after {self.timeout_s:g}s")
            except RecommendationUnavailable as e:
                last = e
            logger.warning("%s unavailable (attempt %d/%d): %s", label, attempt, attempts, last)
        assert last is not None
        raise last

    async def recommend_fan_speed(self, reading: SensorReading) -> FanRecommendation:
        return await self._call("fan recommendation", lambda: self._inner.recommend_fan_speed(reading))

    async def recommend_light_status(self, reading: SensorReading) -> LightRecommendation:
        return await self._call("light recommendation", lambda: self._inner.recommend_light_status(reading))

    async def answer_question(self, question: str) -> str:
        return await self._call("assistant answer", lambda: self._inner.answer_question(question))
