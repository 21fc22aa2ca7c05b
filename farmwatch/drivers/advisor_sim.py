from __future__ import annotations
import logging

from ..core.timeutil import now_utc
from ..domain.errors import RecommendationUnavailable
from ..domain.models import FanRecommendation, LightRecommendation, SensorReading

logger = logging.getLogger(__name__)


class SimulatedAdvisor:
    """Rule-of-thumb advisor for running without a language model."""

    def __init__(self) -> None:
        self._enabled = True

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    def status(self) -> dict:
        return {"enabled": self._enabled}

    def _check(self) -> None:
        if not self._enabled:
            raise RecommendationUnavailable("Sim advisor disabled")

    async def recommend_fan_speed(self, reading: SensorReading) -> FanRecommendation:
        self._check()
        speed = 30
        reasons = []
        if reading.temperature_c > 24:
            speed += min(40, int((reading.temperature_c - 24) * 8))
            reasons.append("high temp")
        elif reading.temperature_c < 18:
            speed -= 20
            reasons.append("low temp")
        if reading.humidity_pct > 70:
            speed += 15
            reasons.append("high humidity")
        if reading.oxygen_pct < 90:
            speed += 15
            reasons.append("low oxygen")
        speed = max(0, min(100, speed))
        return FanRecommendation(
            speed_pct=speed,
            explanation=", ".join(reasons) or "conditions within ideal ranges",
            based_on=reading,
            created_at=now_utc(),
        )

    async def recommend_light_status(self, reading: SensorReading) -> LightRecommendation:
        self._check()
        on = reading.light_lux < 2000
        return LightRecommendation(
            on=on,
            explanation=f"{reading.light_lux:.0f} lux is {'below' if on else 'within or above'} the 2000-10000 lux band",
            based_on=reading,
            created_at=now_utc(),
        )

    async def answer_question(self, question: str) -> str:
        self._check()
        return "The simulated advisor cannot answer free-form questions; configure advisor_mode=llm."
