"""
Shared fakes and fixtures for the control-loop test suite.

Provides:
- A deterministic clock so request/observe timestamps strictly increase
- A scripted sensor gateway (values or SensorUnavailable per call)
- A controllable advisor whose calls can be held open with asyncio events
- Sensor and actuator fakes that never answer, for the timeout paths
- Settings tuned for tests: no polling, no backoff, no log file

Usage:
    def test_example(cfg, clock, actuators):
        sensor = ScriptedSensor(clock, [values()])
        ...
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

import pytest

from farmwatch.core.config import Settings
from farmwatch.domain.models import ActuatorKind, FanRecommendation, LightRecommendation, SensorReading
from farmwatch.drivers.actuators_sim import SimulatedActuatorGateway

# ---------------------------------------------------------------------------
# Logging: keep test output clean
# ---------------------------------------------------------------------------
logging.getLogger("farmwatch").setLevel(logging.WARNING)


class TickClock:
    """Returns a strictly increasing UTC time, 1 ms per call."""

    def __init__(self) -> None:
        self._t = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self._t += timedelta(milliseconds=1)
        return self._t


def values(temp: float = 21.0, humidity: float = 60.0, oxygen: float = 95.0, lux: float = 5000.0) -> dict:
    return {"temperature_c": temp, "humidity_pct": humidity, "oxygen_pct": oxygen, "light_lux": lux}


Step = Union[dict, Exception]


class ScriptedSensor:
    """Plays back a script; the last step repeats once the script runs out."""

    sensor_id = "scripted"

    def __init__(self, clock: TickClock, script: list[Step]) -> None:
        self._clock = clock
        self._script = list(script)
        self.calls = 0
        self.last_reading: Optional[SensorReading] = None

    def push(self, *steps: Step) -> None:
        self._script.extend(steps)

    async def read(self) -> SensorReading:
        self.calls += 1
        step = self._script.pop(0) if len(self._script) > 1 else self._script[0]
        if isinstance(step, Exception):
            raise step
        self.last_reading = SensorReading(observed_at=self._clock(), **step)
        return self.last_reading


class FakeAdvisor:
    """Recommendation client whose answers, failures and timing tests control."""

    def __init__(self, fan_speed: int = 50, light_on: bool = False) -> None:
        self.fan_speed = fan_speed
        self.light_on = light_on
        self.fan_calls: list[SensorReading] = []
        self.light_calls: list[SensorReading] = []
        self.fan_errors: list[Exception] = []
        self.light_errors: list[Exception] = []
        self.fan_gate: Optional[asyncio.Event] = None
        self.light_gate: Optional[asyncio.Event] = None
        self.fan_started: Optional[asyncio.Event] = None
        self.questions: list[str] = []

    def hold_fan(self) -> asyncio.Event:
        self.fan_gate = asyncio.Event()
        self.fan_started = asyncio.Event()
        return self.fan_gate

    async def recommend_fan_speed(self, reading: SensorReading) -> FanRecommendation:
        self.fan_calls.append(reading)
        speed = self.fan_speed
        if self.fan_started is not None:
            self.fan_started.set()
        if self.fan_gate is not None:
            await self.fan_gate.wait()
        if self.fan_errors:
            raise self.fan_errors.pop(0)
        return FanRecommendation(
            speed_pct=speed,
            explanation="fake fan advice",
            based_on=reading,
            created_at=reading.observed_at,
        )

    async def recommend_light_status(self, reading: SensorReading) -> LightRecommendation:
        self.light_calls.append(reading)
        if self.light_gate is not None:
            await self.light_gate.wait()
        if self.light_errors:
            raise self.light_errors.pop(0)
        return LightRecommendation(
            on=self.light_on,
            explanation="fake light advice",
            based_on=reading,
            created_at=reading.observed_at,
        )

    async def answer_question(self, question: str) -> str:
        self.questions.append(question)
        return f"answer to {question}"


async def no_sleep(_seconds: float) -> None:
    return None


class HangingSensor:
    """Sensor whose reads never complete; only a timeout gets the loop out."""

    sensor_id = "hanging"

    def __init__(self) -> None:
        self.calls = 0

    async def read(self) -> SensorReading:
        self.calls += 1
        await asyncio.Event().wait()
        raise AssertionError("unreachable")


class HangingActuators(SimulatedActuatorGateway):
    """Reads answer normally, fan writes hang forever."""

    async def write_fan(self, pct: int) -> None:
        self.writes.append((ActuatorKind.FAN, pct))
        await asyncio.Event().wait()


# ========================== Fixtures ==============================


@pytest.fixture()
def cfg() -> Settings:
    return Settings(
        _env_file=None,
        poll_seconds=3600,
        actuator_retry_backoff_seconds=0,
        recommendation_timeout_seconds=1.0,
        sensor_timeout_seconds=1.0,
        actuator_timeout_seconds=1.0,
        log_file="",
    )


@pytest.fixture()
def clock() -> TickClock:
    return TickClock()


@pytest.fixture()
def actuators() -> SimulatedActuatorGateway:
    return SimulatedActuatorGateway(fan_speed_pct=50, light_on=True)


@pytest.fixture()
def advisor() -> FakeAdvisor:
    return FakeAdvisor()
