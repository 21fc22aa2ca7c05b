from __future__ import annotations
from typing import Protocol, runtime_checkable
from .models import FanRecommendation, LightRecommendation, SensorReading, SessionEvent


@runtime_checkable
class SensorGateway(Protocol):
    sensor_id: str

    async def read(self) -> SensorReading:
        """Raise SensorUnavailable when the provider cannot be reached."""
        ...


@runtime_checkable
class ActuatorGateway(Protocol):
    actuator_id: str

    async def read_fan(self) -> int:
        ...

    async def read_light(self) -> bool:
        ...

    async def write_fan(self, pct: int) -> None:
        """Raise ActuatorWriteFailed; the write is then not committed."""
        ...

    async def write_light(self, on: bool) -> None:
        ...


@runtime_checkable
class RecommendationClient(Protocol):
    async def recommend_fan_speed(self, reading: SensorReading) -> FanRecommendation:
        ...

    async def recommend_light_status(self, reading: SensorReading) -> LightRecommendation:
        ...

    async def answer_question(self, question: str) -> str:
        ...


@runtime_checkable
class SessionObserver(Protocol):
    def notify(self, event: SessionEvent) -> None:
        ...
