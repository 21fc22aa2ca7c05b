from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Optional, Union


class ActuatorKind(str, Enum):
    FAN = "fan"
    LIGHT = "light"


class CommandSource(str, Enum):
    USER = "USER"
    AI = "AI"
    NONE = "NONE"


class LoopPhase(str, Enum):
    IDLE = "IDLE"
    POLLING = "POLLING"
    RECOMMENDING = "RECOMMENDING"
    APPLYING = "APPLYING"


@dataclass(frozen=True)
class SensorReading:
    temperature_c: float
    humidity_pct: float
    oxygen_pct: float
    light_lux: float
    observed_at: datetime

    def as_dict(self) -> dict[str, Any]:
        return {
            "temperature_c": self.temperature_c,
            "humidity_pct": self.humidity_pct,
            "oxygen_pct": self.oxygen_pct,
            "light_lux": self.light_lux,
            "observed_at": self.observed_at.isoformat(),
        }


def validate_fan_speed(pct: int) -> int:
    if isinstance(pct, bool) or int(pct) != pct:
        raise ValueError(f"Fan speed must be an integer percentage, got {pct!r}")
    pct = int(pct)
    if not 0 <= pct <= 100:
        raise ValueError(f"Fan speed must be within 0..100, got {pct}")
    return pct


@dataclass(frozen=True)
class ActuatorCommand:
    """Desired target for both actuators; not necessarily applied yet."""

    fan_speed_pct: int = 0
    light_on: bool = False

    def __post_init__(self) -> None:
        validate_fan_speed(self.fan_speed_pct)

    def value_for(self, kind: ActuatorKind) -> int | bool:
        return self.fan_speed_pct if kind is ActuatorKind.FAN else self.light_on

    def with_value(self, kind: ActuatorKind, value: int | bool) -> ActuatorCommand:
        if kind is ActuatorKind.FAN:
            return replace(self, fan_speed_pct=validate_fan_speed(value))
        return replace(self, light_on=bool(value))


@dataclass(frozen=True)
class ActuatorState:
    command: ActuatorCommand
    applied_at: Optional[datetime] = None
    confirmed: bool = False


@dataclass(frozen=True)
class FanRecommendation:
    kind: ClassVar[ActuatorKind] = ActuatorKind.FAN

    speed_pct: int
    explanation: str
    based_on: SensorReading
    created_at: datetime

    def __post_init__(self) -> None:
        validate_fan_speed(self.speed_pct)

    @property
    def value(self) -> int:
        return self.speed_pct


@dataclass(frozen=True)
class LightRecommendation:
    kind: ClassVar[ActuatorKind] = ActuatorKind.LIGHT

    on: bool
    explanation: str
    based_on: SensorReading
    created_at: datetime

    @property
    def value(self) -> bool:
        return self.on


Recommendation = Union[FanRecommendation, LightRecommendation]


def recommendation_as_dict(rec: Optional[Recommendation]) -> Optional[dict[str, Any]]:
    if rec is None:
        return None
    return {
        "kind": rec.kind.value,
        "value": rec.value,
        "explanation": rec.explanation,
        "based_on": rec.based_on.as_dict(),
        "created_at": rec.created_at.isoformat(),
    }


@dataclass(frozen=True)
class ControlDecision:
    action: str  # "REFRESH" | "SKIP" | "APPLY" | "STORE" | "DISCARD"
    reason: str


class EventType(str, Enum):
    LOOP_STARTED = "loop_started"
    LOOP_STOPPED = "loop_stopped"
    LOOP_PAUSED = "loop_paused"
    LOOP_RESUMED = "loop_resumed"
    READING = "reading"
    SENSOR_FAILED = "sensor_failed"
    DEGRADED = "degraded"
    RECOVERED = "recovered"
    PHASE = "phase"
    RECOMMENDATION = "recommendation"
    RECOMMENDATION_FAILED = "recommendation_failed"
    RECOMMENDATION_DISCARDED = "recommendation_discarded"
    SOURCE_CHANGED = "source_changed"
    ACTUATOR_APPLIED = "actuator_applied"
    ACTUATOR_CONFIRMED = "actuator_confirmed"
    ACTUATOR_FAULTED = "actuator_faulted"
    OVERRIDE_CLEARED = "override_cleared"


@dataclass(frozen=True)
class SessionEvent:
    type: EventType
    ts_utc: datetime
    actuator: Optional[ActuatorKind] = None
    payload: dict[str, Any] = field(default_factory=dict)
