from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Literal, Optional


class FanCommandRequest(BaseModel):
    speed: int = Field(ge=0, le=100)


class LightCommandRequest(BaseModel):
    isOn: bool


class AckRequest(BaseModel):
    value: int | bool


class QuestionRequest(BaseModel):
    question: str = Field(min_length=1, max_length=2000)


class SimValuesRequest(BaseModel):
    temperature_c: Optional[float] = None
    humidity_pct: Optional[float] = Field(default=None, ge=0, le=100)
    oxygen_pct: Optional[float] = Field(default=None, ge=0, le=100)
    light_lux: Optional[float] = Field(default=None, ge=0)


class SimPatternRequest(BaseModel):
    type: Literal["manual", "sine", "random"]
    period_s: float = 600
    temperature_amplitude: float = 4.0
    humidity_amplitude: float = 10.0
    oxygen_amplitude: float = 3.0
    lux_amplitude: float = 2500.0
    noise: float = Field(default=0.0, ge=0, le=1)


class SimFailuresRequest(BaseModel):
    sensor_fail_next: int = Field(default=0, ge=0)
    sensor_failure_rate: float = Field(default=0.0, ge=0, le=1)
    fan_fail_writes: int = Field(default=0, ge=0)
    light_fail_writes: int = Field(default=0, ge=0)
    actuator_fail_reads: bool = False
    actuator_sticky: bool = False
