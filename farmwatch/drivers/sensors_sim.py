from __future__ import annotations
import math
import random
from dataclasses import dataclass
from typing import Literal, Optional

from ..core.timeutil import now_utc
from ..domain.errors import SensorUnavailable
from ..domain.models import SensorReading


PatternType = Literal["manual", "sine", "random"]


@dataclass
class ChannelValues:
    temperature_c: float = 25.0
    humidity_pct: float = 60.0
    oxygen_pct: float = 95.0
    light_lux: float = 3500.0


@dataclass
class PatternConfig:
    type: PatternType = "manual"
    period_s: float = 600.0
    temperature_amplitude: float = 4.0
    humidity_amplitude: float = 10.0
    oxygen_amplitude: float = 3.0
    lux_amplitude: float = 2500.0
    noise: float = 0.0  # fraction of amplitude


class SimulatedSensorGateway:
    sensor_id = "env_sim_01"

    def __init__(self, values: Optional[ChannelValues] = None) -> None:
        self._enabled = True
        self._base = values or ChannelValues()
        self._pattern = PatternConfig()
        self._t0 = now_utc()
        self._fail_next = 0
        self.last_reading: Optional[SensorReading] = None

        # Optional: inject occasional failures for testing
        self._failure_rate = 0.0

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    def set_manual(self, **channels: float) -> None:
        self._pattern.type = "manual"
        for name, value in channels.items():
            if value is not None:
                setattr(self._base, name, float(value))

    def set_pattern(self, cfg: PatternConfig) -> None:
        self._pattern = cfg

    def fail_next(self, count: int = 1) -> None:
        self._fail_next = max(0, int(count))

    def set_failure_rate(self, rate: float) -> None:
        self._failure_rate = max(0.0, min(1.0, float(rate)))

    def status(self) -> dict:
        return {
            "enabled": self._enabled,
            "values": self._base.__dict__,
            "pattern": self._pattern.__dict__,
            "failure_rate": self._failure_rate,
            "fail_next": self._fail_next,
        }

    def _wave(self, amplitude: float, t: float, phase: float) -> float:
        p = self._pattern
        if p.type == "sine":
            v = amplitude * math.sin(2 * math.pi * t / max(p.period_s, 1.0) + phase)
        elif p.type == "random":
            v = random.uniform(-amplitude, amplitude)
        else:
            return 0.0
        if p.noise > 0:
            v += random.uniform(-p.noise, p.noise) * amplitude
        return v

    async def read(self) -> SensorReading:
        ts = now_utc()
        if not self._enabled:
            raise SensorUnavailable("Sim sensor disabled")

        if self._fail_next > 0:
            self._fail_next -= 1
            raise SensorUnavailable("Simulated read failure")

        if self._failure_rate > 0.0 and random.random() < self._failure_rate:
            raise SensorUnavailable("Simulated read failure")

        t = (ts - self._t0).total_seconds()
        b, p = self._base, self._pattern
        reading = SensorReading(
            temperature_c=b.temperature_c + self._wave(p.temperature_amplitude, t, 0.0),
            humidity_pct=max(0.0, min(100.0, b.humidity_pct + self._wave(p.humidity_amplitude, t, math.pi / 3))),
            oxygen_pct=max(0.0, min(100.0, b.oxygen_pct + self._wave(p.oxygen_amplitude, t, math.pi))),
            light_lux=max(0.0, b.light_lux + self._wave(p.lux_amplitude, t, math.pi / 2)),
            observed_at=ts,
        )
        self.last_reading = reading
        return reading
