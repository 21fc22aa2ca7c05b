from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from .models import ActuatorKind, CommandSource, ControlDecision, Recommendation, SensorReading
from .session import ControlSession
from ..core.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Thresholds:
    """Hysteresis band per sensor channel."""

    temperature_c: float = 0.5
    humidity_pct: float = 2.0
    oxygen_pct: float = 2.0
    lux: float = 200.0

    @classmethod
    def from_settings(cls, s: Settings) -> Thresholds:
        return cls(
            temperature_c=s.hysteresis_temperature_c,
            humidity_pct=s.hysteresis_humidity_pct,
            oxygen_pct=s.hysteresis_oxygen_pct,
            lux=s.hysteresis_lux,
        )


def channel_deltas(kind: ActuatorKind, reading: SensorReading, basis: SensorReading) -> dict[str, float]:
    # Fan advice depends on climate channels, light advice only on lux
    if kind is ActuatorKind.FAN:
        return {
            "temperature_c": abs(reading.temperature_c - basis.temperature_c),
            "humidity_pct": abs(reading.humidity_pct - basis.humidity_pct),
            "oxygen_pct": abs(reading.oxygen_pct - basis.oxygen_pct),
        }
    return {"lux": abs(reading.light_lux - basis.light_lux)}


class ReconciliationPolicy:
    """Pure decisions over a ControlSession; never performs I/O."""

    def __init__(self, thresholds: Thresholds, retry_failed_after: int = 0) -> None:
        self.thresholds = thresholds
        # 0 disables the slow retry; failed advice then waits for a change
        self.retry_failed_after = max(0, retry_failed_after)

    def exceeded(self, kind: ActuatorKind, reading: SensorReading, basis: SensorReading) -> list[str]:
        out = []
        for channel, delta in channel_deltas(kind, reading, basis).items():
            if delta > getattr(self.thresholds, channel):
                out.append(channel)
        return out

    def decide_refresh(self, session: ControlSession, kind: ActuatorKind, reading: SensorReading) -> ControlDecision:
        if session.degraded:
            return ControlDecision("SKIP", "Session degraded")

        if (
            self.retry_failed_after
            and session.advisory_errors[kind] is not None
            and session.ticks_since_failure[kind] >= self.retry_failed_after
        ):
            return ControlDecision("REFRESH", "Retrying after failed advice")

        rec = session.recommendations[kind]
        basis = session.refresh_basis[kind] or (rec.based_on if rec else None)
        if basis is None:
            return ControlDecision("REFRESH", "No recommendation yet")

        changed = self.exceeded(kind, reading, basis)
        if not changed:
            logger.debug("refresh %s: within hysteresis %s", kind.value, channel_deltas(kind, reading, basis))
            return ControlDecision("SKIP", "Within hysteresis")

        decision = ControlDecision("REFRESH", f"Changed beyond hysteresis: {', '.join(changed)}")
        logger.info("refresh %s: %s", kind.value, decision.reason)
        return decision

    def decide_recommendation(
        self,
        session: ControlSession,
        rec: Recommendation,
        requested_at: datetime,
    ) -> ControlDecision:
        kind = rec.kind

        if not session.active:
            return ControlDecision("DISCARD", "Session torn down")

        latest: Optional[SensorReading] = session.refresh_basis[kind]
        if latest is not None and latest.observed_at > rec.based_on.observed_at:
            return ControlDecision("DISCARD", "Newer reading already triggered a refresh")

        # User input takes priority until the override is cleared
        if session.sources[kind] is CommandSource.USER:
            return ControlDecision("STORE", "User override active")

        user_at = session.user_commanded_at[kind]
        if user_at is not None and requested_at < user_at:
            return ControlDecision("STORE", "Requested before latest user command")

        return ControlDecision("APPLY", f"AI recommends {rec.value!r}")

    def may_write_ai(self, session: ControlSession, kind: ActuatorKind) -> bool:
        return session.active and session.sources[kind] is not CommandSource.USER
