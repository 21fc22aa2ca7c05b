from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from .models import (
    ActuatorCommand,
    ActuatorKind,
    ActuatorState,
    CommandSource,
    LoopPhase,
    Recommendation,
    SensorReading,
    recommendation_as_dict,
)


def _per_kind(value: Any) -> dict[ActuatorKind, Any]:
    return {kind: value for kind in ActuatorKind}


@dataclass
class ControlSession:
    """
    Aggregate root owned by the control loop.

    One ActuatorState per kind; only the field of ActuatorState.command that
    matches the kind is meaningful for that entry. All mutation happens on the
    loop's processing queue.
    """

    reading: Optional[SensorReading] = None
    actuators: dict[ActuatorKind, ActuatorState] = field(
        default_factory=lambda: _per_kind(ActuatorState(command=ActuatorCommand()))
    )
    recommendations: dict[ActuatorKind, Optional[Recommendation]] = field(
        default_factory=lambda: _per_kind(None)
    )
    sources: dict[ActuatorKind, CommandSource] = field(
        default_factory=lambda: _per_kind(CommandSource.NONE)
    )
    phases: dict[ActuatorKind, LoopPhase] = field(
        default_factory=lambda: _per_kind(LoopPhase.IDLE)
    )
    faulted: dict[ActuatorKind, bool] = field(default_factory=lambda: _per_kind(False))
    # Request time of the latest user command, used for the tie-break
    user_commanded_at: dict[ActuatorKind, Optional[datetime]] = field(
        default_factory=lambda: _per_kind(None)
    )
    # Reading the newest advisory call per kind was issued for
    refresh_basis: dict[ActuatorKind, Optional[SensorReading]] = field(
        default_factory=lambda: _per_kind(None)
    )
    advisory_errors: dict[ActuatorKind, Optional[str]] = field(
        default_factory=lambda: _per_kind(None)
    )
    # Polls since the last failed advisory call, for the slow retry
    ticks_since_failure: dict[ActuatorKind, int] = field(default_factory=lambda: _per_kind(0))
    degraded: bool = False
    consecutive_sensor_failures: int = 0
    started_at: Optional[datetime] = None
    active: bool = True

    @property
    def command(self) -> ActuatorCommand:
        return ActuatorCommand(
            fan_speed_pct=self.actuators[ActuatorKind.FAN].command.fan_speed_pct,
            light_on=self.actuators[ActuatorKind.LIGHT].command.light_on,
        )

    def target(self, kind: ActuatorKind) -> int | bool:
        return self.actuators[kind].command.value_for(kind)

    def set_target(
        self,
        kind: ActuatorKind,
        value: int | bool,
        applied_at: Optional[datetime],
        confirmed: bool,
    ) -> ActuatorState:
        state = ActuatorState(
            command=self.command.with_value(kind, value),
            applied_at=applied_at,
            confirmed=confirmed,
        )
        self.actuators[kind] = state
        return state

    def mark_confirmed(self, kind: ActuatorKind) -> ActuatorState:
        old = self.actuators[kind]
        state = ActuatorState(command=old.command, applied_at=old.applied_at, confirmed=True)
        self.actuators[kind] = state
        return state

    def snapshot(self) -> dict[str, Any]:
        """Read-only view for observers and the HTTP layer."""
        return {
            "reading": self.reading.as_dict() if self.reading else None,
            "degraded": self.degraded,
            "consecutive_sensor_failures": self.consecutive_sensor_failures,
            "actuators": {
                kind.value: {
                    "target": self.target(kind),
                    "applied_at": st.applied_at.isoformat() if st.applied_at else None,
                    "confirmed": st.confirmed,
                    "faulted": self.faulted[kind],
                    "source": self.sources[kind].value,
                    "phase": self.phases[kind].value,
                    "recommendation": recommendation_as_dict(self.recommendations[kind]),
                    "advisory_error": self.advisory_errors[kind],
                }
                for kind, st in self.actuators.items()
            },
        }
