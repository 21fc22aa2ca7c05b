from __future__ import annotations
import logging

from ..domain.errors import ActuatorReadFailed, ActuatorWriteFailed
from ..domain.models import ActuatorCommand, ActuatorKind

logger = logging.getLogger(__name__)


class SimulatedActuatorGateway:
    actuator_id = "fan_light_sim_01"

    def __init__(self, fan_speed_pct: int = 50, light_on: bool = True) -> None:
        self._fan = fan_speed_pct
        self._light = light_on
        self._fail_writes = {kind: 0 for kind in ActuatorKind}
        self._fail_reads = False
        # Sticky: writes are acknowledged but the device keeps its old value
        self._sticky = False
        self.last_applied = ActuatorCommand(fan_speed_pct=fan_speed_pct, light_on=light_on)
        self.writes: list[tuple[ActuatorKind, int | bool]] = []

    def fail_writes(self, kind: ActuatorKind, count: int = 1) -> None:
        self._fail_writes[kind] = max(0, int(count))

    def set_fail_reads(self, on: bool) -> None:
        self._fail_reads = bool(on)

    def set_sticky(self, on: bool) -> None:
        self._sticky = bool(on)

    def status(self) -> dict:
        return {
            "fan_speed_pct": self._fan,
            "light_on": self._light,
            "fail_writes": {k.value: v for k, v in self._fail_writes.items()},
            "fail_reads": self._fail_reads,
            "sticky": self._sticky,
        }

    async def read_fan(self) -> int:
        if self._fail_reads:
            raise ActuatorReadFailed(ActuatorKind.FAN, "Simulated read failure")
        return self._fan

    async def read_light(self) -> bool:
        if self._fail_reads:
            raise ActuatorReadFailed(ActuatorKind.LIGHT, "Simulated read failure")
        return self._light

    def _maybe_fail(self, kind: ActuatorKind, value: int | bool) -> None:
        if self._fail_writes[kind] > 0:
            self._fail_writes[kind] -= 1
            raise ActuatorWriteFailed(kind, value, "Simulated write failure")

    async def write_fan(self, pct: int) -> None:
        self.writes.append((ActuatorKind.FAN, pct))
        self._maybe_fail(ActuatorKind.FAN, pct)
        if not self._sticky:
            self._fan = int(pct)
        self.last_applied = self.last_applied.with_value(ActuatorKind.FAN, pct)
        logger.info("FAN write speed=%s", pct)

    async def write_light(self, on: bool) -> None:
        self.writes.append((ActuatorKind.LIGHT, on))
        self._maybe_fail(ActuatorKind.LIGHT, on)
        if not self._sticky:
            self._light = bool(on)
        self.last_applied = self.last_applied.with_value(ActuatorKind.LIGHT, on)
        logger.info("LIGHT write on=%s", on)
