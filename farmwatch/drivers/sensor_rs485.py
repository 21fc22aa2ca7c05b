from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from ..core.timeutil import now_utc
from ..domain.errors import SensorUnavailable
from ..domain.models import SensorReading
from .rs485_modbus import ModbusError, RS485ModbusRTU

logger = logging.getLogger(__name__)


@dataclass
class EnvRegisterMap:
    """Five consecutive registers: temp, humidity, oxygen, lux hi, lux lo."""

    functioncode: int = 3  # 3=holding, 4=input
    first_register: int = 0
    temperature_scale: float = 0.1
    humidity_scale: float = 0.1
    oxygen_scale: float = 0.1
    lux_scale: float = 1.0


def _signed16(raw: int) -> int:
    return raw - 0x10000 if raw & 0x8000 else raw


def decode_registers(regs: list[int], spec: EnvRegisterMap) -> tuple[float, float, float, float]:
    if len(regs) < 5:
        raise ValueError(f"Expected 5 registers, got {len(regs)}")
    temp = _signed16(regs[0]) * spec.temperature_scale
    humidity = regs[1] * spec.humidity_scale
    oxygen = regs[2] * spec.oxygen_scale
    # Lux spans two registers, big-endian, hi word first
    lux = ((regs[3] << 16) | regs[4]) * spec.lux_scale
    return temp, humidity, oxygen, lux


class Rs485SensorGateway:
    def __init__(
        self,
        driver: RS485ModbusRTU,
        spec: Optional[EnvRegisterMap] = None,
        sensor_id: str = "env_rs485",
    ):
        self._driver = driver
        self._spec = spec or EnvRegisterMap()
        self.sensor_id = sensor_id
        self.last_reading: Optional[SensorReading] = None

    def _read_blocking(self) -> SensorReading:
        regs = self._driver.read_registers(self._spec.functioncode, self._spec.first_register, 5)
        logger.debug("RS485 read: fc=%d addr=%d regs=%s", self._spec.functioncode, self._spec.first_register, regs)
        temp, humidity, oxygen, lux = decode_registers(regs, self._spec)
        return SensorReading(
            temperature_c=temp,
            humidity_pct=humidity,
            oxygen_pct=oxygen,
            light_lux=lux,
            observed_at=now_utc(),
        )

    async def read(self) -> SensorReading:
        # Sync serial call; run in thread to avoid blocking event loop
        loop = asyncio.get_running_loop()
        try:
            reading = await loop.run_in_executor(None, self._read_blocking)
        except (ModbusError, ValueError) as e:
            raise SensorUnavailable(f"RS485 read failed: {e}") from e
        self.last_reading = reading
        return reading

    def close(self) -> None:
        self._driver.close()
