from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from pymodbus.client import ModbusSerialClient

logger = logging.getLogger(__name__)


class ModbusError(RuntimeError):
    pass


@dataclass
class ModbusRtuConfig:
    port: str = "/dev/ttyUSB0"      # Windows example: "COM3"
    baudrate: int = 9600
    bytesize: int = 8
    parity: str = "N"               # "N", "E", "O"
    stopbits: int = 1
    timeout_s: float = 1.0
    slave_id: int = 1


class RS485ModbusRTU:
    """
    Modbus RTU over serial/USB driver.
    Responsible for: connect/reconnect, raw register reads. Blocking; callers
    run it in an executor. A lock keeps concurrent executor calls off the bus.
    """

    def __init__(self, cfg: ModbusRtuConfig):
        self.cfg = cfg
        self._client = ModbusSerialClient(
            port=cfg.port,
            baudrate=cfg.baudrate,
            bytesize=cfg.bytesize,
            parity=cfg.parity,
            stopbits=cfg.stopbits,
            timeout=cfg.timeout_s,
        )
        self._connected = False
        self._lock = threading.Lock()

    def connect(self) -> None:
        if self._connected:
            return
        if not self._client.connect():
            raise ModbusError(f"Unable to connect Modbus RTU on {self.cfg.port}")
        self._connected = True
        logger.info("Modbus RTU connected on %s (baud=%s)", self.cfg.port, self.cfg.baudrate)

    def close(self) -> None:
        try:
            self._client.close()
        finally:
            self._connected = False

    def read_registers(self, functioncode: int, address: int, count: int) -> list[int]:
        """
        Function code 3 (holding) or 4 (input). Returns 16-bit register values.
        A failed read marks the link disconnected so the next call reconnects.
        """
        if functioncode == 3:
            reader = self._client.read_holding_registers
        elif functioncode == 4:
            reader = self._client.read_input_registers
        else:
            raise ValueError(f"Unsupported functioncode: {functioncode}")

        with self._lock:
            self.connect()
            try:
                rr = reader(address=address, count=count, device_id=self.cfg.slave_id)
            except Exception as e:
                self._connected = False
                raise ModbusError(f"Modbus fc={functioncode} transport error: {e}") from e
            if rr.isError():
                self._connected = False
                raise ModbusError(f"Modbus fc={functioncode} error: {rr}")
            return list(rr.registers)
