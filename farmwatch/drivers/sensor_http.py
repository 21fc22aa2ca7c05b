from __future__ import annotations

import logging
from typing import Optional

import httpx
from pydantic import BaseModel, ValidationError

from ..core.timeutil import now_utc
from ..domain.errors import SensorUnavailable
from ..domain.models import SensorReading

logger = logging.getLogger(__name__)


class SensorPayload(BaseModel):
    temperatureCelsius: float
    humidity: float
    oxygen: float
    lux: float = 0.0


class HttpSensorGateway:
    sensor_id = "env_http"

    def __init__(
        self,
        url: str = "http://127.0.0.1:8081/sensors",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport
        self.last_reading: Optional[SensorReading] = None

    async def read(self) -> SensorReading:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.get(self._url)
                resp.raise_for_status()
                payload = SensorPayload.model_validate_json(resp.content)
        except httpx.HTTPError as e:
            raise SensorUnavailable(f"sensor provider unreachable: {e!r}") from e
        except ValidationError as e:
            raise SensorUnavailable(f"sensor provider sent bad payload: {e.error_count()} error(s)") from e

        reading = SensorReading(
            temperature_c=payload.temperatureCelsius,
            humidity_pct=payload.humidity,
            oxygen_pct=payload.oxygen,
            light_lux=payload.lux,
            observed_at=now_utc(),
        )
        self.last_reading = reading
        return reading
