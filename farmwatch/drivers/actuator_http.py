from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ..domain.errors import ActuatorReadFailed, ActuatorWriteFailed
from ..domain.models import ActuatorCommand, ActuatorKind, validate_fan_speed

logger = logging.getLogger(__name__)


class HttpActuatorGateway:
    """Fan and light controller behind a small REST API.

    GET/PUT {base}/fan   -> {"speed": 0..100}
    GET/PUT {base}/light -> {"isOn": bool}
    """

    actuator_id = "fan_light_http"

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8082",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self.last_applied: Optional[ActuatorCommand] = None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout, transport=self._transport)

    async def _get(self, kind: ActuatorKind) -> dict[str, Any]:
        try:
            async with self._client() as client:
                resp = await client.get(f"/{kind.value}")
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ActuatorReadFailed(kind, repr(e)) from e
        if not isinstance(data, dict):
            raise ActuatorReadFailed(kind, f"unexpected body {data!r}")
        return data

    async def _put(self, kind: ActuatorKind, value: int | bool, body: dict[str, Any]) -> None:
        try:
            async with self._client() as client:
                resp = await client.put(f"/{kind.value}", json=body)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("%s write %s failed", kind.value, body, exc_info=True)
            raise ActuatorWriteFailed(kind, value, repr(e)) from e
        current = self.last_applied or ActuatorCommand()
        self.last_applied = current.with_value(kind, value)
        logger.info("%s write %s", kind.value, body)

    async def read_fan(self) -> int:
        data = await self._get(ActuatorKind.FAN)
        try:
            return validate_fan_speed(data["speed"])
        except (KeyError, TypeError, ValueError) as e:
            raise ActuatorReadFailed(ActuatorKind.FAN, f"bad payload {data!r}") from e

    async def read_light(self) -> bool:
        data = await self._get(ActuatorKind.LIGHT)
        is_on = data.get("isOn")
        if not isinstance(is_on, bool):
            raise ActuatorReadFailed(ActuatorKind.LIGHT, f"bad payload {data!r}")
        return is_on

    async def write_fan(self, pct: int) -> None:
        await self._put(ActuatorKind.FAN, pct, {"speed": int(pct)})

    async def write_light(self, on: bool) -> None:
        await self._put(ActuatorKind.LIGHT, on, {"isOn": bool(on)})
