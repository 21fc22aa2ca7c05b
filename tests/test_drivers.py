from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from conftest import TickClock, values
from farmwatch.domain.errors import (
    ActuatorReadFailed,
    ActuatorWriteFailed,
    RecommendationUnavailable,
    SensorUnavailable,
)
from farmwatch.domain.models import ActuatorKind, SensorReading
from farmwatch.drivers.actuator_http import HttpActuatorGateway
from farmwatch.drivers.actuators_sim import SimulatedActuatorGateway
from farmwatch.drivers.advisor_sim import SimulatedAdvisor
from farmwatch.drivers.rs485_modbus import ModbusError
from farmwatch.drivers.sensor_http import HttpSensorGateway
from farmwatch.drivers.sensor_rs485 import EnvRegisterMap, Rs485SensorGateway, decode_registers
from farmwatch.drivers.sensors_sim import SimulatedSensorGateway


def json_transport(status: int, body) -> httpx.MockTransport:
    return httpx.MockTransport(lambda r: httpx.Response(status, json=body))


# ========================== HTTP sensor ==============================


def test_http_sensor_maps_payload_and_defaults_lux():
    sensor = HttpSensorGateway(transport=json_transport(200, {"temperatureCelsius": 22.5, "humidity": 55, "oxygen": 96}))
    reading = asyncio.run(sensor.read())
    assert reading.temperature_c == 22.5
    assert reading.humidity_pct == 55
    assert reading.oxygen_pct == 96
    assert reading.light_lux == 0.0
    assert sensor.last_reading is reading


@pytest.mark.parametrize(
    "status,body",
    [
        (500, {"error": "boom"}),
        (200, {"temperatureCelsius": "hot", "humidity": 55, "oxygen": 96}),
        (200, {"humidity": 55}),
    ],
)
def test_http_sensor_failures_are_unavailable(status, body):
    sensor = HttpSensorGateway(transport=json_transport(status, body))
    with pytest.raises(SensorUnavailable):
        asyncio.run(sensor.read())
    assert sensor.last_reading is None


# ========================== HTTP actuators ==============================


class FakeController:
    """In-memory fan/light REST device for httpx.MockTransport."""

    def __init__(self) -> None:
        self.state = {"fan": {"speed": 40}, "light": {"isOn": False}}
        self.puts: list[tuple[str, dict]] = []
        self.fail_put = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        name = request.url.path.strip("/")
        if name not in self.state:
            return httpx.Response(404)
        if request.method == "PUT":
            if self.fail_put:
                return httpx.Response(500)
            body = json.loads(request.content)
            self.puts.append((name, body))
            self.state[name] = body
            return httpx.Response(204)
        return httpx.Response(200, json=self.state[name])


def test_http_actuators_read_and_write():
    device = FakeController()
    gw = HttpActuatorGateway(base_url="http://ctl.local/", transport=httpx.MockTransport(device))

    async def scenario():
        assert await gw.read_fan() == 40
        assert await gw.read_light() is False
        await gw.write_fan(75)
        await gw.write_light(True)
        return await gw.read_fan(), await gw.read_light()

    assert asyncio.run(scenario()) == (75, True)
    assert device.puts == [("fan", {"speed": 75}), ("light", {"isOn": True})]
    assert gw.last_applied.fan_speed_pct == 75
    assert gw.last_applied.light_on is True


def test_http_actuator_write_failure_carries_kind_and_value():
    device = FakeController()
    device.fail_put = True
    gw = HttpActuatorGateway(transport=httpx.MockTransport(device))

    with pytest.raises(ActuatorWriteFailed) as exc:
        asyncio.run(gw.write_fan(20))
    assert exc.value.kind is ActuatorKind.FAN
    assert exc.value.value == 20
    assert gw.last_applied is None


@pytest.mark.parametrize("body", [{"speed": 150}, {"speed": "fast"}, {}, ["speed", 10]])
def test_http_fan_read_rejects_bad_payload(body):
    gw = HttpActuatorGateway(transport=json_transport(200, body))
    with pytest.raises(ActuatorReadFailed):
        asyncio.run(gw.read_fan())


def test_http_light_read_requires_boolean():
    gw = HttpActuatorGateway(transport=json_transport(200, {"isOn": "on"}))
    with pytest.raises(ActuatorReadFailed):
        asyncio.run(gw.read_light())


# ========================== RS485 ==============================


def test_decode_registers_signed_temperature_and_wide_lux():
    regs = [0xFF9C, 655, 942, 0x0001, 0x86A0]  # -10.0 C, 65.5 %, 94.2 %, 100000 lux
    temp, humidity, oxygen, lux = decode_registers(regs, EnvRegisterMap())
    assert temp == pytest.approx(-10.0)
    assert humidity == pytest.approx(65.5)
    assert oxygen == pytest.approx(94.2)
    assert lux == 100000


def test_decode_registers_requires_five_values():
    with pytest.raises(ValueError):
        decode_registers([1, 2, 3], EnvRegisterMap())


class FakeBus:
    def __init__(self, regs=None, error=None) -> None:
        self.regs = regs
        self.error = error
        self.requests: list[tuple[int, int, int]] = []
        self.closed = False

    def read_registers(self, functioncode, address, count):
        self.requests.append((functioncode, address, count))
        if self.error:
            raise self.error
        return self.regs

    def close(self):
        self.closed = True


def test_rs485_gateway_reads_configured_block():
    bus = FakeBus(regs=[215, 600, 950, 0, 4200])
    gw = Rs485SensorGateway(bus, EnvRegisterMap(functioncode=4, first_register=10))
    reading = asyncio.run(gw.read())
    assert bus.requests == [(4, 10, 5)]
    assert reading.temperature_c == pytest.approx(21.5)
    assert reading.light_lux == 4200
    gw.close()
    assert bus.closed


def test_rs485_gateway_bus_error_is_unavailable():
    gw = Rs485SensorGateway(FakeBus(error=ModbusError("no response")))
    with pytest.raises(SensorUnavailable, match="no response"):
        asyncio.run(gw.read())


# ========================== Simulators ==============================


def test_sim_sensor_manual_values_and_injected_failures():
    sensor = SimulatedSensorGateway()
    sensor.set_manual(temperature_c=30, light_lux=800)
    sensor.fail_next(2)

    async def scenario():
        for _ in range(2):
            with pytest.raises(SensorUnavailable):
                await sensor.read()
        return await sensor.read()

    reading = asyncio.run(scenario())
    assert reading.temperature_c == 30.0
    assert reading.light_lux == 800.0
    assert sensor.status()["fail_next"] == 0


def test_sim_sensor_disabled():
    sensor = SimulatedSensorGateway()
    sensor.disable()
    with pytest.raises(SensorUnavailable):
        asyncio.run(sensor.read())


def test_sim_actuators_sticky_device_keeps_old_value():
    gw = SimulatedActuatorGateway(fan_speed_pct=10, light_on=False)
    gw.set_sticky(True)
    asyncio.run(gw.write_fan(80))
    assert asyncio.run(gw.read_fan()) == 10
    assert gw.writes == [(ActuatorKind.FAN, 80)]


def test_sim_actuators_fail_writes_per_kind():
    gw = SimulatedActuatorGateway()
    gw.fail_writes(ActuatorKind.LIGHT, 1)
    with pytest.raises(ActuatorWriteFailed):
        asyncio.run(gw.write_light(False))
    asyncio.run(gw.write_fan(20))
    asyncio.run(gw.write_light(False))
    assert gw.status() == {
        "fan_speed_pct": 20,
        "light_on": False,
        "fail_writes": {"fan": 0, "light": 0},
        "fail_reads": False,
        "sticky": False,
    }


def sim_reading(**kw) -> SensorReading:
    return SensorReading(observed_at=TickClock()(), **values(**kw))


def test_sim_advisor_rules():
    advisor = SimulatedAdvisor()
    hot = asyncio.run(advisor.recommend_fan_speed(sim_reading(temp=30, humidity=75, oxygen=85)))
    calm = asyncio.run(advisor.recommend_fan_speed(sim_reading()))
    assert hot.speed_pct == 100
    assert calm.speed_pct == 30
    assert asyncio.run(advisor.recommend_light_status(sim_reading(lux=500))).on is True
    assert asyncio.run(advisor.recommend_light_status(sim_reading(lux=6000))).on is False


def test_sim_advisor_disabled_is_unavailable():
    advisor = SimulatedAdvisor()
    advisor.disable()
    with pytest.raises(RecommendationUnavailable):
        asyncio.run(advisor.recommend_fan_speed(sim_reading()))
