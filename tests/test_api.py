from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from farmwatch.core.config import Settings
from farmwatch.main import create_app


@pytest.fixture()
def client():
    cfg = Settings(
        _env_file=None,
        sensor_mode="sim",
        actuator_mode="sim",
        advisor_mode="sim",
        poll_seconds=3600,
        actuator_retry_backoff_seconds=0,
        log_file="",
    )
    app = create_app(cfg, log_file="")
    with TestClient(app) as c:
        loop = app.state.control_loop
        # One reading plus its advice settled before each test body runs
        c.portal.call(loop.on_sensor_tick)
        c.portal.call(loop.wait_idle)
        yield c


def test_live_snapshot(client):
    body = client.get("/api/live").json()
    assert body["running"] is True
    assert body["paused"] is False
    assert body["reading"]["temperature_c"] == 25.0
    assert body["reading_age_s"] >= 0
    assert set(body["actuators"]) == {"fan", "light"}
    # sim advisor: 25 C is one degree above the band, 3500 lux needs no light
    assert body["actuators"]["fan"]["target"] == 38
    assert body["actuators"]["fan"]["source"] == "AI"
    assert body["actuators"]["light"]["target"] is False


def test_user_fan_command_takes_over(client):
    r = client.post("/api/fan", json={"speed": 70})
    assert r.status_code == 200
    body = r.json()
    assert body["target"] == 70
    assert body["source"] == "USER"
    assert body["confirmed"] is True

    assert client.get("/api/sim/status").json()["actuators"]["fan_speed_pct"] == 70


def test_fan_command_validation(client):
    assert client.post("/api/fan", json={"speed": 150}).status_code == 422
    assert client.post("/api/light", json={"isOn": "maybe"}).status_code == 422


def test_clear_override_while_paused(client):
    client.post("/api/loop/pause")
    client.post("/api/light", json={"isOn": True})
    body = client.post("/api/light/override/clear").json()
    assert body["source"] == "NONE"
    assert body["target"] is True


def test_unknown_actuator_is_404(client):
    assert client.post("/api/heater/ack", json={"value": 1}).status_code == 404
    assert client.post("/api/heater/recommend").status_code == 404


def test_ack_reports_match(client):
    assert client.post("/api/fan/ack", json={"value": 38}).json()["matched"] is True
    assert client.post("/api/fan/ack", json={"value": 99}).json()["matched"] is False


def test_explicit_recommendation(client):
    r = client.post("/api/light/recommend")
    assert r.status_code == 200
    assert r.json()["recommendation"]["value"] is False
    assert r.json()["recommendation"]["kind"] == "light"


def test_recommendation_unavailable_while_degraded(client):
    client.post("/api/sim/failures", json={"sensor_fail_next": 3})
    loop = client.app.state.control_loop
    for _ in range(3):
        client.portal.call(loop.on_sensor_tick)
    assert client.get("/api/live").json()["degraded"] is True
    assert client.post("/api/fan/recommend").status_code == 503


def test_write_failures_fault_the_actuator(client):
    client.post("/api/loop/pause")
    client.post("/api/sim/failures", json={"fan_fail_writes": 2})
    body = client.post("/api/fan", json={"speed": 20}).json()
    assert body["faulted"] is True
    assert body["confirmed"] is False
    assert body["target"] == 20


def test_assistant(client):
    r = client.post("/api/assistant", json={"question": "How warm should chicks be?"})
    assert r.status_code == 200
    assert "simulated advisor" in r.json()["answer"]
    assert client.post("/api/assistant", json={"question": "   "}).status_code == 400


def test_history_lists_readings_and_events(client):
    body = client.get("/api/history").json()
    assert len(body["readings"]) >= 1
    types = {e["type"] for e in body["events"]}
    assert "loop_started" in types
    assert "reading" in types


def test_history_limit_must_be_positive(client):
    assert client.get("/api/history", params={"limit": 0}).status_code == 422
    assert client.get("/api/history", params={"limit": -1}).status_code == 422
    body = client.get("/api/history", params={"limit": 1}).json()
    assert len(body["readings"]) == 1
    assert len(body["events"]) == 1


def test_pause_and_resume(client):
    assert client.post("/api/loop/pause").json()["paused"] is True
    assert client.post("/api/loop/resume").json()["paused"] is False
