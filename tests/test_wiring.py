from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from farmwatch.cli import build_parser, settings_from_args
from farmwatch.core.config import Settings
from farmwatch.core.timeutil import age_seconds, now_local
from farmwatch.drivers.actuator_http import HttpActuatorGateway
from farmwatch.drivers.actuators_sim import SimulatedActuatorGateway
from farmwatch.drivers.advisor_sim import SimulatedAdvisor
from farmwatch.drivers.sensor_http import HttpSensorGateway
from farmwatch.drivers.sensors_sim import SimulatedSensorGateway
from farmwatch.services.recommender import PromptRecommendationClient
from farmwatch.services.wiring import build_actuators, build_advisor, build_sensor


def test_http_and_llm_providers():
    cfg = Settings(_env_file=None, sensor_mode="http", actuator_mode="HTTP", advisor_mode="llm")
    assert isinstance(build_sensor(cfg), HttpSensorGateway)
    assert isinstance(build_actuators(cfg), HttpActuatorGateway)
    assert isinstance(build_advisor(cfg), PromptRecommendationClient)


def test_unknown_modes_fall_back_to_sim(caplog):
    cfg = Settings(_env_file=None, sensor_mode="zigbee", actuator_mode="relay", advisor_mode="oracle")
    assert isinstance(build_sensor(cfg), SimulatedSensorGateway)
    assert isinstance(build_actuators(cfg), SimulatedActuatorGateway)
    assert isinstance(build_advisor(cfg), SimulatedAdvisor)
    assert "falling back to sim" in caplog.text


def test_cli_flags_override_settings(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    args = build_parser().parse_args(
        ["--sensor-mode", "http", "--poll-seconds", "5", "--degraded-after", "4", "--log-file", ""]
    )
    cfg = settings_from_args(args)
    assert cfg.sensor_mode == "http"
    assert cfg.actuator_mode == "sim"
    assert cfg.poll_seconds == 5.0
    assert cfg.degraded_after_failures == 4
    assert cfg.log_file == ""


def test_cli_rejects_unknown_mode():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--advisor-mode", "oracle"])


def test_reading_age_and_local_clock():
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert age_seconds(None) is None
    assert age_seconds(now - timedelta(seconds=90), now=now) == 90.0
    # clock skew from a provider never yields a negative age
    assert age_seconds(now + timedelta(seconds=5), now=now) == 0.0
    assert now_local("Africa/Nairobi").utcoffset() == timedelta(hours=3)
