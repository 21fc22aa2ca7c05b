from __future__ import annotations

import logging

from ..core.config import Settings
from ..domain.interfaces import ActuatorGateway, RecommendationClient, SensorGateway
from ..drivers.actuator_http import HttpActuatorGateway
from ..drivers.actuators_sim import SimulatedActuatorGateway
from ..drivers.advisor_sim import SimulatedAdvisor
from ..drivers.llm_http import ChatCompletionsBackend
from ..drivers.sensor_http import HttpSensorGateway
from ..drivers.sensors_sim import SimulatedSensorGateway
from .recommender import PromptRecommendationClient

logger = logging.getLogger(__name__)


def build_sensor(cfg: Settings) -> SensorGateway:
    mode = cfg.sensor_mode.lower()
    if mode == "rs485":
        # pymodbus is only needed on hardware hosts
        from ..drivers.rs485_modbus import ModbusRtuConfig, RS485ModbusRTU
        from ..drivers.sensor_rs485 import EnvRegisterMap, Rs485SensorGateway

        driver = RS485ModbusRTU(
            ModbusRtuConfig(
                port=cfg.rs485_port,
                baudrate=cfg.rs485_baudrate,
                slave_id=cfg.rs485_slave_id,
            )
        )
        spec = EnvRegisterMap(
            functioncode=cfg.rs485_functioncode,
            first_register=cfg.rs485_first_register,
            temperature_scale=cfg.rs485_temperature_scale,
            humidity_scale=cfg.rs485_humidity_scale,
            oxygen_scale=cfg.rs485_oxygen_scale,
            lux_scale=cfg.rs485_lux_scale,
        )
        return Rs485SensorGateway(driver=driver, spec=spec)
    if mode == "http":
        return HttpSensorGateway(url=cfg.sensor_url, timeout=cfg.sensor_timeout_seconds)
    if mode != "sim":
        logger.warning("Unknown sensor_mode=%r, falling back to sim", cfg.sensor_mode)
    return SimulatedSensorGateway()


def build_actuators(cfg: Settings) -> ActuatorGateway:
    mode = cfg.actuator_mode.lower()
    if mode == "http":
        return HttpActuatorGateway(base_url=cfg.actuator_url, timeout=cfg.actuator_timeout_seconds)
    if mode != "sim":
        logger.warning("Unknown actuator_mode=%r, falling back to sim", cfg.actuator_mode)
    return SimulatedActuatorGateway()


def build_advisor(cfg: Settings) -> RecommendationClient:
    mode = cfg.advisor_mode.lower()
    if mode == "llm":
        backend = ChatCompletionsBackend(
            base_url=cfg.llm_base_url,
            api_key=cfg.llm_api_key,
            model=cfg.llm_model,
            temperature=cfg.llm_temperature,
            timeout=cfg.recommendation_timeout_seconds,
        )
        return PromptRecommendationClient(backend)
    if mode != "sim":
        logger.warning("Unknown advisor_mode=%r, falling back to sim", cfg.advisor_mode)
    return SimulatedAdvisor()
