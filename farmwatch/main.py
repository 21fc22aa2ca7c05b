from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .core.config import Settings, settings
from .core.log import configure_logging

from .api.routes import router as api_router
import farmwatch.api.routes as routes_module

from .drivers.actuators_sim import SimulatedActuatorGateway
from .drivers.sensors_sim import SimulatedSensorGateway
from .services.control_loop import ControlLoop
from .services.observers import HistoryObserver, LoggingObserver, ObserverHub
from .services.wiring import build_actuators, build_advisor, build_sensor


logger = logging.getLogger(__name__)


def create_app(cfg: Optional[Settings] = None, *, log_file: Optional[str] = None) -> FastAPI:
    cfg = cfg or settings

    # --- Singletons (one control loop per process) ---
    sensor = build_sensor(cfg)
    actuators = build_actuators(cfg)
    advisor = build_advisor(cfg)
    history = HistoryObserver(maxlen=cfg.history_size)
    hub = ObserverHub([LoggingObserver(), history])
    loop = ControlLoop(sensor, actuators, advisor, observer=hub, config=cfg)

    def get_loop() -> ControlLoop:
        return loop

    def get_history() -> HistoryObserver:
        return history

    def get_sim_sensor() -> SimulatedSensorGateway:
        if not isinstance(sensor, SimulatedSensorGateway):
            raise RuntimeError("Sim sensor not available (sensor_mode is not 'sim').")
        return sensor

    def get_sim_actuators() -> SimulatedActuatorGateway:
        if not isinstance(actuators, SimulatedActuatorGateway):
            raise RuntimeError("Sim actuators not available (actuator_mode is not 'sim').")
        return actuators

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(log_file=log_file)
        logger.info(
            "Starting %s (sensor=%s actuator=%s advisor=%s)",
            cfg.app_name, cfg.sensor_mode, cfg.actuator_mode, cfg.advisor_mode,
        )

        await loop.start(cfg)

        try:
            yield
        finally:
            await loop.stop()

            close = getattr(sensor, "close", None)
            if close is not None:
                close()

            logger.info("Shutdown complete")

    app = FastAPI(title=cfg.app_name, lifespan=lifespan)
    app.state.control_loop = loop

    # Make the dependency functions in routes resolve to the real ones
    app.dependency_overrides[routes_module.get_loop] = get_loop
    app.dependency_overrides[routes_module.get_history] = get_history
    app.dependency_overrides[routes_module.get_sim_sensor] = get_sim_sensor
    app.dependency_overrides[routes_module.get_sim_actuators] = get_sim_actuators

    app.include_router(api_router, prefix="/api")
    return app


app = create_app()
