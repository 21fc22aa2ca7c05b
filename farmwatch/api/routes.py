from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..core.config import settings
from ..core.timeutil import age_seconds, now_local
from ..domain.errors import (
    LoopNotRunning,
    RecommendationInvalid,
    RecommendationUnavailable,
)
from ..domain.models import ActuatorKind, recommendation_as_dict
from ..drivers.actuators_sim import SimulatedActuatorGateway
from ..drivers.sensors_sim import PatternConfig, SimulatedSensorGateway
from ..services.control_loop import ControlLoop
from ..services.observers import HistoryObserver
from .schemas import (
    AckRequest,
    FanCommandRequest,
    LightCommandRequest,
    QuestionRequest,
    SimFailuresRequest,
    SimPatternRequest,
    SimValuesRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Dependency getters (imported from main via circular-safe approach) ---
# We define them here as callables that main.py will set via app.dependency_overrides.
def get_loop() -> ControlLoop:  # overridden in main
    raise RuntimeError("Control loop dependency not configured")

def get_history() -> HistoryObserver:  # overridden in main
    raise RuntimeError("History dependency not configured")

def get_sim_sensor() -> SimulatedSensorGateway:  # overridden in main
    raise RuntimeError("Simulated sensor dependency not configured")

def get_sim_actuators() -> SimulatedActuatorGateway:  # overridden in main
    raise RuntimeError("Simulated actuator dependency not configured")


def _kind(kind: str) -> ActuatorKind:
    try:
        return ActuatorKind(kind)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown actuator: {kind}")


def _not_running(e: LoopNotRunning) -> HTTPException:
    return HTTPException(status_code=409, detail=str(e))


def _state_out(loop: ControlLoop, kind: ActuatorKind) -> dict:
    return {"ok": True, "actuator": kind.value, **loop.snapshot()["actuators"][kind.value]}


@router.get("/live")
async def get_live(loop: ControlLoop = Depends(get_loop)):
    reading = loop.session.reading if loop.session else None
    return {
        "app": settings.app_name,
        "now_local": now_local().isoformat(),
        "reading_age_s": age_seconds(reading.observed_at if reading else None),
        **loop.snapshot(),
    }


@router.get("/history")
async def get_history_api(
    limit: Optional[int] = Query(default=None, ge=1),
    history: HistoryObserver = Depends(get_history),
):
    return {
        "readings": [r.as_dict() for r in history.readings(limit)],
        "events": [
            {
                "type": e.type.value,
                "ts_utc": e.ts_utc.isoformat(),
                "actuator": e.actuator.value if e.actuator else None,
            }
            for e in history.events(limit)
        ],
    }


@router.post("/fan")
async def set_fan(req: FanCommandRequest, loop: ControlLoop = Depends(get_loop)):
    try:
        await loop.set_user_command(ActuatorKind.FAN, req.speed)
    except LoopNotRunning as e:
        raise _not_running(e)
    return _state_out(loop, ActuatorKind.FAN)


@router.post("/light")
async def set_light(req: LightCommandRequest, loop: ControlLoop = Depends(get_loop)):
    try:
        await loop.set_user_command(ActuatorKind.LIGHT, req.isOn)
    except LoopNotRunning as e:
        raise _not_running(e)
    return _state_out(loop, ActuatorKind.LIGHT)


@router.post("/{kind}/override/clear")
async def clear_override(kind: str, loop: ControlLoop = Depends(get_loop)):
    k = _kind(kind)
    try:
        await loop.clear_override(k)
    except LoopNotRunning as e:
        raise _not_running(e)
    return _state_out(loop, k)


@router.post("/{kind}/ack")
async def acknowledge(kind: str, req: AckRequest, loop: ControlLoop = Depends(get_loop)):
    k = _kind(kind)
    try:
        matched = await loop.acknowledge(k, req.value)
    except LoopNotRunning as e:
        raise _not_running(e)
    return {**_state_out(loop, k), "matched": matched}


@router.post("/{kind}/recommend")
async def recommend(kind: str, loop: ControlLoop = Depends(get_loop)):
    k = _kind(kind)
    try:
        rec = await loop.request_recommendation(k)
    except LoopNotRunning as e:
        raise _not_running(e)
    except RecommendationInvalid as e:
        raise HTTPException(status_code=502, detail=f"Model answered badly: {e}")
    except RecommendationUnavailable as e:
        raise HTTPException(status_code=503, detail=f"No recommendation available: {e}")
    return {"recommendation": recommendation_as_dict(rec), **_state_out(loop, k)}


@router.post("/assistant")
async def assistant(req: QuestionRequest, loop: ControlLoop = Depends(get_loop)):
    try:
        answer = await loop.answer_question(req.question)
    except LoopNotRunning as e:
        raise _not_running(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RecommendationInvalid as e:
        raise HTTPException(status_code=502, detail=f"Model answered badly: {e}")
    except RecommendationUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Assistant unavailable: {e}")
    return {"answer": answer}


@router.post("/loop/pause")
async def loop_pause(loop: ControlLoop = Depends(get_loop)):
    loop.pause()
    return {"ok": True, "paused": loop.paused}


@router.post("/loop/resume")
async def loop_resume(loop: ControlLoop = Depends(get_loop)):
    loop.resume()
    return {"ok": True, "paused": loop.paused}


# --- Simulation endpoints ---
@router.get("/sim/status")
async def sim_status(
    sensor: SimulatedSensorGateway = Depends(get_sim_sensor),
    actuators: SimulatedActuatorGateway = Depends(get_sim_actuators),
):
    return {"sensor": sensor.status(), "actuators": actuators.status()}


@router.post("/sim/enable")
async def sim_enable(sensor: SimulatedSensorGateway = Depends(get_sim_sensor)):
    sensor.enable()
    return {"ok": True, "enabled": True}


@router.post("/sim/disable")
async def sim_disable(sensor: SimulatedSensorGateway = Depends(get_sim_sensor)):
    sensor.disable()
    return {"ok": True, "enabled": False}


@router.post("/sim/values")
async def sim_set_values(req: SimValuesRequest, sensor: SimulatedSensorGateway = Depends(get_sim_sensor)):
    sensor.set_manual(**req.model_dump())
    return {"ok": True, **sensor.status()}


@router.post("/sim/pattern")
async def sim_set_pattern(req: SimPatternRequest, sensor: SimulatedSensorGateway = Depends(get_sim_sensor)):
    cfg = PatternConfig(**req.model_dump())
    sensor.set_pattern(cfg)
    return {"ok": True, "pattern": cfg.__dict__}


@router.post("/sim/failures")
async def sim_set_failures(
    req: SimFailuresRequest,
    sensor: SimulatedSensorGateway = Depends(get_sim_sensor),
    actuators: SimulatedActuatorGateway = Depends(get_sim_actuators),
):
    sensor.fail_next(req.sensor_fail_next)
    sensor.set_failure_rate(req.sensor_failure_rate)
    actuators.fail_writes(ActuatorKind.FAN, req.fan_fail_writes)
    actuators.fail_writes(ActuatorKind.LIGHT, req.light_fail_writes)
    actuators.set_fail_reads(req.actuator_fail_reads)
    actuators.set_sticky(req.actuator_sticky)
    return {"ok": True, "sensor": sensor.status(), "actuators": actuators.status()}
