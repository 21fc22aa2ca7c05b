from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from ..core.config import Settings, settings
from ..core.timeutil import now_utc
from ..domain.controller import ReconciliationPolicy, Thresholds
from ..domain.errors import (
    ActuatorReadFailed,
    ActuatorWriteFailed,
    FarmwatchError,
    LoopNotRunning,
    RecommendationInvalid,
    RecommendationUnavailable,
    SensorUnavailable,
)
from ..domain.interfaces import ActuatorGateway, RecommendationClient, SensorGateway, SessionObserver
from ..domain.models import (
    ActuatorKind,
    ActuatorState,
    CommandSource,
    EventType,
    LoopPhase,
    Recommendation,
    SensorReading,
    SessionEvent,
    validate_fan_speed,
)
from ..domain.session import ControlSession
from .observers import ObserverHub
from .recommender import GuardedAdvisor

logger = logging.getLogger(__name__)

Job = tuple[Callable[..., Awaitable[Any]], tuple, asyncio.Future]


class ControlLoop:
    """
    Owns the ControlSession and reconciles sensor state, user intents and AI
    advice into actuator writes.

    Every mutation runs on one worker task fed by a FIFO queue. Advisory calls
    run as background tasks and post their result back onto the queue, so a
    slow model never blocks manual control.
    """

    def __init__(
        self,
        sensors: SensorGateway,
        actuators: ActuatorGateway,
        advisor: RecommendationClient,
        observer: Optional[SessionObserver] = None,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = now_utc,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._sensors = sensors
        self._actuators = actuators
        self._raw_advisor = advisor
        self._observer = observer or ObserverHub()
        self._config = config or settings
        self._clock = clock
        self._sleep = sleep

        self.session: Optional[ControlSession] = None
        self._advisor: Optional[GuardedAdvisor] = None
        self._policy: Optional[ReconciliationPolicy] = None
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._poller: Optional[asyncio.Task] = None
        self._stop: Optional[asyncio.Event] = None
        self._advisories: set[asyncio.Task] = set()
        self._pending_user = {kind: 0 for kind in ActuatorKind}
        self._paused = False
        # Bumped on pause/stop; advisory results from an older epoch are dropped
        self._epoch = 0

    # --- lifecycle ---

    @property
    def config(self) -> Settings:
        return self._config

    @property
    def running(self) -> bool:
        return self.session is not None and self.session.active

    @property
    def paused(self) -> bool:
        return self._paused

    async def start(self, config: Optional[Settings] = None, *, poll: bool = True) -> ControlSession:
        if self.running:
            raise RuntimeError("Control loop already running")
        if config is not None:
            self._config = config
        cfg = self._config

        self._policy = ReconciliationPolicy(
            Thresholds.from_settings(cfg),
            retry_failed_after=cfg.recommendation_retry_ticks,
        )
        self._advisor = GuardedAdvisor(
            self._raw_advisor,
            timeout_s=cfg.recommendation_timeout_seconds,
            retries=cfg.recommendation_retries,
        )
        self.session = ControlSession(started_at=self._clock())
        self._paused = False
        self._stop = asyncio.Event()
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._work(), name="control_worker")

        await self._submit(self._sync_actuators)
        self._emit(EventType.LOOP_STARTED, payload={"poll_seconds": cfg.poll_seconds})

        if poll:
            self._poller = asyncio.create_task(self._run(), name="control_poller")
        logger.info(
            "Control loop started (poll_seconds=%s degraded_after=%s)",
            cfg.poll_seconds,
            cfg.degraded_after_failures,
        )
        return self.session

    async def stop(self) -> None:
        """Tear down; in-flight calls finish but their results are discarded."""
        session = self.session
        if session is None or not session.active:
            return
        session.active = False
        self._epoch += 1
        assert self._stop is not None and self._queue is not None

        self._stop.set()
        if self._poller:
            await self._poller
            self._poller = None

        await self._queue.put(None)
        if self._worker:
            await self._worker
            self._worker = None

        self._emit(EventType.LOOP_STOPPED)
        logger.info("Control loop stopped")

    def pause(self) -> None:
        """Suspend polling and automatic advice; manual control keeps working."""
        if not self.running or self._paused:
            return
        self._paused = True
        self._epoch += 1
        self._emit(EventType.LOOP_PAUSED)

    def resume(self) -> None:
        if not self.running or not self._paused:
            return
        self._paused = False
        self._emit(EventType.LOOP_RESUMED)

    async def wait_idle(self) -> None:
        """Wait until no advisory call is in flight and the queue is drained."""
        while True:
            if self._advisories:
                await asyncio.gather(*list(self._advisories), return_exceptions=True)
                continue
            if self._queue is not None and self._worker is not None:
                await self._queue.join()
            if not self._advisories:
                return

    # --- public operations ---

    async def on_sensor_tick(self) -> Optional[SensorReading]:
        return await self._submit(self._tick)

    async def request_recommendation(self, kind: ActuatorKind | str) -> Recommendation:
        """Ask for advice now; raises RecommendationUnavailable/Invalid to the caller."""
        kind = ActuatorKind(kind)
        task: asyncio.Task = await self._submit(self._begin_request, kind)
        rec = await task
        if rec is None:
            raise RecommendationUnavailable(f"{kind.value} recommendation discarded")
        return rec

    async def set_user_command(self, kind: ActuatorKind | str, value: int | bool) -> ActuatorState:
        kind = ActuatorKind(kind)
        if kind is ActuatorKind.FAN:
            value = validate_fan_speed(value)
        elif not isinstance(value, bool):
            raise ValueError(f"Light state must be a bool, got {value!r}")
        requested_at = self._clock()
        self._pending_user[kind] += 1
        try:
            return await self._submit(self._user_command, kind, value, requested_at)
        finally:
            self._pending_user[kind] -= 1

    async def clear_override(self, kind: ActuatorKind | str) -> CommandSource:
        return await self._submit(self._clear_override, ActuatorKind(kind))

    async def acknowledge(self, kind: ActuatorKind | str, value: int | bool) -> bool:
        """Explicit device acknowledgment of an applied value."""
        return await self._submit(self._acknowledge, ActuatorKind(kind), value)

    async def answer_question(self, question: str) -> str:
        question = (question or "").strip()
        if not question:
            raise ValueError("Question must not be empty")
        if not self.running or self._advisor is None:
            raise LoopNotRunning("Control loop is not running")
        return await self._advisor.answer_question(question)

    def snapshot(self) -> dict[str, Any]:
        if self.session is None:
            return {"running": False, "paused": False}
        out = self.session.snapshot()
        out["running"] = self.session.active
        out["paused"] = self._paused
        return out

    # --- queue plumbing ---

    async def _submit(self, fn: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        if self._queue is None or self.session is None or not self.session.active:
            raise LoopNotRunning("Control loop is not running")
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        await self._queue.put((fn, args, fut))
        return await fut

    async def _work(self) -> None:
        assert self._queue is not None
        while True:
            item: Optional[Job] = await self._queue.get()
            try:
                if item is None:
                    return
                fn, args, fut = item
                if fut.cancelled():
                    continue
                if self.session is None or not self.session.active:
                    fut.set_exception(LoopNotRunning("Control loop stopped"))
                    continue
                try:
                    result = await fn(*args)
                except Exception as e:
                    if not fut.done():
                        fut.set_exception(e)
                else:
                    if not fut.done():
                        fut.set_result(result)
            finally:
                self._queue.task_done()

    async def _run(self) -> None:
        assert self._stop is not None
        while not self._stop.is_set():
            if not self._paused:
                try:
                    await self._submit(self._tick)
                except LoopNotRunning:
                    break
                except Exception as e:
                    logger.exception("Control loop tick error: %s", e)

            # sleep with cancellation awareness
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._config.poll_seconds)
            except asyncio.TimeoutError:
                pass

    # --- helpers ---

    def _emit(self, type_: EventType, kind: Optional[ActuatorKind] = None, payload: Optional[dict] = None) -> None:
        self._observer.notify(SessionEvent(type=type_, ts_utc=self._clock(), actuator=kind, payload=payload or {}))

    def _set_phase(self, kind: ActuatorKind, phase: LoopPhase) -> None:
        s = self.session
        if s.phases[kind] is phase:
            return
        s.phases[kind] = phase
        self._emit(EventType.PHASE, kind, {"phase": phase.value})

    def _set_source(self, kind: ActuatorKind, source: CommandSource) -> None:
        s = self.session
        if s.sources[kind] is source:
            return
        previous = s.sources[kind]
        s.sources[kind] = source
        self._emit(EventType.SOURCE_CHANGED, kind, {"from": previous.value, "to": source.value})

    async def _read_actuator(self, kind: ActuatorKind) -> int | bool:
        call = self._actuators.read_fan() if kind is ActuatorKind.FAN else self._actuators.read_light()
        return await asyncio.wait_for(call, timeout=self._config.actuator_timeout_seconds)

    async def _write_actuator(self, kind: ActuatorKind, value: int | bool) -> None:
        if kind is ActuatorKind.FAN:
            call = self._actuators.write_fan(int(value))
        else:
            call = self._actuators.write_light(bool(value))
        await asyncio.wait_for(call, timeout=self._config.actuator_timeout_seconds)

    # --- jobs (run on the worker only) ---

    async def _sync_actuators(self) -> None:
        """Adopt the device's current values as a confirmed starting point."""
        s = self.session
        for kind in ActuatorKind:
            try:
                value = await self._read_actuator(kind)
            except (ActuatorReadFailed, asyncio.TimeoutError) as e:
                logger.warning("Initial %s read failed, state unconfirmed: %s", kind.value, e)
                continue
            s.set_target(kind, value, applied_at=None, confirmed=True)

    async def _corroborate(self) -> None:
        """Confirm pending writes with a read from the actuator provider."""
        s = self.session
        if not self._config.actuator_confirm_reads:
            return
        for kind in ActuatorKind:
            st = s.actuators[kind]
            if st.confirmed or st.applied_at is None:
                continue
            await self._confirm(kind, st.command.value_for(kind))

    async def _confirm(self, kind: ActuatorKind, expected: int | bool) -> bool:
        s = self.session
        try:
            actual = await self._read_actuator(kind)
        except (ActuatorReadFailed, asyncio.TimeoutError) as e:
            logger.warning("%s read-back failed, left unconfirmed: %s", kind.value, e)
            return False
        if not s.active or s.target(kind) != expected:
            return False
        if actual != expected:
            logger.info("%s read-back %r != target %r, left unconfirmed", kind.value, actual, expected)
            return False
        self._mark_confirmed(kind)
        return True

    def _mark_confirmed(self, kind: ActuatorKind) -> None:
        s = self.session
        state = s.mark_confirmed(kind)
        if s.faulted[kind]:
            s.faulted[kind] = False
        self._emit(EventType.ACTUATOR_CONFIRMED, kind, {"value": state.command.value_for(kind)})

    async def _tick(self) -> Optional[SensorReading]:
        s = self.session
        cfg = self._config
        for kind in ActuatorKind:
            if s.phases[kind] is LoopPhase.IDLE:
                self._set_phase(kind, LoopPhase.POLLING)
        try:
            try:
                reading = await asyncio.wait_for(self._sensors.read(), timeout=cfg.sensor_timeout_seconds)
            except (SensorUnavailable, asyncio.TimeoutError) as e:
                if not s.active:
                    return None
                s.consecutive_sensor_failures += 1
                logger.warning(
                    "Sensor read failed (%d consecutive): %s",
                    s.consecutive_sensor_failures,
                    str(e) or "timeout",
                )
                self._emit(EventType.SENSOR_FAILED, payload={
                    "error": str(e) or "timeout",
                    "consecutive": s.consecutive_sensor_failures,
                })
                if not s.degraded and s.consecutive_sensor_failures >= cfg.degraded_after_failures:
                    s.degraded = True
                    self._emit(EventType.DEGRADED, payload={"consecutive": s.consecutive_sensor_failures})
                return None

            if not s.active:
                return None
            s.reading = reading
            s.consecutive_sensor_failures = 0
            if s.degraded:
                s.degraded = False
                self._emit(EventType.RECOVERED)
            self._emit(EventType.READING, payload={"reading": reading})

            await self._corroborate()

            if self._paused:
                return reading
            for kind in ActuatorKind:
                if s.advisory_errors[kind] is not None and s.phases[kind] is LoopPhase.POLLING:
                    s.ticks_since_failure[kind] += 1
                decision = self._policy.decide_refresh(s, kind, reading)
                if decision.action == "REFRESH":
                    self._spawn_advisory(kind, reading, self._clock())
            return reading
        finally:
            for kind in ActuatorKind:
                if s.phases[kind] is LoopPhase.POLLING:
                    self._set_phase(kind, LoopPhase.IDLE)

    def _spawn_advisory(self, kind: ActuatorKind, reading: SensorReading, requested_at: datetime) -> asyncio.Task:
        self.session.refresh_basis[kind] = reading
        self.session.ticks_since_failure[kind] = 0
        self._set_phase(kind, LoopPhase.RECOMMENDING)
        task = asyncio.create_task(
            self._advise(kind, reading, requested_at, self._epoch),
            name=f"advise_{kind.value}",
        )
        self._advisories.add(task)
        task.add_done_callback(self._advisory_done)
        return task

    def _advisory_done(self, task: asyncio.Task) -> None:
        self._advisories.discard(task)
        if not task.cancelled() and task.exception() is not None:
            # already reported through the session; mark retrieved
            logger.debug("%s ended with %r", task.get_name(), task.exception())

    async def _begin_request(self, kind: ActuatorKind) -> asyncio.Task:
        s = self.session
        if s.degraded:
            raise RecommendationUnavailable("Recommendations suspended while sensors are degraded")
        if s.reading is None:
            raise RecommendationUnavailable("No sensor reading available yet")
        return self._spawn_advisory(kind, s.reading, self._clock())

    async def _advise(
        self,
        kind: ActuatorKind,
        reading: SensorReading,
        requested_at: datetime,
        epoch: int,
    ) -> Optional[Recommendation]:
        try:
            if kind is ActuatorKind.FAN:
                rec = await self._advisor.recommend_fan_speed(reading)
            else:
                rec = await self._advisor.recommend_light_status(reading)
        except (RecommendationUnavailable, RecommendationInvalid) as e:
            if epoch != self._epoch:
                await self._drop_advisory(kind, reading)
            else:
                try:
                    await self._submit(self._advisory_failed, kind, reading, e)
                except LoopNotRunning:
                    self._release_basis(kind, reading)
            raise

        if epoch != self._epoch:
            logger.info("Discarding %s recommendation from a paused or stopped loop", kind.value)
            await self._drop_advisory(kind, reading)
            return None
        try:
            return await self._submit(self._handle_recommendation, rec, requested_at)
        except LoopNotRunning:
            logger.info("Discarding %s recommendation, loop stopped", kind.value)
            self._release_basis(kind, reading)
            return None

    async def _drop_advisory(self, kind: ActuatorKind, reading: SensorReading) -> None:
        """Forget the refresh basis of discarded advice so the next tick asks again."""
        if self.running:
            try:
                await self._submit(self._release_job, kind, reading)
                return
            except LoopNotRunning:
                pass
        self._release_basis(kind, reading)

    async def _release_job(self, kind: ActuatorKind, reading: SensorReading) -> None:
        self._release_basis(kind, reading)

    def _release_basis(self, kind: ActuatorKind, reading: SensorReading) -> None:
        s = self.session
        if s.refresh_basis[kind] is not reading:
            return
        s.refresh_basis[kind] = None
        if s.phases[kind] is not LoopPhase.RECOMMENDING:
            return
        if s.active:
            self._set_phase(kind, LoopPhase.IDLE)
        else:
            # torn down: no more events after LOOP_STOPPED
            s.phases[kind] = LoopPhase.IDLE

    async def _advisory_failed(self, kind: ActuatorKind, reading: SensorReading, error: FarmwatchError) -> None:
        s = self.session
        label = "invalid" if isinstance(error, RecommendationInvalid) else "unavailable"
        if s.refresh_basis[kind] is reading:
            s.advisory_errors[kind] = f"{label}: {error}"
            self._set_phase(kind, LoopPhase.IDLE)
        self._emit(EventType.RECOMMENDATION_FAILED, kind, {"error": label, "detail": str(error)})

    async def _handle_recommendation(self, rec: Recommendation, requested_at: datetime) -> Optional[Recommendation]:
        s = self.session
        kind = rec.kind
        decision = self._policy.decide_recommendation(s, rec, requested_at)

        if decision.action == "DISCARD":
            logger.info("%s recommendation discarded: %s", kind.value, decision.reason)
            self._emit(EventType.RECOMMENDATION_DISCARDED, kind, {"reason": decision.reason})
            return None

        s.recommendations[kind] = rec
        s.advisory_errors[kind] = None
        self._emit(EventType.RECOMMENDATION, kind, {
            "value": rec.value,
            "explanation": rec.explanation,
            "action": decision.action,
            "reason": decision.reason,
        })

        if decision.action == "APPLY":
            await self._apply_ai(kind, rec.value)
        # A newer request keeps the kind in RECOMMENDING
        if s.refresh_basis[kind] is rec.based_on:
            self._set_phase(kind, LoopPhase.IDLE)
        return rec

    async def _apply_ai(self, kind: ActuatorKind, value: int | bool) -> None:
        s = self.session
        if not self._ai_may_write(kind):
            self._emit(EventType.RECOMMENDATION_DISCARDED, kind, {"reason": "User command pending"})
            return
        self._set_source(kind, CommandSource.AI)
        st = s.actuators[kind]
        if st.confirmed and not s.faulted[kind] and s.target(kind) == value:
            logger.debug("%s already at %r, no write needed", kind.value, value)
            return
        await self._apply_command(kind, value, CommandSource.AI)

    def _ai_may_write(self, kind: ActuatorKind) -> bool:
        return self._pending_user[kind] == 0 and self._policy.may_write_ai(self.session, kind)

    async def _user_command(self, kind: ActuatorKind, value: int | bool, requested_at: datetime) -> ActuatorState:
        s = self.session
        s.user_commanded_at[kind] = requested_at
        self._set_source(kind, CommandSource.USER)
        return await self._apply_command(kind, value, CommandSource.USER)

    async def _clear_override(self, kind: ActuatorKind) -> CommandSource:
        s = self.session
        if s.sources[kind] is not CommandSource.USER:
            return s.sources[kind]
        self._set_source(kind, CommandSource.NONE)
        self._emit(EventType.OVERRIDE_CLEARED, kind)
        # Hand control back to the advisor with fresh advice
        if s.reading is not None and not s.degraded and not self._paused:
            self._spawn_advisory(kind, s.reading, self._clock())
        return s.sources[kind]

    async def _acknowledge(self, kind: ActuatorKind, value: int | bool) -> bool:
        s = self.session
        st = s.actuators[kind]
        if s.target(kind) != value:
            logger.info("Ignoring %s ack %r, target is %r", kind.value, value, s.target(kind))
            return False
        if not st.confirmed:
            self._mark_confirmed(kind)
        return True

    async def _apply_command(self, kind: ActuatorKind, value: int | bool, source: CommandSource) -> ActuatorState:
        """
        Write *value* to the actuator, retrying once after a backoff.

        Must only run on the worker. The attempted value becomes the target
        straight away with confirmed=False; a failed final attempt faults the
        kind and leaves it that way so the UI can show a pending/failed state.
        """
        s = self.session
        cfg = self._config
        attempts = 1 + max(0, cfg.actuator_retries)
        self._set_phase(kind, LoopPhase.APPLYING)
        try:
            s.set_target(kind, value, applied_at=self._clock(), confirmed=False)
            for attempt in range(1, attempts + 1):
                if source is CommandSource.AI and not self._ai_may_write(kind):
                    logger.info("Dropping AI %s write %r, user took over", kind.value, value)
                    return s.actuators[kind]
                try:
                    await self._write_actuator(kind, value)
                except (ActuatorWriteFailed, asyncio.TimeoutError) as e:
                    logger.warning(
                        "%s write %r failed (attempt %d/%d): %s",
                        kind.value, value, attempt, attempts, str(e) or "timeout",
                    )
                    if attempt < attempts:
                        await self._sleep(cfg.actuator_retry_backoff_seconds * attempt)
                    continue

                if not s.active:
                    return s.actuators[kind]
                s.faulted[kind] = False
                s.actuators[kind] = ActuatorState(
                    command=s.actuators[kind].command,
                    applied_at=self._clock(),
                    confirmed=False,
                )
                self._emit(EventType.ACTUATOR_APPLIED, kind, {"value": value, "source": source.value})
                if cfg.actuator_confirm_reads:
                    await self._confirm(kind, value)
                return s.actuators[kind]

            if s.active:
                s.faulted[kind] = True
                self._emit(EventType.ACTUATOR_FAULTED, kind, {"value": value, "source": source.value})
            return s.actuators[kind]
        finally:
            if s.phases[kind] is LoopPhase.APPLYING:
                self._set_phase(kind, LoopPhase.IDLE)
