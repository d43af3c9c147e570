# -*- coding: utf-8 -*-
"""Runtime kernel: owns the state, gates events and folds ticks."""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Mapping, Optional

from ..config import KernelCfg
from ..estimator.belief import BeliefState
from ..estimator.observation import Observation
from ..estimator.ukf import UKFStateEstimator
from ..protocols import get_protocol
from ..safety.monitor import GateResult, SafetyMonitor, SafetyViolation
from .events import (
    EMERGENCY_HALT,
    AdjustTempo,
    AiIntervention,
    AiStatusChange,
    AiVoiceMessage,
    BeliefUpdate,
    Boot,
    CycleComplete,
    Halt,
    KernelEvent,
    LoadProtocol,
    LoadSafetyRegistry,
    Pause,
    ResetSafetyLock,
    Resume,
    SafetyInterdiction,
    StartSession,
    Tick,
)
from .phase import PhaseMachine
from .state import RuntimeState, RuntimeStatus, SafetyProfile, SessionSummary

logger = logging.getLogger(__name__)

Subscriber = Callable[[RuntimeState], None]


@dataclass(frozen=True)
class KernelApi:
    """Handle given to middleware for enqueuing follow-up events."""

    queue: Callable[[KernelEvent], None]


Middleware = Callable[[KernelEvent, RuntimeState, RuntimeState, KernelApi], None]


class RuntimeKernel:
    """Single owner of :class:`RuntimeState`.

    Every state-changing event goes through :class:`SafetyMonitor` before it
    is applied; ticks advance the phase machine and the estimator directly.
    Events queued by middleware are processed before the outermost
    :meth:`dispatch` returns.
    """

    def __init__(
        self,
        cfg: Optional[KernelCfg] = None,
        *,
        estimator: Optional[UKFStateEstimator] = None,
        monitor: Optional[SafetyMonitor] = None,
        boot_timestamp: float = 0.0,
    ) -> None:
        self.cfg = cfg or KernelCfg()
        self.estimator = estimator or UKFStateEstimator(self.cfg.estimator)
        self.monitor = monitor or SafetyMonitor(self.cfg)
        self._phase = PhaseMachine()
        self._subscribers: List[Subscriber] = []
        self._middleware: List[Middleware] = []
        self._event_log: Deque[KernelEvent] = deque(maxlen=int(self.cfg.event_log_capacity))
        self._queue: Deque[KernelEvent] = deque()
        self._busy = False
        self._api = KernelApi(queue=self._queue.append)
        self._reset_session_accumulators()
        self._state = RuntimeState(
            belief=self.estimator.belief,
            boot_timestamp=float(boot_timestamp),
            last_update_timestamp=float(boot_timestamp),
        )
        self._event_log.append(Boot(timestamp=float(boot_timestamp)))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def get_state(self) -> RuntimeState:
        return self._state

    def get_violations(self) -> List[SafetyViolation]:
        return self.monitor.violations()

    def event_log(self) -> List[KernelEvent]:
        return list(self._event_log)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; it receives the current state immediately."""
        self._subscribers.append(callback)
        self._deliver(callback, self._state)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def use(self, middleware: Middleware) -> None:
        self._middleware.append(middleware)

    def dispatch(self, event: KernelEvent) -> Optional[GateResult]:
        """Gate and apply ``event``; returns its gate result.

        Returns ``None`` for dropped input and for events raised while the
        kernel is busy applying another one; those are queued and processed
        before the outermost call returns.
        """
        if not isinstance(event, KernelEvent):
            logger.error("dropping non-event command of type %s", type(event).__name__)
            return None
        if self._busy:
            self._queue.append(event)
            return None
        if isinstance(event, Tick):
            self._tick(event.dt, event.observation)
            result = None
        else:
            result = self._process(event)
        self._drain()
        return result

    def tick(self, dt: float, observation: Optional[Observation] = None) -> RuntimeState:
        """Advance logical time by ``dt`` seconds.

        Ticks are not gated; a completed cycle is dispatched as
        :class:`CycleComplete` through the monitor.
        """
        if self._busy:
            self._queue.append(Tick(timestamp=self._state.last_update_timestamp, dt=dt, observation=observation))
            return self._state
        self._tick(dt, observation)
        self._drain()
        return self._state

    # ------------------------------------------------------------------
    # Event processing
    # ------------------------------------------------------------------
    def _drain(self) -> None:
        while self._queue:
            queued = self._queue.popleft()
            if isinstance(queued, Tick):
                self._tick(queued.dt, queued.observation)
            else:
                self._process(queued)

    def _tick(self, dt: float, observation: Optional[Observation]) -> None:
        step = float(dt)
        if not math.isfinite(step) or step < 0.0:
            logger.warning("ignoring invalid tick dt=%r", dt)
            step = 0.0
        before = self._state
        clean = observation.sanitized(self.cfg.vitals) if observation is not None else None
        now = float(clean.timestamp) if clean is not None else before.last_update_timestamp + step

        completed = 0
        changes: Dict[str, object] = {"last_update_timestamp": now}
        if clean is not None:
            changes["last_observation"] = clean
        if before.status is RuntimeStatus.RUNNING:
            completed = self._phase.advance(step, before.tempo_scale)
            belief = self.estimator.update(clean or Observation.empty(now, step), step)
            self._accumulate(clean, belief, step)
            changes.update(
                belief=belief,
                session_duration=before.session_duration + step,
                **self._phase_fields(before.tempo_scale),
            )
        self._state = before.evolve(**changes)
        self._fan_out(Tick(timestamp=now, dt=step, observation=clean), before)

        last_cycle = self._state.cycle_count
        for cycle in range(last_cycle - completed + 1, last_cycle + 1):
            self._process(CycleComplete(timestamp=now, cycle=cycle))

    def _process(self, event: KernelEvent) -> GateResult:
        before = self._state
        if not event.well_formed():
            logger.error("dropping malformed %s at t=%.3f; state unchanged", event.kind, event.timestamp)
            return GateResult(accepted=False, event=event)
        result = self.monitor.check_event(event, before)
        if not result.accepted:
            logger.info("event %s rejected at t=%.3f; state unchanged", event.kind, event.timestamp)
            return result
        applied = result.event
        self._apply(applied)
        self._event_log.append(applied)
        self._fan_out(applied, before)
        return result

    def _fan_out(self, event: KernelEvent, before: RuntimeState) -> None:
        self._busy = True
        try:
            self._run_middleware(event, before, self._state)
            self._notify()
        finally:
            self._busy = False

    def _apply(self, event: KernelEvent) -> None:
        state = self._state
        ts = float(event.timestamp)
        base = state.evolve(last_update_timestamp=ts)

        if isinstance(event, Boot):
            self._state = base.evolve(boot_timestamp=ts)
        elif isinstance(event, LoadProtocol):
            self._state = self._load_protocol(base, event)
        elif isinstance(event, StartSession):
            self._state = self._start_session(base, ts)
        elif isinstance(event, Halt):
            self._state = self._halt(base, ts, event.reason)
        elif isinstance(event, Pause):
            if state.status is RuntimeStatus.RUNNING:
                self._state = base.evolve(status=RuntimeStatus.PAUSED)
            else:
                self._state = base
        elif isinstance(event, Resume):
            if state.status is RuntimeStatus.PAUSED:
                self._state = base.evolve(status=RuntimeStatus.RUNNING)
            else:
                self._state = base
        elif isinstance(event, AdjustTempo):
            tempo = self.cfg.tempo
            scale = max(tempo.min, min(tempo.max, float(event.scale)))
            self._state = base.evolve(tempo_scale=scale, **self._phase_fields(scale))
        elif isinstance(event, SafetyInterdiction):
            self._state = self._interdict(base, event)
        elif isinstance(event, ResetSafetyLock):
            self._state = self._reset_lock(base, event)
        elif isinstance(event, LoadSafetyRegistry):
            self._state = base.evolve(safety_registry=dict(event.registry))
        elif isinstance(event, BeliefUpdate):
            self._state = base.evolve(belief=event.belief)
        elif isinstance(event, AiStatusChange):
            self._state = base.evolve(ai_status=event.status, ai_active=event.status != "disconnected")
        elif isinstance(event, AiVoiceMessage):
            self._state = base.evolve(last_ai_message=event.text, ai_status="speaking")
        elif isinstance(event, AiIntervention):
            label = f"{event.intent}: {event.detail}" if event.detail else event.intent
            self._state = base.evolve(last_ai_intervention=label)
        else:
            self._state = base

    def _load_protocol(self, state: RuntimeState, event: LoadProtocol) -> RuntimeState:
        protocol = get_protocol(event.protocol_id)
        if protocol is None:
            logger.warning("unknown protocol %r; keeping %r", event.protocol_id, state.protocol_id)
            return state
        self._phase.load(protocol)
        self.estimator.set_protocol(protocol)
        return state.evolve(protocol_id=protocol.id, **self._phase_fields(state.tempo_scale))

    def _start_session(self, state: RuntimeState, now: float) -> RuntimeState:
        if state.status is RuntimeStatus.SAFETY_LOCK:
            logger.warning("cannot start: kernel is in safety lock")
            return state
        profile = state.active_profile
        if profile is not None and profile.is_locked(now):
            logger.warning("cannot start: protocol %s locked until %.1f", state.protocol_id, profile.safety_lock_until)
            return state
        if state.protocol_id is None:
            logger.warning("cannot start: no protocol loaded")
            return state
        self._phase.restart()
        self._reset_session_accumulators()
        return state.evolve(
            status=RuntimeStatus.RUNNING,
            session_duration=0.0,
            start_belief=state.belief,
            **self._phase_fields(state.tempo_scale),
        )

    def _halt(self, state: RuntimeState, now: float, reason: str) -> RuntimeState:
        if state.status not in (RuntimeStatus.RUNNING, RuntimeStatus.PAUSED):
            return state
        summary = self._summarize(state)
        registry = self._write_back(state.safety_registry, summary, now)
        logger.info(
            "session halted (%s): %.1fs, %d cycles, stress %.2f",
            reason or "no reason",
            summary.duration,
            summary.cycles_completed,
            summary.session_stress,
        )
        return state.evolve(status=RuntimeStatus.HALTED, last_session=summary, safety_registry=registry)

    def _interdict(self, state: RuntimeState, event: SafetyInterdiction) -> RuntimeState:
        if event.action != EMERGENCY_HALT:
            logger.warning("safety interdiction %s (risk %.2f) logged only", event.action, event.risk_level)
            return state
        now = float(event.timestamp)
        registry = dict(state.safety_registry)
        summary = state.last_session
        if state.status in (RuntimeStatus.RUNNING, RuntimeStatus.PAUSED):
            summary = self._summarize(state)
            registry = self._write_back(registry, summary, now)
        if state.protocol_id is not None:
            profile = registry.get(state.protocol_id, SafetyProfile())
            registry[state.protocol_id] = SafetyProfile(
                cumulative_stress_score=profile.cumulative_stress_score,
                last_incident_timestamp=now,
                safety_lock_until=now + self.cfg.safety.safety_lock_duration_sec,
                resonance_history=profile.resonance_history,
            )
        logger.error("emergency halt at t=%.3f (risk %.2f); entering safety lock", now, event.risk_level)
        return state.evolve(status=RuntimeStatus.SAFETY_LOCK, safety_registry=registry, last_session=summary)

    def _reset_lock(self, state: RuntimeState, event: ResetSafetyLock) -> RuntimeState:
        target = event.protocol_id or state.protocol_id
        registry = dict(state.safety_registry)
        if target is not None and target in registry:
            registry[target] = SafetyProfile(resonance_history=registry[target].resonance_history)
        status = RuntimeStatus.IDLE if state.status is RuntimeStatus.SAFETY_LOCK else state.status
        logger.info("safety lock reset for %s", target or "kernel")
        return state.evolve(status=status, safety_registry=registry)

    # ------------------------------------------------------------------
    # Session bookkeeping
    # ------------------------------------------------------------------
    def _reset_session_accumulators(self) -> None:
        self._session_stress = 0.0
        self._hr_sum = 0.0
        self._hr_count = 0
        self._rhythm_sum = 0.0
        self._rhythm_count = 0

    def _accumulate(self, observation: Optional[Observation], belief: BeliefState, dt: float) -> None:
        self._session_stress += belief.prediction_error * dt
        self._rhythm_sum += belief.rhythm_alignment
        self._rhythm_count += 1
        if observation is not None and observation.heart_rate is not None:
            self._hr_sum += observation.heart_rate
            self._hr_count += 1

    def _summarize(self, state: RuntimeState) -> SessionSummary:
        return SessionSummary(
            protocol_id=state.protocol_id,
            duration=state.session_duration,
            cycles_completed=state.cycle_count,
            average_heart_rate=self._hr_sum / self._hr_count if self._hr_count else None,
            average_rhythm_alignment=self._rhythm_sum / self._rhythm_count if self._rhythm_count else 0.0,
            session_stress=self._session_stress,
            final_belief=state.belief,
        )

    def _write_back(
        self,
        registry: Mapping[str, SafetyProfile],
        summary: SessionSummary,
        now: float,
    ) -> Dict[str, SafetyProfile]:
        out = dict(registry)
        if summary.protocol_id is None:
            return out
        safety = self.cfg.safety
        profile = out.get(summary.protocol_id, SafetyProfile())
        stress = profile.cumulative_stress_score + summary.session_stress
        history = (profile.resonance_history + (summary.final_belief.rhythm_alignment,))[-safety.resonance_history_size:]
        lock_until = profile.safety_lock_until
        incident = profile.last_incident_timestamp
        if stress > safety.stress_score_lock_threshold:
            lock_until = max(lock_until, now + safety.safety_lock_duration_sec)
            incident = now
            logger.warning("protocol %s stress %.1f over threshold; locked", summary.protocol_id, stress)
        out[summary.protocol_id] = SafetyProfile(
            cumulative_stress_score=stress,
            last_incident_timestamp=incident,
            safety_lock_until=lock_until,
            resonance_history=tuple(history),
        )
        return out

    def _phase_fields(self, tempo: float) -> Dict[str, object]:
        return {
            "phase": self._phase.phase,
            "phase_elapsed": self._phase.elapsed,
            "phase_duration": self._phase.duration(tempo),
            "cycle_count": self._phase.cycle_count,
        }

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------
    def _run_middleware(self, event: KernelEvent, before: RuntimeState, after: RuntimeState) -> None:
        for middleware in list(self._middleware):
            try:
                middleware(event, before, after, self._api)
            except Exception:
                logger.exception("middleware %r failed on %s", middleware, event.kind)

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            self._deliver(callback, self._state)

    def _deliver(self, callback: Subscriber, state: RuntimeState) -> None:
        try:
            callback(state)
        except Exception:
            logger.exception("subscriber %r failed", callback)


__all__ = ["KernelApi", "Middleware", "RuntimeKernel", "Subscriber"]
