from types import SimpleNamespace

from breathos.estimator.belief import BeliefState
from breathos.runtime.events import AdjustTempo, CycleComplete, Halt, LoadProtocol, Pause, StartSession
from breathos.runtime.state import RuntimeStatus, SafetyProfile
from breathos.safety.formulas import (
    Always,
    Atomic,
    Below,
    BoundCheck,
    Cooldown,
    Eventually,
    LockWindow,
    Next,
    PanicHalt,
    PhaseReset,
    RateLimit,
    SettlesNear,
    Until,
    evaluate_atomic,
)
from breathos.safety.monitor import SafetyMonitor, Severity


def _state(**overrides):
    base = dict(
        status=RuntimeStatus.RUNNING,
        protocol_id="box",
        tempo_scale=1.0,
        session_duration=0.0,
        phase_elapsed=0.0,
        belief=BeliefState(),
        safety_registry={},
    )
    base.update(overrides)
    return SimpleNamespace(**base)


def test_bound_check_uses_prospective_value() -> None:
    pred = BoundCheck("tempo_scale", 0.8, 1.4)
    state = _state()
    assert evaluate_atomic(pred, state, AdjustTempo(timestamp=0.0, scale=2.0), ()) is False
    assert evaluate_atomic(pred, state, AdjustTempo(timestamp=0.0, scale=1.2), ()) is True
    assert evaluate_atomic(pred, state, Pause(timestamp=0.0), ()) is True
    assert evaluate_atomic(pred, _state(tempo_scale=1.6), Pause(timestamp=0.0), ()) is False


def test_rate_limit_against_last_adjustment() -> None:
    pred = RateLimit("tempo_scale", "adjust_tempo", 0.1)
    state = _state()
    trace = (AdjustTempo(timestamp=0.0, scale=1.0),)
    assert evaluate_atomic(pred, state, AdjustTempo(timestamp=1.0, scale=1.05), trace) is True
    assert evaluate_atomic(pred, state, AdjustTempo(timestamp=1.0, scale=1.3), trace) is False
    assert evaluate_atomic(pred, state, AdjustTempo(timestamp=0.0, scale=1.01), trace) is False
    assert evaluate_atomic(pred, state, AdjustTempo(timestamp=0.0, scale=1.0), trace) is True
    assert evaluate_atomic(pred, state, AdjustTempo(timestamp=1.0, scale=1.3), ()) is True


def test_cooldown_between_protocol_loads() -> None:
    pred = Cooldown("load_protocol", 60.0)
    trace = (LoadProtocol(timestamp=0.0, protocol_id="box"),)
    assert evaluate_atomic(pred, _state(), LoadProtocol(timestamp=30.0, protocol_id="calm"), trace) is False
    assert evaluate_atomic(pred, _state(), LoadProtocol(timestamp=60.0, protocol_id="calm"), trace) is True


def test_lock_window_reads_active_profile() -> None:
    pred = LockWindow("start_session")
    state = _state(safety_registry={"box": SafetyProfile(safety_lock_until=100.0)})
    assert evaluate_atomic(pred, state, StartSession(timestamp=50.0), ()) is False
    assert evaluate_atomic(pred, state, StartSession(timestamp=100.0), ()) is True
    assert evaluate_atomic(pred, _state(protocol_id="calm", safety_registry=state.safety_registry), StartSession(timestamp=50.0), ()) is True


def test_panic_halt_only_admits_halt() -> None:
    pred = PanicHalt(threshold=0.95, min_session_sec=10.0, allowed_kinds=("halt", "safety_interdiction"))
    panicking = _state(session_duration=20.0, belief=BeliefState(prediction_error=0.99))
    assert evaluate_atomic(pred, panicking, AdjustTempo(timestamp=0.0, scale=1.0), ()) is False
    assert evaluate_atomic(pred, panicking, Halt(timestamp=0.0), ()) is True
    early = _state(session_duration=5.0, belief=BeliefState(prediction_error=0.99))
    assert evaluate_atomic(pred, early, Pause(timestamp=0.0), ()) is True


def test_phase_reset_after_cycle_complete() -> None:
    pred = PhaseReset("cycle_complete", 0.1)
    after_cycle = (CycleComplete(timestamp=1.0, cycle=1),)
    assert evaluate_atomic(pred, _state(phase_elapsed=0.5), Pause(timestamp=2.0), after_cycle) is False
    assert evaluate_atomic(pred, _state(phase_elapsed=0.05), Pause(timestamp=2.0), after_cycle) is True
    assert evaluate_atomic(pred, _state(phase_elapsed=0.5), Pause(timestamp=2.0), (Pause(timestamp=1.0),)) is True


def test_settles_near_and_below() -> None:
    settles = SettlesNear("tempo_scale", 1.0, 0.1, 60.0)
    assert evaluate_atomic(settles, _state(tempo_scale=1.3, session_duration=30.0), None, ()) is True
    assert evaluate_atomic(settles, _state(tempo_scale=1.3, session_duration=90.0), None, ()) is False
    assert evaluate_atomic(settles, _state(tempo_scale=1.05, session_duration=90.0), None, ()) is True
    below = Below("belief.arousal", 0.5)
    assert evaluate_atomic(below, _state(belief=BeliefState(arousal=0.4)), None, ()) is True
    assert evaluate_atomic(below, _state(belief=BeliefState(arousal=0.5)), None, ()) is False


def test_next_obligation_is_checked_one_event_later() -> None:
    prop = Always("phase_continuity", "", Next("next_reset", "phase reset", Atomic("reset", "", PhaseReset("cycle_complete", 0.1))))
    monitor = SafetyMonitor(safety_properties=[prop], liveness_properties=[])

    first = monitor.check_event(CycleComplete(timestamp=1.0, cycle=1), _state(phase_elapsed=0.0))
    assert first.accepted
    assert monitor.stats()["pending_next"] == 1

    second = monitor.check_event(Pause(timestamp=2.0), _state(phase_elapsed=0.5))
    assert second.accepted
    warnings = [v for v in monitor.violations() if v.severity is Severity.WARNING]
    assert [v.property_name for v in warnings] == ["X(next_reset)"]


def _until_monitor(bound: int) -> SafetyMonitor:
    prop = Until(
        "recovery",
        "",
        Atomic("not_extreme", "not extreme", Below("belief.arousal", 0.9)),
        Atomic("calm", "calm", Below("belief.arousal", 0.5)),
        bound,
    )
    return SafetyMonitor(safety_properties=[], liveness_properties=[prop])


def test_until_bound_exceeded_warns() -> None:
    monitor = _until_monitor(bound=2)
    state = _state(belief=BeliefState(arousal=0.7))
    for i in range(3):
        monitor.check_event(Pause(timestamp=float(i)), state)
    assert monitor.stats()["warnings"] == 0
    assert monitor.stats()["pending_until"] == 1
    monitor.check_event(Pause(timestamp=3.0), state)
    assert monitor.stats()["warnings"] == 1


def test_until_satisfied_clears_obligation() -> None:
    monitor = _until_monitor(bound=2)
    monitor.check_event(Pause(timestamp=0.0), _state(belief=BeliefState(arousal=0.7)))
    assert monitor.stats()["pending_until"] == 1
    monitor.check_event(Pause(timestamp=1.0), _state(belief=BeliefState(arousal=0.3)))
    assert monitor.stats()["pending_until"] == 0
    assert monitor.stats()["warnings"] == 0


def test_until_left_failure_warns() -> None:
    monitor = _until_monitor(bound=10)
    monitor.check_event(Pause(timestamp=0.0), _state(belief=BeliefState(arousal=0.7)))
    result = monitor.check_event(Pause(timestamp=1.0), _state(belief=BeliefState(arousal=0.95)))
    assert result.accepted
    assert any(v.property_name == "recovery" for v in monitor.violations())


def test_eventually_warns_once_after_bound() -> None:
    prop = Eventually("settle", "tempo settles", Atomic("slow", "", Below("tempo_scale", 0.5)), 2)
    monitor = SafetyMonitor(safety_properties=[], liveness_properties=[prop])
    state = _state()
    for i in range(2):
        assert monitor.check_event(Pause(timestamp=float(i)), state).accepted
    assert monitor.stats()["warnings"] == 0
    for i in range(2, 6):
        assert monitor.check_event(Pause(timestamp=float(i)), state).accepted
    assert monitor.stats()["warnings"] == 1


def test_inclusive_below_admits_the_threshold() -> None:
    calm = Below("belief.arousal", 0.5, inclusive=True)
    assert evaluate_atomic(calm, _state(belief=BeliefState(arousal=0.5)), None, ()) is True
    assert evaluate_atomic(calm, _state(belief=BeliefState(arousal=0.51)), None, ()) is False


def test_last_seen_stamps_outlive_the_trace() -> None:
    rate = RateLimit("tempo_scale", "adjust_tempo", 0.1)
    seen = {"adjust_tempo": 0.0, "load_protocol": 0.0}
    assert evaluate_atomic(rate, _state(), AdjustTempo(timestamp=1.0, scale=1.3), (), seen) is False
    assert evaluate_atomic(rate, _state(), AdjustTempo(timestamp=1.0, scale=1.05), (), seen) is True

    cooldown = Cooldown("load_protocol", 60.0)
    assert evaluate_atomic(cooldown, _state(), LoadProtocol(timestamp=30.0, protocol_id="calm"), (), seen) is False
    assert evaluate_atomic(cooldown, _state(), LoadProtocol(timestamp=30.0, protocol_id="calm"), (), {}) is True
