import pytest

from breathos.config import KernelCfg, SafetyCfg
from breathos.estimator.belief import BeliefState
from breathos.runtime.events import (
    AdjustTempo,
    Halt,
    LoadProtocol,
    Pause,
    SafetyInterdiction,
    StartSession,
)
from breathos.runtime.state import RuntimeState, RuntimeStatus
from breathos.safety.monitor import SafetyMonitor, Severity
from breathos.safety.properties import build_liveness_properties, build_safety_properties


def test_catalog_order() -> None:
    names = [p.name for p in build_safety_properties()]
    assert names == [
        "tempo_bounds",
        "safety_lock_immutable",
        "profile_lock_window",
        "tempo_rate_limit",
        "pattern_stability",
        "panic_halt",
        "phase_continuity",
    ]
    assert [p.name for p in build_liveness_properties()] == ["tempo_convergence", "stress_recovery"]


def test_out_of_range_tempo_is_clamped_by_shield() -> None:
    monitor = SafetyMonitor()
    result = monitor.check_event(AdjustTempo(timestamp=0.0, scale=5.0), RuntimeState())
    assert result.accepted and result.corrected
    assert result.event.scale == pytest.approx(1.4)
    assert "shielded" in result.event.reason
    assert result.violation is not None
    assert result.violation.property_name == "tempo_bounds"
    assert result.violation.severity is Severity.CRITICAL
    assert result.violation.corrective_action == "shielded"


def test_fast_tempo_change_is_rate_limited() -> None:
    monitor = SafetyMonitor()
    state = RuntimeState()
    assert monitor.check_event(AdjustTempo(timestamp=0.0, scale=1.0), state).accepted
    result = monitor.check_event(AdjustTempo(timestamp=1.0, scale=1.3), state)
    assert result.accepted and result.corrected
    assert result.event.scale == pytest.approx(1.1)
    assert result.violation.property_name == "tempo_rate_limit"


def test_simultaneous_tempo_change_holds_current_value() -> None:
    monitor = SafetyMonitor()
    state = RuntimeState()
    monitor.check_event(AdjustTempo(timestamp=2.0, scale=1.0), state)
    result = monitor.check_event(AdjustTempo(timestamp=2.0, scale=1.2), state)
    assert result.accepted
    assert result.event.scale == pytest.approx(1.0)


def test_start_rejected_in_safety_lock_leaves_trace_untouched() -> None:
    monitor = SafetyMonitor()
    locked = RuntimeState(status=RuntimeStatus.SAFETY_LOCK)
    for ts in (1.0, 2.0):
        result = monitor.check_event(StartSession(timestamp=ts), locked)
        assert not result.accepted
        assert result.violation.property_name == "safety_lock_immutable"
        assert result.violation.corrective_action == "rejected"
    assert monitor.trace() == []
    assert monitor.stats()["critical"] == 2


def test_panic_admits_only_halt_and_interdiction() -> None:
    monitor = SafetyMonitor()
    panicking = RuntimeState(
        status=RuntimeStatus.RUNNING,
        session_duration=20.0,
        belief=BeliefState(prediction_error=0.99),
    )
    assert not monitor.check_event(Pause(timestamp=1.0), panicking).accepted
    tempo = monitor.check_event(AdjustTempo(timestamp=1.0, scale=1.0), panicking)
    assert not tempo.accepted
    assert tempo.violation.property_name == "panic_halt"
    assert monitor.check_event(Halt(timestamp=1.0, reason="panic"), panicking).accepted
    assert monitor.check_event(SafetyInterdiction(timestamp=1.0), panicking).accepted


def test_protocol_switch_cooldown() -> None:
    monitor = SafetyMonitor()
    state = RuntimeState()
    assert monitor.check_event(LoadProtocol(timestamp=0.0, protocol_id="box"), state).accepted
    early = monitor.check_event(LoadProtocol(timestamp=10.0, protocol_id="calm"), state)
    assert not early.accepted
    assert early.violation.property_name == "pattern_stability"
    assert monitor.check_event(LoadProtocol(timestamp=61.0, protocol_id="calm"), state).accepted


def test_bounded_violation_and_trace_buffers() -> None:
    cfg = KernelCfg(safety=SafetyCfg(violation_capacity=5, trace_capacity=3))
    monitor = SafetyMonitor(cfg)
    locked = RuntimeState(status=RuntimeStatus.SAFETY_LOCK)
    for i in range(8):
        monitor.check_event(StartSession(timestamp=float(i)), locked)
    assert len(monitor.violations()) == 5
    assert monitor.violations()[-1].timestamp == 7.0

    for i in range(5):
        monitor.check_event(Pause(timestamp=float(10 + i)), RuntimeState())
    assert [e.timestamp for e in monitor.trace()] == [12.0, 13.0, 14.0]


def test_is_safe_and_clearing() -> None:
    monitor = SafetyMonitor()
    assert monitor.is_safe(RuntimeState())
    assert not monitor.is_safe(RuntimeState(tempo_scale=1.6))

    monitor.check_event(AdjustTempo(timestamp=0.0, scale=2.0), RuntimeState())
    monitor.check_event(Pause(timestamp=1.0), RuntimeState())
    assert monitor.stats()["total_violations"] == 1
    assert monitor.stats()["pending_next"] == 1
    assert monitor.stats()["recent"][0].to_dict()["property"] == "tempo_bounds"

    monitor.clear_violations()
    monitor.clear_pending()
    stats = monitor.stats()
    assert stats["total_violations"] == 0
    assert stats["pending_next"] == 0
    assert stats["pending_until"] == 0


def test_rate_limit_outlives_trace_eviction() -> None:
    monitor = SafetyMonitor(KernelCfg(safety=SafetyCfg(trace_capacity=3)))
    monitor.check_event(AdjustTempo(timestamp=0.0, scale=1.0), RuntimeState())
    for i in range(5):
        monitor.check_event(Pause(timestamp=0.1 * (i + 1)), RuntimeState())
    assert all(e.kind == "pause" for e in monitor.trace())
    assert monitor.last_seen()["adjust_tempo"] == 0.0

    result = monitor.check_event(AdjustTempo(timestamp=1.0, scale=1.4), RuntimeState())
    assert result.accepted and result.corrected
    assert result.event.scale == pytest.approx(1.1)
    assert monitor.last_seen()["adjust_tempo"] == 1.0


def test_rejected_event_is_not_last_seen() -> None:
    monitor = SafetyMonitor()
    monitor.check_event(StartSession(timestamp=1.0), RuntimeState(status=RuntimeStatus.SAFETY_LOCK))
    assert "start_session" not in monitor.last_seen()


def test_boot_arousal_counts_as_calm() -> None:
    monitor = SafetyMonitor()
    monitor.check_event(Pause(timestamp=0.0), RuntimeState())
    assert RuntimeState().belief.arousal == 0.5
    assert monitor.stats()["pending_until"] == 0
