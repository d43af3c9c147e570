from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)


@dataclass
class ClockCfg:
    control_hz: float = field(default=10.0)
    max_steps_per_frame: int = field(default=3)
    max_frame_dt: float | None = field(default=None)


@dataclass
class VitalsCfg:
    hr_hard_min: float = field(default=30.0)
    hr_hard_max: float = field(default=220.0)
    hr_min_confidence: float = field(default=0.3)
    rr_min: float = field(default=4.0)
    rr_max: float = field(default=40.0)
    stress_index_max: float = field(default=2000.0)


@dataclass
class TempoCfg:
    min: float = field(default=0.8)
    max: float = field(default=1.4)
    max_rate_per_sec: float = field(default=0.1)
    neutral: float = field(default=1.0)
    settle_tolerance: float = field(default=0.1)


@dataclass
class SafetyCfg:
    min_session_sec_before_emergency: float = field(default=10.0)
    panic_prediction_error: float = field(default=0.95)
    pattern_switch_cooldown_sec: float = field(default=60.0)
    safety_lock_duration_sec: float = field(default=24 * 60 * 60.0)
    stress_score_lock_threshold: float = field(default=150.0)
    phase_reset_max_elapsed: float = field(default=0.1)
    tempo_settle_after_sec: float = field(default=60.0)
    tempo_convergence_bound: int = field(default=100)
    stress_recovery_bound: int = field(default=50)
    arousal_ceiling: float = field(default=0.9)
    arousal_calm: float = field(default=0.5)
    trace_capacity: int = field(default=100)
    violation_capacity: int = field(default=100)
    resonance_history_size: int = field(default=20)


@dataclass
class EstimatorCfg:
    alpha: float = field(default=1e-3)
    beta: float = field(default=2.0)
    kappa: float = field(default=0.0)
    process_noise: float = field(default=0.01)
    r_hr: float = field(default=0.15)
    r_hrv: float = field(default=0.25)
    r_resp: float = field(default=0.20)
    r_valence: float = field(default=0.30)
    outlier_gate: float = field(default=3.0)
    min_covariance: float = field(default=1e-10)
    initial_covariance: float = field(default=0.2)
    fallback_covariance: float = field(default=0.5)
    max_cholesky_resets: int = field(default=3)


@dataclass
class KernelCfg:
    clocks: ClockCfg = field(default_factory=ClockCfg)
    vitals: VitalsCfg = field(default_factory=VitalsCfg)
    tempo: TempoCfg = field(default_factory=TempoCfg)
    safety: SafetyCfg = field(default_factory=SafetyCfg)
    estimator: EstimatorCfg = field(default_factory=EstimatorCfg)
    event_log_capacity: int = field(default=1000)


def load_kernel_cfg(path: str | Path = "config/kernel.yaml") -> KernelCfg:
    cfg_path = Path(path)
    if not cfg_path.exists():
        return KernelCfg()
    try:
        payload = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError):
        logger.warning("kernel config unreadable at %s, using defaults", cfg_path, exc_info=True)
        return KernelCfg()
    if not isinstance(payload, dict):
        logger.warning("kernel config at %s is not a mapping, using defaults", cfg_path)
        return KernelCfg()
    return KernelCfg(
        clocks=_merge_dataclass(ClockCfg(), payload.get("clocks", {})),
        vitals=_merge_dataclass(VitalsCfg(), payload.get("vitals", {})),
        tempo=_merge_dataclass(TempoCfg(), payload.get("tempo", {})),
        safety=_merge_dataclass(SafetyCfg(), payload.get("safety", {})),
        estimator=_merge_dataclass(EstimatorCfg(), payload.get("estimator", {})),
        event_log_capacity=int(payload.get("event_log_capacity", 1000)),
    )


def _merge_dataclass(instance, overrides: dict[str, Any] | None):
    data = instance.__dict__.copy()
    if not isinstance(overrides, dict):
        return instance
    for key, value in overrides.items():
        if key not in data:
            continue
        data[key] = value
    return instance.__class__(**data)


__all__ = [
    "load_kernel_cfg",
    "KernelCfg",
    "ClockCfg",
    "VitalsCfg",
    "TempoCfg",
    "SafetyCfg",
    "EstimatorCfg",
]
