# -*- coding: utf-8 -*-
"""Safety and liveness property catalogs built from kernel configuration."""

from __future__ import annotations

from typing import Optional, Tuple

from ..config import KernelCfg
from .formulas import (
    Always,
    Atomic,
    Below,
    BoundCheck,
    Cooldown,
    Eventually,
    ForbidWhileStatus,
    Formula,
    LockWindow,
    Next,
    PanicHalt,
    PhaseReset,
    RateLimit,
    SettlesNear,
    Until,
)


def build_safety_properties(cfg: Optional[KernelCfg] = None) -> Tuple[Formula, ...]:
    """Hard properties in gate order; a failure shields or rejects the event."""
    cfg = cfg or KernelCfg()
    tempo = cfg.tempo
    safety = cfg.safety
    return (
        Always(
            "tempo_bounds",
            f"Tempo must always stay within [{tempo.min}, {tempo.max}]",
            Atomic("tempo_in_bounds", "prospective tempo within hard range", BoundCheck("tempo_scale", tempo.min, tempo.max)),
        ),
        Always(
            "safety_lock_immutable",
            "Once in safety lock, no session may start",
            Atomic("no_start_when_locked", "start blocked in safety lock", ForbidWhileStatus("start_session", "safety_lock")),
        ),
        Always(
            "profile_lock_window",
            "No session start before the protocol's lock expires",
            Atomic("lock_window_elapsed", "start blocked until lock_until", LockWindow("start_session")),
        ),
        Always(
            "tempo_rate_limit",
            f"Tempo cannot change faster than {tempo.max_rate_per_sec}/sec",
            Atomic("tempo_rate", "tempo rate since last adjustment", RateLimit("tempo_scale", "adjust_tempo", tempo.max_rate_per_sec)),
        ),
        Always(
            "pattern_stability",
            f"Protocol cannot change more than once every {safety.pattern_switch_cooldown_sec:g} seconds",
            Atomic("pattern_cooldown", "time since last protocol load", Cooldown("load_protocol", safety.pattern_switch_cooldown_sec)),
        ),
        Always(
            "panic_halt",
            "High prediction error must be answered by a halt",
            Atomic(
                "halt_on_panic",
                "only halt or interdiction while panicking",
                PanicHalt(
                    threshold=safety.panic_prediction_error,
                    min_session_sec=safety.min_session_sec_before_emergency,
                    allowed_kinds=("halt", "safety_interdiction"),
                ),
            ),
        ),
        Always(
            "phase_continuity",
            "After a completed cycle the phase timer restarts",
            Next(
                "next_phase_reset",
                "phase timer near zero after cycle completion",
                Atomic("phase_reset", "phase elapsed near zero", PhaseReset("cycle_complete", safety.phase_reset_max_elapsed)),
            ),
        ),
    )


def build_liveness_properties(cfg: Optional[KernelCfg] = None) -> Tuple[Formula, ...]:
    """Advisory properties; failures are recorded as warnings only."""
    cfg = cfg or KernelCfg()
    tempo = cfg.tempo
    safety = cfg.safety
    return (
        Eventually(
            "tempo_convergence",
            f"Tempo should eventually settle near {tempo.neutral}",
            Atomic(
                "tempo_near_neutral",
                "tempo close to neutral",
                SettlesNear("tempo_scale", tempo.neutral, tempo.settle_tolerance, safety.tempo_settle_after_sec),
            ),
            safety.tempo_convergence_bound,
        ),
        Until(
            "stress_recovery",
            "High arousal must eventually lead to a calmer state",
            Atomic("arousal_not_extreme", "arousal below ceiling", Below("belief.arousal", safety.arousal_ceiling)),
            Atomic(
                "calm_achieved",
                "arousal at or below calm level",
                Below("belief.arousal", safety.arousal_calm, inclusive=True),
            ),
            safety.stress_recovery_bound,
        ),
    )


__all__ = ["build_safety_properties", "build_liveness_properties"]
