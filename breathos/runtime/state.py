# -*- coding: utf-8 -*-
"""Immutable runtime state published by the kernel."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from ..estimator.belief import BeliefState
from ..estimator.observation import Observation
from ..protocols import Phase


class RuntimeStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    HALTED = "halted"
    SAFETY_LOCK = "safety_lock"


@dataclass(frozen=True)
class SafetyProfile:
    """Per-protocol safety record persisted across sessions."""

    cumulative_stress_score: float = 0.0
    last_incident_timestamp: float = 0.0
    safety_lock_until: float = 0.0
    resonance_history: Tuple[float, ...] = ()

    def is_locked(self, now: float) -> bool:
        return now < self.safety_lock_until

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cumulative_stress_score": float(self.cumulative_stress_score),
            "last_incident_timestamp": float(self.last_incident_timestamp),
            "safety_lock_until": float(self.safety_lock_until),
            "resonance_history": [float(v) for v in self.resonance_history],
        }

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "SafetyProfile":
        history = payload.get("resonance_history") or ()
        if isinstance(history, (str, bytes)) or not hasattr(history, "__iter__"):
            raise ValueError("resonance_history must be a sequence of numbers")
        return cls(
            cumulative_stress_score=float(payload.get("cumulative_stress_score", 0.0)),
            last_incident_timestamp=float(payload.get("last_incident_timestamp", 0.0)),
            safety_lock_until=float(payload.get("safety_lock_until", 0.0)),
            resonance_history=tuple(float(v) for v in history),
        )


@dataclass(frozen=True)
class SessionSummary:
    protocol_id: Optional[str]
    duration: float
    cycles_completed: int
    average_heart_rate: Optional[float]
    average_rhythm_alignment: float
    session_stress: float
    final_belief: BeliefState

    def to_dict(self) -> Dict[str, Any]:
        return {
            "protocol_id": self.protocol_id,
            "duration": float(self.duration),
            "cycles_completed": int(self.cycles_completed),
            "average_heart_rate": self.average_heart_rate,
            "average_rhythm_alignment": float(self.average_rhythm_alignment),
            "session_stress": float(self.session_stress),
            "final_belief": self.final_belief.to_dict(),
        }


@dataclass(frozen=True)
class RuntimeState:
    """Snapshot of the kernel; replaced wholesale on every accepted change."""

    status: RuntimeStatus = RuntimeStatus.IDLE
    protocol_id: Optional[str] = None
    tempo_scale: float = 1.0
    phase: Phase = Phase.INHALE
    phase_elapsed: float = 0.0
    phase_duration: float = 0.0
    cycle_count: int = 0
    session_duration: float = 0.0
    belief: BeliefState = field(default_factory=BeliefState)
    safety_registry: Mapping[str, SafetyProfile] = field(default_factory=dict)
    last_observation: Optional[Observation] = None
    ai_active: bool = False
    ai_status: str = "disconnected"
    last_ai_message: Optional[str] = None
    last_ai_intervention: Optional[str] = None
    start_belief: Optional[BeliefState] = None
    last_session: Optional[SessionSummary] = None
    boot_timestamp: float = 0.0
    last_update_timestamp: float = 0.0

    def evolve(self, **changes: Any) -> "RuntimeState":
        return replace(self, **changes)

    @property
    def active_profile(self) -> Optional[SafetyProfile]:
        if self.protocol_id is None:
            return None
        return self.safety_registry.get(self.protocol_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "protocol_id": self.protocol_id,
            "tempo_scale": float(self.tempo_scale),
            "phase": self.phase.value,
            "phase_elapsed": float(self.phase_elapsed),
            "phase_duration": float(self.phase_duration),
            "cycle_count": int(self.cycle_count),
            "session_duration": float(self.session_duration),
            "belief": self.belief.to_dict(),
            "safety_registry": {k: v.to_dict() for k, v in self.safety_registry.items()},
            "ai_active": bool(self.ai_active),
            "ai_status": self.ai_status,
            "last_ai_message": self.last_ai_message,
            "last_ai_intervention": self.last_ai_intervention,
            "last_session": self.last_session.to_dict() if self.last_session else None,
            "boot_timestamp": float(self.boot_timestamp),
            "last_update_timestamp": float(self.last_update_timestamp),
        }


__all__ = ["RuntimeState", "RuntimeStatus", "SafetyProfile", "SessionSummary"]
