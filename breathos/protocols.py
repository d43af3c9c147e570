# -*- coding: utf-8 -*-
"""Static registry of breathing protocols and the breath phase cycle."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple


class Phase(str, Enum):
    INHALE = "inhale"
    HOLD_IN = "hold_in"
    EXHALE = "exhale"
    HOLD_OUT = "hold_out"


PHASE_ORDER: Tuple[Phase, ...] = (Phase.INHALE, Phase.HOLD_IN, Phase.EXHALE, Phase.HOLD_OUT)


@dataclass(frozen=True)
class BreathProtocol:
    """One breathing pattern: phase timings (seconds) plus its autonomic effect."""

    id: str
    label: str
    tag: str
    description: str
    inhale: float
    hold_in: float
    exhale: float
    hold_out: float
    recommended_cycles: int
    arousal_impact: float

    def __post_init__(self) -> None:
        durations = (self.inhale, self.hold_in, self.exhale, self.hold_out)
        if any(d < 0.0 for d in durations):
            raise ValueError(f"protocol {self.id!r} has a negative phase duration")
        if not any(d > 0.0 for d in durations):
            raise ValueError(f"protocol {self.id!r} has no phase with positive duration")
        if not -1.0 <= self.arousal_impact <= 1.0:
            raise ValueError(f"protocol {self.id!r} arousal_impact must lie in [-1, 1]")

    def duration(self, phase: Phase) -> float:
        return float(getattr(self, phase.name.lower()))

    @property
    def cycle_seconds(self) -> float:
        return self.inhale + self.hold_in + self.exhale + self.hold_out

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "label": self.label,
            "tag": self.tag,
            "description": self.description,
            "inhale": float(self.inhale),
            "hold_in": float(self.hold_in),
            "exhale": float(self.exhale),
            "hold_out": float(self.hold_out),
            "recommended_cycles": int(self.recommended_cycles),
            "arousal_impact": float(self.arousal_impact),
        }


def _protocol(
    id: str,
    label: str,
    tag: str,
    description: str,
    timings: Tuple[float, float, float, float],
    cycles: int,
    impact: float,
) -> BreathProtocol:
    inhale, hold_in, exhale, hold_out = timings
    return BreathProtocol(
        id=id,
        label=label,
        tag=tag,
        description=description,
        inhale=inhale,
        hold_in=hold_in,
        exhale=exhale,
        hold_out=hold_out,
        recommended_cycles=cycles,
        arousal_impact=impact,
    )


_BUILTIN: Tuple[BreathProtocol, ...] = (
    # calming (parasympathetic)
    _protocol("4-7-8", "Relaxing Breath", "calm", "Classic 4-7-8 relaxation technique", (4.0, 7.0, 8.0, 0.0), 4, -0.8),
    _protocol("calm", "Calm Wave", "calm", "Gentle, extended exhale for everyday relaxation", (4.0, 0.0, 6.0, 0.0), 10, -0.5),
    _protocol("7-11", "7-11 Anti-Anxiety", "calm", "Long exhale for acute anxiety relief", (7.0, 0.0, 11.0, 0.0), 6, -0.9),
    _protocol("deep-relax", "Deep Relaxation", "calm", "Extended hold and exhale for deep parasympathetic activation", (4.0, 7.0, 10.0, 0.0), 5, -0.95),
    # focus (balanced)
    _protocol("box", "Box Breathing", "focus", "Four equal sides for focus under pressure", (4.0, 4.0, 4.0, 4.0), 10, 0.0),
    _protocol("coherence", "Heart Coherence", "focus", "5-second rhythm for HRV coherence", (5.0, 0.0, 5.0, 0.0), 12, -0.2),
    _protocol("triangle", "Triangle Breath", "focus", "Balanced three-phase pattern for meditation", (4.0, 4.0, 4.0, 0.0), 8, -0.1),
    _protocol("tactical", "Tactical Breathing", "focus", "Combat breathing for high-stress performance", (4.0, 4.0, 4.0, 4.0), 6, 0.1),
    # energizing (sympathetic)
    _protocol("awake", "Energizing Breath", "energy", "Quick inhale, short exhale for alertness", (2.0, 0.0, 2.0, 0.0), 15, 0.6),
    # advanced
    _protocol("buteyko", "Buteyko Method", "advanced", "Reduced breathing with CO2 tolerance training", (3.0, 0.0, 3.0, 5.0), 8, -0.3),
    _protocol("wim-hof", "Wim Hof Method", "advanced", "Controlled hyperventilation, preparation phase", (2.0, 0.0, 2.0, 0.0), 30, 0.8),
)

PROTOCOLS: Dict[str, BreathProtocol] = {p.id: p for p in _BUILTIN}


def get_protocol(protocol_id: str) -> Optional[BreathProtocol]:
    """Return the protocol registered under ``protocol_id`` or ``None``."""
    return PROTOCOLS.get(protocol_id)


def protocol_ids(tag: str | None = None) -> Iterable[str]:
    return [p.id for p in _BUILTIN if tag is None or p.tag == tag]


def next_active_phase(protocol: BreathProtocol, phase: Phase) -> Phase:
    """Next phase in the cycle, skipping zero-duration phases."""
    idx = PHASE_ORDER.index(phase)
    for step in range(1, len(PHASE_ORDER) + 1):
        candidate = PHASE_ORDER[(idx + step) % len(PHASE_ORDER)]
        if protocol.duration(candidate) > 0.0:
            return candidate
    return phase


__all__ = [
    "Phase",
    "PHASE_ORDER",
    "BreathProtocol",
    "PROTOCOLS",
    "get_protocol",
    "protocol_ids",
    "next_active_phase",
]
