# -*- coding: utf-8 -*-
"""Breath phase machine driven by tick time and the tempo scale."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..protocols import PHASE_ORDER, BreathProtocol, Phase, next_active_phase


def first_active_phase(protocol: BreathProtocol) -> Phase:
    for phase in PHASE_ORDER:
        if protocol.duration(phase) > 0.0:
            return phase
    return Phase.INHALE


@dataclass
class PhaseMachine:
    """Tracks the current phase, time within it and completed cycles.

    A cycle completes each time the machine wraps back to the start of the
    phase order; for every protocol with a non-zero inhale this is exactly
    when Inhale is re-entered.
    """

    protocol: Optional[BreathProtocol] = None
    phase: Phase = Phase.INHALE
    elapsed: float = 0.0
    cycle_count: int = 0

    def load(self, protocol: BreathProtocol) -> None:
        self.protocol = protocol
        self.phase = first_active_phase(protocol)
        self.elapsed = 0.0

    def restart(self) -> None:
        if self.protocol is not None:
            self.phase = first_active_phase(self.protocol)
        self.elapsed = 0.0
        self.cycle_count = 0

    def duration(self, tempo: float = 1.0) -> float:
        if self.protocol is None:
            return 0.0
        return self.protocol.duration(self.phase) * tempo

    def advance(self, dt: float, tempo: float = 1.0) -> int:
        """Advance by ``dt`` seconds; return the number of cycles completed."""
        if self.protocol is None or dt <= 0.0:
            return 0
        self.elapsed += dt
        completed = 0
        duration = self.duration(tempo)
        while duration > 0.0 and self.elapsed >= duration:
            self.elapsed -= duration
            nxt = next_active_phase(self.protocol, self.phase)
            if PHASE_ORDER.index(nxt) <= PHASE_ORDER.index(self.phase):
                self.cycle_count += 1
                completed += 1
            self.phase = nxt
            duration = self.duration(tempo)
        return completed


__all__ = ["PhaseMachine", "first_active_phase"]
