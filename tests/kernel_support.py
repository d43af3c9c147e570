"""Shared helpers for driving a kernel in tests."""

from __future__ import annotations

from typing import List, Optional

from breathos.estimator.observation import Observation
from breathos.runtime.kernel import RuntimeKernel


def vitals(t: float, dt: float = 0.1, hr: Optional[float] = 65.0, confidence: float = 0.95, **extra) -> Observation:
    return Observation(
        timestamp=t,
        delta_time=dt,
        heart_rate=hr,
        hr_confidence=confidence if hr is not None else None,
        **extra,
    )


def run_ticks(kernel: RuntimeKernel, count: int, *, dt: float = 0.1, hr: Optional[float] = 65.0) -> List[float]:
    """Tick ``count`` times with a steady heart rate; returns the timestamps used."""
    stamps: List[float] = []
    t = kernel.get_state().last_update_timestamp
    for _ in range(count):
        t += dt
        kernel.tick(dt, vitals(t, dt, hr=hr))
        stamps.append(t)
    return stamps
