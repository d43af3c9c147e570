# -*- coding: utf-8 -*-
"""Fixed-rate tick driver with a per-frame catch-up cap."""

from __future__ import annotations

import logging
import math
from typing import Callable, Optional

from ..config import ClockCfg
from ..estimator.observation import Observation
from .kernel import RuntimeKernel

logger = logging.getLogger(__name__)

ObservationSource = Callable[[float, float], Optional[Observation]]


class FixedStepDriver:
    """Fold wall-clock time into ticks of exactly ``1 / rate_hz`` seconds.

    At most ``max_steps`` ticks run per :meth:`advance` call; time beyond the
    cap stays in the accumulator for the next call. ``observation_source`` is
    called with ``(logical_time, dt)`` once per tick.
    """

    def __init__(
        self,
        kernel: RuntimeKernel,
        *,
        rate_hz: float = 10.0,
        max_steps: int = 3,
        observation_source: Optional[ObservationSource] = None,
        max_frame_dt: Optional[float] = None,
        start_time: float = 0.0,
    ) -> None:
        if rate_hz <= 0.0 or not math.isfinite(rate_hz):
            raise ValueError("rate_hz must be a positive finite number")
        if max_steps < 1:
            raise ValueError("max_steps must be at least 1")
        self.kernel = kernel
        self.step = 1.0 / float(rate_hz)
        self.max_steps = int(max_steps)
        self.max_frame_dt = max_frame_dt
        self.observation_source = observation_source
        self.time = float(start_time)
        self._accumulator = 0.0
        self.ticks = 0

    @classmethod
    def from_cfg(
        cls,
        kernel: RuntimeKernel,
        cfg: Optional[ClockCfg] = None,
        observation_source: Optional[ObservationSource] = None,
    ) -> "FixedStepDriver":
        cfg = cfg or kernel.cfg.clocks
        return cls(
            kernel,
            rate_hz=cfg.control_hz,
            max_steps=cfg.max_steps_per_frame,
            observation_source=observation_source,
            max_frame_dt=cfg.max_frame_dt,
        )

    @property
    def pending(self) -> float:
        return self._accumulator

    def advance(self, elapsed: float) -> int:
        """Accumulate ``elapsed`` seconds and run due ticks; returns ticks run."""
        frame = float(elapsed)
        if not math.isfinite(frame) or frame < 0.0:
            logger.warning("ignoring invalid frame time %r", elapsed)
            return 0
        if self.max_frame_dt is not None:
            frame = min(frame, float(self.max_frame_dt))
        self._accumulator += frame

        ran = 0
        # small epsilon keeps 0.1 + 0.2 style sums from losing a tick
        while self._accumulator + 1e-9 >= self.step and ran < self.max_steps:
            self._accumulator = max(0.0, self._accumulator - self.step)
            self.time += self.step
            observation = self.observation_source(self.time, self.step) if self.observation_source else None
            self.kernel.tick(self.step, observation)
            ran += 1
        self.ticks += ran
        return ran


__all__ = ["FixedStepDriver", "ObservationSource"]
