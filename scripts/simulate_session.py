#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""Drive a headless breathing session with synthetic vitals.

Usage examples:
  python scripts/simulate_session.py --protocol 4-7-8 --seconds 60
  python scripts/simulate_session.py --protocol box --tempo 1.2 --registry state/safety.json
  python scripts/simulate_session.py --panic-at 30
"""

from __future__ import annotations

import argparse
import json
import logging
import math
import random
from pathlib import Path
from typing import Optional

import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from breathos.config import load_kernel_cfg
from breathos.estimator.observation import Observation
from breathos.runtime.driver import FixedStepDriver
from breathos.runtime.events import (
    AdjustTempo,
    BeliefUpdate,
    Halt,
    LoadProtocol,
    LoadSafetyRegistry,
    SafetyInterdiction,
    StartSession,
)
from breathos.runtime.kernel import RuntimeKernel
from breathos.runtime.registry import load_safety_registry, registry_persistence


def _synthetic_vitals(rng: random.Random, *, calm_after: float = 45.0):
    """Heart rate drifting from 85 toward 62 bpm with breathing-locked ripple."""

    def _source(now: float, dt: float) -> Observation:
        progress = min(1.0, now / calm_after)
        hr = 85.0 - 23.0 * progress + 3.0 * math.sin(2.0 * math.pi * now / 10.0) + rng.gauss(0.0, 1.0)
        rr = 14.0 - 6.0 * progress + rng.gauss(0.0, 0.3)
        return Observation(
            timestamp=now,
            delta_time=dt,
            heart_rate=hr,
            hr_confidence=0.95,
            respiration_rate=rr,
            stress_index=max(0.0, 240.0 - 140.0 * progress + rng.gauss(0.0, 10.0)),
        )

    return _source


def main(argv: Optional[list[str]] = None) -> int:
    ap = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    ap.add_argument("--config", default="config/kernel.yaml")
    ap.add_argument("--protocol", default="4-7-8")
    ap.add_argument("--seconds", type=float, default=60.0)
    ap.add_argument("--frame", type=float, default=1.0 / 30.0, help="simulated frame time in seconds")
    ap.add_argument("--tempo", type=float, default=None, help="request a tempo change 10s into the session")
    ap.add_argument("--panic-at", type=float, default=None, help="force a panic belief and interdict at this time")
    ap.add_argument("--registry", default=None, help="JSON safety registry to load and persist")
    ap.add_argument("--seed", type=int, default=7)
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    cfg = load_kernel_cfg(args.config)
    kernel = RuntimeKernel(cfg)
    if args.registry:
        kernel.dispatch(LoadSafetyRegistry(timestamp=0.0, registry=load_safety_registry(args.registry)))
        kernel.use(registry_persistence(args.registry))

    driver = FixedStepDriver.from_cfg(kernel, observation_source=_synthetic_vitals(random.Random(args.seed)))
    kernel.dispatch(LoadProtocol(timestamp=0.0, protocol_id=args.protocol))
    kernel.dispatch(StartSession(timestamp=0.0))

    tempo_sent = False
    panic_sent = False
    while driver.time < args.seconds:
        driver.advance(args.frame)
        now = driver.time
        if args.tempo is not None and not tempo_sent and now >= 10.0:
            kernel.dispatch(AdjustTempo(timestamp=now, scale=args.tempo, reason="simulation"))
            tempo_sent = True
        if args.panic_at is not None and not panic_sent and now >= args.panic_at:
            belief = kernel.get_state().belief.with_overrides(prediction_error=0.99, arousal=1.0)
            kernel.dispatch(BeliefUpdate(timestamp=now, belief=belief))
            kernel.dispatch(SafetyInterdiction(timestamp=now, risk_level=0.99))
            panic_sent = True

    kernel.dispatch(Halt(timestamp=driver.time, reason="simulation finished"))
    state = kernel.get_state()
    report = {
        "status": state.status.value,
        "ticks": driver.ticks,
        "cycles": state.cycle_count,
        "tempo_scale": state.tempo_scale,
        "belief": state.belief.to_dict(),
        "last_session": state.last_session.to_dict() if state.last_session else None,
        "violations": [v.to_dict() for v in kernel.get_violations()],
    }
    print(json.dumps(report, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
