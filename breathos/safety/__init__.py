"""Temporal-logic safety monitor and shield for kernel events."""

from .formulas import Always, Atomic, Eventually, Next, Until, evaluate_atomic  # noqa: F401
from .monitor import GateResult, SafetyMonitor, SafetyViolation, Severity  # noqa: F401
from .properties import build_liveness_properties, build_safety_properties  # noqa: F401
