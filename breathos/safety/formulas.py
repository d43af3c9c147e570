# -*- coding: utf-8 -*-
"""Temporal-logic formula model and atomic predicate evaluation.

Formulas form a small recursive tree: ``Always``, ``Eventually``, ``Next``
and ``Until`` own their sub-formulas, ``Atomic`` leaves hold one of the
predicate variants below. Predicates read the runtime state by attribute
and the triggering event through its ``kind``, ``timestamp`` and
``proposed_changes()``; nothing here imports the runtime package.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence, Tuple, Union


# ----------------------------------------------------------------------------
# Predicates
# ----------------------------------------------------------------------------
@dataclass(frozen=True)
class BoundCheck:
    """Prospective value of ``field`` lies within ``[lower, upper]``."""

    field: str
    lower: float
    upper: float


@dataclass(frozen=True)
class RateLimit:
    """Change of ``field`` per second since the last event of ``event_kind``."""

    field: str
    event_kind: str
    max_rate: float


@dataclass(frozen=True)
class ForbidWhileStatus:
    event_kind: str
    status: str


@dataclass(frozen=True)
class LockWindow:
    """``event_kind`` blocked while the active protocol's profile is locked."""

    event_kind: str


@dataclass(frozen=True)
class Cooldown:
    event_kind: str
    seconds: float


@dataclass(frozen=True)
class PanicHalt:
    """While prediction error is critical, only ``allowed_kinds`` may pass."""

    threshold: float
    min_session_sec: float
    allowed_kinds: Tuple[str, ...]
    status: str = "running"


@dataclass(frozen=True)
class PhaseReset:
    """After a ``trigger_kind`` event the phase timer must be near zero."""

    trigger_kind: str
    max_elapsed: float


@dataclass(frozen=True)
class SettlesNear:
    field: str
    target: float
    tolerance: float
    after_sec: float
    status: str = "running"


@dataclass(frozen=True)
class Below:
    """Dotted attribute path (e.g. ``belief.arousal``) below ``threshold``.

    Strict unless ``inclusive``.
    """

    path: str
    threshold: float
    inclusive: bool = False


Predicate = Union[
    BoundCheck,
    RateLimit,
    ForbidWhileStatus,
    LockWindow,
    Cooldown,
    PanicHalt,
    PhaseReset,
    SettlesNear,
    Below,
]


# ----------------------------------------------------------------------------
# Formulas
# ----------------------------------------------------------------------------
@dataclass(frozen=True)
class Atomic:
    name: str
    description: str
    predicate: Predicate


@dataclass(frozen=True)
class Always:
    name: str
    description: str
    sub: "Formula"


@dataclass(frozen=True)
class Eventually:
    name: str
    description: str
    sub: "Formula"
    bound: int


@dataclass(frozen=True)
class Next:
    name: str
    description: str
    sub: "Formula"


@dataclass(frozen=True)
class Until:
    name: str
    description: str
    left: "Formula"
    right: "Formula"
    bound: int


Formula = Union[Atomic, Always, Eventually, Next, Until]

RATE_TOLERANCE = 1e-9


def status_value(status: Any) -> str:
    return str(getattr(status, "value", status))


def _event_kind(event: Any) -> Optional[str]:
    return getattr(event, "kind", None) if event is not None else None


def _proposed(event: Any, field: str, default: float) -> float:
    if event is None:
        return default
    changes = event.proposed_changes()
    return float(changes.get(field, default))


def _last_stamp(trace: Sequence[Any], kind: str, last_seen: Optional[Mapping[str, float]]) -> Optional[float]:
    if last_seen is not None:
        stamp = last_seen.get(kind)
        return None if stamp is None else float(stamp)
    for past in reversed(trace):
        if getattr(past, "kind", None) == kind:
            return float(past.timestamp)
    return None


def resolve_path(state: Any, path: str) -> float:
    value = state
    for part in path.split("."):
        value = getattr(value, part)
    return float(value)


def evaluate_atomic(
    predicate: Predicate,
    state: Any,
    event: Any,
    trace: Sequence[Any],
    last_seen: Optional[Mapping[str, float]] = None,
) -> bool:
    """Evaluate one predicate against (state, event, trace).

    ``last_seen`` maps event kinds to their last accepted timestamp and, when
    given, replaces the trace scan for rate limits and cooldowns.
    """
    kind = _event_kind(event)

    if isinstance(predicate, BoundCheck):
        current = float(getattr(state, predicate.field))
        value = _proposed(event, predicate.field, current)
        return predicate.lower <= value <= predicate.upper

    if isinstance(predicate, RateLimit):
        if kind != predicate.event_kind:
            return True
        last = _last_stamp(trace, predicate.event_kind, last_seen)
        if last is None:
            return True
        current = float(getattr(state, predicate.field))
        delta = abs(_proposed(event, predicate.field, current) - current)
        dt = float(event.timestamp) - last
        if dt <= 0.0:
            return delta <= RATE_TOLERANCE
        return delta / dt <= predicate.max_rate + RATE_TOLERANCE

    if isinstance(predicate, ForbidWhileStatus):
        return not (kind == predicate.event_kind and status_value(state.status) == predicate.status)

    if isinstance(predicate, LockWindow):
        if kind != predicate.event_kind:
            return True
        registry = getattr(state, "safety_registry", None) or {}
        profile = registry.get(getattr(state, "protocol_id", None) or "")
        if profile is None:
            return True
        return float(event.timestamp) >= float(profile.safety_lock_until)

    if isinstance(predicate, Cooldown):
        if kind != predicate.event_kind:
            return True
        last = _last_stamp(trace, predicate.event_kind, last_seen)
        if last is None:
            return True
        return float(event.timestamp) - last >= predicate.seconds

    if isinstance(predicate, PanicHalt):
        panicking = (
            float(state.belief.prediction_error) > predicate.threshold
            and float(state.session_duration) > predicate.min_session_sec
            and status_value(state.status) == predicate.status
        )
        return not panicking or kind in predicate.allowed_kinds

    if isinstance(predicate, PhaseReset):
        if not trace or getattr(trace[-1], "kind", None) != predicate.trigger_kind:
            return True
        return float(state.phase_elapsed) < predicate.max_elapsed

    if isinstance(predicate, SettlesNear):
        if status_value(state.status) != predicate.status:
            return True
        if float(state.session_duration) <= predicate.after_sec:
            return True
        return abs(float(getattr(state, predicate.field)) - predicate.target) < predicate.tolerance

    if isinstance(predicate, Below):
        value = resolve_path(state, predicate.path)
        if predicate.inclusive:
            return value <= predicate.threshold
        return value < predicate.threshold

    raise TypeError(f"unknown predicate {predicate!r}")


__all__ = [
    "Always",
    "Atomic",
    "Below",
    "BoundCheck",
    "Cooldown",
    "Eventually",
    "ForbidWhileStatus",
    "Formula",
    "LockWindow",
    "Next",
    "PanicHalt",
    "PhaseReset",
    "Predicate",
    "RateLimit",
    "SettlesNear",
    "Until",
    "evaluate_atomic",
    "resolve_path",
    "status_value",
]
