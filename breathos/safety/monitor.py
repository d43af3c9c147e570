# -*- coding: utf-8 -*-
"""Runtime verification gate with a corrective shield.

Every state-changing event passes :meth:`SafetyMonitor.check_event` before
the kernel applies it. Hard properties are checked in catalog order; the
first failure asks the event to ``shield`` itself and either substitutes the
corrected event or rejects the original. Next/Until obligations and liveness
properties only ever produce warnings.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple

from ..config import KernelCfg
from .formulas import Always, Atomic, Eventually, Formula, Next, Until, evaluate_atomic
from .properties import build_liveness_properties, build_safety_properties

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"


@dataclass(frozen=True)
class SafetyViolation:
    timestamp: float
    property_name: str
    description: str
    severity: Severity
    state: Any = None
    event: Any = None
    corrective_action: str = ""

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "timestamp": float(self.timestamp),
            "property": self.property_name,
            "description": self.description,
            "severity": self.severity.value,
            "corrective_action": self.corrective_action,
        }
        if self.event is not None and hasattr(self.event, "to_payload"):
            payload["event"] = self.event.to_payload()
        return payload


@dataclass(frozen=True)
class GateResult:
    """Outcome of gating one event."""

    accepted: bool
    event: Any
    corrected: bool = False
    violation: Optional[SafetyViolation] = None


@dataclass
class _PendingNext:
    formula: Formula
    origin: str
    deadline: int = 1


@dataclass
class _PendingUntil:
    formula: Until
    step: int = 0
    created_at: float = field(default=0.0)


class SafetyMonitor:
    """Gate kernel events against temporal safety properties."""

    def __init__(
        self,
        cfg: Optional[KernelCfg] = None,
        *,
        safety_properties: Optional[Sequence[Formula]] = None,
        liveness_properties: Optional[Sequence[Formula]] = None,
    ) -> None:
        self.cfg = cfg or KernelCfg()
        self.safety_properties: Tuple[Formula, ...] = tuple(
            safety_properties if safety_properties is not None else build_safety_properties(self.cfg)
        )
        self.liveness_properties: Tuple[Formula, ...] = tuple(
            liveness_properties if liveness_properties is not None else build_liveness_properties(self.cfg)
        )
        self._violations: Deque[SafetyViolation] = deque(maxlen=int(self.cfg.safety.violation_capacity))
        self._trace: Deque[Any] = deque(maxlen=int(self.cfg.safety.trace_capacity))
        self._pending_next: List[_PendingNext] = []
        self._pending_until: Dict[str, _PendingUntil] = {}
        self._eventually_streaks: Dict[str, int] = {}
        self._last_seen: Dict[str, float] = {}

    # ------------------------------------------------------------------
    # Gate
    # ------------------------------------------------------------------
    def check_event(self, event: Any, state: Any) -> GateResult:
        self._resolve_pending(state, event)

        candidate = event
        corrected = False
        violation: Optional[SafetyViolation] = None
        if not getattr(event, "always_admitted", False):
            for prop in self.safety_properties:
                if self._holds(prop, state, candidate, register=True):
                    continue
                shielded = candidate.shield(state, dict(self._last_seen), self.cfg.tempo, prop.name)
                if shielded is not None and not self._holds(prop, state, shielded, register=False):
                    shielded = None
                violation = SafetyViolation(
                    timestamp=float(event.timestamp),
                    property_name=prop.name,
                    description=prop.description,
                    severity=Severity.CRITICAL,
                    state=state,
                    event=event,
                    corrective_action="shielded" if shielded is not None else "rejected",
                )
                self._record(violation)
                if shielded is None:
                    logger.error("event %s rejected: violates %s", event.kind, prop.name)
                    return GateResult(accepted=False, event=event, corrected=False, violation=violation)
                logger.warning("event %s shielded: violates %s", event.kind, prop.name)
                candidate = shielded
                corrected = True

        self._trace.append(candidate)
        self._last_seen[candidate.kind] = float(candidate.timestamp)
        self._check_liveness(state, candidate)
        return GateResult(accepted=True, event=candidate, corrected=corrected, violation=violation)

    def is_safe(self, state: Any) -> bool:
        """True when every hard property holds for ``state`` with no event."""
        return all(self._holds(prop, state, None, register=False) for prop in self.safety_properties)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------
    def _holds(self, formula: Formula, state: Any, event: Any, *, register: bool) -> bool:
        trace = tuple(self._trace)
        if isinstance(formula, Atomic):
            return evaluate_atomic(formula.predicate, state, event, trace, self._last_seen)
        if isinstance(formula, Always):
            return self._holds(formula.sub, state, event, register=register)
        if isinstance(formula, Next):
            if register:
                self._pending_next.append(_PendingNext(formula=formula.sub, origin=formula.name))
            return True
        if isinstance(formula, Eventually):
            if register:
                self._track_eventually(formula, state, event)
            return True
        if isinstance(formula, Until):
            if self._holds(formula.right, state, event, register=register):
                self._pending_until.pop(formula.name, None)
                return True
            if not self._holds(formula.left, state, event, register=register):
                return False
            if register and formula.name not in self._pending_until:
                stamp = float(getattr(event, "timestamp", 0.0)) if event is not None else 0.0
                self._pending_until[formula.name] = _PendingUntil(formula=formula, created_at=stamp)
            return True
        raise TypeError(f"unknown formula {formula!r}")

    def _track_eventually(self, formula: Eventually, state: Any, event: Any) -> None:
        if self._holds(formula.sub, state, event, register=True):
            self._eventually_streaks[formula.name] = 0
            return
        streak = self._eventually_streaks.get(formula.name, 0) + 1
        self._eventually_streaks[formula.name] = streak
        if streak == formula.bound + 1:
            self._warn(
                formula.name,
                f"{formula.description} (not satisfied within {formula.bound} steps)",
                state,
                event,
            )

    def _resolve_pending(self, state: Any, event: Any) -> None:
        due: List[_PendingNext] = []
        remaining: List[_PendingNext] = []
        for pending in self._pending_next:
            pending.deadline -= 1
            (due if pending.deadline <= 0 else remaining).append(pending)
        self._pending_next = remaining
        for pending in due:
            if not self._holds(pending.formula, state, event, register=False):
                self._warn(
                    f"X({pending.origin})",
                    f"Next-state property violated: {getattr(pending.formula, 'description', pending.origin)}",
                    state,
                    event,
                )

        for name in list(self._pending_until):
            pending_until = self._pending_until[name]
            formula = pending_until.formula
            if self._holds(formula.right, state, event, register=False):
                del self._pending_until[name]
                continue
            if not self._holds(formula.left, state, event, register=False):
                del self._pending_until[name]
                self._warn(name, f"Until violated: {formula.left.description} failed before {formula.right.description}", state, event)
                continue
            pending_until.step += 1
            if pending_until.step > formula.bound:
                del self._pending_until[name]
                self._warn(name, f"Until bound exceeded: {formula.right.description} not reached within {formula.bound} steps", state, event)

    def _check_liveness(self, state: Any, event: Any) -> None:
        for prop in self.liveness_properties:
            if not self._holds(prop, state, event, register=True):
                self._warn(prop.name, prop.description, state, event)

    def _warn(self, name: str, description: str, state: Any, event: Any) -> None:
        stamp = float(getattr(event, "timestamp", 0.0)) if event is not None else 0.0
        self._record(
            SafetyViolation(
                timestamp=stamp,
                property_name=name,
                description=description,
                severity=Severity.WARNING,
                state=state,
                event=event,
            )
        )
        logger.warning("liveness warning: %s", name)

    def _record(self, violation: SafetyViolation) -> None:
        self._violations.append(violation)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------
    def violations(self) -> List[SafetyViolation]:
        return list(self._violations)

    def clear_violations(self) -> None:
        self._violations.clear()

    def clear_pending(self) -> None:
        self._pending_next.clear()
        self._pending_until.clear()
        self._eventually_streaks.clear()

    def trace(self) -> List[Any]:
        return list(self._trace)

    def last_seen(self) -> Dict[str, float]:
        """Timestamp of the last accepted event per kind; survives trace eviction."""
        return dict(self._last_seen)

    def stats(self) -> Dict[str, Any]:
        critical = sum(1 for v in self._violations if v.severity is Severity.CRITICAL)
        warnings = sum(1 for v in self._violations if v.severity is Severity.WARNING)
        return {
            "total_violations": len(self._violations),
            "critical": critical,
            "warnings": warnings,
            "pending_next": len(self._pending_next),
            "pending_until": len(self._pending_until),
            "recent": list(self._violations)[-10:],
        }


__all__ = ["GateResult", "SafetyMonitor", "SafetyViolation", "Severity"]
