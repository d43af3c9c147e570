# -*- coding: utf-8 -*-
"""Kernel event variants and the boundary parser for raw commands."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields, replace
from typing import Any, ClassVar, Dict, Mapping, Optional, Type

from pydantic import ValidationError

from ..config import TempoCfg
from ..estimator.belief import BeliefState
from ..estimator.observation import Observation
from .schemas import BeliefPayload
from .state import SafetyProfile

EMERGENCY_HALT = "emergency_halt"


class InvalidCommandError(ValueError):
    """Raised when a raw command cannot be turned into a kernel event."""


@dataclass(frozen=True)
class KernelEvent:
    """Base of every event the kernel accepts.

    ``always_admitted`` events skip the hard safety catalog; ``shield``
    returns a corrected copy or ``None`` when no correction exists.
    ``last_seen`` maps event kinds to the timestamp of their last accepted
    occurrence.
    """

    timestamp: float

    kind: ClassVar[str] = "event"
    always_admitted: ClassVar[bool] = False

    def proposed_changes(self) -> Dict[str, float]:
        return {}

    def well_formed(self) -> bool:
        return True

    def shield(
        self,
        state: Any,
        last_seen: Mapping[str, float],
        limits: TempoCfg,
        violated: str,
    ) -> Optional["KernelEvent"]:
        return None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.kind}
        for item in fields(self):
            payload[item.name] = _payload_value(getattr(self, item.name))
        return payload


def _payload_value(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, Mapping):
        return {str(k): _payload_value(v) for k, v in value.items()}
    return value


@dataclass(frozen=True)
class Boot(KernelEvent):
    kind: ClassVar[str] = "boot"


@dataclass(frozen=True)
class LoadProtocol(KernelEvent):
    protocol_id: str = ""

    kind: ClassVar[str] = "load_protocol"


@dataclass(frozen=True)
class StartSession(KernelEvent):
    kind: ClassVar[str] = "start_session"


@dataclass(frozen=True)
class Halt(KernelEvent):
    reason: str = ""

    kind: ClassVar[str] = "halt"
    always_admitted: ClassVar[bool] = True


@dataclass(frozen=True)
class Pause(KernelEvent):
    kind: ClassVar[str] = "pause"


@dataclass(frozen=True)
class Resume(KernelEvent):
    kind: ClassVar[str] = "resume"


@dataclass(frozen=True)
class AdjustTempo(KernelEvent):
    scale: float = 1.0
    reason: str = ""

    kind: ClassVar[str] = "adjust_tempo"

    def proposed_changes(self) -> Dict[str, float]:
        return {"tempo_scale": float(self.scale)}

    def well_formed(self) -> bool:
        return math.isfinite(float(self.scale))

    def shield(
        self,
        state: Any,
        last_seen: Mapping[str, float],
        limits: TempoCfg,
        violated: str,
    ) -> Optional[KernelEvent]:
        """Clamp into the hard range, then limit the step from the current tempo."""
        safe = max(limits.min, min(limits.max, float(self.scale)))
        last = last_seen.get(self.kind)
        if last is not None:
            current = float(state.tempo_scale)
            dt = float(self.timestamp) - float(last)
            max_delta = limits.max_rate_per_sec * dt if dt > 0.0 else 0.0
            safe = max(current - max_delta, min(current + max_delta, safe))
        return replace(self, scale=safe, reason=f"{self.reason} [shielded: {violated}]".strip())


@dataclass(frozen=True)
class SafetyInterdiction(KernelEvent):
    action: str = EMERGENCY_HALT
    risk_level: float = 1.0

    kind: ClassVar[str] = "safety_interdiction"
    always_admitted: ClassVar[bool] = True


@dataclass(frozen=True)
class ResetSafetyLock(KernelEvent):
    protocol_id: Optional[str] = None

    kind: ClassVar[str] = "reset_safety_lock"


@dataclass(frozen=True)
class LoadSafetyRegistry(KernelEvent):
    registry: Mapping[str, SafetyProfile] = field(default_factory=dict)

    kind: ClassVar[str] = "load_safety_registry"


@dataclass(frozen=True)
class BeliefUpdate(KernelEvent):
    belief: BeliefState = field(default_factory=BeliefState)

    kind: ClassVar[str] = "belief_update"

    def well_formed(self) -> bool:
        return self.belief.is_well_formed()


@dataclass(frozen=True)
class AiStatusChange(KernelEvent):
    status: str = "disconnected"

    kind: ClassVar[str] = "ai_status_change"


@dataclass(frozen=True)
class AiVoiceMessage(KernelEvent):
    text: str = ""
    sentiment: str = "neutral"

    kind: ClassVar[str] = "ai_voice_message"


@dataclass(frozen=True)
class AiIntervention(KernelEvent):
    intent: str = ""
    detail: str = ""

    kind: ClassVar[str] = "ai_intervention"


@dataclass(frozen=True)
class CycleComplete(KernelEvent):
    cycle: int = 0

    kind: ClassVar[str] = "cycle_complete"


@dataclass(frozen=True)
class Tick(KernelEvent):
    dt: float = 0.0
    observation: Optional[Observation] = None

    kind: ClassVar[str] = "tick"


EVENT_TYPES: Dict[str, Type[KernelEvent]] = {
    cls.kind: cls
    for cls in (
        Boot,
        LoadProtocol,
        StartSession,
        Halt,
        Pause,
        Resume,
        AdjustTempo,
        SafetyInterdiction,
        ResetSafetyLock,
        LoadSafetyRegistry,
        BeliefUpdate,
        AiStatusChange,
        AiVoiceMessage,
        AiIntervention,
        CycleComplete,
        Tick,
    )
}


# ----------------------------------------------------------------------------
# Boundary parsing
# ----------------------------------------------------------------------------
def _require(payload: Mapping[str, Any], key: str) -> Any:
    if key not in payload:
        raise InvalidCommandError(f"missing field {key!r}")
    return payload[key]


def _number(payload: Mapping[str, Any], key: str, *, default: Optional[float] = None) -> float:
    value = payload.get(key, default) if default is not None else _require(payload, key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidCommandError(f"field {key!r} must be a number")
    number = float(value)
    if not math.isfinite(number):
        raise InvalidCommandError(f"field {key!r} must be finite")
    return number


def _text(payload: Mapping[str, Any], key: str, *, default: Optional[str] = None) -> str:
    value = payload.get(key, default) if default is not None else _require(payload, key)
    if not isinstance(value, str):
        raise InvalidCommandError(f"field {key!r} must be a string")
    return value


def _registry(payload: Mapping[str, Any]) -> Dict[str, SafetyProfile]:
    raw = _require(payload, "registry")
    if not isinstance(raw, Mapping):
        raise InvalidCommandError("field 'registry' must be a mapping")
    out: Dict[str, SafetyProfile] = {}
    for key, value in raw.items():
        if isinstance(value, SafetyProfile):
            out[str(key)] = value
        elif isinstance(value, Mapping):
            try:
                out[str(key)] = SafetyProfile.from_mapping(value)
            except (TypeError, ValueError) as exc:
                raise InvalidCommandError(f"invalid safety profile for {key!r}: {exc}") from exc
        else:
            raise InvalidCommandError(f"invalid safety profile for {key!r}")
    return out


def _belief(payload: Mapping[str, Any]) -> BeliefState:
    raw = _require(payload, "belief")
    if isinstance(raw, BeliefState):
        if not raw.is_well_formed():
            raise InvalidCommandError("belief has non-finite or out-of-domain fields")
        return raw
    if not isinstance(raw, Mapping):
        raise InvalidCommandError("field 'belief' must be a mapping")
    try:
        return BeliefPayload(**raw).to_belief()
    except (TypeError, ValidationError) as exc:
        raise InvalidCommandError(f"invalid belief: {exc}") from exc


def _observation(payload: Mapping[str, Any]) -> Optional[Observation]:
    raw = payload.get("observation")
    if raw is None or isinstance(raw, Observation):
        return raw
    if not isinstance(raw, Mapping):
        raise InvalidCommandError("field 'observation' must be a mapping")
    try:
        return Observation.from_mapping(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidCommandError(f"invalid observation: {exc}") from exc


def parse_event(payload: Mapping[str, Any]) -> KernelEvent:
    """Build a typed event from ``{"type": ..., "timestamp": ..., ...}``."""
    if not isinstance(payload, Mapping):
        raise InvalidCommandError("command must be a mapping")
    kind = _text(payload, "type").strip().lower()
    if kind not in EVENT_TYPES:
        raise InvalidCommandError(f"unknown event type {kind!r}")
    ts = _number(payload, "timestamp")

    if kind == "load_protocol":
        return LoadProtocol(timestamp=ts, protocol_id=_text(payload, "protocol_id"))
    if kind == "halt":
        return Halt(timestamp=ts, reason=_text(payload, "reason", default=""))
    if kind == "adjust_tempo":
        return AdjustTempo(timestamp=ts, scale=_number(payload, "scale"), reason=_text(payload, "reason", default=""))
    if kind == "safety_interdiction":
        return SafetyInterdiction(
            timestamp=ts,
            action=_text(payload, "action").strip().lower(),
            risk_level=_number(payload, "risk_level", default=1.0),
        )
    if kind == "reset_safety_lock":
        protocol_id = payload.get("protocol_id")
        if protocol_id is not None and not isinstance(protocol_id, str):
            raise InvalidCommandError("field 'protocol_id' must be a string")
        return ResetSafetyLock(timestamp=ts, protocol_id=protocol_id)
    if kind == "load_safety_registry":
        return LoadSafetyRegistry(timestamp=ts, registry=_registry(payload))
    if kind == "belief_update":
        return BeliefUpdate(timestamp=ts, belief=_belief(payload))
    if kind == "ai_status_change":
        return AiStatusChange(timestamp=ts, status=_text(payload, "status"))
    if kind == "ai_voice_message":
        return AiVoiceMessage(
            timestamp=ts,
            text=_text(payload, "text"),
            sentiment=_text(payload, "sentiment", default="neutral"),
        )
    if kind == "ai_intervention":
        return AiIntervention(
            timestamp=ts,
            intent=_text(payload, "intent"),
            detail=_text(payload, "detail", default=""),
        )
    if kind == "cycle_complete":
        return CycleComplete(timestamp=ts, cycle=int(_number(payload, "cycle")))
    if kind == "tick":
        return Tick(timestamp=ts, dt=_number(payload, "dt"), observation=_observation(payload))
    return EVENT_TYPES[kind](timestamp=ts)


__all__ = [
    "AdjustTempo",
    "AiIntervention",
    "AiStatusChange",
    "AiVoiceMessage",
    "BeliefUpdate",
    "Boot",
    "CycleComplete",
    "EMERGENCY_HALT",
    "EVENT_TYPES",
    "Halt",
    "InvalidCommandError",
    "KernelEvent",
    "LoadProtocol",
    "LoadSafetyRegistry",
    "Pause",
    "ResetSafetyLock",
    "Resume",
    "SafetyInterdiction",
    "StartSession",
    "Tick",
    "parse_event",
]
