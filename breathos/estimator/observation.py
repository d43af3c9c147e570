# -*- coding: utf-8 -*-
"""Normalized sensor observation delivered once per tick."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional

from ..config import VitalsCfg

logger = logging.getLogger(__name__)


def _finite_or_none(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


@dataclass(frozen=True)
class Observation:
    """One tick worth of readings; any channel may be missing."""

    timestamp: float
    delta_time: float
    visible: bool = True
    heart_rate: Optional[float] = None
    hr_confidence: Optional[float] = None
    respiration_rate: Optional[float] = None
    stress_index: Optional[float] = None
    facial_valence: Optional[float] = None

    @classmethod
    def empty(cls, timestamp: float, delta_time: float) -> "Observation":
        return cls(timestamp=float(timestamp), delta_time=float(delta_time))

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "Observation":
        return cls(
            timestamp=float(payload.get("timestamp", 0.0)),
            delta_time=float(payload.get("delta_time", 0.0)),
            visible=bool(payload.get("visible", True)),
            heart_rate=_finite_or_none(payload.get("heart_rate")),
            hr_confidence=_finite_or_none(payload.get("hr_confidence")),
            respiration_rate=_finite_or_none(payload.get("respiration_rate")),
            stress_index=_finite_or_none(payload.get("stress_index")),
            facial_valence=_finite_or_none(payload.get("facial_valence")),
        )

    def channels(self) -> Dict[str, float]:
        """Present channels by name."""
        out: Dict[str, float] = {}
        for name in ("heart_rate", "respiration_rate", "stress_index", "facial_valence"):
            value = getattr(self, name)
            if value is not None:
                out[name] = float(value)
        return out

    def sanitized(self, vitals: VitalsCfg | None = None) -> "Observation":
        """Drop channels that are non-finite or outside hard physiological bounds.

        Low-trust heart rate (confidence at or below the floor) is removed
        together with its confidence rather than passed through as zero.
        """
        cfg = vitals or VitalsCfg()
        heart_rate = _finite_or_none(self.heart_rate)
        confidence = _finite_or_none(self.hr_confidence)
        respiration = _finite_or_none(self.respiration_rate)
        stress = _finite_or_none(self.stress_index)
        valence = _finite_or_none(self.facial_valence)

        if heart_rate is not None:
            if not cfg.hr_hard_min <= heart_rate <= cfg.hr_hard_max:
                logger.debug("dropping heart_rate %.1f outside hard bounds", heart_rate)
                heart_rate = None
            elif confidence is None or not 0.0 <= confidence <= 1.0:
                logger.debug("dropping heart_rate without a valid confidence")
                heart_rate = None
            elif confidence <= cfg.hr_min_confidence:
                logger.debug("dropping heart_rate at confidence %.2f", confidence)
                heart_rate = None
        if heart_rate is None:
            confidence = None
        if respiration is not None and not cfg.rr_min <= respiration <= cfg.rr_max:
            logger.debug("dropping respiration_rate %.1f outside bounds", respiration)
            respiration = None
        if stress is not None and not 0.0 <= stress <= cfg.stress_index_max:
            logger.debug("dropping stress_index %.1f outside bounds", stress)
            stress = None
        if valence is not None and not -1.0 <= valence <= 1.0:
            logger.debug("dropping facial_valence %.2f outside [-1, 1]", valence)
            valence = None

        delta = _finite_or_none(self.delta_time)
        return replace(
            self,
            delta_time=max(0.0, delta) if delta is not None else 0.0,
            heart_rate=heart_rate,
            hr_confidence=confidence,
            respiration_rate=respiration,
            stress_index=stress,
            facial_valence=valence,
        )

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "timestamp": float(self.timestamp),
            "delta_time": float(self.delta_time),
            "visible": bool(self.visible),
        }
        payload.update(self.channels())
        if self.hr_confidence is not None:
            payload["hr_confidence"] = float(self.hr_confidence)
        return payload


__all__ = ["Observation"]
