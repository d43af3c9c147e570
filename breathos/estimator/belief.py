# -*- coding: utf-8 -*-
"""Belief state published by the estimator and the protocol target table."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, replace
from typing import Dict, Optional

from ..protocols import BreathProtocol


@dataclass(frozen=True)
class TargetState:
    arousal: float
    attention: float
    rhythm: float
    valence: float


PROTOCOL_TARGETS: Dict[str, TargetState] = {
    "parasympathetic": TargetState(arousal=0.2, attention=0.5, rhythm=0.8, valence=0.6),
    "balanced": TargetState(arousal=0.4, attention=0.7, rhythm=0.9, valence=0.5),
    "sympathetic": TargetState(arousal=0.7, attention=0.8, rhythm=0.6, valence=0.7),
    "default": TargetState(arousal=0.5, attention=0.6, rhythm=0.7, valence=0.5),
}

_NON_NEGATIVE = (
    "arousal_variance",
    "attention_variance",
    "rhythm_variance",
    "valence_variance",
    "prediction_error",
    "innovation",
    "mahalanobis_distance",
)


def target_category(protocol: Optional[BreathProtocol]) -> str:
    """Map a protocol's arousal impact onto a target category."""
    if protocol is None:
        return "default"
    if protocol.arousal_impact < -0.5:
        return "parasympathetic"
    if protocol.arousal_impact > 0.5:
        return "sympathetic"
    return "balanced"


@dataclass(frozen=True)
class BeliefState:
    """Current best estimate of the user's latent state.

    ``innovation`` carries the magnitude of the arousal velocity and
    ``mahalanobis_distance`` the normalized innovation of the last channel
    that passed the outlier gate.
    """

    arousal: float = 0.5
    attention: float = 0.5
    rhythm_alignment: float = 0.0
    valence: float = 0.0
    arousal_variance: float = 0.2
    attention_variance: float = 0.2
    rhythm_variance: float = 0.2
    valence_variance: float = 0.2
    prediction_error: float = 0.0
    innovation: float = 0.0
    mahalanobis_distance: float = 0.0
    confidence: float = 0.8

    def with_overrides(self, **changes: float) -> "BeliefState":
        return replace(self, **changes)

    def is_well_formed(self) -> bool:
        """All fields finite and inside their domains."""
        values = asdict(self)
        if not all(math.isfinite(v) for v in values.values()):
            return False
        for key in ("arousal", "attention", "rhythm_alignment", "confidence"):
            if not 0.0 <= values[key] <= 1.0:
                return False
        if not -1.0 <= self.valence <= 1.0:
            return False
        return all(values[key] >= 0.0 for key in _NON_NEGATIVE)

    def to_dict(self) -> Dict[str, float]:
        return {key: float(value) for key, value in asdict(self).items()}


__all__ = ["BeliefState", "TargetState", "PROTOCOL_TARGETS", "target_category"]
