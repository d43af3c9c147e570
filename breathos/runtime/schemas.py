from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from ..estimator.belief import BeliefState


class BeliefPayload(BaseModel):
    """Wire form of a belief override; every field must lie in its domain."""

    model_config = ConfigDict(extra="forbid", allow_inf_nan=False)

    arousal: float = Field(0.5, ge=0.0, le=1.0)
    attention: float = Field(0.5, ge=0.0, le=1.0)
    rhythm_alignment: float = Field(0.0, ge=0.0, le=1.0)
    valence: float = Field(0.0, ge=-1.0, le=1.0)
    arousal_variance: float = Field(0.2, ge=0.0)
    attention_variance: float = Field(0.2, ge=0.0)
    rhythm_variance: float = Field(0.2, ge=0.0)
    valence_variance: float = Field(0.2, ge=0.0)
    prediction_error: float = Field(0.0, ge=0.0)
    innovation: float = Field(0.0, ge=0.0)
    mahalanobis_distance: float = Field(0.0, ge=0.0)
    confidence: float = Field(0.8, ge=0.0, le=1.0)

    def to_belief(self) -> BeliefState:
        return BeliefState(**self.model_dump())


__all__ = ["BeliefPayload"]
