"""Latent state estimation from partial physiological observations."""

from .belief import PROTOCOL_TARGETS, BeliefState, TargetState, target_category  # noqa: F401
from .observation import Observation  # noqa: F401
from .ukf import UKFStateEstimator  # noqa: F401
