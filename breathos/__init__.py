"""BreathOS runtime kernel: paced breathing with estimator-driven, shielded adaptation."""

__version__ = "0.1.0"
