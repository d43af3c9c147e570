"""BreathOS test-suite."""
