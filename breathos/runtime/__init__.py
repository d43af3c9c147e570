"""Runtime kernel, event model and drivers."""

from .driver import FixedStepDriver  # noqa: F401
from .events import InvalidCommandError, KernelEvent, parse_event  # noqa: F401
from .kernel import KernelApi, RuntimeKernel  # noqa: F401
from .phase import PhaseMachine  # noqa: F401
from .registry import (  # noqa: F401
    load_safety_registry,
    registry_persistence,
    reset_safety_profiles,
    save_safety_registry,
)
from .state import RuntimeState, RuntimeStatus, SafetyProfile, SessionSummary  # noqa: F401
