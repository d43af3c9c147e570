# -*- coding: utf-8 -*-
"""JSON store for per-protocol safety profiles and its persistence hook."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping

from .events import KernelEvent
from .kernel import KernelApi, Middleware
from .state import RuntimeState, SafetyProfile

logger = logging.getLogger(__name__)


def load_safety_registry(path: str | Path) -> Dict[str, SafetyProfile]:
    """Read ``{protocol_id: profile}``; a missing file is an empty registry.

    Entries that cannot be parsed are skipped with a warning.
    """
    registry_path = Path(path)
    if not registry_path.exists():
        return {}
    try:
        payload = json.loads(registry_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        logger.warning("safety registry unreadable at %s; starting empty", registry_path, exc_info=True)
        return {}
    if not isinstance(payload, dict):
        logger.warning("safety registry at %s is not an object; starting empty", registry_path)
        return {}
    out: Dict[str, SafetyProfile] = {}
    for key, value in payload.items():
        if not isinstance(value, dict):
            logger.warning("skipping malformed profile %r", key)
            continue
        try:
            out[str(key)] = SafetyProfile.from_mapping(value)
        except (TypeError, ValueError):
            logger.warning("skipping malformed profile %r", key, exc_info=True)
    return out


def save_safety_registry(path: str | Path, registry: Mapping[str, SafetyProfile]) -> Path:
    registry_path = Path(path)
    registry_path.parent.mkdir(parents=True, exist_ok=True)
    payload: Dict[str, Any] = {key: profile.to_dict() for key, profile in sorted(registry.items())}
    registry_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    return registry_path


def reset_safety_profiles(
    registry: Mapping[str, SafetyProfile],
    protocol_ids: Iterable[str] | None = None,
) -> Dict[str, SafetyProfile]:
    """Return a copy with stress, incident and lock cleared for ``protocol_ids`` (all when None)."""
    targets = set(registry) if protocol_ids is None else set(protocol_ids)
    out = dict(registry)
    for key in targets:
        if key in out:
            out[key] = SafetyProfile(resonance_history=out[key].resonance_history)
    return out


def registry_persistence(path: str | Path) -> Middleware:
    """Middleware writing the registry whenever an event changes it."""
    target = Path(path)

    def _persist(event: KernelEvent, before: RuntimeState, after: RuntimeState, api: KernelApi) -> None:
        if before.safety_registry == after.safety_registry:
            return
        save_safety_registry(target, after.safety_registry)
        logger.info("safety registry saved to %s after %s", target, event.kind)

    return _persist


__all__ = [
    "load_safety_registry",
    "registry_persistence",
    "reset_safety_profiles",
    "save_safety_registry",
]
