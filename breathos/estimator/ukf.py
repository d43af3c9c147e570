# -*- coding: utf-8 -*-
"""Unscented Kalman filter over the user's latent breathing state.

State vector ``x = [arousal, arousal_velocity, valence, attention, rhythm]``.
Arousal follows a damped second order model pulled toward the protocol
target, valence relaxes toward a target penalized by arousal distance from
0.4, attention decays and is refreshed by rhythm alignment, rhythm relaxes
toward its target. Sensor channels are fused one at a time with an outlier
gate and a Joseph-form covariance update.

Sigma points use the scaled unscented transform. With the default
``alpha = 1e-3`` the centre weight is large and negative, so the propagated
points are left unclamped and only the recombined mean is projected back
into the physiological domain.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from ..config import EstimatorCfg
from ..protocols import BreathProtocol
from .belief import PROTOCOL_TARGETS, BeliefState, TargetState, target_category
from .observation import Observation

logger = logging.getLogger(__name__)

Array = np.ndarray

STATE_DIM = 5
IDX_AROUSAL = 0
IDX_VELOCITY = 1
IDX_VALENCE = 2
IDX_ATTENTION = 3
IDX_RHYTHM = 4

TAU_AROUSAL = 15.0
TAU_VELOCITY = 5.0
TAU_ATTENTION = 5.0
TAU_RHYTHM = 10.0
TAU_VALENCE = 8.0
AROUSAL_STIFFNESS = 0.1
VALENCE_OPTIMAL_AROUSAL = 0.4
HR_CONFIDENCE_FLOOR = 0.3

INITIAL_MEAN = np.array([0.5, 0.0, 0.0, 0.5, 0.0], dtype=float)

_LOWER = np.array([0.0, -0.5, -1.0, 0.0, 0.0], dtype=float)
_UPPER = np.array([1.0, 0.5, 1.0, 1.0, 1.0], dtype=float)

MeasurementFn = Callable[[Array], float]


def clamp_state(x: Array) -> Array:
    """Project a state vector onto the physiological domain."""
    return np.clip(x, _LOWER, _UPPER)


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def _h_heart_rate(x: Array) -> float:
    return float(x[IDX_AROUSAL])


def _h_stress_index(x: Array) -> float:
    return float(x[IDX_AROUSAL] * (1.0 - x[IDX_RHYTHM]))


def _h_respiration(x: Array) -> float:
    return float(0.5 + 0.5 * x[IDX_AROUSAL])


def _h_valence(x: Array) -> float:
    return float(x[IDX_VALENCE])


class UKFStateEstimator:
    """Fuse partial observations into a :class:`BeliefState`."""

    def __init__(self, cfg: Optional[EstimatorCfg] = None) -> None:
        self.cfg = cfg or EstimatorCfg()
        n = STATE_DIM
        alpha = float(self.cfg.alpha)
        lam = alpha * alpha * (n + float(self.cfg.kappa)) - n
        self._gamma = math.sqrt(n + lam)
        self._wm = np.full(2 * n + 1, 1.0 / (2.0 * (n + lam)), dtype=float)
        self._wm[0] = lam / (n + lam)
        self._wc = self._wm.copy()
        self._wc[0] = self._wm[0] + (1.0 - alpha * alpha + float(self.cfg.beta))
        self._q = np.eye(n, dtype=float) * float(self.cfg.process_noise)

        self._x = INITIAL_MEAN.copy()
        self._P = np.eye(n, dtype=float) * float(self.cfg.initial_covariance)
        self._category = "default"
        self._target: TargetState = PROTOCOL_TARGETS["default"]
        self._resets_this_update = 0
        self._total_resets = 0
        self._fallbacks = 0
        self._last_mahalanobis = 0.0
        self._rejected: Dict[str, int] = {}
        self._belief = self._compute_belief()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def mean(self) -> Array:
        return self._x.copy()

    @mean.setter
    def mean(self, value: Array) -> None:
        arr = np.asarray(value, dtype=float).reshape(STATE_DIM)
        self._x = arr.copy()

    @property
    def covariance(self) -> Array:
        return self._P.copy()

    @covariance.setter
    def covariance(self, value: Array) -> None:
        arr = np.asarray(value, dtype=float).reshape(STATE_DIM, STATE_DIM)
        self._P = arr.copy()

    @property
    def target(self) -> TargetState:
        return self._target

    @property
    def target_category(self) -> str:
        return self._category

    @property
    def belief(self) -> BeliefState:
        return self._belief

    @property
    def weights(self) -> Tuple[Array, Array]:
        return self._wm.copy(), self._wc.copy()

    def set_protocol(self, protocol: Optional[BreathProtocol]) -> None:
        """Re-derive the target state; mean and covariance are kept."""
        self._category = target_category(protocol)
        self._target = PROTOCOL_TARGETS[self._category]
        self._belief = self._compute_belief()

    def reset(self) -> None:
        self._x = INITIAL_MEAN.copy()
        self._P = np.eye(STATE_DIM, dtype=float) * float(self.cfg.initial_covariance)
        self._resets_this_update = 0
        self._last_mahalanobis = 0.0
        self._belief = self._compute_belief()

    def update(self, observation: Observation, dt: float) -> BeliefState:
        """Predict by ``dt`` seconds, then correct with each present channel."""
        self._resets_this_update = 0
        step = float(dt) if math.isfinite(float(dt)) else 0.0
        if step > 0.0:
            self._predict(step)

        for name, z, h, r in self._measurements(observation):
            self._correct(name, z, h, r)

        self._repair_mean()
        self._belief = self._compute_belief()
        return self._belief

    def stability_metrics(self) -> Dict[str, float]:
        diag = np.diag(self._P)
        try:
            condition = float(np.linalg.cond(self._P))
        except np.linalg.LinAlgError:
            condition = float("inf")
        return {
            "trace": float(np.trace(self._P)),
            "min_diagonal": float(diag.min()),
            "max_diagonal": float(diag.max()),
            "condition": condition if math.isfinite(condition) else float("inf"),
            "cholesky_resets": float(self._total_resets),
            "diagonal_fallbacks": float(self._fallbacks),
            "rejected_measurements": float(sum(self._rejected.values())),
        }

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------
    def _target_vector(self) -> Array:
        t = self._target
        return np.array([t.arousal, 0.0, t.valence, t.attention, t.rhythm], dtype=float)

    def _transition(self, x: Array, dt: float, valence_anchor: float) -> Array:
        # Unclamped; sigma points go through here, see dynamics() for the clamped form.
        t = self._target
        arousal, velocity, valence, attention, rhythm = (float(v) for v in x)

        accel = (
            -AROUSAL_STIFFNESS * arousal * (1.0 - arousal)
            - velocity / TAU_VELOCITY
            + (t.arousal - arousal) / TAU_AROUSAL
        )
        valence_target = t.valence - 0.5 * abs(valence_anchor - VALENCE_OPTIMAL_AROUSAL)

        out = np.empty(STATE_DIM, dtype=float)
        out[IDX_AROUSAL] = arousal + velocity * dt
        out[IDX_VELOCITY] = velocity + accel * dt
        out[IDX_VALENCE] = valence + (valence_target - valence) / TAU_VALENCE * dt
        out[IDX_ATTENTION] = attention * math.exp(-dt / TAU_ATTENTION) + 0.1 * rhythm * dt
        out[IDX_RHYTHM] = rhythm + (t.rhythm - rhythm) / TAU_RHYTHM * dt
        return out

    def dynamics(self, x: Array, dt: float) -> Array:
        """State transition ``f(x, dt)`` including the domain clamp."""
        arr = np.asarray(x, dtype=float)
        return clamp_state(self._transition(arr, float(dt), float(arr[IDX_AROUSAL])))

    def _predict(self, dt: float) -> None:
        # The valence target's |A - 0.4| kink is evaluated at the mean only;
        # per-point evaluation is amplified by 1/gamma near the kink.
        anchor = float(self._x[IDX_AROUSAL])
        sigma = self._sigma_points()
        propagated = np.array([self._transition(point, dt, anchor) for point in sigma])
        raw_mean = self._wm @ propagated
        diff = propagated - raw_mean
        cov = (diff.T * self._wc) @ diff + self._q * dt
        self._x = clamp_state(raw_mean)
        self._P = self._condition(cov)

    # ------------------------------------------------------------------
    # Correction
    # ------------------------------------------------------------------
    def _measurements(self, obs: Observation) -> List[Tuple[str, float, MeasurementFn, float]]:
        cfg = self.cfg
        out: List[Tuple[str, float, MeasurementFn, float]] = []
        if obs.heart_rate is not None and obs.hr_confidence is not None:
            confidence = float(obs.hr_confidence)
            if confidence > HR_CONFIDENCE_FLOOR:
                z = (float(obs.heart_rate) - 50.0) / 70.0
                r = float(cfg.r_hr) * (1.0 + (1.0 - confidence))
                out.append(("heart_rate", z, _h_heart_rate, r))
        if obs.stress_index is not None:
            z = min(1.0, float(obs.stress_index) / 300.0)
            out.append(("stress_index", z, _h_stress_index, float(cfg.r_hrv)))
        if obs.respiration_rate is not None:
            z = (float(obs.respiration_rate) - 12.0) / 10.0
            out.append(("respiration_rate", z, _h_respiration, float(cfg.r_resp)))
        if obs.facial_valence is not None:
            out.append(("facial_valence", float(obs.facial_valence), _h_valence, float(cfg.r_valence)))
        return [item for item in out if math.isfinite(item[1])]

    def _correct(self, name: str, z: float, h: MeasurementFn, r: float) -> bool:
        sigma = self._sigma_points()
        z_sigma = np.array([h(point) for point in sigma])
        z_hat = float(self._wm @ z_sigma)
        dz = z_sigma - z_hat
        s = float(self._wc @ (dz * dz)) + r
        if not math.isfinite(s) or s <= 0.0:
            logger.warning("innovation variance %.3g for %s is not usable; channel skipped", s, name)
            return False

        innovation = z - z_hat
        normalized = abs(innovation) / math.sqrt(s)
        if normalized > self.cfg.outlier_gate:
            self._rejected[name] = self._rejected.get(name, 0) + 1
            logger.debug("outlier on %s (%.2f sigma) rejected", name, normalized)
            return False

        pxz = ((sigma - self._x).T * self._wc) @ dz
        gain = pxz / s
        self._x = clamp_state(self._x + gain * innovation)

        h_row = pxz / (np.diag(self._P) + self.cfg.min_covariance)
        joseph = np.eye(STATE_DIM) - np.outer(gain, h_row)
        cov = joseph @ self._P @ joseph.T + np.outer(gain, gain) * r
        self._P = self._condition(cov)
        self._last_mahalanobis = normalized
        return True

    # ------------------------------------------------------------------
    # Numerical hygiene
    # ------------------------------------------------------------------
    def _sigma_points(self) -> Array:
        root = self._gamma * self._cholesky()
        points = np.empty((2 * STATE_DIM + 1, STATE_DIM), dtype=float)
        points[0] = self._x
        for i in range(STATE_DIM):
            points[1 + i] = self._x + root[:, i]
            points[1 + STATE_DIM + i] = self._x - root[:, i]
        return points

    def _cholesky(self) -> Array:
        while True:
            try:
                if not np.all(np.isfinite(self._P)):
                    raise np.linalg.LinAlgError("covariance has non-finite entries")
                root = np.linalg.cholesky(self._P)
                if not np.all(np.isfinite(root)):
                    raise np.linalg.LinAlgError("cholesky factor has non-finite entries")
                return root
            except np.linalg.LinAlgError as exc:
                if self._resets_this_update >= self.cfg.max_cholesky_resets:
                    logger.error(
                        "covariance unrecoverable after %d resets (%s); using diagonal fallback",
                        self._resets_this_update,
                        exc,
                    )
                    self._fallbacks += 1
                    self._P = np.eye(STATE_DIM, dtype=float) * float(self.cfg.fallback_covariance)
                    return np.eye(STATE_DIM, dtype=float) * math.sqrt(float(self.cfg.fallback_covariance))
                self._resets_this_update += 1
                self._total_resets += 1
                logger.warning("cholesky failed (%s); resetting covariance", exc)
                self._P = np.eye(STATE_DIM, dtype=float) * float(self.cfg.initial_covariance)

    def _condition(self, cov: Array) -> Array:
        cov = 0.5 * (cov + cov.T)
        floor = float(self.cfg.min_covariance)
        idx = np.diag_indices(STATE_DIM)
        diag = cov[idx]
        cov[idx] = np.where(np.isfinite(diag), np.maximum(diag, floor), floor)
        return cov

    def _repair_mean(self) -> None:
        bad = ~np.isfinite(self._x)
        if np.any(bad):
            logger.warning("non-finite mean entries %s replaced by target", np.flatnonzero(bad).tolist())
            self._x = np.where(bad, self._target_vector(), self._x)
        self._x = clamp_state(self._x)
        if not np.all(np.isfinite(self._P)):
            logger.warning("non-finite covariance after update; resetting")
            self._total_resets += 1
            self._P = np.eye(STATE_DIM, dtype=float) * float(self.cfg.initial_covariance)
        self._P = self._condition(self._P)

    def _compute_belief(self) -> BeliefState:
        x = self._x
        P = self._P
        t = self._target
        arousal = float(x[IDX_AROUSAL])
        rhythm = float(x[IDX_RHYTHM])
        prediction_error = math.sqrt(0.5 * (arousal - t.arousal) ** 2 + 0.5 * (rhythm - t.rhythm) ** 2)
        confidence = _clamp01(1.0 - float(np.trace(P)) / STATE_DIM)

        def _finite(value: float, default: float = 0.0) -> float:
            return float(value) if math.isfinite(value) else default

        return BeliefState(
            arousal=_clamp01(_finite(arousal, t.arousal)),
            attention=_clamp01(_finite(float(x[IDX_ATTENTION]), t.attention)),
            rhythm_alignment=_clamp01(_finite(rhythm, t.rhythm)),
            valence=max(-1.0, min(1.0, _finite(float(x[IDX_VALENCE]), t.valence))),
            arousal_variance=_finite(float(P[IDX_AROUSAL, IDX_AROUSAL]), 1.0),
            attention_variance=_finite(float(P[IDX_ATTENTION, IDX_ATTENTION]), 1.0),
            rhythm_variance=_finite(float(P[IDX_RHYTHM, IDX_RHYTHM]), 1.0),
            valence_variance=_finite(float(P[IDX_VALENCE, IDX_VALENCE]), 1.0),
            prediction_error=_finite(prediction_error, 0.0),
            innovation=_finite(abs(float(x[IDX_VELOCITY])), 0.0),
            mahalanobis_distance=_finite(self._last_mahalanobis, 0.0),
            confidence=_finite(confidence, 0.0),
        )


__all__ = ["UKFStateEstimator", "STATE_DIM", "INITIAL_MEAN", "clamp_state"]
