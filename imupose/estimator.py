#!/usr/bin/env python3
"""
estimator.py -- Dead-reckoning pose estimator for a handheld phone.

No absolute reference (magnetometer, camera) is available, so the
estimator leans on the gyroscope and treats the accelerometer as
highly suspect:

  * **Orientation** -- the gyro rate is integrated every step with a
    small-angle quaternion increment  dq = [w*dt/2, 1], normalised
    (linearised, not the half-angle sin/cos form).

  * **Position** -- body acceleration is rotated into the world frame
    and a constant gravity is subtracted from world Y.  This assumes the
    phone's up axis stays aligned with world up; it is an approximation,
    not a gravity-compensation filter, and tilting the phone leaks
    gravity into the horizontal axes.

  * **Stabilisers** -- dead-zone on world acceleration, multiplicative
    velocity friction every step, an extra zero-velocity damping when
    the device looks still, and a fixed 0.5 attenuation on the
    velocity -> position integration.

Each accepted update publishes a fresh immutable :class:`ControllerState`.
Readers on another thread only ever see whole snapshots.

Quaternions are scalar-last: q = [x, y, z, w].
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

from .config import EstimatorConfig
from .packets import SensorSample

RAD2DEG = 180.0 / math.pi

_IDENTITY_Q = (0.0, 0.0, 0.0, 1.0)


class NonFiniteSampleError(ValueError):
    """Raised when a sample carries NaN or infinite values."""


# -- Quaternion helpers (scalar-last: q = [x, y, z, w]) ------------------------

def _qnorm(q: np.ndarray) -> np.ndarray:
    n = np.linalg.norm(q)
    return q / n if n > 1e-12 else np.array(_IDENTITY_Q)


def _qmul(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Hamilton product  a * b."""
    x1, y1, z1, w1 = a
    x2, y2, z2, w2 = b
    return np.array([
        w1*x2 + x1*w2 + y1*z2 - z1*y2,
        w1*y2 - x1*z2 + y1*w2 + z1*x2,
        w1*z2 + x1*y2 - y1*x2 + z1*w2,
        w1*w2 - x1*x2 - y1*y2 - z1*z2,
    ])


def _qconj(q: np.ndarray) -> np.ndarray:
    return np.array([-q[0], -q[1], -q[2], q[3]])


def _qrot(q: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Rotate vector *v* by quaternion *q* (body -> world):  q * [v,0] * q*."""
    qv = np.array([v[0], v[1], v[2], 0.0])
    return _qmul(_qmul(q, qv), _qconj(q))[:3]


def _q2euler(q: np.ndarray) -> np.ndarray:
    """Quaternion -> Euler angles [roll, pitch, yaw] in degrees."""
    x, y, z, w = q
    roll = math.atan2(2.0 * (w*x + y*z), 1.0 - 2.0 * (x*x + y*y))
    pitch = math.asin(float(np.clip(2.0 * (w*y - z*x), -1.0, 1.0)))
    yaw = math.atan2(2.0 * (w*z + x*y), 1.0 - 2.0 * (y*y + z*z))
    return np.array([roll, pitch, yaw]) * RAD2DEG


def _frozen(v) -> np.ndarray:
    a = np.array(v, dtype=float)
    a.setflags(write=False)
    return a


# -- Estimator output ----------------------------------------------------------

@dataclass(frozen=True, eq=False)
class ControllerState:
    """Immutable pose snapshot.  Arrays are read-only."""
    t: float
    position: np.ndarray = field(default_factory=lambda: _frozen(np.zeros(3)))
    rotation: np.ndarray = field(default_factory=lambda: _frozen(_IDENTITY_Q))
    velocity: np.ndarray = field(default_factory=lambda: _frozen(np.zeros(3)))

    @property
    def euler(self) -> np.ndarray:
        return _q2euler(self.rotation)

    @property
    def speed(self) -> float:
        return float(np.linalg.norm(self.velocity))


# -- Pose estimator ------------------------------------------------------------

class PoseEstimator:
    """
    Gyro-integrated orientation + heavily damped accelerometer position.

    Not thread-safe for writers: ``update`` and ``reset`` must be called
    from one thread (or under one lock).  ``get_state`` may be called
    from anywhere.
    """

    def __init__(self,
                 config: Optional[EstimatorConfig] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config or EstimatorConfig()
        self.clock = clock
        self._state = ControllerState(t=clock())

    # -- Public interface ------------------------------------------------------

    def reset(self) -> None:
        """Back to identity pose, stamped with the current time."""
        self._state = ControllerState(t=self.clock())

    def get_state(self) -> ControllerState:
        return self._state

    def update(self, angular_velocity, linear_acceleration,
               timestamp: float) -> ControllerState:
        """
        Integrate one gyro (rad/s) + accel (m/s^2) reading taken at
        *timestamp* (s, same clock as the constructor's).

        Steps with dt <= 0 or dt > ``max_dt`` leave the pose untouched but
        still move the last-seen timestamp to *timestamp*.
        """
        gyro = np.asarray(angular_velocity, dtype=float)[:3]
        accel = np.asarray(linear_acceleration, dtype=float)[:3]
        if not (np.all(np.isfinite(gyro)) and np.all(np.isfinite(accel))
                and math.isfinite(timestamp)):
            raise NonFiniteSampleError(
                f"non-finite sample: gyro={gyro}, accel={accel}, t={timestamp}")

        cfg = self.config
        prev = self._state
        dt = timestamp - prev.t

        if dt <= 0 or dt > cfg.max_dt:
            self._state = ControllerState(t=timestamp, position=prev.position,
                                          rotation=prev.rotation,
                                          velocity=prev.velocity)
            return self._state

        # -- Orientation: small-angle increment, renormalised --
        half = gyro * dt * 0.5
        dq = _qnorm(np.array([half[0], half[1], half[2], 1.0]))
        q = _qnorm(_qmul(prev.rotation, dq))

        # -- World-frame linear acceleration --
        a = _qrot(q, accel)
        a[cfg.up_axis] -= cfg.gravity
        a[np.abs(a) < cfg.dead_zone] = 0.0

        # -- Velocity: integrate, friction, zero-velocity update --
        v = (prev.velocity + a * dt) * cfg.friction
        if np.all(np.abs(a) < cfg.zupt_threshold):
            v = v * cfg.zupt_damping

        # -- Position --
        p = prev.position + v * dt * cfg.position_scale

        self._state = ControllerState(t=timestamp, position=_frozen(p),
                                      rotation=_frozen(q), velocity=_frozen(v))
        return self._state

    def update_sample(self, sample: SensorSample) -> ControllerState:
        return self.update(sample.gyro, sample.accel, sample.t)
