"""Initial pose guesses and translational scan increments from odometry queues."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import MutableSequence, Sequence

import numpy as np

from .geometry import get_transformation, quaternion_to_rpy, translation_and_euler
from .messages import Odometry

_TIME_MARGIN = 0.01

Vector3 = tuple[float, float, float]


@dataclass
class OdometryGuess:
    """Pose at the scan start and, when known, the translation over the scan.

    ``available`` tells whether the pose fields hold a guess; ``increment``
    is the translation from the scan start to its end, expressed in the
    start frame, or None when it cannot be determined.
    """

    available: bool = False
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    roll: float = 0.0
    pitch: float = 0.0
    yaw: float = 0.0
    reset_id: int = 0
    increment: Vector3 | None = None


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def _reset_id(odom: Odometry) -> int:
    return _round_half_away(odom.covariance[0])


def _pose(odom: Odometry) -> np.ndarray:
    roll, pitch, yaw = quaternion_to_rpy(odom.orientation)
    x, y, z = odom.position
    return get_transformation(x, y, z, roll, pitch, yaw)


def pop_stale(queue: MutableSequence[Odometry], scan_start: float) -> int:
    """Drop messages older than the scan start (less a small margin); returns how many."""
    removed = 0
    while queue and queue[0].stamp < scan_start - _TIME_MARGIN:
        del queue[0]
        removed += 1
    return removed


def select_at(queue: Sequence[Odometry], time: float) -> Odometry:
    """First message stamped at or after ``time``, or the last one if none is."""
    if not queue:
        raise ValueError("odometry queue is empty")
    for odom in queue:
        if odom.stamp >= time:
            return odom
    return queue[-1]


def odometry_increment(start: Odometry, end: Odometry) -> Vector3:
    """Translation from ``start`` to ``end`` expressed in the start frame."""
    relative = np.linalg.inv(_pose(start)) @ _pose(end)
    x, y, z, _, _, _ = translation_and_euler(relative)
    return (x, y, z)


def _covers_start(queue: MutableSequence[Odometry], scan_start: float) -> bool:
    pop_stale(queue, scan_start)
    return bool(queue) and queue[0].stamp <= scan_start


def _guess_from(odom: Odometry) -> OdometryGuess:
    roll, pitch, yaw = quaternion_to_rpy(odom.orientation)
    x, y, z = odom.position
    return OdometryGuess(
        available=True,
        x=float(x),
        y=float(y),
        z=float(z),
        roll=roll,
        pitch=pitch,
        yaw=yaw,
        reset_id=_reset_id(odom),
    )


def _increment(queue: Sequence[Odometry], start: Odometry, scan_end: float) -> Vector3 | None:
    if queue[-1].stamp < scan_end:
        return None
    end = select_at(queue, scan_end)
    # a reset between the two messages makes their poses incomparable
    if _reset_id(start) != _reset_id(end):
        return None
    return odometry_increment(start, end)


def vins_odometry_guess(
    queue: MutableSequence[Odometry], scan_start: float, scan_end: float
) -> OdometryGuess | None:
    """Guess from visual-inertial odometry; None when the queue does not reach back to the scan start."""
    if not _covers_start(queue, scan_start):
        return None
    start = select_at(queue, scan_start)
    guess = _guess_from(start)
    guess.increment = _increment(queue, start, scan_end)
    return guess


def imu_odometry_guess(
    queue: MutableSequence[Odometry],
    scan_start: float,
    scan_end: float,
    use_guess: bool = True,
    use_increment: bool = True,
) -> OdometryGuess | None:
    """Fallback guess from IMU odometry.

    ``use_guess`` and ``use_increment`` select which parts are wanted, so that
    this source only fills what the visual-inertial odometry could not.
    Returns None when the queue does not reach back to the scan start.
    """
    if not _covers_start(queue, scan_start):
        return None
    start = select_at(queue, scan_start)
    guess = _guess_from(start) if use_guess else OdometryGuess()
    if use_increment:
        guess.increment = _increment(queue, start, scan_end)
    return guess