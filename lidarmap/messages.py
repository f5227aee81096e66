"""Plain message types exchanged between the odometry stages."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

Vector3 = tuple[float, float, float]


@dataclass(frozen=True)
class Quaternion:
    """A rotation quaternion stored as (x, y, z, w)."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    w: float = 1.0

    def norm(self) -> float:
        """Euclidean length of the quaternion."""
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z + self.w * self.w)


@dataclass
class ImuMeasurement:
    """One IMU sample: acceleration, angular velocity and orientation."""

    stamp: float
    linear_acceleration: Vector3 = (0.0, 0.0, 0.0)
    angular_velocity: Vector3 = (0.0, 0.0, 0.0)
    orientation: Quaternion = field(default_factory=Quaternion)


def _zero_covariance() -> list[float]:
    return [0.0] * 36


@dataclass
class Odometry:
    """A stamped pose with velocity and a 6x6 row-major covariance."""

    stamp: float
    position: Vector3 = (0.0, 0.0, 0.0)
    orientation: Quaternion = field(default_factory=Quaternion)
    covariance: list[float] = field(default_factory=_zero_covariance)
    linear_velocity: Vector3 = (0.0, 0.0, 0.0)
    angular_velocity: Vector3 = (0.0, 0.0, 0.0)
    frame_id: str = ""
    child_frame_id: str = ""


@dataclass
class CloudInfo:
    """Per-scan bookkeeping passed from projection to feature extraction and mapping."""

    stamp: float = 0.0
    start_ring_index: list[int] = field(default_factory=list)
    end_ring_index: list[int] = field(default_factory=list)
    point_col_ind: list[int] = field(default_factory=list)
    point_range: list[float] = field(default_factory=list)

    imu_available: bool = False
    vins_odom_available: bool = False
    imu_odom_available: bool = False

    imu_roll_init: float = 0.0
    imu_pitch_init: float = 0.0
    imu_yaw_init: float = 0.0

    initial_guess_x: float = 0.0
    initial_guess_y: float = 0.0
    initial_guess_z: float = 0.0
    initial_guess_roll: float = 0.0
    initial_guess_pitch: float = 0.0
    initial_guess_yaw: float = 0.0

    vins_odom_reset_id: int = 0
    imu_odom_reset_id: int = 0

    def clear_indices(self) -> None:
        """Drop the per-point index arrays once features have been extracted."""
        self.start_ring_index.clear()
        self.end_ring_index.clear()
        self.point_col_ind.clear()
        self.point_range.clear()