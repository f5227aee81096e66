"""Integration of IMU angular rate over a scan, for rotational deskewing."""

from __future__ import annotations

from bisect import bisect_right
from typing import MutableSequence

from .geometry import quaternion_to_rpy
from .messages import ImuMeasurement

_TIME_MARGIN = 0.01

Rotation3 = tuple[float, float, float]


class ImuRotationIntegrator:
    """Accumulated rotation of the IMU over the span of one scan.

    ``rpy_init`` holds the orientation of the last sample at or before the
    scan start; it keeps its previous value when no such sample exists.
    """

    def __init__(self) -> None:
        self.available = False
        self.rpy_init: Rotation3 = (0.0, 0.0, 0.0)
        self._times: list[float] = []
        self._rotations: list[Rotation3] = []

    def integrate(
        self,
        imu_queue: MutableSequence[ImuMeasurement],
        scan_start: float,
        scan_end: float,
    ) -> bool:
        """Integrate angular rate from the scan start to just past its end.

        Samples older than the scan start (less a small margin) are removed
        from ``imu_queue``. Returns whether rotation data is available.
        """
        self.available = False
        self._times = []
        self._rotations = []

        while imu_queue and imu_queue[0].stamp < scan_start - _TIME_MARGIN:
            del imu_queue[0]
        if not imu_queue:
            return False

        times: list[float] = []
        rotations: list[Rotation3] = []
        for imu in imu_queue:
            if imu.stamp <= scan_start:
                self.rpy_init = quaternion_to_rpy(imu.orientation)
            if imu.stamp > scan_end + _TIME_MARGIN:
                break
            if not times:
                times.append(imu.stamp)
                rotations.append((0.0, 0.0, 0.0))
                continue
            dt = imu.stamp - times[-1]
            wx, wy, wz = imu.angular_velocity
            rx, ry, rz = rotations[-1]
            rotations.append((rx + wx * dt, ry + wy * dt, rz + wz * dt))
            times.append(imu.stamp)

        self._times = times
        self._rotations = rotations
        self.available = len(times) > 1
        return self.available

    def find_rotation(self, point_time: float) -> Rotation3:
        """Rotation at an absolute time, interpolated between integrated samples.

        Times outside the integrated span take the nearest end value.
        """
        if not self._times:
            return (0.0, 0.0, 0.0)
        last = len(self._times) - 1
        front = min(bisect_right(self._times, point_time), last)
        if point_time > self._times[front] or front == 0:
            return self._rotations[front]
        back = front - 1
        span = self._times[front] - self._times[back]
        ratio_front = (point_time - self._times[back]) / span
        ratio_back = (self._times[front] - point_time) / span
        rot_front = self._rotations[front]
        rot_back = self._rotations[back]
        return (
            rot_front[0] * ratio_front + rot_back[0] * ratio_back,
            rot_front[1] * ratio_front + rot_back[1] * ratio_back,
            rot_front[2] * ratio_front + rot_back[2] * ratio_back,
        )