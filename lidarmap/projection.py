"""Deskewing of raw lidar scans and their projection onto a range image."""

from __future__ import annotations

import copy
import logging
import threading
from collections import deque
from typing import Optional

import numpy as np

from .config import Extrinsics, Params
from .geometry import get_transformation
from .imu_deskew import ImuRotationIntegrator
from .messages import CloudInfo, ImuMeasurement, Odometry
from .odom_deskew import OdometryGuess, imu_odometry_guess, vins_odometry_guess
from .range_image import LidarScan, RangeImage

logger = logging.getLogger(__name__)

_CACHED_SCANS = 2


class ImageProjection:
    """Buffers sensor data and turns each raw scan into a deskewed, ordered cloud.

    Scans are held back until two newer ones have arrived, so that IMU and
    odometry data covering the whole scan are likely to be present.
    ``process`` returns the scan's ``CloudInfo`` and its extracted points, or
    None while waiting for data.
    """

    def __init__(self, params: Params, extrinsics: Optional[Extrinsics] = None):
        self.params = params
        self.extrinsics = extrinsics
        self.imu_queue: deque[ImuMeasurement] = deque()
        self.vins_odom_queue: deque[Odometry] = deque()
        self.imu_odom_queue: deque[Odometry] = deque()
        self._cloud_queue: deque[LidarScan] = deque()
        self._imu_lock = threading.Lock()
        self._vins_lock = threading.Lock()
        self._imu_odom_lock = threading.Lock()

        self._info = CloudInfo()
        self._integrator = ImuRotationIntegrator()
        self._deskew_flag = 0
        self._scan_start = 0.0
        self._scan_end = 0.0
        self._first_point = True
        self._trans_start_inverse = np.eye(4)
        self._odom_deskew = False
        self._odom_increment = (0.0, 0.0, 0.0)

    def add_imu(self, imu: ImuMeasurement) -> None:
        """Queue an IMU sample, rotated into the lidar frame when extrinsics are known."""
        if self.extrinsics is not None:
            imu = self.extrinsics.convert_imu(imu)
        with self._imu_lock:
            self.imu_queue.append(imu)

    def add_vins_odometry(self, odom: Odometry) -> None:
        """Queue a visual-inertial odometry message."""
        with self._vins_lock:
            self.vins_odom_queue.append(odom)

    def add_imu_odometry(self, odom: Odometry) -> None:
        """Queue an IMU-preintegration odometry message."""
        with self._imu_odom_lock:
            self.imu_odom_queue.append(odom)

    def process(self, scan: LidarScan) -> Optional[tuple[CloudInfo, np.ndarray]]:
        """Cache a scan and, once enough are buffered, project the oldest one."""
        self._cloud_queue.append(scan)
        if len(self._cloud_queue) <= _CACHED_SCANS:
            return None
        current = self._cloud_queue.popleft()

        if not current.is_dense:
            raise ValueError("Point cloud is not in dense format, please remove NaN points first!")

        self._scan_start = current.stamp
        last_time = 0.0
        if current.time is not None and len(current.time):
            last_time = float(current.time[-1])
        self._scan_end = self._scan_start + last_time

        if self._deskew_flag == 0:
            self._deskew_flag = 1 if current.time is not None else -1
            if self._deskew_flag == -1:
                logger.warning(
                    "Point cloud timestamp not available, deskew function disabled, "
                    "system will drift significantly!"
                )

        if not self._deskew_info():
            logger.debug("Waiting for IMU data ...")
            return None

        p = self.params
        image = RangeImage(
            n_scan=p.n_scan,
            horizon_scan=p.horizon_scan,
            sensor=p.sensor,
            min_range=p.lidar_min_range,
            max_range=p.lidar_max_range,
            downsample_rate=p.downsample_rate,
        )
        image.project(current, self.deskew_point)
        cloud = image.extract(self._info)
        self._info.stamp = current.stamp
        result = copy.deepcopy(self._info)

        self._first_point = True
        self._odom_deskew = False
        self._trans_start_inverse = np.eye(4)
        return result, cloud

    def _deskew_info(self) -> bool:
        with self._imu_lock:
            if (
                not self.imu_queue
                or self.imu_queue[0].stamp > self._scan_start
                or self.imu_queue[-1].stamp < self._scan_end
            ):
                return False
            available = self._integrator.integrate(self.imu_queue, self._scan_start, self._scan_end)
            self._info.imu_available = available
            (
                self._info.imu_roll_init,
                self._info.imu_pitch_init,
                self._info.imu_yaw_init,
            ) = self._integrator.rpy_init

        with self._vins_lock:
            self._vins_deskew_info()
        with self._imu_odom_lock:
            self._imu_odom_deskew_info()
        return True

    def _set_guess(self, guess: OdometryGuess) -> None:
        info = self._info
        info.initial_guess_x = guess.x
        info.initial_guess_y = guess.y
        info.initial_guess_z = guess.z
        info.initial_guess_roll = guess.roll
        info.initial_guess_pitch = guess.pitch
        info.initial_guess_yaw = guess.yaw

    def _vins_deskew_info(self) -> None:
        self._info.vins_odom_available = False
        guess = vins_odometry_guess(self.vins_odom_queue, self._scan_start, self._scan_end)
        if guess is None:
            return
        self._set_guess(guess)
        self._info.vins_odom_reset_id = guess.reset_id
        self._info.vins_odom_available = True

        self._odom_deskew = False
        if guess.increment is not None:
            self._odom_increment = guess.increment
            self._odom_deskew = True

    def _imu_odom_deskew_info(self) -> None:
        self._info.imu_odom_available = False
        use_guess = not self._info.vins_odom_available
        use_increment = not self._odom_deskew
        guess = imu_odometry_guess(
            self.imu_odom_queue, self._scan_start, self._scan_end, use_guess, use_increment
        )
        if guess is None:
            return
        if use_guess:
            self._set_guess(guess)
            self._info.imu_odom_reset_id = guess.reset_id
            self._info.imu_odom_available = True
        if use_increment and guess.increment is not None:
            self._odom_increment = guess.increment
            self._odom_deskew = True

    def find_position(self, rel_time: float) -> tuple[float, float, float]:
        """Translation at a time relative to the scan start, linear over the scan."""
        if not self.params.trans_deskew:
            return (0.0, 0.0, 0.0)
        info = self._info
        if not info.vins_odom_available or not info.imu_odom_available or not self._odom_deskew:
            return (0.0, 0.0, 0.0)
        span = self._scan_end - self._scan_start
        if span == 0:
            return (0.0, 0.0, 0.0)
        ratio = rel_time / span
        ix, iy, iz = self._odom_increment
        return (ratio * ix, ratio * iy, ratio * iz)

    def deskew_point(self, point, rel_time: float) -> np.ndarray:
        """Move a point into the sensor frame at the time of the scan's first point."""
        pt = np.array(point, dtype=float).reshape(-1)
        if self._deskew_flag == -1 or not self._info.imu_available:
            return pt
        rx, ry, rz = self._integrator.find_rotation(self._scan_start + rel_time)
        px, py, pz = self.find_position(rel_time)
        final = get_transformation(px, py, pz, rx, ry, rz)
        if self._first_point:
            self._trans_start_inverse = np.linalg.inv(final)
            self._first_point = False
        between = self._trans_start_inverse @ final
        out = pt.copy()
        out[:3] = between[:3, :3] @ pt[:3] + between[:3, 3]
        return out