"""Projection of a raw lidar scan onto an organised range image."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from .config import SensorType
from .geometry import point_distance
from .messages import CloudInfo

Deskew = Callable[[np.ndarray, float], np.ndarray]

_RING_MARGIN = 5


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


@dataclass
class LidarScan:
    """A raw scan: xyz+intensity points, their ring, and per-point times.

    ``time`` holds each point's time relative to ``stamp``; it is None when
    the sensor gives no per-point timestamps, which disables deskewing.
    """

    points: np.ndarray
    ring: np.ndarray
    time: Optional[np.ndarray] = None
    stamp: float = 0.0
    is_dense: bool = True

    def __post_init__(self) -> None:
        pts = np.asarray(self.points, dtype=float)
        if pts.size == 0:
            pts = pts.reshape(0, 4)
        if pts.ndim != 2 or pts.shape[1] < 4:
            raise ValueError("points must be an (N, 4) array of x, y, z, intensity")
        self.points = pts[:, :4].copy()
        ring = np.asarray(self.ring, dtype=np.int64).reshape(-1)
        if len(ring) != len(pts):
            raise ValueError("one ring index is needed per point")
        self.ring = ring
        if self.time is not None:
            time = np.asarray(self.time, dtype=float).reshape(-1)
            if len(time) != len(pts):
                raise ValueError("one time is needed per point")
            self.time = time


def convert_ouster(points, times_ns) -> LidarScan:
    """Scan from Ouster points (x, y, z, intensity, ring) with nanosecond point times."""
    pts = np.asarray(points, dtype=float)
    if pts.size == 0:
        pts = pts.reshape(0, 5)
    if pts.ndim != 2 or pts.shape[1] < 5:
        raise ValueError("Ouster points must be an (N, 5) array of x, y, z, intensity, ring")
    times = np.asarray(times_ns, dtype=float).reshape(-1)
    if len(times) != len(pts):
        raise ValueError("one time is needed per point")
    return LidarScan(
        points=pts[:, :4],
        ring=pts[:, 4].astype(np.int64),
        time=times * 1e-9,
    )


class RangeImage:
    """Rings by columns grid of ranges, keeping the first point that lands in each cell."""

    def __init__(
        self,
        n_scan: int = 16,
        horizon_scan: int = 1800,
        sensor: SensorType = SensorType.VELODYNE,
        min_range: float = 1.0,
        max_range: float = 1000.0,
        downsample_rate: int = 1,
    ):
        if n_scan <= 0 or horizon_scan <= 0:
            raise ValueError("image size must be positive")
        if downsample_rate <= 0:
            raise ValueError("downsample rate must be positive")
        self.n_scan = n_scan
        self.horizon_scan = horizon_scan
        self.sensor = sensor
        self.min_range = min_range
        self.max_range = max_range
        self.downsample_rate = downsample_rate
        self.ranges = np.full((n_scan, horizon_scan), np.inf)
        self.cloud = np.zeros((n_scan * horizon_scan, 4))
        self._column_counts = [0] * n_scan
        self._ang_res_x = 360.0 / float(horizon_scan)

    def column_index(self, point, ring: int) -> int:
        """Column of a point; for Livox the next free column of its ring.

        The result may lie outside the image, in which case the point is dropped.
        """
        if self.sensor is SensorType.LIVOX:
            column = self._column_counts[ring]
            self._column_counts[ring] += 1
            return column
        angle = math.atan2(float(point[0]), float(point[1])) * 180.0 / math.pi
        column = -_round_half_away((angle - 90.0) / self._ang_res_x) + self.horizon_scan // 2
        if column >= self.horizon_scan:
            column -= self.horizon_scan
        return column

    def project(self, scan: LidarScan, deskew: Optional[Deskew] = None) -> int:
        """Place the scan's points into the image; returns how many were kept.

        ``deskew`` maps a point and its relative time to the corrected point.
        """
        times = scan.time if scan.time is not None else [None] * len(scan.points)
        kept = 0
        for row, ring, rel_time in zip(scan.points, scan.ring.tolist(), times):
            distance = point_distance(row)
            if distance < self.min_range or distance > self.max_range:
                continue
            if ring < 0 or ring >= self.n_scan:
                continue
            if ring % self.downsample_rate != 0:
                continue
            column = self.column_index(row, ring)
            if column < 0 or column >= self.horizon_scan:
                continue
            if np.isfinite(self.ranges[ring, column]):
                continue
            point = row.copy()
            if deskew is not None and rel_time is not None:
                point = np.asarray(deskew(point, float(rel_time)), dtype=float)
            self.ranges[ring, column] = distance
            self.cloud[column + ring * self.horizon_scan] = point[:4]
            kept += 1
        return kept

    def extract(self, info: CloudInfo) -> np.ndarray:
        """Collect the filled cells ring by ring, recording indices into ``info``."""
        starts: list[int] = []
        ends: list[int] = []
        columns: list[int] = []
        ranges: list[float] = []
        parts: list[np.ndarray] = []
        count = 0
        for ring, ring_ranges in enumerate(self.ranges):
            starts.append(count - 1 + _RING_MARGIN)
            filled = np.flatnonzero(np.isfinite(ring_ranges))
            columns.extend(filled.tolist())
            ranges.extend(ring_ranges[filled].tolist())
            parts.append(self.cloud[ring * self.horizon_scan + filled])
            count += len(filled)
            ends.append(count - 1 - _RING_MARGIN)
        info.start_ring_index = starts
        info.end_ring_index = ends
        info.point_col_ind = columns
        info.point_range = ranges
        return np.vstack(parts)