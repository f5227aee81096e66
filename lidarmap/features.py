"""Edge and planar feature extraction from a projected, deskewed scan."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .geometry import voxel_downsample
from .messages import CloudInfo

_HALF_WINDOW = 5
_SEGMENTS = 6
_MAX_CORNERS_PER_SEGMENT = 20
_OCCLUSION_DEPTH = 0.3
_OCCLUSION_COLUMNS = 10
_NEIGHBOR_COLUMN_GAP = 10
_PARALLEL_RATIO = 0.02


@dataclass
class FeatureClouds:
    """Corner (edge) and surface (planar) feature points of one scan."""

    corner: np.ndarray
    surface: np.ndarray


def _trunc_div(a: int, b: int) -> int:
    """Integer division rounding toward zero."""
    return -(-a // b) if a < 0 else a // b


class FeatureExtraction:
    """Select edge and planar points by local range curvature."""

    def __init__(self, edge_threshold: float = 0.1, surf_threshold: float = 0.1, surf_leaf_size: float = 0.2):
        self.edge_threshold = edge_threshold
        self.surf_threshold = surf_threshold
        self.surf_leaf_size = surf_leaf_size

    def calculate_smoothness(self, info: CloudInfo, size: int) -> np.ndarray:
        """Squared range difference of each point against its ten neighbours.

        The first and last five points have no full window and get zero.
        """
        curvature = np.zeros(size)
        if size > 2 * _HALF_WINDOW:
            ranges = np.asarray(info.point_range[:size], dtype=float)
            kernel = np.ones(2 * _HALF_WINDOW + 1)
            kernel[_HALF_WINDOW] = -2 * _HALF_WINDOW
            diff = np.convolve(ranges, kernel, mode="valid")
            curvature[_HALF_WINDOW:size - _HALF_WINDOW] = diff * diff
        return curvature

    def mark_occluded_points(self, info: CloudInfo, size: int) -> np.ndarray:
        """Flag points behind occlusion edges and points on beams parallel to a surface."""
        picked = np.zeros(size, dtype=bool)
        if size <= 2 * _HALF_WINDOW + 1:
            return picked
        ranges = np.asarray(info.point_range[:size], dtype=float)
        cols = np.asarray(info.point_col_ind[:size], dtype=np.int64)
        centre = np.arange(_HALF_WINDOW, size - _HALF_WINDOW - 1)
        depth1 = ranges[centre]
        depth2 = ranges[centre + 1]
        close = np.abs(cols[centre + 1] - cols[centre]) < _OCCLUSION_COLUMNS
        farther_first = close & (depth1 - depth2 > _OCCLUSION_DEPTH)
        farther_second = close & ~farther_first & (depth2 - depth1 > _OCCLUSION_DEPTH)
        for i in centre[farther_first]:
            picked[i - _HALF_WINDOW:i + 1] = True
        for i in centre[farther_second]:
            picked[i + 1:i + _HALF_WINDOW + 2] = True
        diff1 = np.abs(ranges[centre - 1] - depth1)
        diff2 = np.abs(depth2 - depth1)
        limit = _PARALLEL_RATIO * depth1
        picked[centre[(diff1 > limit) & (diff2 > limit)]] = True
        return picked

    def extract(self, info: CloudInfo, cloud) -> FeatureClouds:
        """Split a scan into corner and downsampled surface features.

        The per-point index arrays of ``info`` are cleared afterwards.
        """
        points = np.asarray(cloud, dtype=float)
        width = points.shape[1] if points.ndim == 2 else 4
        size = len(points)
        curvature = self.calculate_smoothness(info, size)
        picked = self.mark_occluded_points(info, size)
        labels = np.zeros(size, dtype=np.int8)
        order = np.arange(size)
        cols = np.asarray(info.point_col_ind[:size], dtype=np.int64)

        corners: list[int] = []
        surface_parts: list[np.ndarray] = []
        for start, end in zip(info.start_ring_index, info.end_ring_index):
            ring_surface: list[int] = []
            for j in range(_SEGMENTS):
                sp = _trunc_div(start * (_SEGMENTS - j) + end * j, _SEGMENTS)
                ep = _trunc_div(start * (_SEGMENTS - 1 - j) + end * (j + 1), _SEGMENTS) - 1
                if sp >= ep:
                    continue
                segment = order[sp:ep]
                order[sp:ep] = segment[np.argsort(curvature[segment], kind="stable")]

                picked_count = 0
                for ind in order[sp:ep + 1][::-1].tolist():
                    if picked[ind] or curvature[ind] <= self.edge_threshold:
                        continue
                    picked_count += 1
                    if picked_count > _MAX_CORNERS_PER_SEGMENT:
                        break
                    labels[ind] = 1
                    corners.append(ind)
                    picked[ind] = True
                    self._mark_neighbors(picked, cols, ind, size)

                for ind in order[sp:ep + 1].tolist():
                    if not picked[ind] and curvature[ind] < self.surf_threshold:
                        labels[ind] = -1
                        picked[ind] = True
                        self._mark_neighbors(picked, cols, ind, size)

                ring_surface.extend(k for k in range(sp, ep + 1) if labels[k] <= 0)

            if ring_surface:
                surface_parts.append(voxel_downsample(points[ring_surface], self.surf_leaf_size))

        corner = points[corners] if corners else np.empty((0, width))
        surface = np.vstack(surface_parts) if surface_parts else np.empty((0, width))
        info.clear_indices()
        return FeatureClouds(corner=corner, surface=surface)

    @staticmethod
    def _mark_neighbors(picked: np.ndarray, cols: np.ndarray, ind: int, size: int) -> None:
        for step in (1, -1):
            for offset in range(1, _HALF_WINDOW + 1):
                neighbor = ind + step * offset
                if not 0 <= neighbor < size:
                    break
                if abs(int(cols[neighbor]) - int(cols[neighbor - step])) > _NEIGHBOR_COLUMN_GAP:
                    break
                picked[neighbor] = True