"""Scan-to-map registration against edge lines and planar patches."""

from __future__ import annotations

import numpy as np
from scipy.spatial import cKDTree

from .geometry import quaternion_to_rpy, rpy_to_quaternion, slerp, transform_points
from .pose_graph import pose_from_transform

_NEIGHBORS = 5
_MAX_SQ_DISTANCE = 1.0
_PLANE_TOLERANCE = 0.2
_MIN_WEIGHT = 0.1
_MIN_POINTS = 50
_EIGEN_THRESHOLD = 100.0
_CONVERGED_ROTATION_DEG = 0.05
_CONVERGED_TRANSLATION_CM = 0.05


def constrain(value: float, limit: float) -> float:
    """Clamp a value into [-limit, limit]."""
    if value < -limit:
        value = -limit
    if value > limit:
        value = limit
    return value


def blend_with_imu(
    roll: float, pitch: float, imu_roll: float, imu_pitch: float, weight: float
) -> tuple[float, float]:
    """Pull roll and pitch toward the IMU's by spherical interpolation."""
    q = slerp(rpy_to_quaternion(roll, 0.0, 0.0), rpy_to_quaternion(imu_roll, 0.0, 0.0), weight)
    new_roll = quaternion_to_rpy(q)[0]
    q = slerp(rpy_to_quaternion(0.0, pitch, 0.0), rpy_to_quaternion(0.0, imu_pitch, 0.0), weight)
    new_pitch = quaternion_to_rpy(q)[1]
    return new_roll, new_pitch


def _as_cloud(points) -> np.ndarray:
    pts = np.asarray(points, dtype=float)
    if pts.size == 0:
        return np.empty((0, pts.shape[1] if pts.ndim == 2 else 4))
    if pts.ndim != 2 or pts.shape[1] < 3:
        raise ValueError("points must be an (N, 3+) array")
    return pts


def _as_transform(transform) -> np.ndarray:
    t = np.array(transform, dtype=float).reshape(-1)
    if t.size != 6:
        raise ValueError("transform needs 6 values: roll, pitch, yaw, x, y, z")
    return t


class ScanMatcher:
    """Gauss-Newton alignment of a scan's features to a local feature map.

    Transforms are [roll, pitch, yaw, x, y, z]. Coefficients are rows of
    (nx, ny, nz, residual), weighted by how well each point fits.
    """

    def __init__(self, max_iterations: int = 30):
        self.max_iterations = max_iterations
        self.is_degenerate = False
        self._projection = np.zeros((6, 6))
        self._corner_map = np.empty((0, 3))
        self._surf_map = np.empty((0, 3))
        self._corner_tree: cKDTree | None = None
        self._surf_tree: cKDTree | None = None
        self._map_set = False

    def set_map(self, corner_map, surf_map) -> None:
        """Set the edge and planar map points that scans are matched against."""
        self._corner_map = _as_cloud(corner_map)[:, :3]
        self._surf_map = _as_cloud(surf_map)[:, :3]
        self._corner_tree = cKDTree(self._corner_map) if len(self._corner_map) else None
        self._surf_tree = cKDTree(self._surf_map) if len(self._surf_map) else None
        self._map_set = True

    def _neighbors(self, tree: cKDTree | None, map_points: np.ndarray, points: np.ndarray, transform):
        if tree is None or len(points) == 0:
            return None
        selected = transform_points(points, pose_from_transform(_as_transform(transform)))[:, :3]
        dist, idx = tree.query(selected, k=_NEIGHBORS)
        dist = dist.reshape(len(points), _NEIGHBORS)
        idx = idx.reshape(len(points), _NEIGHBORS)
        valid = dist[:, -1] ** 2 < _MAX_SQ_DISTANCE
        if not valid.any():
            return None
        return np.flatnonzero(valid), selected[valid], map_points[idx[valid]]

    def corner_coefficients(self, points, transform) -> tuple[np.ndarray, np.ndarray]:
        """Matched corner points and their point-to-line coefficients."""
        pts = _as_cloud(points)
        empty = (np.empty((0, pts.shape[1])), np.empty((0, 4)))
        found = self._neighbors(self._corner_tree, self._corner_map, pts, transform)
        if found is None:
            return empty
        rows, p0, neighbors = found

        centre = neighbors.mean(axis=1)
        d = neighbors - centre[:, None, :]
        cov = np.einsum("nki,nkj->nij", d, d) / _NEIGHBORS
        eigenvalues, eigenvectors = np.linalg.eigh(cov)
        is_line = eigenvalues[:, 2] > 3 * eigenvalues[:, 1]
        direction = eigenvectors[:, :, 2]

        p1 = centre + 0.1 * direction
        p2 = centre - 0.1 * direction
        cross = np.cross(p0 - p1, p0 - p2)
        a, b, c = cross[:, 2], -cross[:, 1], cross[:, 0]
        a012 = np.linalg.norm(cross, axis=1)
        diff = p1 - p2
        l12 = np.linalg.norm(diff, axis=1)
        with np.errstate(divide="ignore", invalid="ignore"):
            la = (diff[:, 1] * a + diff[:, 2] * b) / a012 / l12
            lb = -(diff[:, 0] * a - diff[:, 2] * c) / a012 / l12
            lc = -(diff[:, 0] * b + diff[:, 1] * c) / a012 / l12
            ld2 = a012 / l12
        s = 1 - 0.9 * np.abs(ld2)
        coeffs = np.column_stack([s * la, s * lb, s * lc, s * ld2])
        keep = is_line & (s > _MIN_WEIGHT) & np.all(np.isfinite(coeffs), axis=1)
        return pts[rows[keep]], coeffs[keep]

    def surf_coefficients(self, points, transform) -> tuple[np.ndarray, np.ndarray]:
        """Matched surface points and their point-to-plane coefficients."""
        pts = _as_cloud(points)
        empty = (np.empty((0, pts.shape[1])), np.empty((0, 4)))
        found = self._neighbors(self._surf_tree, self._surf_map, pts, transform)
        if found is None:
            return empty
        rows, selected, neighbors = found

        solution = -np.linalg.pinv(neighbors).sum(axis=2)
        ps = np.linalg.norm(solution, axis=1)
        with np.errstate(divide="ignore", invalid="ignore"):
            normal = solution / ps[:, None]
            pd = 1.0 / ps
            distances = np.einsum("nkj,nj->nk", neighbors, normal) + pd[:, None]
            plane_valid = np.all(np.abs(distances) <= _PLANE_TOLERANCE, axis=1)
            pd2 = np.einsum("nj,nj->n", normal, selected) + pd
            origin_range = np.linalg.norm(pts[rows, :3], axis=1)
            s = 1 - 0.9 * np.abs(pd2) / np.sqrt(origin_range)
        coeffs = np.column_stack([s[:, None] * normal, s * pd2])
        keep = plane_valid & (s > _MIN_WEIGHT) & np.all(np.isfinite(coeffs), axis=1)
        return pts[rows[keep]], coeffs[keep]

    def lm_step(self, points, coeffs, transform, iteration: int) -> tuple[np.ndarray, bool]:
        """One linearised update of the transform; returns (transform, converged).

        With fewer than 50 matches the transform is returned unchanged. On the
        first iteration the normal matrix is checked for degenerate directions,
        which are then suppressed in this and later updates.
        """
        t = _as_transform(transform)
        pts = _as_cloud(points)
        cf = np.asarray(coeffs, dtype=float).reshape(-1, 4)
        if len(pts) < _MIN_POINTS:
            return t, False

        srx, crx = np.sin(t[1]), np.cos(t[1])
        sry, cry = np.sin(t[2]), np.cos(t[2])
        srz, crz = np.sin(t[0]), np.cos(t[0])
        # lidar axes (x, y, z) map to camera axes (z, x, y)
        px, py, pz = pts[:, 1], pts[:, 2], pts[:, 0]
        cx, cy, cz = cf[:, 1], cf[:, 2], cf[:, 0]

        arx = (
            (crx * sry * srz * px + crx * crz * sry * py - srx * sry * pz) * cx
            + (-srx * srz * px - crz * srx * py - crx * pz) * cy
            + (crx * cry * srz * px + crx * cry * crz * py - cry * srx * pz) * cz
        )
        ary = (
            ((cry * srx * srz - crz * sry) * px + (sry * srz + cry * crz * srx) * py + crx * cry * pz) * cx
            + ((-cry * crz - srx * sry * srz) * px + (cry * srz - crz * srx * sry) * py - crx * sry * pz) * cz
        )
        arz = (
            ((crz * srx * sry - cry * srz) * px + (-cry * crz - srx * sry * srz) * py) * cx
            + (crx * crz * px - crx * srz * py) * cy
            + ((sry * srz + cry * crz * srx) * px + (crz * sry - cry * srx * srz) * py) * cz
        )

        jacobian = np.column_stack([arz, arx, ary, cf[:, 0], cf[:, 1], cf[:, 2]])
        residual = -cf[:, 3]
        normal_matrix = jacobian.T @ jacobian
        step = np.linalg.lstsq(normal_matrix, jacobian.T @ residual, rcond=None)[0]

        if iteration == 0:
            eigenvalues, eigenvectors = np.linalg.eigh(normal_matrix)
            values = eigenvalues[::-1]
            basis = eigenvectors[:, ::-1].T
            reduced = basis.copy()
            self.is_degenerate = False
            for i in reversed(range(6)):
                if values[i] >= _EIGEN_THRESHOLD:
                    break
                reduced[i, :] = 0.0
                self.is_degenerate = True
            self._projection = np.linalg.inv(basis) @ reduced

        if self.is_degenerate:
            step = self._projection @ step

        t = t + step
        delta_r = float(np.linalg.norm(np.degrees(step[:3])))
        delta_t = float(np.linalg.norm(step[3:] * 100))
        converged = delta_r < _CONVERGED_ROTATION_DEG and delta_t < _CONVERGED_TRANSLATION_CM
        return t, converged

    def optimize(self, corners, surfs, transform) -> np.ndarray:
        """Iterate matching and updates until convergence or the iteration limit."""
        if not self._map_set:
            raise RuntimeError("set_map must be called before optimize")
        t = _as_transform(transform)
        for iteration in range(self.max_iterations):
            corner_pts, corner_coeffs = self.corner_coefficients(corners, t)
            surf_pts, surf_coeffs = self.surf_coefficients(surfs, t)
            points = np.vstack([corner_pts[:, :3], surf_pts[:, :3]])
            coeffs = np.vstack([corner_coeffs, surf_coeffs])
            t, converged = self.lm_step(points, coeffs, t, iteration)
            if converged:
                break
        return t