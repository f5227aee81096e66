"""Pose conversions and a nonlinear least-squares pose graph over SE(3)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import spsolve
from scipy.spatial.transform import Rotation

from .geometry import get_transformation, translation_and_euler

_EPS = 1e-6


def pose_from_transform(transform: Sequence[float]) -> np.ndarray:
    """4x4 pose of a [roll, pitch, yaw, x, y, z] transform."""
    t = [float(v) for v in transform]
    if len(t) != 6:
        raise ValueError("transform needs 6 values")
    return get_transformation(t[3], t[4], t[5], t[0], t[1], t[2])


def pose_to_transform(pose) -> np.ndarray:
    """[roll, pitch, yaw, x, y, z] of a 4x4 pose."""
    x, y, z, roll, pitch, yaw = translation_and_euler(pose)
    return np.array([roll, pitch, yaw, x, y, z])


def _inverse(pose: np.ndarray) -> np.ndarray:
    out = np.eye(4)
    rt = pose[:3, :3].T
    out[:3, :3] = rt
    out[:3, 3] = -rt @ pose[:3, 3]
    return out


def _log(pose: np.ndarray) -> np.ndarray:
    rotvec = Rotation.from_matrix(pose[:3, :3]).as_rotvec()
    return np.concatenate([rotvec, pose[:3, 3]])


def _retract(pose: np.ndarray, delta: np.ndarray) -> np.ndarray:
    out = np.eye(4)
    rotation = pose[:3, :3]
    out[:3, :3] = rotation @ Rotation.from_rotvec(delta[:3]).as_matrix()
    out[:3, 3] = pose[:3, 3] + rotation @ delta[3:]
    return out


def _as_pose(pose) -> np.ndarray:
    m = np.array(pose, dtype=float)
    if m.shape != (4, 4):
        raise ValueError("pose must be a 4x4 matrix")
    return m


def _sqrt_information(variances: Sequence[float]) -> np.ndarray:
    v = np.asarray(variances, dtype=float).reshape(-1)
    if v.size != 6:
        raise ValueError("variances need 6 values (rotation first, then translation)")
    if not np.all(v > 0) or not np.all(np.isfinite(v)):
        raise ValueError("variances must be positive and finite")
    return 1.0 / np.sqrt(v)


@dataclass(frozen=True, eq=False)
class _Factor:
    keys: tuple[int, ...]
    measurement_inverse: np.ndarray
    weight: np.ndarray

    def residual(self, poses: Sequence[np.ndarray]) -> np.ndarray:
        if len(poses) == 1:
            error = self.measurement_inverse @ poses[0]
        else:
            error = self.measurement_inverse @ _inverse(poses[0]) @ poses[1]
        return _log(error) * self.weight


class PoseGraph:
    """Prior and between factors on 4x4 poses, solved by Levenberg-Marquardt.

    Factors accumulate across calls; ``optimize`` refines every inserted pose.
    Noise is given as six variances, rotation (rad^2) first, then translation (m^2).
    """

    def __init__(self, max_iterations: int = 50):
        self.max_iterations = max_iterations
        self._factors: list[_Factor] = []
        self._values: dict[int, np.ndarray] = {}

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def add_prior(self, key: int, pose, variances: Sequence[float]) -> None:
        """Anchor a pose to a measured value."""
        self._factors.append(_Factor((key,), _inverse(_as_pose(pose)), _sqrt_information(variances)))

    def add_between(self, key_from: int, key_to: int, relative, variances: Sequence[float]) -> None:
        """Constrain the pose of ``key_to`` seen from ``key_from``."""
        self._factors.append(
            _Factor((key_from, key_to), _inverse(_as_pose(relative)), _sqrt_information(variances))
        )

    def insert(self, key: int, pose) -> None:
        """Add the initial estimate of a new pose."""
        if key in self._values:
            raise ValueError(f"pose {key} already exists")
        self._values[key] = _as_pose(pose)

    def estimate(self, key: int) -> np.ndarray:
        """Current estimate of a pose."""
        try:
            return self._values[key].copy()
        except KeyError:
            raise KeyError(f"no pose with key {key}") from None

    def optimize(self) -> None:
        """Refine all poses against all factors added so far."""
        if not self._factors:
            return
        missing = {k for f in self._factors for k in f.keys} - self._values.keys()
        if missing:
            raise KeyError(f"factors refer to poses without estimates: {sorted(missing)}")

        keys = sorted(self._values)
        index = {key: i for i, key in enumerate(keys)}
        size = 6 * len(keys)
        values = self._values
        cost = self._cost(values)
        damping = 1e-6

        for _ in range(self.max_iterations):
            hessian, gradient = self._linearize(values, index, size)
            accepted = False
            while damping < 1e10:
                system = (hessian + damping * sparse.identity(size, format="csc")).tocsc()
                step = np.atleast_1d(spsolve(system, -gradient))
                candidate = {
                    key: _retract(values[key], step[6 * index[key]:6 * index[key] + 6]) for key in keys
                }
                new_cost = self._cost(candidate)
                if new_cost <= cost:
                    accepted = True
                    break
                damping *= 10.0
            if not accepted:
                break
            decrease = cost - new_cost
            values, cost = candidate, new_cost
            damping = max(damping / 10.0, 1e-12)
            if np.linalg.norm(step) < 1e-10 or decrease <= 1e-14 * max(cost, 1.0):
                break

        self._values = values

    def _cost(self, values: dict[int, np.ndarray]) -> float:
        total = 0.0
        for factor in self._factors:
            r = factor.residual([values[k] for k in factor.keys])
            total += float(r @ r)
        return 0.5 * total

    def _linearize(self, values: dict[int, np.ndarray], index: dict[int, int], size: int):
        rows: list[np.ndarray] = []
        cols: list[np.ndarray] = []
        data: list[np.ndarray] = []
        gradient = np.zeros(size)
        offsets = np.arange(6)
        for factor in self._factors:
            poses = [values[k] for k in factor.keys]
            r0 = factor.residual(poses)
            jacobians = []
            for slot in range(len(poses)):
                jac = np.empty((6, 6))
                for d in range(6):
                    delta = np.zeros(6)
                    delta[d] = _EPS
                    plus = list(poses)
                    minus = list(poses)
                    plus[slot] = _retract(poses[slot], delta)
                    minus[slot] = _retract(poses[slot], -delta)
                    jac[:, d] = (factor.residual(plus) - factor.residual(minus)) / (2.0 * _EPS)
                jacobians.append(jac)
            for a, key_a in enumerate(factor.keys):
                ia = 6 * index[key_a] + offsets
                gradient[ia] += jacobians[a].T @ r0
                for b, key_b in enumerate(factor.keys):
                    ib = 6 * index[key_b] + offsets
                    rr, cc = np.meshgrid(ia, ib, indexing="ij")
                    rows.append(rr.ravel())
                    cols.append(cc.ravel())
                    data.append((jacobians[a].T @ jacobians[b]).ravel())
        hessian = sparse.coo_matrix(
            (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))), shape=(size, size)
        ).tocsc()
        return hessian, gradient