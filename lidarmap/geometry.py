"""Rigid-body transforms, Euler angles, quaternions and point-cloud helpers.

Point clouds are numpy arrays of shape (N, 4) holding x, y, z and intensity;
extra columns are carried along untouched.
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from .messages import Quaternion


def _rotation(roll: float, pitch: float, yaw: float) -> np.ndarray:
    cr, sr = math.cos(roll), math.sin(roll)
    cp, sp = math.cos(pitch), math.sin(pitch)
    cy, sy = math.cos(yaw), math.sin(yaw)
    return np.array(
        [
            [cy * cp, cy * sp * sr - sy * cr, cy * sp * cr + sy * sr],
            [sy * cp, sy * sp * sr + cy * cr, sy * sp * cr - cy * sr],
            [-sp, cp * sr, cp * cr],
        ]
    )


def _matrix_to_rpy(rotation: np.ndarray) -> tuple[float, float, float]:
    r20 = float(rotation[2, 0])
    if abs(r20) >= 1.0:
        pitch = -math.copysign(math.pi / 2.0, r20)
        roll = math.atan2(-float(rotation[1, 2]), float(rotation[1, 1]))
        return roll, pitch, 0.0
    pitch = math.asin(-r20)
    roll = math.atan2(float(rotation[2, 1]), float(rotation[2, 2]))
    yaw = math.atan2(float(rotation[1, 0]), float(rotation[0, 0]))
    return roll, pitch, yaw


def get_transformation(x: float, y: float, z: float, roll: float, pitch: float, yaw: float) -> np.ndarray:
    """Homogeneous 4x4 transform with rotation Rz(yaw) Ry(pitch) Rx(roll)."""
    matrix = np.eye(4)
    matrix[:3, :3] = _rotation(roll, pitch, yaw)
    matrix[:3, 3] = (x, y, z)
    return matrix


def translation_and_euler(matrix) -> tuple[float, float, float, float, float, float]:
    """Split a 4x4 transform into (x, y, z, roll, pitch, yaw)."""
    m = np.asarray(matrix, dtype=float)
    roll, pitch, yaw = _matrix_to_rpy(m[:3, :3])
    return float(m[0, 3]), float(m[1, 3]), float(m[2, 3]), roll, pitch, yaw


def quaternion_to_matrix(q: Quaternion) -> np.ndarray:
    """3x3 rotation matrix of a (normalised) quaternion."""
    n = q.norm()
    if n == 0.0:
        raise ValueError("zero-length quaternion has no rotation")
    x, y, z, w = q.x / n, q.y / n, q.z / n, q.w / n
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - z * w), 2 * (x * z + y * w)],
            [2 * (x * y + z * w), 1 - 2 * (x * x + z * z), 2 * (y * z - x * w)],
            [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x * x + y * y)],
        ]
    )


def matrix_to_quaternion(matrix) -> Quaternion:
    """Quaternion of a rotation matrix (3x3 or the rotation block of a 4x4)."""
    m = np.asarray(matrix, dtype=float)[:3, :3]
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > 0.0:
        s = math.sqrt(trace + 1.0) * 2.0
        w = 0.25 * s
        x = (m[2, 1] - m[1, 2]) / s
        y = (m[0, 2] - m[2, 0]) / s
        z = (m[1, 0] - m[0, 1]) / s
    elif m[0, 0] > m[1, 1] and m[0, 0] > m[2, 2]:
        s = math.sqrt(1.0 + m[0, 0] - m[1, 1] - m[2, 2]) * 2.0
        w = (m[2, 1] - m[1, 2]) / s
        x = 0.25 * s
        y = (m[0, 1] + m[1, 0]) / s
        z = (m[0, 2] + m[2, 0]) / s
    elif m[1, 1] > m[2, 2]:
        s = math.sqrt(1.0 + m[1, 1] - m[0, 0] - m[2, 2]) * 2.0
        w = (m[0, 2] - m[2, 0]) / s
        x = (m[0, 1] + m[1, 0]) / s
        y = 0.25 * s
        z = (m[1, 2] + m[2, 1]) / s
    else:
        s = math.sqrt(1.0 + m[2, 2] - m[0, 0] - m[1, 1]) * 2.0
        w = (m[1, 0] - m[0, 1]) / s
        x = (m[0, 2] + m[2, 0]) / s
        y = (m[1, 2] + m[2, 1]) / s
        z = 0.25 * s
    return Quaternion(float(x), float(y), float(z), float(w))


def quaternion_to_rpy(q: Quaternion) -> tuple[float, float, float]:
    """Roll, pitch and yaw of a quaternion."""
    return _matrix_to_rpy(quaternion_to_matrix(q))


def rpy_to_quaternion(roll: float, pitch: float, yaw: float) -> Quaternion:
    """Quaternion of the rotation Rz(yaw) Ry(pitch) Rx(roll)."""
    cr, sr = math.cos(roll / 2.0), math.sin(roll / 2.0)
    cp, sp = math.cos(pitch / 2.0), math.sin(pitch / 2.0)
    cy, sy = math.cos(yaw / 2.0), math.sin(yaw / 2.0)
    return Quaternion(
        x=sr * cp * cy - cr * sp * sy,
        y=cr * sp * cy + sr * cp * sy,
        z=cr * cp * sy - sr * sp * cy,
        w=cr * cp * cy + sr * sp * sy,
    )


def quaternion_multiply(a: Quaternion, b: Quaternion) -> Quaternion:
    """Hamilton product a * b."""
    return Quaternion(
        x=a.w * b.x + a.x * b.w + a.y * b.z - a.z * b.y,
        y=a.w * b.y - a.x * b.z + a.y * b.w + a.z * b.x,
        z=a.w * b.z + a.x * b.y - a.y * b.x + a.z * b.w,
        w=a.w * b.w - a.x * b.x - a.y * b.y - a.z * b.z,
    )


def slerp(q1: Quaternion, q2: Quaternion, t: float) -> Quaternion:
    """Spherical interpolation from q1 (t=0) to q2 (t=1) along the shortest path."""
    dot = q1.x * q2.x + q1.y * q2.y + q1.z * q2.z + q1.w * q2.w
    scale = q1.norm() * q2.norm()
    if scale == 0.0:
        raise ValueError("cannot interpolate a zero-length quaternion")
    theta = math.acos(min(1.0, abs(dot) / scale))
    if theta == 0.0:
        return q1
    d = 1.0 / math.sin(theta)
    s0 = math.sin((1.0 - t) * theta)
    s1 = math.sin(t * theta)
    if dot < 0.0:
        s1 = -s1
    return Quaternion(
        x=(q1.x * s0 + q2.x * s1) * d,
        y=(q1.y * s0 + q2.y * s1) * d,
        z=(q1.z * s0 + q2.z * s1) * d,
        w=(q1.w * s0 + q2.w * s1) * d,
    )


def point_distance(p: Sequence[float], q: Sequence[float] | None = None) -> float:
    """Distance between two points, or of one point from the origin."""
    a = np.asarray(p, dtype=float)[:3]
    if q is None:
        return float(np.linalg.norm(a))
    b = np.asarray(q, dtype=float)[:3]
    return float(np.linalg.norm(a - b))


def transform_points(points, matrix) -> np.ndarray:
    """Apply a 4x4 transform to the xyz columns of a cloud; other columns are kept."""
    out = np.array(points, dtype=float)
    if out.ndim != 2 or out.shape[1] < 3:
        raise ValueError("points must be an (N, 3+) array")
    m = np.asarray(matrix, dtype=float)
    out[:, :3] = out[:, :3] @ m[:3, :3].T + m[:3, 3]
    return out


def voxel_downsample(points, leaf_size: float) -> np.ndarray:
    """Replace the points of each cubic voxel by their centroid (all columns averaged).

    Voxels come out ordered by z, then y, then x index.
    """
    if leaf_size <= 0:
        raise ValueError("leaf size must be positive")
    pts = np.asarray(points, dtype=float)
    if pts.size == 0:
        width = pts.shape[1] if pts.ndim == 2 else 4
        return np.empty((0, width))
    if pts.ndim != 2 or pts.shape[1] < 3:
        raise ValueError("points must be an (N, 3+) array")
    voxel = np.floor(pts[:, :3] / leaf_size).astype(np.int64)
    _, inverse = np.unique(voxel[:, ::-1], axis=0, return_inverse=True)
    inverse = inverse.reshape(-1)
    count = int(inverse.max()) + 1
    sums = np.zeros((count, pts.shape[1]))
    np.add.at(sums, inverse, pts)
    counts = np.bincount(inverse, minlength=count)
    return sums / counts[:, None]