import math

import numpy as np
import pytest

from lidarmap.geometry import (
    get_transformation,
    matrix_to_quaternion,
    point_distance,
    quaternion_multiply,
    quaternion_to_matrix,
    quaternion_to_rpy,
    rpy_to_quaternion,
    slerp,
    transform_points,
    translation_and_euler,
    voxel_downsample,
)
from lidarmap.messages import Quaternion

POSES = [
    (0.0, 0.0, 0.0, 0.0, 0.0, 0.0),
    (1.0, -2.0, 3.0, 0.1, -0.2, 0.3),
    (-5.0, 0.5, 2.0, -1.2, 0.7, 2.5),
    (0.3, 0.3, -0.3, 3.0, -1.4, -3.0),
]


def test_zero_pose_is_identity():
    assert np.allclose(get_transformation(0, 0, 0, 0, 0, 0), np.eye(4))


@pytest.mark.parametrize("pose", POSES)
def test_transform_euler_round_trip(pose):
    result = translation_and_euler(get_transformation(*pose))
    assert result == pytest.approx(pose, abs=1e-9)


@pytest.mark.parametrize("pose", POSES)
def test_rotation_block_is_orthonormal(pose):
    r = get_transformation(*pose)[:3, :3]
    assert np.allclose(r @ r.T, np.eye(3))
    assert np.linalg.det(r) == pytest.approx(1.0)


@pytest.mark.parametrize("pose", POSES)
def test_rpy_quaternion_round_trip(pose):
    rpy = pose[3:]
    q = rpy_to_quaternion(*rpy)
    assert q.norm() == pytest.approx(1.0)
    assert quaternion_to_rpy(q) == pytest.approx(rpy, abs=1e-9)


@pytest.mark.parametrize("pose", POSES)
def test_quaternion_matrix_matches_transformation(pose):
    q = rpy_to_quaternion(*pose[3:])
    assert np.allclose(quaternion_to_matrix(q), get_transformation(*pose)[:3, :3])


@pytest.mark.parametrize("pose", POSES)
def test_matrix_quaternion_round_trip(pose):
    matrix = get_transformation(*pose)
    q = matrix_to_quaternion(matrix)
    assert np.allclose(quaternion_to_matrix(q), matrix[:3, :3])


def test_gimbal_lock_keeps_rotation():
    q = rpy_to_quaternion(0.4, math.pi / 2, 0.0)
    roll, pitch, yaw = quaternion_to_rpy(q)
    assert pitch == pytest.approx(math.pi / 2)
    assert np.allclose(get_transformation(0, 0, 0, roll, pitch, yaw)[:3, :3], quaternion_to_matrix(q))


def test_zero_quaternion_rejected():
    with pytest.raises(ValueError):
        quaternion_to_matrix(Quaternion(0.0, 0.0, 0.0, 0.0))


def test_multiply_composes_yaw():
    a = rpy_to_quaternion(0.0, 0.0, 0.3)
    b = rpy_to_quaternion(0.0, 0.0, 0.4)
    assert quaternion_to_rpy(quaternion_multiply(a, b)) == pytest.approx((0.0, 0.0, 0.7), abs=1e-9)


def test_multiply_matches_matrix_product():
    a = rpy_to_quaternion(0.1, 0.2, 0.3)
    b = rpy_to_quaternion(-0.5, 0.4, 1.0)
    product = quaternion_to_matrix(quaternion_multiply(a, b))
    assert np.allclose(product, quaternion_to_matrix(a) @ quaternion_to_matrix(b))


def test_slerp_end_points():
    a = rpy_to_quaternion(0.0, 0.0, 0.0)
    b = rpy_to_quaternion(0.0, 0.0, 1.0)
    assert quaternion_to_rpy(slerp(a, b, 0.0)) == pytest.approx((0.0, 0.0, 0.0), abs=1e-9)
    assert quaternion_to_rpy(slerp(a, b, 1.0)) == pytest.approx((0.0, 0.0, 1.0), abs=1e-9)


def test_slerp_midpoint_halves_angle():
    a = rpy_to_quaternion(0.2, 0.0, 0.0)
    b = rpy_to_quaternion(0.8, 0.0, 0.0)
    roll, _, _ = quaternion_to_rpy(slerp(a, b, 0.5))
    assert roll == pytest.approx((0.2 + 0.8) / 2)


def test_slerp_takes_shortest_path_for_negated_target():
    a = rpy_to_quaternion(0.0, 0.0, 0.2)
    b = rpy_to_quaternion(0.0, 0.0, 0.6)
    negated = Quaternion(-b.x, -b.y, -b.z, -b.w)
    direct = quaternion_to_rpy(slerp(a, b, 0.25))
    flipped = quaternion_to_rpy(slerp(a, negated, 0.25))
    assert flipped == pytest.approx(direct, abs=1e-9)


def test_slerp_identical_returns_first():
    a = rpy_to_quaternion(0.1, 0.2, 0.3)
    assert slerp(a, a, 0.7) == a


def test_point_distance():
    assert point_distance((3.0, 4.0, 0.0, 9.0)) == pytest.approx(5.0)
    p, q = (1.0, 2.0, 3.0), (-1.0, 0.5, 7.0)
    assert point_distance(p, q) == pytest.approx(point_distance(q, p))
    assert point_distance(p, p) == 0.0


def test_transform_points_round_trip_keeps_intensity():
    rng = np.random.default_rng(1)
    cloud = rng.normal(size=(20, 4))
    matrix = get_transformation(1.0, 2.0, 3.0, 0.3, -0.2, 0.1)
    moved = transform_points(cloud, matrix)
    back = transform_points(moved, np.linalg.inv(matrix))
    assert np.allclose(back, cloud)
    assert np.array_equal(moved[:, 3], cloud[:, 3])


def test_transform_points_preserves_distances():
    rng = np.random.default_rng(2)
    cloud = rng.normal(size=(10, 4))
    moved = transform_points(cloud, get_transformation(4.0, -1.0, 0.5, 1.0, 0.5, -2.0))
    assert point_distance(moved[0], moved[1]) == pytest.approx(point_distance(cloud[0], cloud[1]))


def test_transform_points_rejects_bad_shape():
    with pytest.raises(ValueError):
        transform_points(np.zeros((3, 2)), np.eye(4))


def test_voxel_single_voxel_gives_centroid():
    cloud = np.array([[0.1, 0.1, 0.1, 1.0], [0.3, 0.3, 0.3, 3.0], [0.5, 0.2, 0.8, 2.0]])
    out = voxel_downsample(cloud, 1.0)
    assert out.shape == (1, 4)
    assert np.allclose(out[0], cloud.mean(axis=0))


def test_voxel_separate_points_are_kept_in_z_order():
    cloud = np.array([[0.5, 0.5, 5.5, 1.0], [0.5, 0.5, 0.5, 2.0]])
    out = voxel_downsample(cloud, 1.0)
    assert out.shape == (2, 4)
    assert out[0, 2] < out[1, 2]
    assert sorted(out[:, 3].tolist()) == sorted(cloud[:, 3].tolist())


def test_voxel_never_grows_cloud():
    rng = np.random.default_rng(3)
    cloud = rng.uniform(-5, 5, size=(500, 4))
    out = voxel_downsample(cloud, 2.0)
    assert 0 < len(out) <= len(cloud)


def test_voxel_empty_and_invalid():
    assert voxel_downsample(np.empty((0, 4)), 0.5).shape == (0, 4)
    with pytest.raises(ValueError):
        voxel_downsample(np.zeros((1, 4)), 0.0)