import numpy as np
import pytest

from lidarmap.registration import ScanMatcher, blend_with_imu, constrain


def with_intensity(xyz):
    xyz = np.asarray(xyz, dtype=float)
    return np.column_stack([xyz, np.zeros(len(xyz))])


def grid(a, b):
    aa, bb = np.meshgrid(a, b, indexing="ij")
    return aa.ravel(), bb.ravel()


def three_planes():
    axis = np.linspace(-3, 3, 31)
    u, v = grid(axis, axis)
    plane_x = np.column_stack([np.full_like(u, 5.0), u, v])
    plane_y = np.column_stack([u, np.full_like(u, 5.0), v])
    plane_z = np.column_stack([u, v, np.full_like(u, -4.0)])
    return with_intensity(np.vstack([plane_x, plane_y, plane_z]))


def test_constrain_clamps():
    assert constrain(5.0, 2.0) == 2.0
    assert constrain(-5.0, 2.0) == -2.0
    assert constrain(1.5, 2.0) == 1.5


def test_blend_endpoints():
    assert blend_with_imu(0.3, -0.2, 0.1, 0.4, 0.0) == pytest.approx((0.3, -0.2))
    assert blend_with_imu(0.3, -0.2, 0.1, 0.4, 1.0) == pytest.approx((0.1, 0.4))


def test_blend_halfway_is_between():
    roll, pitch = blend_with_imu(0.0, 0.0, 0.2, -0.4, 0.5)
    assert roll == pytest.approx(0.1)
    assert pitch == pytest.approx(-0.2)


def test_corner_coefficient_points_away_from_line():
    line = with_intensity(np.column_stack([np.linspace(-1, 1, 21), np.zeros(21), np.zeros(21)]))
    matcher = ScanMatcher()
    matcher.set_map(line, np.empty((0, 4)))
    query = with_intensity([[0.0, 0.05, 0.0]])
    pts, coeffs = matcher.corner_coefficients(query, np.zeros(6))
    assert len(pts) == 1
    np.testing.assert_allclose(pts[0], query[0])
    norm = np.linalg.norm(coeffs[0, :3])
    np.testing.assert_allclose(coeffs[0, :3] / norm, [0.0, 1.0, 0.0], atol=1e-6)
    assert coeffs[0, 3] / norm == pytest.approx(0.05)


def test_corner_far_point_has_no_match():
    line = with_intensity(np.column_stack([np.linspace(-1, 1, 21), np.zeros(21), np.zeros(21)]))
    matcher = ScanMatcher()
    matcher.set_map(line, np.empty((0, 4)))
    pts, coeffs = matcher.corner_coefficients(with_intensity([[0.0, 5.0, 0.0]]), np.zeros(6))
    assert pts.shape[0] == 0
    assert coeffs.shape == (0, 4)


def test_surf_coefficient_is_plane_normal():
    u, v = grid(np.linspace(-1, 1, 21), np.linspace(-1, 1, 21))
    plane = with_intensity(np.column_stack([u, v, np.ones_like(u)]))
    matcher = ScanMatcher()
    matcher.set_map(np.empty((0, 4)), plane)
    query = with_intensity([[0.03, 0.03, 1.2]])
    pts, coeffs = matcher.surf_coefficients(query, np.zeros(6))
    assert len(pts) == 1
    norm = np.linalg.norm(coeffs[0, :3])
    np.testing.assert_allclose(coeffs[0, :3] / norm, [0.0, 0.0, -1.0], atol=1e-9)
    assert coeffs[0, 3] / norm == pytest.approx(1.0 - 1.2)


def test_lm_step_needs_enough_points():
    matcher = ScanMatcher()
    start = np.array([0.1, 0.0, 0.0, 1.0, 2.0, 3.0])
    t, converged = matcher.lm_step(np.ones((10, 3)), np.ones((10, 4)), start, 0)
    np.testing.assert_array_equal(t, start)
    assert converged is False


def single_plane(offset):
    y, z = grid(np.linspace(-1, 1, 11), np.linspace(-1, 1, 11))
    points = np.column_stack([np.full_like(y, 5.0), y, z])
    coeffs = np.tile([1.0, 0.0, 0.0, -offset], (len(points), 1))
    return points, coeffs


def test_lm_step_zero_residual_converges():
    points, coeffs = single_plane(0.0)
    matcher = ScanMatcher()
    t, converged = matcher.lm_step(points, coeffs, np.zeros(6), 0)
    np.testing.assert_allclose(t, np.zeros(6), atol=1e-12)
    assert converged is True


def test_lm_step_single_plane_is_degenerate():
    points, coeffs = single_plane(0.1)
    matcher = ScanMatcher()
    t, converged = matcher.lm_step(points, coeffs, np.zeros(6), 0)
    assert matcher.is_degenerate is True
    assert converged is False
    assert t[3] == pytest.approx(0.1)
    np.testing.assert_allclose(t[[0, 1, 2, 4, 5]], 0.0, atol=1e-9)


def test_optimize_recovers_translation():
    surf_map = three_planes()
    offset = np.array([0.1, -0.08, 0.05])
    scan = surf_map[::2].copy()
    scan[:, :3] -= offset
    matcher = ScanMatcher()
    matcher.set_map(np.empty((0, 4)), surf_map)
    t = matcher.optimize(np.empty((0, 4)), scan, np.zeros(6))
    assert matcher.is_degenerate is False
    np.testing.assert_allclose(t[3:], offset, atol=1e-3)
    np.testing.assert_allclose(t[:3], 0.0, atol=1e-3)


def test_optimize_requires_map():
    with pytest.raises(RuntimeError):
        ScanMatcher().optimize(np.empty((0, 4)), np.empty((0, 4)), np.zeros(6))


def test_transform_must_have_six_values():
    matcher = ScanMatcher()
    with pytest.raises(ValueError):
        matcher.lm_step(np.ones((60, 3)), np.ones((60, 4)), [0.0, 0.0, 0.0], 0)