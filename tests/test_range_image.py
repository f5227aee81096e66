import numpy as np
import pytest

from lidarmap.config import SensorType
from lidarmap.messages import CloudInfo
from lidarmap.range_image import LidarScan, RangeImage, convert_ouster


def test_convert_ouster_keeps_points_and_rings():
    pts = np.array([[1.0, 2.0, 3.0, 7.0, 2.0], [4.0, 5.0, 6.0, 8.0, 5.0]])
    scan = convert_ouster(pts, [0, 1000])
    assert np.array_equal(scan.points, pts[:, :4])
    assert scan.ring.tolist() == [2, 5]


def test_convert_ouster_times_are_proportional():
    pts = np.zeros((3, 5))
    times_ns = np.array([0, 250_000, 500_000])
    scan = convert_ouster(pts, times_ns)
    assert scan.time[0] == 0.0
    assert scan.time[2] / scan.time[1] == pytest.approx(times_ns[2] / times_ns[1])


def test_convert_ouster_length_mismatch():
    with pytest.raises(ValueError):
        convert_ouster(np.zeros((2, 5)), [0])


def test_scan_requires_ring_per_point():
    with pytest.raises(ValueError):
        LidarScan(points=np.zeros((3, 4)), ring=[0, 1])


def test_invalid_image_size():
    with pytest.raises(ValueError):
        RangeImage(n_scan=0)


def test_column_of_forward_point():
    image = RangeImage(n_scan=16, horizon_scan=1800)
    assert image.column_index((5.0, 0.0, 0.0), 0) == 900


def test_columns_stay_in_image():
    rng = np.random.default_rng(3)
    image = RangeImage(n_scan=16, horizon_scan=1800)
    for point in rng.uniform(-20, 20, size=(200, 3)):
        assert 0 <= image.column_index(point, 0) < 1800


def test_livox_columns_count_up_per_ring():
    image = RangeImage(n_scan=4, horizon_scan=100, sensor=SensorType.LIVOX)
    first = [image.column_index((5.0, 0.0, 0.0), 1) for _ in range(3)]
    assert first == list(range(3))
    assert image.column_index((5.0, 0.0, 0.0), 2) == 0


def test_project_filters_points():
    image = RangeImage(n_scan=4, horizon_scan=1800, min_range=1.0, max_range=50.0, downsample_rate=2)
    points = np.array(
        [
            [5.0, 0.0, 0.0, 1.0],  # kept
            [0.5, 0.0, 0.0, 1.0],  # too close
            [80.0, 0.0, 0.0, 1.0],  # too far
            [5.0, 1.0, 0.0, 1.0],  # ring out of range
            [5.0, 2.0, 0.0, 1.0],  # odd ring dropped by downsampling
        ]
    )
    scan = LidarScan(points=points, ring=[0, 0, 0, 7, 1])
    assert image.project(scan) == 1
    assert np.isfinite(image.ranges).sum() == 1


def test_project_keeps_first_point_in_cell():
    image = RangeImage(n_scan=2, horizon_scan=1800)
    points = np.array([[5.0, 0.0, 0.0, 1.0], [7.0, 0.0, 0.0, 2.0]])
    scan = LidarScan(points=points, ring=[0, 0])
    assert image.project(scan) == 1
    info = CloudInfo()
    cloud = image.extract(info)
    assert np.array_equal(cloud, points[:1])
    assert info.point_range == [pytest.approx(5.0)]


def test_project_applies_deskew():
    image = RangeImage(n_scan=2, horizon_scan=1800)
    seen = []

    def shift(point, rel_time):
        seen.append(rel_time)
        return point + np.array([1.0, 0.0, 0.0, 0.0])

    scan = LidarScan(points=[[5.0, 0.0, 0.0, 3.0]], ring=[1], time=[0.05])
    image.project(scan, shift)
    cloud = image.extract(CloudInfo())
    assert seen == [0.05]
    assert cloud[0, 0] == pytest.approx(6.0)
    assert cloud[0, 3] == 3.0


def test_deskew_skipped_without_times():
    image = RangeImage(n_scan=2, horizon_scan=1800)

    def fail(point, rel_time):
        raise AssertionError("deskew must not run")

    scan = LidarScan(points=[[5.0, 0.0, 0.0, 3.0]], ring=[0])
    assert image.project(scan, fail) == 1


def test_extract_ring_indices():
    image = RangeImage(n_scan=2, horizon_scan=100, sensor=SensorType.LIVOX)
    ring0 = [[2.0 + k, 0.0, 0.0, float(k)] for k in range(12)]
    ring1 = [[3.0, 1.0 + k, 0.0, 0.0] for k in range(3)]
    scan = LidarScan(points=ring0 + ring1, ring=[0] * 12 + [1] * 3)
    image.project(scan)
    info = CloudInfo()
    cloud = image.extract(info)
    assert len(cloud) == 15
    assert len(info.point_range) == len(info.point_col_ind) == 15
    assert info.start_ring_index[0] == 4
    assert info.end_ring_index[0] == 6
    assert info.start_ring_index[1] > info.end_ring_index[0]
    assert info.point_col_ind[:12] == list(range(12))
    expected = np.linalg.norm(np.array(ring0 + ring1)[:, :3], axis=1)
    assert np.allclose(info.point_range, expected)