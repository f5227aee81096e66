import numpy as np
import pytest

from lidarmap.features import FeatureExtraction
from lidarmap.messages import CloudInfo


def make_ring(ranges, columns=None):
    n = len(ranges)
    index = np.arange(n, dtype=float)
    cloud = np.column_stack([index, np.zeros(n), np.zeros(n), index])
    info = CloudInfo(
        start_ring_index=[-1 + 5],
        end_ring_index=[n - 1 - 5],
        point_col_ind=list(range(n)) if columns is None else list(columns),
        point_range=[float(r) for r in ranges],
    )
    return info, cloud


def test_flat_ring_has_zero_curvature():
    info, cloud = make_ring([10.0] * 40)
    curvature = FeatureExtraction().calculate_smoothness(info, len(cloud))
    assert curvature.shape == (40,)
    assert np.allclose(curvature, 0.0)


def test_spike_has_largest_curvature():
    ranges = [10.0] * 40
    ranges[20] += 0.1
    info, cloud = make_ring(ranges)
    curvature = FeatureExtraction().calculate_smoothness(info, len(cloud))
    assert int(np.argmax(curvature)) == 20
    assert curvature[19] == pytest.approx(curvature[21])
    assert np.all(curvature[:5] == 0.0)
    assert np.all(curvature[-5:] == 0.0)


def test_occlusion_marks_points_before_drop():
    ranges = [10.0] * 20 + [5.0] * 20
    info, cloud = make_ring(ranges)
    picked = FeatureExtraction().mark_occluded_points(info, len(cloud))
    assert np.flatnonzero(picked).tolist() == list(range(14, 20))


def test_occlusion_marks_points_after_rise():
    ranges = [5.0] * 20 + [10.0] * 20
    info, cloud = make_ring(ranges)
    picked = FeatureExtraction().mark_occluded_points(info, len(cloud))
    assert np.flatnonzero(picked).tolist() == list(range(20, 26))


def test_occlusion_ignored_across_column_gap():
    ranges = [10.0] * 20 + [5.0] * 20
    columns = list(range(20)) + list(range(100, 120))
    info, cloud = make_ring(ranges, columns)
    picked = FeatureExtraction().mark_occluded_points(info, len(cloud))
    assert not picked.any()


def test_parallel_beam_point_is_marked():
    ranges = [10.0] * 40
    ranges[20] += 0.25
    info, cloud = make_ring(ranges)
    picked = FeatureExtraction().mark_occluded_points(info, len(cloud))
    assert np.flatnonzero(picked).tolist() == [20]


def test_flat_ring_gives_only_surface():
    info, cloud = make_ring([10.0] * 60)
    features = FeatureExtraction().extract(info, cloud)
    assert features.corner.shape == (0, 4)
    assert len(features.surface) > 0
    assert set(features.surface[:, 3].tolist()) <= set(cloud[:, 3].tolist())


def test_spike_becomes_corner_and_not_surface():
    ranges = [10.0] * 60
    ranges[30] += 0.1
    info, cloud = make_ring(ranges)
    features = FeatureExtraction(edge_threshold=0.1, surf_threshold=0.1).extract(info, cloud)
    assert features.corner[:, 3].tolist() == [30.0]
    assert 30.0 not in features.surface[:, 3].tolist()


def test_at_most_twenty_corners_per_segment():
    rng = np.random.default_rng(0)
    ranges = 10.0 + rng.uniform(-0.05, 0.05, 3000)
    info, cloud = make_ring(ranges)
    features = FeatureExtraction(edge_threshold=1e-9).extract(info, cloud)
    assert len(features.corner) == 6 * 20
    assert len(set(features.corner[:, 3].tolist())) == len(features.corner)


def test_large_leaf_keeps_one_surface_point_per_ring():
    info, cloud = make_ring([10.0] * 60)
    features = FeatureExtraction(surf_leaf_size=1000.0).extract(info, cloud)
    assert features.surface.shape == (1, 4)


def test_extract_clears_indices():
    info, cloud = make_ring([10.0] * 30)
    FeatureExtraction().extract(info, cloud)
    assert info.point_range == []
    assert info.point_col_ind == []
    assert info.start_ring_index == []


def test_empty_ring_is_skipped():
    info, cloud = make_ring([10.0] * 30)
    info.start_ring_index.append(30 + 4)
    info.end_ring_index.append(30 - 6)
    features = FeatureExtraction().extract(info, cloud)
    assert features.corner.shape == (0, 4)
    assert len(features.surface) > 0