# lidarmap

`lidarmap` is a library of building blocks for lidar-inertial odometry. It
takes lidar scans, IMU samples and optional odometry estimates. From them it
produces deskewed, ordered clouds, edge and planar features, scan-to-map pose
estimates and pose-graph solutions.

Only `numpy` and `scipy` are required. Python 3.10 or newer is needed. The
`test` extra installs `pytest`.

## Modules

- `lidarmap.messages`: plain data types.
  - `Quaternion` (x, y, z, w, with `norm()`).
  - `ImuMeasurement`.
  - `Odometry`: a stamped pose with a 36-value row-major covariance.
  - `CloudInfo`: per-scan ring and column indices, ranges, IMU orientation
    and initial-guess fields. `clear_indices()` empties the index arrays.
- `lidarmap.config`: parameters, sensor type and calibration.
  - `Params.from_dict` builds parameters from a mapping keyed by the
    configuration names (`N_SCAN`, `Horizon_SCAN`, `edgeThreshold`, ...).
    Missing keys take their defaults and unknown keys are ignored. The
    `sensor` key is required and must be `velodyne`, `ouster` or `livox`
    (`SensorType.parse`); any other value raises `ValueError`.
  - `Extrinsics.from_config(translation, rotation, yaw_axis, pitch_axis, roll_axis)`
    builds the IMU-lidar calibration from a translation, a row-major 3x3
    rotation and Euler-axis names such as `"+z"`.
  - `Extrinsics.convert_imu` rotates an IMU sample into the lidar frame.
- `lidarmap.geometry`: 4x4 transforms from x, y, z, roll, pitch, yaw, and
  back again. Also quaternion conversion, multiplication and `slerp`,
  `point_distance`, `transform_points` and `voxel_downsample`. Point clouds
  are `(N, 4)` arrays of x, y, z, intensity.
- `lidarmap.range_image`: scan projection.
  - `LidarScan` holds points, rings and optional per-point times.
  - `convert_ouster` builds a scan from Ouster points with nanosecond times.
  - `RangeImage` projects a scan onto a ring-by-column grid with
    `project(scan, deskew)` and collects it ring by ring with
    `extract(info)`.
- `lidarmap.imu_deskew`: `ImuRotationIntegrator` integrates angular rate
  over a scan. `find_rotation` interpolates the result at any point time.
- `lidarmap.odom_deskew`: takes the initial pose guess and the translation
  over a scan from visual-inertial odometry (`vins_odometry_guess`) or
  IMU odometry (`imu_odometry_guess`). The result is returned as an
  `OdometryGuess`.
- `lidarmap.projection`: `ImageProjection` ties these steps together.
  - `add_imu`, `add_vins_odometry` and `add_imu_odometry` queue incoming
    data.
  - `process(scan)` holds each scan until two newer scans have arrived. It
    returns `None` while it waits for data. Otherwise it deskews the oldest
    scan and returns `(CloudInfo, cloud)`.
- `lidarmap.features`: `FeatureExtraction.extract(info, cloud)` computes
  range curvature and masks occluded and parallel-beam points. It then picks
  up to 20 edge points per sector, in six sectors per ring, and returns
  `FeatureClouds` with `corner` points and voxel-downsampled `surface` points.
- `lidarmap.registration`: `ScanMatcher` aligns a scan's features to a local
  map of edge and planar points.
  - The map is set with `set_map`.
  - The pose is refined with `optimize`.
  - Degenerate directions are suppressed after an eigenvalue check on the
    first iteration.
  - `constrain` clamps values and `blend_with_imu` pulls roll and pitch
    toward the IMU's.
- `lidarmap.pose_graph`: `PoseGraph` holds prior and between factors on 4x4
  poses and solves them with Levenberg-Marquardt. Noise is given as six
  variances, rotation first. `pose_from_transform` and `pose_to_transform`
  convert between `[roll, pitch, yaw, x, y, z]` and 4x4 matrices.
- `lidarmap.pcd`: `write_pcd` writes binary PCD files. `read_pcd` reads
  ASCII or binary ones and returns `(points, column_names)`.

## Example

```python
import numpy as np
from lidarmap.config import Params
from lidarmap.features import FeatureExtraction
from lidarmap.projection import ImageProjection
from lidarmap.range_image import LidarScan

params = Params.from_dict({"sensor": "velodyne", "N_SCAN": 16, "Horizon_SCAN": 1800})
projection = ImageProjection(params)
extractor = FeatureExtraction(
    params.edge_threshold, params.surf_threshold, params.odometry_surf_leaf_size
)

# feed IMU samples with projection.add_imu(...), then scans:
result = projection.process(LidarScan(points=np.zeros((0, 4)), ring=[], stamp=0.0))
if result is not None:
    info, cloud = result
    features = extractor.extract(info, cloud)
```

A small pose graph:

```python
from lidarmap.pose_graph import PoseGraph, pose_from_transform

graph = PoseGraph()
origin = pose_from_transform([0, 0, 0, 0, 0, 0])
graph.insert(0, origin)
graph.add_prior(0, origin, [1e-2, 1e-2, 1e-2, 1e-2, 1e-2, 1e-2])
graph.insert(1, pose_from_transform([0, 0, 0, 0.9, 0, 0]))
graph.add_between(0, 1, pose_from_transform([0, 0, 0, 1, 0, 0]), [1e-6] * 3 + [1e-4] * 3)
graph.optimize()
print(graph.estimate(1))
```

## What the package does not do

The library stops at the individual stages. It does not provide any of the
following:

- keyframe selection or management of a keyframe map;
- loop-closure detection or ICP verification;
- IMU preintegration;
- directory-level saving of trajectories and maps (`write_pcd` writes single
  files only);
- any command-line program, message transport or visualisation.

The caller passes data between the stages and keeps the map.