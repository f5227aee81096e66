"""Run-time parameters, sensor selection and IMU-to-lidar extrinsics."""

from __future__ import annotations

import enum
from dataclasses import MISSING, dataclass, field, fields
from typing import Any, Callable, Mapping

import numpy as np

from .geometry import matrix_to_quaternion, quaternion_multiply, quaternion_to_matrix
from .messages import ImuMeasurement, Quaternion

FLT_MAX = 3.4028234663852886e38

_AXIS_COLUMNS = {
    "+x": (1.0, 0.0, 0.0),
    "-x": (-1.0, 0.0, 0.0),
    "+y": (0.0, 1.0, 0.0),
    "-y": (0.0, -1.0, 0.0),
    "+z": (0.0, 0.0, 1.0),
    "-z": (0.0, 0.0, -1.0),
}


class SensorType(enum.Enum):
    """Supported lidar families."""

    VELODYNE = "velodyne"
    OUSTER = "ouster"
    LIVOX = "livox"

    @classmethod
    def parse(cls, name: str) -> "SensorType":
        """Sensor type from its configuration name."""
        try:
            return cls(name)
        except ValueError:
            raise ValueError(
                f"Invalid sensor type (must be either 'velodyne' or 'ouster' or 'livox'): {name}"
            ) from None


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes", "on"):
            return True
        if lowered in ("false", "0", "no", "off", ""):
            return False
        raise ValueError(f"not a boolean: {value!r}")
    return bool(value)


def _to_float_list(value: Any) -> list[float]:
    return [float(v) for v in value]


def _param(key: str, default: Any, convert: Callable[[Any], Any]) -> Any:
    metadata = {"key": key, "convert": convert}
    if isinstance(default, list):
        return field(default_factory=lambda: list(default), metadata=metadata)
    return field(default=default, metadata=metadata)


@dataclass
class Params:
    """All tunable parameters; keys in ``from_dict`` follow the configuration file names."""

    project_name: str = _param("PROJECT_NAME", "sam", str)
    robot_id: str = _param("robot_id", "roboat", str)

    point_cloud_topic: str = _param("pointCloudTopic", "points_raw", str)
    imu_topic: str = _param("imuTopic", "imu_correct", str)
    odom_topic: str = _param("odomTopic", "odometry/imu", str)
    gps_topic: str = _param("gpsTopic", "odometry/gps", str)

    lidar_frame: str = _param("lidarFrame", "base_link", str)
    baselink_frame: str = _param("baselinkFrame", "base_link", str)
    odometry_frame: str = _param("odometryFrame", "odom", str)
    map_frame: str = _param("mapFrame", "map", str)

    use_imu_heading_initialization: bool = _param("useImuHeadingInitialization", False, _to_bool)
    use_gps_elevation: bool = _param("useGpsElevation", False, _to_bool)
    gps_cov_threshold: float = _param("gpsCovThreshold", 2.0, float)
    pose_cov_threshold: float = _param("poseCovThreshold", 25.0, float)

    save_pcd: bool = _param("savePCD", False, _to_bool)
    save_pcd_directory: str = _param("savePCDDirectory", "/tmp/loam/", str)

    sensor: SensorType = _param("sensor", SensorType.VELODYNE, SensorType.parse)
    n_scan: int = _param("N_SCAN", 16, int)
    horizon_scan: int = _param("Horizon_SCAN", 1800, int)
    downsample_rate: int = _param("downsampleRate", 1, int)
    lidar_min_range: float = _param("lidarMinRange", 1.0, float)
    lidar_max_range: float = _param("lidarMaxRange", 1000.0, float)
    trans_deskew: bool = _param("transDeskew", False, _to_bool)

    imu_acc_noise: float = _param("imuAccNoise", 0.01, float)
    imu_gyr_noise: float = _param("imuGyrNoise", 0.001, float)
    imu_acc_bias_n: float = _param("imuAccBiasN", 0.0002, float)
    imu_gyr_bias_n: float = _param("imuGyrBiasN", 0.00003, float)
    imu_gravity: float = _param("imuGravity", 9.80511, float)
    imu_rpy_weight: float = _param("imuRPYWeight", 0.01, float)

    extrinsic_translation: list[float] = _param("extrinsicTranslation", [], _to_float_list)
    extrinsic_rotation: list[float] = _param("extrinsicRotation", [], _to_float_list)
    yaw_axis: str = _param("yawAxis", "+z", str)
    pitch_axis: str = _param("pitchAxis", "+y", str)
    roll_axis: str = _param("rollAxis", "+x", str)

    edge_threshold: float = _param("edgeThreshold", 0.1, float)
    surf_threshold: float = _param("surfThreshold", 0.1, float)
    edge_feature_min_valid_num: int = _param("edgeFeatureMinValidNum", 10, int)
    surf_feature_min_valid_num: int = _param("surfFeatureMinValidNum", 100, int)

    odometry_surf_leaf_size: float = _param("odometrySurfLeafSize", 0.2, float)
    mapping_corner_leaf_size: float = _param("mappingCornerLeafSize", 0.2, float)
    mapping_surf_leaf_size: float = _param("mappingSurfLeafSize", 0.2, float)

    z_tollerance: float = _param("z_tollerance", FLT_MAX, float)
    rotation_tollerance: float = _param("rotation_tollerance", FLT_MAX, float)

    number_of_cores: int = _param("numberOfCores", 2, int)
    mapping_process_interval: float = _param("mappingProcessInterval", 0.15, float)

    surroundingkeyframe_adding_dist_threshold: float = _param(
        "surroundingkeyframeAddingDistThreshold", 1.0, float
    )
    surroundingkeyframe_adding_angle_threshold: float = _param(
        "surroundingkeyframeAddingAngleThreshold", 0.2, float
    )
    surrounding_keyframe_density: float = _param("surroundingKeyframeDensity", 1.0, float)
    surrounding_keyframe_search_radius: float = _param("surroundingKeyframeSearchRadius", 50.0, float)

    loop_closure_enable_flag: bool = _param("loopClosureEnableFlag", False, _to_bool)
    loop_closure_frequency: float = _param("loopClosureFrequency", 1.0, float)
    surrounding_keyframe_size: int = _param("surroundingKeyframeSize", 50, int)
    history_keyframe_search_radius: float = _param("historyKeyframeSearchRadius", 10.0, float)
    history_keyframe_search_time_diff: float = _param("historyKeyframeSearchTimeDiff", 30.0, float)
    history_keyframe_search_num: int = _param("historyKeyframeSearchNum", 25, int)
    history_keyframe_fitness_score: float = _param("historyKeyframeFitnessScore", 0.3, float)

    global_map_visualization_search_radius: float = _param("globalMapVisualizationSearchRadius", 1e3, float)
    global_map_visualization_pose_density: float = _param("globalMapVisualizationPoseDensity", 10.0, float)
    global_map_visualization_leaf_size: float = _param("globalMapVisualizationLeafSize", 1.0, float)

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "Params":
        """Build parameters from a configuration mapping.

        Missing keys take their defaults and unknown keys are ignored. The
        sensor type is required, as there is no valid default for it.
        """
        kwargs: dict[str, Any] = {}
        for spec in fields(cls):
            key = spec.metadata["key"]
            if key in values:
                kwargs[spec.name] = spec.metadata["convert"](values[key])
        if "sensor" not in kwargs:
            kwargs["sensor"] = SensorType.parse(str(values.get("sensor", "")))
        return cls(**kwargs)


def _normalized(q: Quaternion) -> Quaternion:
    n = q.norm()
    return Quaternion(q.x / n, q.y / n, q.z / n, q.w / n)


def _check_axis(name: str, axis: str) -> None:
    if len(axis) != 2 or axis[0] not in "+-":
        raise ValueError(f"{name} must start with '+' or '-': {axis!r}")
    if axis not in _AXIS_COLUMNS:
        raise ValueError(f"{name} must name x, y or z: {axis!r}")


@dataclass(frozen=True, eq=False)
class Extrinsics:
    """IMU-to-lidar calibration used to bring IMU samples into the lidar frame."""

    translation: np.ndarray
    rotation_imu_lidar: np.ndarray
    rotation_lidar_imu: np.ndarray
    quat_lidar: Quaternion

    @classmethod
    def from_config(
        cls,
        translation,
        rotation,
        yaw_axis: str = "+z",
        pitch_axis: str = "+y",
        roll_axis: str = "+x",
    ) -> "Extrinsics":
        """Build from t_imu_lidar, row-major R_imu_lidar and the Euler axis conventions."""
        t = np.asarray(translation, dtype=float).reshape(-1)
        if t.size != 3:
            raise ValueError("extrinsic translation needs 3 values")
        r = np.asarray(rotation, dtype=float).reshape(-1)
        if r.size != 9:
            raise ValueError("extrinsic rotation needs 9 values")
        r_tmp = r.reshape(3, 3)
        if abs(np.linalg.det(r_tmp)) <= 0.9:
            raise ValueError("extrinsic rotation is not a rotation matrix")
        r_imu_lidar = quaternion_to_matrix(matrix_to_quaternion(r_tmp))
        r_lidar_imu = r_imu_lidar.T

        for name, axis in (("yawAxis", yaw_axis), ("pitchAxis", pitch_axis), ("rollAxis", roll_axis)):
            _check_axis(name, axis)
        if len({yaw_axis[1], pitch_axis[1], roll_axis[1]}) != 3:
            raise ValueError("yaw, pitch and roll axes must be distinct")

        r_imu_quat = np.column_stack(
            [_AXIS_COLUMNS[roll_axis], _AXIS_COLUMNS[pitch_axis], _AXIS_COLUMNS[yaw_axis]]
        )
        if abs(np.linalg.det(r_imu_quat)) <= 0.9:
            raise ValueError("Euler axes do not form a basis")
        r_quat_lidar = r_imu_quat.T @ r_imu_lidar
        return cls(
            translation=t,
            rotation_imu_lidar=r_imu_lidar,
            rotation_lidar_imu=r_lidar_imu,
            quat_lidar=_normalized(matrix_to_quaternion(r_quat_lidar)),
        )

    def convert_imu(self, imu: ImuMeasurement) -> ImuMeasurement:
        """Rotate an IMU sample's acceleration, rate and orientation into the lidar frame."""
        acc = self.rotation_lidar_imu @ np.asarray(imu.linear_acceleration, dtype=float)
        gyr = self.rotation_lidar_imu @ np.asarray(imu.angular_velocity, dtype=float)
        q_final = quaternion_multiply(imu.orientation, self.quat_lidar)
        if q_final.norm() < 0.1:
            raise ValueError("Invalid quaternion, please use a 9-axis IMU!")
        return ImuMeasurement(
            stamp=imu.stamp,
            linear_acceleration=(float(acc[0]), float(acc[1]), float(acc[2])),
            angular_velocity=(float(gyr[0]), float(gyr[1]), float(gyr[2])),
            orientation=q_final,
        )