[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lidarmap"
version = "0.1.0"
description = "Lidar-inertial odometry building blocks: range-image projection and deskewing, feature extraction, scan-to-map registration and pose-graph optimisation"
requires-python = ">=3.10"
keywords = [
    "lidar",
    "odometry",
    "slam",
    "point-cloud",
    "imu",
    "deskew",
    "registration",
    "pose-graph",
    "pcd",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Artificial Intelligence",
]
dependencies = [
    "numpy",
    "scipy",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["lidarmap"]

[tool.hatch.build.targets.sdist]
include = [
    "lidarmap",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
