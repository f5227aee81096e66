"""Lidar-inertial odometry building blocks: projection, deskewing, features, registration, pose graphs and PCD files."""

__version__ = "0.1.0"