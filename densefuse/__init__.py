"""Dense RGB-D reconstruction tools: calibration, depth projection, point clouds and deformation graphs."""

__version__ = "0.1.0"