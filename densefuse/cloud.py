"""Point clouds that carry positions, normals and colours."""

from __future__ import annotations

import numpy as np


def _as_points(values, count, name, dtype):
    if values is None:
        return np.zeros((count, 3), dtype=dtype)
    array = np.array(values, dtype=dtype).reshape(-1, 3) if np.size(values) else np.zeros((0, 3), dtype=dtype)
    if array.shape != (count, 3):
        raise ValueError(f"{name} must have shape ({count}, 3), got {array.shape}")
    return array


class PointCloud:
    """A cloud of points, each with a position, a normal and an RGB colour."""

    def __init__(self, positions=None, normals=None, colors=None):
        if positions is None:
            positions = np.zeros((0, 3))
        positions = np.array(positions, dtype=np.float64)
        if positions.size == 0:
            positions = positions.reshape(0, 3)
        if positions.ndim != 2 or positions.shape[1] != 3:
            raise ValueError(f"positions must have shape (n, 3), got {positions.shape}")
        count = positions.shape[0]
        self.positions = positions
        self.normals = _as_points(normals, count, "normals", np.float64)
        self.colors = _as_points(colors, count, "colors", np.uint8)

    def __len__(self):
        return self.positions.shape[0]

    def __repr__(self):
        return f"PointCloud({len(self)} points)"

    def extend(self, other):
        """Append the points of another cloud to this one."""
        self.positions = np.concatenate([self.positions, other.positions])
        self.normals = np.concatenate([self.normals, other.normals])
        self.colors = np.concatenate([self.colors, other.colors])

    def resize(self, size):
        """Truncate the cloud, or pad it with zeroed points, to ``size`` points."""
        if size < 0:
            raise ValueError("size must not be negative")
        current = len(self)
        if size <= current:
            self.positions = self.positions[:size].copy()
            self.normals = self.normals[:size].copy()
            self.colors = self.colors[:size].copy()
            return
        extra = size - current
        self.positions = np.concatenate([self.positions, np.zeros((extra, 3))])
        self.normals = np.concatenate([self.normals, np.zeros((extra, 3))])
        self.colors = np.concatenate([self.colors, np.zeros((extra, 3), dtype=np.uint8)])

    def transformed(self, matrix):
        """Return a copy whose positions are moved by a 4x4 rigid transform.

        Normals and colours are copied unchanged.
        """
        matrix = np.asarray(matrix, dtype=np.float64)
        if matrix.shape != (4, 4):
            raise ValueError(f"transform must be 4x4, got {matrix.shape}")
        moved = self.positions @ matrix[:3, :3].T + matrix[:3, 3]
        return PointCloud(moved, self.normals.copy(), self.colors.copy())