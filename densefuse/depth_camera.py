"""Back-projection of depth images through a pinhole depth camera."""

from __future__ import annotations

import numpy as np

from densefuse.calibration import DEFAULT_HEIGHT, DEFAULT_WIDTH, Intrinsics, default_intrinsics
from densefuse.cloud import PointCloud

INVALID_VERTEX = 100000.0
"""Coordinate given to every component of a vertex whose depth is missing."""

DEFAULT_MAX_DISTANCE = 4.0


class DepthCamera:
    """A depth camera with known intrinsics and image size.

    Depth values are in millimetres; produced points are in metres.
    """

    def __init__(self, intrinsics=None, width=DEFAULT_WIDTH, height=DEFAULT_HEIGHT):
        if intrinsics is None:
            intrinsics = default_intrinsics()
        if isinstance(intrinsics, Intrinsics):
            matrix = intrinsics.matrix()
        else:
            matrix = np.asarray(intrinsics, dtype=np.float64)
        if matrix.shape != (3, 3):
            raise ValueError(f"intrinsics must be a 3x3 matrix, got {matrix.shape}")
        if width <= 0 or height <= 0:
            raise ValueError("image size must be positive")
        self.matrix = matrix
        self.fx = float(matrix[0, 0])
        self.fy = float(matrix[1, 1])
        self.cx = float(matrix[0, 2])
        self.cy = float(matrix[1, 2])
        self.width = int(width)
        self.height = int(height)

    @property
    def principal_point(self):
        """The principal point ``(cx, cy)`` in pixels."""
        return (self.cx, self.cy)

    def _flat_depth(self, depth):
        values = np.asarray(depth).reshape(-1)
        if values.shape[0] != self.width * self.height:
            raise ValueError(
                f"depth image must hold {self.width * self.height} pixels, got {values.shape[0]}"
            )
        return values

    def _project(self, u, v, depth_m):
        return np.array(
            [
                depth_m * (u - self.cx) * (1.0 / self.fx),
                depth_m * (v - self.cy) * (1.0 / self.fy),
                depth_m,
            ]
        )

    def project_inlier_matches(self, inliers, depth1, depth2):
        """Lift matched pixel pairs into 3D points from two depth images.

        ``inliers`` holds pairs ``((u1, v1), (u2, v2))``. Pairs where either
        depth is zero are dropped. Returns two ``(n, 3)`` arrays.
        """
        first_depth = self._flat_depth(depth1)
        second_depth = self._flat_depth(depth2)
        first_points, second_points = [], []
        for (u1, v1), (u2, v2) in inliers:
            d1 = float(first_depth[int(v1) * self.width + int(u1)]) / 1000.0
            d2 = float(second_depth[int(v2) * self.width + int(u2)]) / 1000.0
            if not d1 or not d2:
                continue
            first_points.append(self._project(u1, v1, d1))
            second_points.append(self._project(u2, v2, d2))
        return (
            np.array(first_points).reshape(-1, 3),
            np.array(second_points).reshape(-1, 3),
        )

    def compute_vertex_map(self, depth_map):
        """Return a ``(rows, cols, 3)`` float32 map of back-projected vertices.

        Pixels without depth get :data:`INVALID_VERTEX` in every component.
        """
        depth = np.asarray(depth_map)
        if depth.ndim != 2:
            raise ValueError(f"depth map must be two-dimensional, got {depth.ndim} dimensions")
        rows, cols = depth.shape
        d = depth.astype(np.float64)
        col_index = np.arange(cols, dtype=np.float64)[np.newaxis, :]
        row_index = np.arange(rows, dtype=np.float64)[:, np.newaxis]
        vertices = np.empty((rows, cols, 3), dtype=np.float32)
        vertices[..., 0] = (col_index - self.cx) * d / self.fx / 1000.0
        vertices[..., 1] = (row_index - self.cy) * d / self.fy / 1000.0
        vertices[..., 2] = d / 1000.0
        vertices[depth == 0] = INVALID_VERTEX
        return vertices

    def to_point_cloud(self, depth_image, max_dist=DEFAULT_MAX_DISTANCE):
        """Back-project valid pixels closer than ``max_dist`` metres.

        Points are ordered column by column, top to bottom within a column.
        """
        depth = self._flat_depth(depth_image).reshape(self.height, self.width)
        by_column = depth.T.astype(np.float64)
        valid = (by_column != 0) & (by_column < max_dist * 1000.0)
        cols, rows = np.nonzero(valid)
        z = by_column[cols, rows] * 0.001
        x = (cols - self.cx) * z * (1.0 / self.fx)
        y = (rows - self.cy) * z * (1.0 / self.fy)
        return PointCloud(np.column_stack([x, y, z]))