"""Embedded deformation graphs that bend a point cloud through a sparse set of nodes."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from densefuse.cloud import PointCloud
from densefuse.topology import (
    connect_graph_nn,
    connect_graph_nn_temporal,
    connect_graph_seq,
    radius_sample,
    radius_sample_temporal,
    weight_vertex_seq,
    weight_vertices_nn,
    weight_vertices_nn_temporal,
)

W_ROT = 1.0
W_REG = 10.0
W_CON = 100.0

NUM_VARIABLES = 12
"""Unknowns per node: nine rotation entries and three translation entries."""

E_ROT_ROWS = 6
E_REG_ROWS = 3
E_CON_ROWS = 3


@dataclass
class GraphNode:
    """A node of the graph: where it sits and the affine transform it applies."""

    id: int
    position: np.ndarray
    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    neighbours: list = field(default_factory=list)


@dataclass
class Constraint:
    """A request that a vertex should end up at a target position."""

    vertex_id: int
    target_position: np.ndarray


def _positions_of(points):
    if isinstance(points, PointCloud):
        return points.positions
    array = np.asarray(points, dtype=np.float64)
    if array.size == 0:
        return array.reshape(0, 3)
    return array.reshape(-1, 3)


def _as_cloud(vertices):
    if isinstance(vertices, PointCloud):
        return vertices
    return PointCloud(vertices)


class DeformationGraph:
    """A graph of nodes whose local transforms deform a cloud of vertices.

    ``vertices`` is held by reference, so deforming it changes the caller's cloud.
    Node neighbours are indices into ``nodes``; a node's id equals its index.
    """

    w_rot = W_ROT
    w_reg = W_REG
    w_con = W_CON

    def __init__(self, k):
        if k <= 0:
            raise ValueError("k must be positive")
        self.k = int(k)
        self.initialised = False
        self.nodes = []
        self.vertex_map = []
        self.vertices = None
        self.constraints = []
        self.sampled_graph_times = []
        self.last_point_count = 0
        self._graph_points = []

    @property
    def graph_positions(self):
        """Positions of the graph nodes as an ``(n, 3)`` array."""
        if not self._graph_points:
            return np.zeros((0, 3))
        return np.array(self._graph_points, dtype=np.float64)

    def _require_initialised(self):
        if not self.initialised:
            raise RuntimeError("deformation graph is not initialised")

    def _require_uninitialised(self):
        if self.initialised:
            raise RuntimeError("deformation graph is already initialised")

    def _build_nodes(self, neighbour_lists):
        self.nodes = [
            GraphNode(index, np.array(point, dtype=np.float64), neighbours=list(neighbours))
            for index, (point, neighbours) in enumerate(zip(self._graph_points, neighbour_lists))
        ]

    def _sample_poses(self, positions, times, start, pose_dist):
        for index in range(start, len(positions)):
            if np.linalg.norm(self._graph_points[-1] - positions[index]) > pose_dist:
                self._graph_points.append(np.array(positions[index], dtype=np.float64))
                self.sampled_graph_times.append(int(times[index]))

    def _weight_new_vertices(self, vertex_times):
        kept = self.vertex_map[: self.last_point_count]
        kept.extend([] for _ in range(self.last_point_count - len(kept)))
        graph_positions = self.graph_positions
        for index in range(self.last_point_count, len(self.vertices)):
            kept.append(
                weight_vertex_seq(
                    graph_positions,
                    self.sampled_graph_times,
                    self.vertices.positions[index],
                    vertex_times[index],
                    self.k,
                )
            )
        self.vertex_map = kept

    def initialise_graph_poses(
        self, vertices, pose_dist, custom_graph, graph_times, vertex_times, original_point_end
    ):
        """Build the graph from camera poses, skipping poses closer than ``pose_dist``.

        Nodes are connected in sequence and vertices weighted by the poses
        nearest to them in time. Returns the node positions.
        """
        self._require_uninitialised()
        positions = _positions_of(custom_graph)
        if len(positions) == 0:
            raise ValueError("no poses to build the graph from")
        if len(graph_times) != len(positions):
            raise ValueError(f"{len(graph_times)} times given for {len(positions)} poses")
        self.vertices = _as_cloud(vertices)
        self._graph_points = [np.array(positions[0], dtype=np.float64)]
        self.sampled_graph_times = [int(graph_times[0])]
        self._sample_poses(positions, graph_times, 1, pose_dist)
        self._build_nodes(connect_graph_seq(len(self._graph_points), self.k))
        self.vertex_map = []
        self.last_point_count = 0
        self._weight_new_vertices(vertex_times)
        self.initialised = True
        self.last_point_count = int(original_point_end)
        return self.graph_positions

    def initialise_graph_poses_nn(self, vertices, target_spacing, vertex_times, original_point_end):
        """Build the graph by radius-sampling the vertices, linking only nodes close in time.

        Returns the node positions.
        """
        self._require_uninitialised()
        self.vertices = _as_cloud(vertices)
        positions = self.vertices.positions
        indices, graph_times = radius_sample_temporal(positions, vertex_times, target_spacing)
        graph_positions = positions[indices]
        neighbours = connect_graph_nn_temporal(graph_positions, graph_times, self.k)
        weights = weight_vertices_nn_temporal(
            graph_positions, graph_times, positions, vertex_times, self.k
        )
        self._graph_points = [np.array(point) for point in graph_positions]
        self.sampled_graph_times = [int(time) for time in graph_times]
        self._build_nodes(neighbours)
        self.vertex_map = weights
        self.initialised = True
        self.last_point_count = int(original_point_end)
        return self.graph_positions

    def initialise_graph_nn(self, vertices, target_spacing=1.0):
        """Build the graph by radius-sampling the vertices and linking nearest nodes.

        Returns the node positions.
        """
        self._require_uninitialised()
        self.vertices = _as_cloud(vertices)
        positions = self.vertices.positions
        graph_positions = positions[radius_sample(positions, target_spacing)]
        neighbours = connect_graph_nn(graph_positions, self.k)
        weights = weight_vertices_nn(graph_positions, positions, self.k)
        self._graph_points = [np.array(point) for point in graph_positions]
        self._build_nodes(neighbours)
        self.vertex_map = weights
        self.initialised = True
        return self.graph_positions

    def append_graph_poses(self, pose_dist, custom_graph, graph_times, vertex_times, original_point_end):
        """Refresh existing node positions from updated poses and append new ones.

        The graph is rebuilt with identity transforms and vertices added since
        the last call are weighted. Returns the node positions.
        """
        self._require_initialised()
        positions = _positions_of(custom_graph)
        if len(graph_times) != len(positions):
            raise ValueError(f"{len(graph_times)} times given for {len(positions)} poses")
        last_time = self.sampled_graph_times[-1]
        node_index = 0
        start = len(graph_times)
        for index, time in enumerate(graph_times):
            time = int(time)
            if node_index < len(self.sampled_graph_times) and time == self.sampled_graph_times[node_index]:
                self._graph_points[node_index] = np.array(positions[index], dtype=np.float64)
                node_index += 1
            if time == last_time:
                start = index
                break
        if node_index != len(self._graph_points):
            raise ValueError("the poses do not contain every existing graph node")
        self._sample_poses(positions, graph_times, start + 1, pose_dist)
        self._build_nodes(connect_graph_seq(len(self._graph_points), self.k))
        self._weight_new_vertices(vertex_times)
        self.last_point_count = int(original_point_end)
        return self.graph_positions

    def append_vertices(self, vertex_times, original_point_end):
        """Weight the vertices added since the last call. Returns the node positions."""
        self._weight_new_vertices(vertex_times)
        self.last_point_count = int(original_point_end)
        return self.graph_positions

    def add_constraint(self, vertex_id, target):
        """Ask for a vertex to move to ``target``, replacing any earlier request for it."""
        self._require_initialised()
        constraint = Constraint(int(vertex_id), np.array(target, dtype=np.float64).reshape(3))
        for index, existing in enumerate(self.constraints):
            if existing.vertex_id == constraint.vertex_id:
                self.constraints[index] = constraint
                return
        self.constraints.append(constraint)

    def remove_constraint(self, vertex_id):
        """Drop the constraint on a vertex, if there is one."""
        self._require_initialised()
        for index, existing in enumerate(self.constraints):
            if existing.vertex_id == vertex_id:
                del self.constraints[index]
                return

    def clear_constraints(self):
        """Drop every constraint."""
        self.constraints.clear()

    def compute_vertex_position(self, vertex_id):
        """Return the deformed ``(position, normal)`` of a vertex."""
        self._require_initialised()
        weights = self.vertex_map[vertex_id]
        source = self.vertices.positions[vertex_id]
        source_normal = self.vertices.normals[vertex_id]
        position = np.zeros(3)
        normal = np.zeros(3)
        for entry in weights:
            node = self.nodes[entry.node]
            position += entry.weight * (
                node.rotation @ (source - node.position) + node.position + node.translation
            )
            normal += entry.weight * (np.linalg.inv(node.rotation).T @ source_normal)
        length = np.linalg.norm(normal)
        if length > 0:
            normal = normal / length
        return position, normal

    def reset_graph(self):
        """Give every node the identity transform again."""
        for node in self.nodes:
            node.rotation = np.eye(3)
            node.translation = np.zeros(3)