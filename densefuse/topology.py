"""Node sampling, neighbour connection and vertex weighting for deformation graphs.

Graph nodes are identified by their index into the array of node positions.
Times are integer timestamps in microseconds.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.spatial import cKDTree

TEMPORAL_WINDOW_US = 60_000_000
"""Nodes and vertices further apart in time than this are never linked."""

LOOK_BACK = 20
"""How many graph poses around a vertex's time are considered when weighting it."""

NEIGHBOUR_OVERSAMPLE = 4
"""Factor by which temporal searches over-fetch neighbours before filtering by time."""


@dataclass
class VertexWeight:
    """The influence of one graph node on one vertex."""

    weight: float
    node: int


def sort_weights(weights, node_ids):
    """Return the weights ordered by the id of their node, keeping ties in order.

    ``node_ids[i]`` is the id of the node with index ``i``.
    """
    return sorted(weights, key=lambda entry: node_ids[entry.node])


def _as_positions(positions):
    array = np.asarray(positions, dtype=np.float64)
    if array.size == 0:
        return array.reshape(0, 3)
    if array.ndim != 2 or array.shape[1] != 3:
        raise ValueError(f"positions must have shape (n, 3), got {array.shape}")
    return array


def _as_times(times, count):
    array = np.asarray(times, dtype=np.int64).reshape(-1)
    if array.shape[0] != count:
        raise ValueError(f"{array.shape[0]} times given for {count} points")
    return array


def _nearest(tree, point, count):
    distances, indices = tree.query(point, k=count)
    return np.atleast_1d(distances), np.atleast_1d(indices)


def radius_sample(positions, spacing):
    """Pick graph nodes so that no two lie within ``spacing`` of each other.

    Points are visited in order; each picked point claims every point within
    ``spacing``. Returns the indices of the picked points.
    """
    positions = _as_positions(positions)
    if len(positions) == 0:
        return np.zeros(0, dtype=np.int64)
    tree = cKDTree(positions)
    used = np.zeros(len(positions), dtype=bool)
    picked = []
    for index, point in enumerate(positions):
        if used[index]:
            continue
        neighbours = tree.query_ball_point(point, spacing)
        if neighbours:
            picked.append(index)
            used[neighbours] = True
    return np.array(picked, dtype=np.int64)


def radius_sample_temporal(positions, times, spacing):
    """Radius-sample the points and return ``(indices, times of the picked points)``."""
    positions = _as_positions(positions)
    times = _as_times(times, len(positions))
    indices = radius_sample(positions, spacing)
    return indices, times[indices]


def nearest_time_index(sampled_times, vertex_time):
    """Index of the sampled time closest to ``vertex_time``, by binary search.

    ``sampled_times`` must be sorted in ascending order.
    """
    times = [int(value) for value in sampled_times]
    if not times:
        raise ValueError("no sampled times to search")
    vertex_time = int(vertex_time)
    low, high = 0, len(times) - 1
    middle = (low + high) // 2
    while high >= low:
        middle = (low + high) // 2
        if times[middle] < vertex_time:
            low = middle + 1
        elif times[middle] > vertex_time:
            high = middle - 1
        else:
            break

    def gap(index):
        if 0 <= index < len(times):
            return abs(times[index] - vertex_time)
        return float("inf")

    if gap(low) <= gap(middle) and gap(low) <= gap(high):
        found = low
    elif gap(middle) <= gap(low) and gap(middle) <= gap(high):
        found = middle
    else:
        found = high
    return min(found, len(times) - 1)


def connect_graph_seq(count, k):
    """Connect ``count`` nodes laid out in sequence, each to ``k`` neighbours in order.

    Inner nodes take ``k // 2`` nodes on each side; nodes near either end take
    the ``k + 1`` end nodes other than themselves. Returns one neighbour list per node.
    """
    if k <= 0:
        raise ValueError("k must be positive")
    if count < k + 1:
        raise ValueError(f"a sequential graph with k={k} needs at least {k + 1} nodes, got {count}")
    half = k // 2
    graph = [[] for _ in range(count)]
    for node in range(half):
        graph[node] = [other for other in range(k + 1) if other != node]
    for node in range(half, count - half):
        for step in range(1, half + 1):
            graph[node].extend((node - step, node + step))
    for node in range(count - half, count):
        graph[node] = [other for other in range(count - (k + 1), count) if other != node]
    return graph


def connect_graph_nn(positions, k):
    """Connect every node to its ``k`` nearest other nodes, nearest first."""
    positions = _as_positions(positions)
    if k <= 0:
        raise ValueError("k must be positive")
    if len(positions) < k + 1:
        raise ValueError(f"need at least {k + 1} nodes, got {len(positions)}")
    tree = cKDTree(positions)
    graph = []
    for node, point in enumerate(positions):
        _, found = _nearest(tree, point, k + 1)
        graph.append([int(other) for other in found if other != node][:k])
    return graph


def connect_graph_nn_temporal(positions, times, k):
    """Connect every node to its ``k`` nearest nodes within the temporal window.

    Candidates are drawn from the ``4 * k`` nearest nodes; a ``ValueError`` is
    raised if too few of them are close enough in time.
    """
    positions = _as_positions(positions)
    times = _as_times(times, len(positions))
    if k <= 0:
        raise ValueError("k must be positive")
    samples = k * NEIGHBOUR_OVERSAMPLE
    if len(positions) < samples:
        raise ValueError(f"need at least {samples} nodes, got {len(positions)}")
    tree = cKDTree(positions)
    graph = []
    for node, point in enumerate(positions):
        _, found = _nearest(tree, point, samples)
        neighbours = []
        for other in found:
            if other == node:
                continue
            if abs(int(times[other]) - int(times[node])) < TEMPORAL_WINDOW_US:
                neighbours.append(int(other))
                if len(neighbours) == k:
                    break
        if len(neighbours) < k:
            raise ValueError(f"node {node} has fewer than {k} neighbours close in time")
        graph.append(neighbours)
    return graph


def _distance_weights(graph_positions, position, nodes, d_max):
    nodes = np.asarray(nodes, dtype=np.int64)
    distances = np.linalg.norm(graph_positions[nodes] - position, axis=1)
    with np.errstate(divide="ignore", invalid="ignore"):
        raw = (1.0 - distances / d_max) ** 2
        normalised = raw / raw.sum()
    weights = [VertexWeight(float(weight), int(node)) for weight, node in zip(normalised, nodes)]
    return sort_weights(weights, range(len(graph_positions)))


def weight_vertex_seq(graph_positions, sampled_times, position, vertex_time, k):
    """Weight one vertex by the ``k`` closest of the graph poses nearest to it in time.

    Up to twenty poses are considered, counting back from the pose nearest in
    time and then forward if fewer were found. Weights sum to one and are
    ordered by node.
    """
    graph_positions = _as_positions(graph_positions)
    sampled_times = _as_times(sampled_times, len(graph_positions))
    position = np.asarray(position, dtype=np.float64).reshape(3)
    found = nearest_time_index(sampled_times, vertex_time)
    candidates = list(range(found, -1, -1))[:LOOK_BACK]
    if len(candidates) < LOOK_BACK:
        candidates.extend(range(found + 1, len(sampled_times))[: LOOK_BACK - len(candidates)])
    distances = np.linalg.norm(graph_positions[candidates] - position, axis=1)
    order = np.argsort(distances, kind="stable")
    if len(order) < k + 1:
        raise ValueError(f"need at least {k + 1} graph nodes near the vertex, got {len(order)}")
    nearest = [candidates[index] for index in order]
    d_max = float(distances[order[k]])
    return _distance_weights(graph_positions, position, nearest[:k], d_max)


def weight_vertices_nn(graph_positions, positions, k):
    """Weight every vertex by its ``k`` nearest graph nodes.

    The distance to the ``k + 1``-th nearest node bounds the weights.
    Returns one list of weights per vertex.
    """
    graph_positions = _as_positions(graph_positions)
    positions = _as_positions(positions)
    if len(graph_positions) < k + 1:
        raise ValueError(f"need at least {k + 1} graph nodes, got {len(graph_positions)}")
    tree = cKDTree(graph_positions)
    result = []
    for point in positions:
        distances, found = _nearest(tree, point, k + 1)
        result.append(_distance_weights(graph_positions, point, found[:-1], float(distances[-1])))
    return result


def weight_vertices_nn_temporal(graph_positions, graph_times, positions, vertex_times, k):
    """Weight every vertex by its nearest graph nodes that lie within the temporal window.

    Up to ``k + 1`` valid nodes are taken from the ``4 * k`` nearest; the last
    of them bounds the weights of the others.
    """
    graph_positions = _as_positions(graph_positions)
    graph_times = _as_times(graph_times, len(graph_positions))
    positions = _as_positions(positions)
    vertex_times = _as_times(vertex_times, len(positions))
    samples = k * NEIGHBOUR_OVERSAMPLE
    if len(graph_positions) < samples:
        raise ValueError(f"need at least {samples} graph nodes, got {len(graph_positions)}")
    tree = cKDTree(graph_positions)
    result = []
    for point, time in zip(positions, vertex_times):
        distances, found = _nearest(tree, point, samples)
        valid = [
            (float(distance), int(node))
            for distance, node in zip(distances, found)
            if abs(int(graph_times[node]) - int(time)) < TEMPORAL_WINDOW_US
        ][: k + 1]
        if not valid:
            raise ValueError("no graph node lies close enough in time to the vertex")
        d_max = valid[-1][0]
        nodes = [node for _, node in valid[:-1]]
        result.append(_distance_weights(graph_positions, point, nodes, d_max))
    return result