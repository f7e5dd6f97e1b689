"""Gauss-Newton optimisation of a deformation graph's node transforms.

Each node carries twelve unknowns: its rotation matrix in column-major order
followed by its translation. The energy has three terms: rotations should
stay orthonormal, neighbouring nodes should agree on where they move each
other, and constrained vertices should reach their targets.
"""

from __future__ import annotations

import logging
import math

import numpy as np
from scipy import sparse

from densefuse.graph import E_CON_ROWS, E_REG_ROWS, E_ROT_ROWS, NUM_VARIABLES

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 10
MIN_CONSTRAINT_ERROR = 0.1
"""Below this mean constraint residual the graph is left as it is."""

STEP_TOLERANCE = 1e-2
ERROR_TOLERANCE = 1e-3
RELATIVE_CHANGE_TOLERANCE = 1e-5


def _require_initialised(graph):
    if not graph.initialised:
        raise RuntimeError("deformation graph is not initialised")


def _vector(values):
    return np.array(values, dtype=np.float64).reshape(-1)


def rotation_residual(graph):
    """Orthonormality residuals, six per node, for the node rotations."""
    rows = []
    for node in graph.nodes:
        c0, c1, c2 = node.rotation[:, 0], node.rotation[:, 1], node.rotation[:, 2]
        rows.append(
            (
                c0 @ c1,
                c0 @ c2,
                c1 @ c2,
                c0 @ c0 - 1.0,
                c1 @ c1 - 1.0,
                c2 @ c2 - 1.0,
            )
        )
    return _vector(rows)


def regularisation_residual(graph):
    """Residuals, three per neighbour link, of neighbours disagreeing on motion."""
    scale = math.sqrt(graph.w_reg)
    rows = []
    for node in graph.nodes:
        for index in node.neighbours:
            other = graph.nodes[index]
            moved = (
                node.rotation @ (other.position - node.position)
                + node.position
                + node.translation
            )
            rows.append((moved - (other.position + other.translation)) * scale)
    return _vector(rows)


def constraint_residual(graph):
    """Residuals, three per constraint, between deformed vertices and their targets."""
    scale = math.sqrt(graph.w_con)
    rows = []
    for constraint in graph.constraints:
        position, _ = graph.compute_vertex_position(constraint.vertex_id)
        rows.append((position - constraint.target_position) * scale)
    return _vector(rows)


def sparse_residual(graph):
    """The full residual: rotation, then regularisation, then constraint rows."""
    return np.concatenate(
        [rotation_residual(graph), regularisation_residual(graph), constraint_residual(graph)]
    )


def sparse_jacobian(graph):
    """The Jacobian of :func:`sparse_residual` as a CSR matrix."""
    _require_initialised(graph)
    rows, cols, values = [], [], []

    def add(row, col, value):
        rows.append(row)
        cols.append(col)
        values.append(value)

    row = 0
    for node in graph.nodes:
        rotation = node.rotation
        offset = node.id * NUM_VARIABLES
        for axis in range(3):
            add(row, offset + axis, rotation[axis, 1])
            add(row, offset + 3 + axis, rotation[axis, 0])
            add(row + 1, offset + axis, rotation[axis, 2])
            add(row + 1, offset + 6 + axis, rotation[axis, 0])
            add(row + 2, offset + 3 + axis, rotation[axis, 2])
            add(row + 2, offset + 6 + axis, rotation[axis, 1])
            add(row + 3, offset + axis, 2.0 * rotation[axis, 0])
            add(row + 4, offset + 3 + axis, 2.0 * rotation[axis, 1])
            add(row + 5, offset + 6 + axis, 2.0 * rotation[axis, 2])
        row += E_ROT_ROWS

    reg = math.sqrt(graph.w_reg)
    for node in graph.nodes:
        offset = node.id * NUM_VARIABLES
        for index in node.neighbours:
            other = graph.nodes[index]
            other_offset = other.id * NUM_VARIABLES
            if other_offset == offset:
                raise ValueError(f"node {node.id} lists itself as a neighbour")
            delta = other.position - node.position
            for axis in range(3):
                add(row + axis, offset + axis, delta[0] * reg)
                add(row + axis, offset + 3 + axis, delta[1] * reg)
                add(row + axis, offset + 6 + axis, delta[2] * reg)
                add(row + axis, offset + 9 + axis, reg)
                add(row + axis, other_offset + 9 + axis, -reg)
            row += E_REG_ROWS

    con = math.sqrt(graph.w_con)
    for constraint in graph.constraints:
        source = graph.vertices.positions[constraint.vertex_id]
        for entry in graph.vertex_map[constraint.vertex_id]:
            node = graph.nodes[entry.node]
            offset = node.id * NUM_VARIABLES
            delta = (source - node.position) * entry.weight
            for axis in range(3):
                add(row + axis, offset + axis, delta[0] * con)
                add(row + axis, offset + 3 + axis, delta[1] * con)
                add(row + axis, offset + 6 + axis, delta[2] * con)
                add(row + axis, offset + 9 + axis, entry.weight * con)
        row += E_CON_ROWS

    shape = (row, NUM_VARIABLES * len(graph.nodes))
    return sparse.coo_matrix((values, (rows, cols)), shape=shape).tocsr()


def apply_delta(graph, delta):
    """Add an update step to every node's rotation and translation."""
    _require_initialised(graph)
    delta = np.asarray(delta, dtype=np.float64).reshape(-1)
    expected = NUM_VARIABLES * len(graph.nodes)
    if delta.shape[0] != expected:
        raise ValueError(f"delta must hold {expected} values, got {delta.shape[0]}")
    for node in graph.nodes:
        start = node.id * NUM_VARIABLES
        block = delta[start:start + NUM_VARIABLES]
        node.rotation = node.rotation + block[:9].reshape(3, 3, order="F")
        node.translation = node.translation + block[9:]


def optimise_graph(graph, solver):
    """Move the nodes so that constrained vertices reach their targets.

    Runs up to ten Gauss-Newton steps through ``solver``. Returns the final
    squared residual, or ``None`` when there is nothing worth deforming.
    """
    _require_initialised(graph)
    if not graph.constraints:
        logger.info("Not deforming, no constraints")
        return None

    graph_error = float(np.linalg.norm(constraint_residual(graph))) / len(graph.constraints)
    if graph_error < MIN_CONSTRAINT_ERROR:
        logger.info("Not deforming, constraint error insignificant (%g)", graph_error)
        return None

    residual = sparse_residual(graph)
    jacobian = sparse_jacobian(graph)
    error = float(residual @ residual)
    last_error = error
    logger.info("Initial error: %g (%g)", error, graph_error)

    try:
        for iteration in range(1, MAX_ITERATIONS + 1):
            delta = solver.solve(jacobian, -residual, iteration == 1)
            apply_delta(graph, delta)
            residual = sparse_residual(graph)
            error = float(residual @ residual)
            change = error - last_error
            logger.info("Iteration %d: %g", iteration, error)
            if (
                np.linalg.norm(delta) < STEP_TOLERANCE
                or error < ERROR_TOLERANCE
                or abs(change) < RELATIVE_CHANGE_TOLERANCE * error
            ):
                break
            last_error = error
            jacobian = sparse_jacobian(graph)
    finally:
        if solver.analysed:
            solver.free_factor()
    return error


def apply_graph_to_vertices(graph):
    """Deform every vertex and normal of the graph's cloud in place and return the cloud."""
    _require_initialised(graph)
    cloud = graph.vertices
    results = [graph.compute_vertex_position(index) for index in range(len(cloud))]
    if results:
        cloud.positions = np.array([position for position, _ in results], dtype=np.float64)
        cloud.normals = np.array([normal for _, normal in results], dtype=np.float64)
    return cloud