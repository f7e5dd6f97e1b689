import numpy as np
import pytest
from hypothesis import given
from hypothesis import strategies as st
from scipy.spatial.distance import cdist

from densefuse.topology import (
    TEMPORAL_WINDOW_US,
    VertexWeight,
    connect_graph_nn,
    connect_graph_nn_temporal,
    connect_graph_seq,
    nearest_time_index,
    radius_sample,
    radius_sample_temporal,
    sort_weights,
    weight_vertex_seq,
    weight_vertices_nn,
    weight_vertices_nn_temporal,
)


def _line(count):
    return np.column_stack([np.arange(count, dtype=float), np.zeros(count), np.zeros(count)])


@given(st.lists(st.integers(min_value=0, max_value=5), min_size=0, max_size=15))
def test_sort_weights_orders_by_node_id_and_is_stable(nodes):
    weights = [VertexWeight(float(position), node) for position, node in enumerate(nodes)]
    node_ids = list(range(6))
    ordered = sort_weights(weights, node_ids)
    keys = [(entry.node, entry.weight) for entry in ordered]
    assert keys == sorted(keys)
    assert len(ordered) == len(weights)


def test_sort_weights_uses_given_ids():
    weights = [VertexWeight(0.5, 0), VertexWeight(0.5, 1)]
    ordered = sort_weights(weights, [9, 2])
    assert [entry.node for entry in ordered] == [1, 0]


def test_radius_sample_invariants():
    rng = np.random.default_rng(3)
    points = rng.uniform(0.0, 5.0, size=(200, 3))
    spacing = 1.0
    picked = radius_sample(points, spacing)
    assert picked[0] == 0
    chosen = points[picked]
    gaps = cdist(chosen, chosen)
    np.fill_diagonal(gaps, np.inf)
    assert gaps.min() > spacing
    assert cdist(points, chosen).min(axis=1).max() <= spacing


def test_radius_sample_empty():
    assert len(radius_sample(np.zeros((0, 3)), 1.0)) == 0


def test_radius_sample_temporal_returns_times_of_picks():
    points = _line(10) * 0.3
    times = np.arange(10) * 1000
    indices, picked_times = radius_sample_temporal(points, times, 1.0)
    assert list(picked_times) == list(times[indices])


def test_radius_sample_temporal_rejects_mismatch():
    with pytest.raises(ValueError):
        radius_sample_temporal(_line(4), [1, 2, 3], 1.0)


def test_nearest_time_index_exact_match():
    times = [10, 20, 30, 40, 50]
    assert nearest_time_index(times, 30) == 2


def test_nearest_time_index_out_of_range():
    times = [10, 20, 30]
    assert nearest_time_index(times, 5) == 0
    assert nearest_time_index(times, 1000) == len(times) - 1


@given(
    st.lists(st.integers(min_value=0, max_value=10**9), min_size=1, max_size=40),
    st.integers(min_value=0, max_value=10**9),
)
def test_nearest_time_index_is_closest(times, target):
    times = sorted(times)
    found = nearest_time_index(times, target)
    assert abs(times[found] - target) == min(abs(value - target) for value in times)


def test_nearest_time_index_empty_raises():
    with pytest.raises(ValueError):
        nearest_time_index([], 5)


@pytest.mark.parametrize("count,k", [(5, 4), (12, 4), (9, 3), (7, 6)])
def test_connect_graph_seq_invariants(count, k):
    graph = connect_graph_seq(count, k)
    assert len(graph) == count
    half = k // 2
    for node, neighbours in enumerate(graph):
        assert node not in neighbours
        assert all(0 <= other < count for other in neighbours)
        assert len(set(neighbours)) == len(neighbours)
        if half <= node < count - half:
            expected = {node - step for step in range(1, half + 1)}
            expected |= {node + step for step in range(1, half + 1)}
            assert set(neighbours) == expected


def test_connect_graph_seq_too_few_nodes():
    with pytest.raises(ValueError):
        connect_graph_seq(4, 4)


def test_connect_graph_nn_on_a_line():
    graph = connect_graph_nn(_line(8), 2)
    for node in range(1, 7):
        assert set(graph[node]) == {node - 1, node + 1}
    assert all(len(neighbours) == 2 and node not in neighbours for node, neighbours in enumerate(graph))


def test_connect_graph_nn_too_few_nodes():
    with pytest.raises(ValueError):
        connect_graph_nn(_line(2), 2)


def test_connect_graph_nn_temporal_respects_window():
    points = _line(16)
    times = [(index % 2) * 10 * TEMPORAL_WINDOW_US for index in range(16)]
    graph = connect_graph_nn_temporal(points, times, 2)
    for node, neighbours in enumerate(graph):
        assert len(neighbours) == 2
        assert node not in neighbours
        assert all(abs(times[other] - times[node]) < TEMPORAL_WINDOW_US for other in neighbours)


def test_connect_graph_nn_temporal_too_few_close_nodes():
    points = _line(8)
    times = [index * 10 * TEMPORAL_WINDOW_US for index in range(8)]
    with pytest.raises(ValueError):
        connect_graph_nn_temporal(points, times, 2)


def test_weight_vertex_seq_normalised_and_sorted():
    graph = _line(30)
    times = np.arange(30) * 1000
    weights = weight_vertex_seq(graph, times, [12.2, 0.5, 0.0], 12000, 4)
    assert len(weights) == 4
    assert sum(entry.weight for entry in weights) == pytest.approx(1.0)
    nodes = [entry.node for entry in weights]
    assert nodes == sorted(nodes)
    assert all(entry.weight >= 0 for entry in weights)
    assert max(weights, key=lambda entry: entry.weight).node == 12


def test_weight_vertex_seq_needs_enough_nodes():
    with pytest.raises(ValueError):
        weight_vertex_seq(_line(3), [0, 1, 2], [0.0, 0.0, 0.0], 1, 4)


def test_weight_vertices_nn_picks_nearest_nodes():
    rng = np.random.default_rng(7)
    graph = rng.uniform(0.0, 4.0, size=(25, 3))
    vertices = rng.uniform(0.0, 4.0, size=(10, 3))
    k = 4
    result = weight_vertices_nn(graph, vertices, k)
    assert len(result) == len(vertices)
    distances = cdist(vertices, graph)
    for row, weights in zip(distances, result):
        assert {entry.node for entry in weights} == set(np.argsort(row)[:k].tolist())
        assert sum(entry.weight for entry in weights) == pytest.approx(1.0)


def test_weight_vertices_nn_vertex_on_node_dominates():
    graph = _line(6)
    weights = weight_vertices_nn(graph, graph[3:4], 2)[0]
    assert max(weights, key=lambda entry: entry.weight).node == 3


def test_weight_vertices_nn_too_few_nodes():
    with pytest.raises(ValueError):
        weight_vertices_nn(_line(2), _line(1), 2)


def test_weight_vertices_nn_temporal_uses_close_nodes_only():
    graph = _line(16)
    graph_times = [(index % 2) * 10 * TEMPORAL_WINDOW_US for index in range(16)]
    vertices = graph[:5] + 0.25
    vertex_times = [0] * 5
    result = weight_vertices_nn_temporal(graph, graph_times, vertices, vertex_times, 2)
    for weights in result:
        assert len(weights) == 2
        assert all(graph_times[entry.node] == 0 for entry in weights)
        assert sum(entry.weight for entry in weights) == pytest.approx(1.0)


def test_weight_vertices_nn_temporal_no_close_node():
    graph = _line(8)
    with pytest.raises(ValueError):
        weight_vertices_nn_temporal(graph, [0] * 8, graph[:1], [10 * TEMPORAL_WINDOW_US], 2)