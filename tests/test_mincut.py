import numpy as np
import pytest
import scipy.sparse

from grabcut_errors import FlowInvariantViolation, InvalidInputError
from mincut import FlowNetwork, capacity_edges, min_cut


def diamond():
    # source 0, sink 1, a 2, b 3
    capacity = np.zeros((4, 4), dtype=np.int64)
    capacity[0, 2] = 3
    capacity[0, 3] = 2
    capacity[2, 1] = 2
    capacity[3, 1] = 3
    capacity[2, 3] = 1
    return capacity


def cut_capacity(capacity, source_side):
    source_side = sorted(source_side)
    sink_side = sorted(set(range(capacity.shape[0])) - set(source_side))
    return int(capacity[np.ix_(source_side, sink_side)].sum())


def random_network(seed, size=8, density=0.4):
    rng = np.random.RandomState(seed)
    capacity = rng.randint(1, 20, size=(size, size)) * (rng.rand(size, size) < density)
    np.fill_diagonal(capacity, 0)
    return capacity


def test_diamond_max_flow():
    result = min_cut(diamond(), 0, 1)
    # s->a->t 2, s->b->t 2, s->a->b->t 1
    assert result.flow_value == 5
    assert result.source_side == {0}
    assert result.sink_side == {1, 2, 3}


def test_partition_covers_all_nodes():
    capacity = random_network(0)
    result = min_cut(capacity, 0, 1)
    assert result.source_side | result.sink_side == set(range(capacity.shape[0]))
    assert not result.source_side & result.sink_side
    assert 0 in result.source_side
    assert 1 in result.sink_side


@pytest.mark.parametrize("seed", range(6))
def test_max_flow_equals_min_cut_capacity(seed):
    capacity = random_network(seed)
    result = min_cut(capacity, 0, 1)
    assert result.flow_value == cut_capacity(capacity, result.source_side)


@pytest.mark.parametrize("seed", range(6))
def test_flow_matches_igraph(seed):
    capacity = random_network(seed, size=10)
    assert min_cut(capacity, 0, 1).flow_value == min_cut(capacity, 0, 1, solver="igraph").flow_value


def test_igraph_solver_partition():
    result = min_cut(diamond(), 0, 1, solver="igraph")
    assert result.flow_value == 5
    assert 0 in result.source_side
    assert 1 in result.sink_side


def test_anti_parallel_edges_are_split():
    capacity = np.zeros((4, 4), dtype=np.int64)
    capacity[0, 2] = 10
    capacity[2, 3] = 5
    capacity[3, 2] = 3
    capacity[3, 1] = 10

    network = FlowNetwork.from_capacity(capacity)
    assert network.num_nodes == 6
    assert network.split_nodes == {4: (2, 3), 5: (3, 2)}
    for u in range(network.num_nodes):
        for v, remaining in network.residual[u].items():
            assert not (remaining > 0 and network.capacity(v, u) > 0)

    assert network.max_flow(0, 1) == 5
    # the rewritten nodes never leak into the cut
    result = min_cut(capacity, 0, 1)
    assert result.source_side | result.sink_side == {0, 1, 2, 3}


def test_anti_parallel_split_preserves_flow_between_original_nodes():
    capacity = np.zeros((2, 2), dtype=np.int64)
    capacity[0, 1] = 5
    capacity[1, 0] = 3
    assert min_cut(capacity, 0, 1).flow_value == 5
    assert min_cut(capacity, 1, 0).flow_value == 3


def test_sparse_input():
    result = min_cut(scipy.sparse.csr_matrix(diamond()), 0, 1)
    assert result.flow_value == 5


def test_no_path_gives_zero_flow():
    capacity = np.zeros((3, 3), dtype=np.int64)
    capacity[0, 2] = 4
    result = min_cut(capacity, 0, 1)
    assert result.flow_value == 0
    assert result.source_side == {0, 2}
    assert result.sink_side == {1}


def test_integral_floats_are_accepted():
    num_nodes, edges = capacity_edges(diamond().astype(np.float64))
    assert num_nodes == 4
    assert edges[(0, 2)] == 3
    assert all(isinstance(value, int) for value in edges.values())


@pytest.mark.parametrize("capacity", [
    np.array([[0, -1], [0, 0]]),
    np.array([[0, 1.5], [0, 0]]),
    np.zeros((2, 3), dtype=np.int64),
    np.zeros(4, dtype=np.int64),
])
def test_invalid_capacity_rejected(capacity):
    with pytest.raises(InvalidInputError):
        min_cut(capacity, 0, 1)


def test_invalid_terminals_rejected():
    with pytest.raises(InvalidInputError):
        min_cut(diamond(), 0, 0)
    with pytest.raises(InvalidInputError):
        min_cut(diamond(), 0, 4)
    with pytest.raises(InvalidInputError):
        min_cut(diamond(), 0, 1, solver="push_relabel")


def test_negative_residual_is_an_invariant_violation():
    network = FlowNetwork(3)
    network.add_edge(0, 1, 2)
    network.add_edge(1, 2, 2)
    with pytest.raises(FlowInvariantViolation):
        network.augment([0, 1, 2], 3)
