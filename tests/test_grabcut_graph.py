import numpy as np
import pytest

from gmm import fit_gmm
from grabcut_errors import InvalidInputError
from grabcut_graph import (HARD_CAPACITY, SINK, SOURCE, build_graph, constraint_mask, data_term,
                           neighbor_links, pixel_to_node)


class FixedCostModel:
    def __init__(self, costs):
        self.costs = np.asarray(costs, dtype=np.float64)

    def component_cost(self, pixels):
        return self.costs[:len(pixels)]


def distinct_pixels(count):
    return np.array([[10.0 * i, 5.0 * i, float(i)] for i in range(count)])


def test_fully_constrained_graph_has_hard_terminal_links():
    pixels = np.array([[255, 0, 0], [250, 5, 0], [0, 0, 255], [5, 0, 250]], dtype=np.float64)
    capacity = build_graph(pixels, 2, 2, None, None, [0, 1], [2, 3]).toarray()

    assert capacity.shape == (6, 6)
    assert capacity[SOURCE, pixel_to_node(0)] == HARD_CAPACITY
    assert capacity[SOURCE, pixel_to_node(1)] == HARD_CAPACITY
    assert capacity[pixel_to_node(2), SINK] == HARD_CAPACITY
    assert capacity[pixel_to_node(3), SINK] == HARD_CAPACITY
    assert capacity[pixel_to_node(0), SINK] == 0
    assert capacity[SOURCE, pixel_to_node(2)] == 0


def test_n_links_cover_eight_neighbours():
    pixels = distinct_pixels(9)
    capacity = build_graph(pixels, 3, 3, None, None, [4], [0, 1, 2, 3, 5, 6, 7, 8]).toarray()
    n_links = capacity[2:, 2:]

    # 12 horizontal + 12 vertical + 16 diagonal directed edges
    assert np.count_nonzero(n_links) == 40
    np.testing.assert_array_equal(n_links, n_links.T)
    # the centre pixel touches every other pixel, corners never touch each other
    assert np.count_nonzero(n_links[4]) == 8
    assert n_links[0, 2] == 0
    assert n_links[0, 8] == 0
    expected = np.floor(1000 * np.linalg.norm(pixels[0] - pixels[4]))
    assert n_links[0, 4] == expected


def test_neighbor_links_without_wraparound():
    links = list(neighbor_links(distinct_pixels(3), 3, 1))
    pairs = {(a, b) for from_pixels, to_pixels, _ in links for a, b in zip(from_pixels, to_pixels)}
    assert pairs == {(0, 1), (1, 0), (1, 2), (2, 1)}


def test_data_term_is_scaled_floored_and_clamped():
    model = FixedCostModel([-1.5, 0.12345, 2.0])
    np.testing.assert_array_equal(data_term(np.zeros((3, 3)), model), [0, 1234, 20000])
    assert data_term(np.zeros((3, 3)), model).dtype == np.int64


def test_undetermined_pixels_use_the_opposite_model():
    pixels = distinct_pixels(3)
    foreground = FixedCostModel([1.0])
    background = FixedCostModel([2.0])
    capacity = build_graph(pixels, 3, 1, foreground, background, [0], [2]).toarray()

    # source link of the undetermined pixel carries the background cost, sink link the foreground one
    assert capacity[SOURCE, pixel_to_node(1)] == 20000
    assert capacity[pixel_to_node(1), SINK] == 10000


def test_data_term_from_fitted_models():
    rng = np.random.RandomState(0)
    red = rng.normal([200, 30, 30], 5, size=(30, 3))
    blue = rng.normal([30, 30, 200], 5, size=(30, 3))
    pixels = np.vstack((red, blue))
    foreground = fit_gmm(red, 2, random_state=0)
    background = fit_gmm(blue, 2, random_state=0)

    capacity = build_graph(pixels, 10, 6, foreground, background, [0], [59]).toarray()
    source_links = capacity[SOURCE, 2:]
    sink_links = capacity[2:, SINK]

    expected = np.clip(np.floor(10000 * background.component_cost(pixels[1:59])), 0, None)
    np.testing.assert_array_equal(source_links[1:59], expected)
    # red pixels are far cheaper to keep on the foreground side
    assert np.all(source_links[1:30] > sink_links[1:30])
    assert np.all(source_links[30:59] < sink_links[30:59])


def test_single_pixel_graph():
    capacity = build_graph(np.array([[1.0, 2.0, 3.0]]), 1, 1, None, None, [0], []).toarray()
    assert capacity.shape == (3, 3)
    assert capacity[SOURCE, pixel_to_node(0)] == HARD_CAPACITY
    assert np.count_nonzero(capacity) == 1


def test_invalid_graph_inputs():
    pixels = distinct_pixels(4)
    with pytest.raises(InvalidInputError):
        build_graph(pixels, 3, 2, None, None, [0], [1])
    with pytest.raises(InvalidInputError):
        build_graph(pixels, 2, 2, None, None, [0, 1], [1, 2, 3])
    with pytest.raises(InvalidInputError):
        build_graph(pixels, 2, 2, None, None, [0], [3])
    with pytest.raises(InvalidInputError):
        constraint_mask([4], 4)
