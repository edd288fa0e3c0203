import logging

import numpy as np
import scipy.sparse

import matrix_ops
from grabcut_errors import InvalidInputError

logger = logging.getLogger(__name__)

SOURCE = 0  # foreground terminal
SINK = 1  # background terminal
PIXEL_OFFSET = 2

HARD_CAPACITY = np.iinfo(np.int64).max
# Soft data costs stay far below HARD_CAPACITY
MAX_SOFT_CAPACITY = 2 ** 62

NEIGHBOR_OFFSETS = ((-1, -1), (-1, 0), (-1, 1),
                    (0, -1), (0, 1),
                    (1, -1), (1, 0), (1, 1))


# Translation from pixel index (row-major) to its vertex in the flow network
def pixel_to_node(pixel_index):
    return pixel_index + PIXEL_OFFSET


def node_to_pixel(node):
    return node - PIXEL_OFFSET


def constraint_mask(indices, num_pixels):
    indices = np.asarray(indices, dtype=np.int64).ravel()
    if np.any((indices < 0) | (indices >= num_pixels)):
        raise InvalidInputError(f"constraint indices must lie in [0, {num_pixels})")
    mask = np.zeros(num_pixels, dtype=bool)
    mask[indices] = True
    return mask


def data_term(pixels, model, scale=10000):
    """
    T-link capacities of the pixels under one colour model.

    Each pixel is costed with the component it is hard-assigned to, and the cost is scaled and
    floored to an integer since the augmenting-path solver only terminates on integer capacities.
    """
    cost = np.floor(scale * model.component_cost(pixels))
    return np.clip(cost, 0, MAX_SOFT_CAPACITY).astype(np.int64)


def neighbor_links(pixels, width, height, scale=1000):
    """
    N-links between every pixel and each of its existing 8-connected neighbours.

    Yields:
        from_pixels, to_pixels, capacities: One triple of flat arrays per neighbour direction,
        capacity being the floored, scaled euclidean colour distance
    """
    grid = pixels.reshape(height, width, -1)
    pixel_index = np.arange(height * width).reshape(height, width)

    for dy, dx in NEIGHBOR_OFFSETS:
        rows = slice(max(0, -dy), height - max(0, dy))
        cols = slice(max(0, -dx), width - max(0, dx))
        neighbor_rows = slice(max(0, dy), height - max(0, -dy))
        neighbor_cols = slice(max(0, dx), width - max(0, -dx))

        distance = matrix_ops.color_distance(grid[rows, cols], grid[neighbor_rows, neighbor_cols])
        capacities = np.floor(scale * distance).astype(np.int64)
        yield pixel_index[rows, cols].ravel(), pixel_index[neighbor_rows, neighbor_cols].ravel(), capacities.ravel()


def build_graph(pixels, width, height, foreground_model, background_model,
                confirmed_foreground, confirmed_background, data_term_scale=10000, smoothness_scale=1000):
    """
    Build the GrabCut flow network of an image.

    Args:
        pixels: (width * height, d) row-major pixel colours
        width, height: Image dimensions
        foreground_model, background_model: Fitted MixtureModels, may be None when every pixel
            is in one of the confirmed sets
        confirmed_foreground, confirmed_background: Disjoint pixel index sequences
        data_term_scale: Multiplier applied to the T-link costs before flooring
        smoothness_scale: Multiplier applied to the N-link colour distances before flooring

    Returns:
        (V, V) scipy.sparse.csr_matrix of int64 capacities, V = width * height + 2,
        node SOURCE the foreground terminal, SINK the background terminal
    """
    pixels = matrix_ops.as_samples(pixels)
    num_pixels = pixels.shape[0]
    if width * height != num_pixels:
        raise InvalidInputError(f"{width}x{height} image does not match {num_pixels} pixels")

    fg_confirmed = constraint_mask(confirmed_foreground, num_pixels)
    bg_confirmed = constraint_mask(confirmed_background, num_pixels)
    if np.any(fg_confirmed & bg_confirmed):
        raise InvalidInputError("confirmed foreground and background indices overlap")
    undetermined = ~(fg_confirmed | bg_confirmed)

    source_capacities = np.zeros(num_pixels, dtype=np.int64)
    sink_capacities = np.zeros(num_pixels, dtype=np.int64)
    if np.any(undetermined):
        if foreground_model is None or background_model is None:
            raise InvalidInputError("undetermined pixels need both a foreground and a background model")
        maybe_pixels = pixels[undetermined]
        # cutting the source link labels the pixel background, so it costs the background fit
        source_capacities[undetermined] = data_term(maybe_pixels, background_model, data_term_scale)
        sink_capacities[undetermined] = data_term(maybe_pixels, foreground_model, data_term_scale)
    source_capacities[fg_confirmed] = HARD_CAPACITY
    sink_capacities[bg_confirmed] = HARD_CAPACITY

    capacity = scipy.sparse.lil_matrix((num_pixels + PIXEL_OFFSET, num_pixels + PIXEL_OFFSET), dtype=np.int64)
    nodes = pixel_to_node(np.arange(num_pixels))

    # T-links
    capacity[np.full(num_pixels, SOURCE), nodes] = source_capacities
    capacity[nodes, np.full(num_pixels, SINK)] = sink_capacities

    # N-links
    n_links = 0
    for from_pixels, to_pixels, capacities in neighbor_links(pixels, width, height, smoothness_scale):
        if len(capacities):
            capacity[pixel_to_node(from_pixels), pixel_to_node(to_pixels)] = capacities
            n_links += len(capacities)

    logger.debug(f"Built {width}x{height} graph: {num_pixels} T-link pairs, {n_links} N-links, "
                 f"{int(undetermined.sum())} undetermined pixels")
    return capacity.tocsr()
