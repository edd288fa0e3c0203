import logging
from collections import namedtuple

import numpy as np
import scipy.sparse
from igraph import Graph

from grabcut_errors import FlowInvariantViolation, InvalidInputError

logger = logging.getLogger(__name__)

SOLVERS = ("augmenting_path", "igraph")

MinCutResult = namedtuple('MinCutResult', ['source_side', 'sink_side', 'flow_value'])


def capacity_edges(capacity):
    """
    Read a square capacity matrix into a {(from, to): capacity} dict of its positive entries.

    Args:
        capacity: Dense array-like or scipy sparse matrix of non-negative integers

    Returns:
        num_nodes: Number of rows (= columns) of the matrix
        edges: Positive off-diagonal capacities as python ints
    """
    if not scipy.sparse.issparse(capacity):
        capacity = np.asarray(capacity)
        if capacity.ndim != 2:
            raise InvalidInputError(f"capacity must be a 2d matrix, got {capacity.ndim} dimensions")
    matrix = scipy.sparse.coo_matrix(capacity)
    if matrix.shape[0] != matrix.shape[1]:
        raise InvalidInputError(f"capacity matrix must be square, got {matrix.shape}")

    values = matrix.data
    if values.size:
        if not np.issubdtype(values.dtype, np.integer):
            if not np.all(np.isfinite(values)) or np.any(values != np.floor(values)):
                raise InvalidInputError("capacities must be integers for the augmenting search to terminate")
        if np.any(values < 0):
            raise InvalidInputError("capacities must be non-negative")

    edges = {}
    for i, j, value in zip(matrix.row.tolist(), matrix.col.tolist(), values.tolist()):
        if i != j and value > 0:
            edges[(i, j)] = edges.get((i, j), 0) + int(value)
    return matrix.shape[0], edges


def check_terminals(num_nodes, source, sink):
    for name, node in (("source", source), ("sink", sink)):
        if not 0 <= node < num_nodes:
            raise InvalidInputError(f"{name} node {node} is outside the {num_nodes}-node network")
    if source == sink:
        raise InvalidInputError("source and sink must be distinct nodes")


class FlowNetwork:
    """
    Residual network stored as an arena of nodes, residual[u][v] being the remaining capacity of u->v.

    Nodes keep their matrix indices; nodes added while splitting anti-parallel edges are appended
    after them and recorded in `split_nodes` together with the original pair they stand between.
    """

    def __init__(self, num_nodes):
        self.residual = [{} for _ in range(num_nodes)]
        self.original_node_count = num_nodes
        self.split_nodes = {}

    @property
    def num_nodes(self):
        return len(self.residual)

    @classmethod
    def from_capacity(cls, capacity):
        num_nodes, edges = capacity_edges(capacity)
        network = cls(num_nodes)
        for (i, j), value in edges.items():
            reverse = edges.get((j, i), 0)
            if not reverse:
                network.add_edge(i, j, value)
            elif i < j:
                network.split_anti_parallel(i, j, value, reverse)
        logger.debug(f"Flow network: {num_nodes} nodes, {len(edges)} edges, "
                     f"{len(network.split_nodes)} split nodes")
        return network

    def add_node(self):
        self.residual.append({})
        return len(self.residual) - 1

    def add_edge(self, u, v, capacity):
        if self.residual[v].get(u, 0) > 0:
            raise FlowInvariantViolation(f"edge {u}->{v} would be anti-parallel to a positive {v}->{u}")
        self.residual[u][v] = self.residual[u].get(v, 0) + capacity
        # zero reverse entry carries the flow that gets pushed back
        self.residual[v].setdefault(u, 0)

    def split_anti_parallel(self, i, j, forward, backward):
        # i -> a -> j carries the forward capacity, j -> b -> i the backward one
        a = self.add_node()
        self.add_edge(i, a, forward)
        self.add_edge(a, j, forward)
        self.split_nodes[a] = (i, j)

        b = self.add_node()
        self.add_edge(j, b, backward)
        self.add_edge(b, i, backward)
        self.split_nodes[b] = (j, i)

    def capacity(self, u, v):
        return self.residual[u].get(v, 0)

    def find_augmenting_path(self, source, sink):
        """Depth-first search over positive residual edges, returns the node path or None."""
        parent = {source: None}
        stack = [source]
        while stack:
            node = stack.pop()
            for neighbour, remaining in self.residual[node].items():
                if remaining > 0 and neighbour not in parent:
                    parent[neighbour] = node
                    if neighbour == sink:
                        return self._trace_path(parent, sink)
                    stack.append(neighbour)
        return None

    @staticmethod
    def _trace_path(parent, node):
        path = []
        while node is not None:
            path.append(node)
            node = parent[node]
        path.reverse()
        return path

    def bottleneck(self, path):
        return min(self.residual[u][v] for u, v in zip(path, path[1:]))

    def augment(self, path, amount):
        for u, v in zip(path, path[1:]):
            remaining = self.residual[u][v] - amount
            if remaining < 0:
                raise FlowInvariantViolation(f"residual capacity of {u}->{v} would become {remaining}")
            self.residual[u][v] = remaining
            self.residual[v][u] = self.residual[v].get(u, 0) + amount

    def max_flow(self, source, sink):
        check_terminals(self.num_nodes, source, sink)
        flow = 0
        augmentations = 0
        while True:
            path = self.find_augmenting_path(source, sink)
            if path is None:
                break
            amount = self.bottleneck(path)
            self.augment(path, amount)
            flow += amount
            augmentations += 1
        logger.debug(f"Max flow {flow} after {augmentations} augmenting paths")
        return flow

    def reachable_from(self, source):
        reached = {source}
        stack = [source]
        while stack:
            node = stack.pop()
            for neighbour, remaining in self.residual[node].items():
                if remaining > 0 and neighbour not in reached:
                    reached.add(neighbour)
                    stack.append(neighbour)
        return reached


def igraph_min_cut(capacity, source, sink):
    num_nodes, edges = capacity_edges(capacity)
    check_terminals(num_nodes, source, sink)

    graph = Graph(directed=True)
    graph.add_vertices(num_nodes)
    graph.add_edges(list(edges.keys()))
    graph.es['capacity'] = list(edges.values())

    cut = graph.mincut(source, sink, capacity='capacity')
    source_side, sink_side = cut.partition
    if source not in source_side:
        source_side, sink_side = sink_side, source_side
    return MinCutResult(frozenset(source_side), frozenset(sink_side), int(round(cut.value)))


def min_cut(capacity, source, sink, solver="augmenting_path"):
    """
    Minimum s-t cut of a capacitated directed graph.

    Args:
        capacity: (V, V) non-negative integer matrix, dense or scipy sparse
        source: Source node index
        sink: Sink node index
        solver: "augmenting_path" (depth-first Ford-Fulkerson) or "igraph"

    Returns:
        MinCutResult with the residual-reachable source side, the remaining sink side
        (both over the matrix's own node indices) and the max-flow value
    """
    if solver == "igraph":
        return igraph_min_cut(capacity, source, sink)
    if solver != "augmenting_path":
        raise InvalidInputError(f"unknown min-cut solver {solver!r}, expected one of {SOLVERS}")

    network = FlowNetwork.from_capacity(capacity)
    flow = network.max_flow(source, sink)
    # project the rewritten graph back onto the original node indices
    source_side = frozenset(node for node in network.reachable_from(source)
                            if node < network.original_node_count)
    sink_side = frozenset(range(network.original_node_count)) - source_side
    return MinCutResult(source_side, sink_side, flow)
