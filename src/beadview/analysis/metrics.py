# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Graph metric computations over the blocking dependency graph.

All functions take a networkx DiGraph where an edge u -> v means
"u depends on v" (v blocks u), and return plain dicts keyed by issue id.
None of them raise on cyclic input.
"""

import itertools
import logging
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple

import networkx as nx
import numpy as np

logger = logging.getLogger(__name__)

PAGERANK_DAMPING = 0.85
PAGERANK_TOLERANCE = 1e-6
PAGERANK_MAX_ITERATIONS = 1000

EIGENVECTOR_ITERATIONS = 50

HITS_TOLERANCE = 1e-3
HITS_MAX_ITERATIONS = 100


def compute_ranks(values: Mapping[str, float]) -> Dict[str, int]:
    """Assign 1-indexed ranks, highest value first, ties broken by id."""
    ordered = sorted(values.items(), key=lambda item: (-item[1], item[0]))
    return {issue_id: rank for rank, (issue_id, _) in enumerate(ordered, 1)}


def compute_degrees(graph: nx.DiGraph) -> Tuple[Dict[str, float], Dict[str, float]]:
    """In-degree (dependents) and out-degree (dependencies) per node."""
    in_degree = {node: float(deg) for node, deg in graph.in_degree()}
    out_degree = {node: float(deg) for node, deg in graph.out_degree()}
    return in_degree, out_degree


def compute_density(graph: nx.DiGraph) -> float:
    n = graph.number_of_nodes()
    if n < 2:
        return 0.0
    return graph.number_of_edges() / float(n * (n - 1))


def compute_topological_order(graph: nx.DiGraph) -> List[str]:
    """Dependencies-first topological order, or [] if the graph has a cycle."""
    try:
        order = list(nx.lexicographical_topological_sort(graph))
    except nx.NetworkXUnfeasible:
        return []
    order.reverse()
    return order


def compute_pagerank(graph: nx.DiGraph) -> Dict[str, float]:
    """PageRank with uniform redistribution of dangling mass.

    Falls back to a uniform distribution if power iteration does not converge.
    """
    n = graph.number_of_nodes()
    if n == 0:
        return {}
    try:
        scores = nx.pagerank(
            graph,
            alpha=PAGERANK_DAMPING,
            max_iter=PAGERANK_MAX_ITERATIONS,
            tol=PAGERANK_TOLERANCE,
        )
    except nx.PowerIterationFailedConvergence:
        logger.warning(f"PageRank did not converge on {n} nodes, using uniform scores")
        uniform = 1.0 / n
        return {node: uniform for node in graph.nodes()}
    return {node: float(score) for node, score in scores.items()}


def compute_betweenness(graph: nx.DiGraph, sample_size: Optional[int] = None) -> Dict[str, float]:
    """Brandes betweenness, exact or estimated from sampled pivots.

    Args:
        graph: Dependency graph.
        sample_size: Number of pivot nodes; None or >= node count means exact.

    Returns:
        Unnormalized betweenness per node.
    """
    n = graph.number_of_nodes()
    if n == 0:
        return {}
    k = sample_size if sample_size and sample_size < n else None
    scores = nx.betweenness_centrality(graph, k=k, normalized=False, seed=1)
    return {node: float(score) for node, score in scores.items()}


def _adjacency(graph: nx.DiGraph, nodes: List[str]):
    return nx.to_scipy_sparse_array(graph, nodelist=nodes, weight=None, format="csr")


def compute_eigenvector(graph: nx.DiGraph) -> Dict[str, float]:
    """Eigenvector centrality by power iteration over incoming edges.

    Scores are L2-normalized each round. On an acyclic graph the iteration
    decays to zero; the last non-zero vector is kept.
    """
    nodes = list(graph.nodes())
    n = len(nodes)
    if n == 0:
        return {}

    adjacency_t = _adjacency(graph, nodes).T.tocsr()
    x = np.full(n, 1.0 / n)
    for _ in range(EIGENVECTOR_ITERATIONS):
        nxt = adjacency_t @ x
        norm = float(np.linalg.norm(nxt))
        if norm == 0.0:
            break
        x = nxt / norm
    return {node: float(x[i]) for i, node in enumerate(nodes)}


def compute_hits(graph: nx.DiGraph) -> Tuple[Dict[str, float], Dict[str, float]]:
    """HITS hub and authority scores by mutual reinforcement.

    Authorities are issues depended on by good hubs; hubs depend on good
    authorities. Both vectors are normalized to sum to 1.

    Returns:
        (hubs, authorities); both empty if the graph has no edges.
    """
    nodes = list(graph.nodes())
    n = len(nodes)
    if n == 0 or graph.number_of_edges() == 0:
        return {}, {}

    adjacency = _adjacency(graph, nodes)
    adjacency_t = adjacency.T.tocsr()
    hubs = np.full(n, 1.0 / n)
    authorities = np.full(n, 1.0 / n)

    for _ in range(HITS_MAX_ITERATIONS):
        new_auth = adjacency_t @ hubs
        auth_sum = float(new_auth.sum())
        if auth_sum > 0:
            new_auth = new_auth / auth_sum
        new_hubs = adjacency @ new_auth
        hub_sum = float(new_hubs.sum())
        if hub_sum > 0:
            new_hubs = new_hubs / hub_sum

        delta = float(np.abs(new_hubs - hubs).sum() + np.abs(new_auth - authorities).sum())
        hubs, authorities = new_hubs, new_auth
        if delta < HITS_TOLERANCE:
            break

    hub_scores = {node: float(hubs[i]) for i, node in enumerate(nodes)}
    auth_scores = {node: float(authorities[i]) for i, node in enumerate(nodes)}
    return hub_scores, auth_scores


def compute_critical_path(graph: nx.DiGraph) -> Dict[str, float]:
    """Length of the longest dependent chain resting on each issue.

    An issue nobody depends on scores 1; a blocker scores one more than its
    highest-scoring dependent. Strongly connected components are collapsed
    first, so members of a cycle share one height and the walk terminates.
    """
    if graph.number_of_nodes() == 0:
        return {}

    condensed = nx.condensation(graph)
    heights: Dict[int, int] = {}
    for component in nx.topological_sort(condensed):
        preds = [heights[p] for p in condensed.predecessors(component)]
        heights[component] = 1 + max(preds) if preds else 1

    mapping = condensed.graph["mapping"]
    return {node: float(heights[mapping[node]]) for node in graph.nodes()}


def _canonical_cycle(cycle: List[str]) -> Tuple[str, ...]:
    start = cycle.index(min(cycle))
    return tuple(cycle[start:] + cycle[:start])


def has_nontrivial_scc(graph: nx.DiGraph) -> bool:
    return any(len(c) > 1 for c in nx.strongly_connected_components(graph))


def find_cycles(graph: nx.DiGraph, max_cycles: int) -> Tuple[List[Tuple[str, ...]], bool]:
    """Enumerate distinct elementary cycles.

    Each cycle is rotated to start at its smallest id, so the same cycle is
    reported once regardless of where enumeration entered it.

    Args:
        graph: Dependency graph (self-loops already excluded).
        max_cycles: Maximum number of cycles to return.

    Returns:
        (sorted cycles, truncated flag).
    """
    if max_cycles <= 0 or not has_nontrivial_scc(graph):
        return [], False

    found = set()
    truncated = False
    for cycle in itertools.islice(nx.simple_cycles(graph), max_cycles + 1):
        if len(found) >= max_cycles:
            truncated = True
            break
        found.add(_canonical_cycle(list(cycle)))

    return sorted(found), truncated


def compute_core_numbers(graph: nx.DiGraph) -> Dict[str, float]:
    """k-core number of each issue, ignoring edge direction."""
    if graph.number_of_nodes() == 0:
        return {}
    undirected = nx.Graph(graph)
    return {node: float(core) for node, core in nx.core_number(undirected).items()}


def find_articulation_points(graph: nx.DiGraph) -> FrozenSet[str]:
    """Issues whose removal disconnects the undirected dependency graph."""
    return frozenset(nx.articulation_points(graph.to_undirected(as_view=True)))


def compute_slack(graph: nx.DiGraph) -> Dict[str, float]:
    """Steps each issue can slip without lengthening the longest chain.

    Issues on a longest dependency chain have slack 0; an isolated issue has
    the full chain length. Empty when the graph has a cycle.
    """
    if graph.number_of_nodes() == 0:
        return {}
    try:
        order = list(nx.topological_sort(graph))
    except nx.NetworkXUnfeasible:
        return {}

    below: Dict[str, int] = {}
    for node in reversed(order):
        below[node] = max((below[dep] + 1 for dep in graph.successors(node)), default=0)
    above: Dict[str, int] = {}
    for node in order:
        above[node] = max((above[dep] + 1 for dep in graph.predecessors(node)), default=0)

    longest = max(below[node] + above[node] for node in order)
    return {node: float(longest - below[node] - above[node]) for node in order}
