"""
Bounded breadth-first traversal shared by every engine.

Two primitives live here:

* ``bfs_distances`` - classic visited-once BFS returning first-arrival hop
  counts.  Used for reachability, shortest distances and connected components.
* ``sweep_levels`` - level-synchronous sweep where each node is expanded at
  most once per depth.  A node may re-enter the frontier at a later depth
  (cycles), which is what lets the propagation engine sum effects over every
  distinct path while ``max_depth`` guarantees termination.
"""

from __future__ import annotations

from collections import deque
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple, TypeVar

from models.mechanism_graph import ConfidenceTier, Edge
from .errors import PropagationLimitError
from .graph_index import GraphIndex

FORWARD = "forward"
BACKWARD = "backward"
UNDIRECTED = "undirected"

EdgePredicate = Callable[[Edge], bool]
State = TypeVar("State")

DEFAULT_RELAXATION_CAP = 2_000_000


def tier_filter(min_confidence_tier: Optional[ConfidenceTier]) -> Optional[EdgePredicate]:
    if min_confidence_tier is None:
        return None
    return lambda edge: edge.causal_confidence.at_least(min_confidence_tier)


def signed_only(edge: Edge) -> bool:
    return edge.sign != 0


def combine_filters(*predicates: Optional[EdgePredicate]) -> Optional[EdgePredicate]:
    active = [p for p in predicates if p is not None]
    if not active:
        return None
    return lambda edge: all(p(edge) for p in active)


def neighbors(
    index: GraphIndex,
    node_id: str,
    direction: str = FORWARD,
    edge_filter: Optional[EdgePredicate] = None,
) -> Iterator[Tuple[Edge, str]]:
    """Yield ``(edge, neighbor_id)`` pairs in the index's edge order."""
    if direction in (FORWARD, UNDIRECTED):
        for edge in index.outgoing(node_id):
            if edge_filter is None or edge_filter(edge):
                yield edge, edge.target
    if direction in (BACKWARD, UNDIRECTED):
        for edge in index.incoming(node_id):
            if edge_filter is None or edge_filter(edge):
                yield edge, edge.source


def bfs_distances(
    index: GraphIndex,
    starts: Iterable[str],
    direction: str = FORWARD,
    max_depth: Optional[int] = None,
    edge_filter: Optional[EdgePredicate] = None,
) -> Dict[str, int]:
    """Hop distance from the nearest start to every reachable node (starts at 0)."""
    distances: Dict[str, int] = {}
    queue: deque = deque()
    for start in starts:
        if start not in distances:
            distances[start] = 0
            queue.append(start)

    while queue:
        current = queue.popleft()
        depth = distances[current]
        if max_depth is not None and depth >= max_depth:
            continue
        for _, neighbor in neighbors(index, current, direction, edge_filter):
            if neighbor not in distances:
                distances[neighbor] = depth + 1
                queue.append(neighbor)
    return distances


def shortest_distance(
    index: GraphIndex,
    start: str,
    targets: Set[str],
    direction: str = FORWARD,
    edge_filter: Optional[EdgePredicate] = None,
) -> Optional[int]:
    """Hops from *start* to the nearest target other than *start* itself."""
    distances: Dict[str, int] = {start: 0}
    queue: deque = deque([start])
    while queue:
        current = queue.popleft()
        for _, neighbor in neighbors(index, current, direction, edge_filter):
            if neighbor in targets and neighbor != start:
                return distances[current] + 1
            if neighbor not in distances:
                distances[neighbor] = distances[current] + 1
                queue.append(neighbor)
    return None


def sweep_levels(
    index: GraphIndex,
    frontier: Dict[str, State],
    relax: Callable[[str, State, Edge], Optional[State]],
    merge: Callable[[State, State], State],
    max_depth: int,
    edge_filter: Optional[EdgePredicate] = None,
    expandable: Optional[Callable[[str, int], bool]] = None,
    relaxation_cap: int = DEFAULT_RELAXATION_CAP,
) -> Iterator[Tuple[int, Dict[str, State]]]:
    """
    Yield ``(depth, frontier)`` for depths ``1 .. max_depth``.

    ``relax(node_id, state, edge)`` turns a parent's state into the state it
    contributes through *edge* (``None`` contributes nothing); contributions
    arriving at the same node and depth are folded together with ``merge``.
    Frontier nodes are expanded in sorted id order so floating point sums are
    reproducible.  ``expandable(node_id, depth)`` can veto expanding a node.
    """
    relaxations = 0
    for depth in range(1, max_depth + 1):
        next_frontier: Dict[str, State] = {}
        for node_id in sorted(frontier):
            if expandable is not None and not expandable(node_id, depth - 1):
                continue
            state = frontier[node_id]
            for edge, target in neighbors(index, node_id, FORWARD, edge_filter):
                relaxations += 1
                if relaxations > relaxation_cap:
                    raise PropagationLimitError(
                        f"Traversal exceeded {relaxation_cap} edge relaxations",
                        context={"depth": depth, "node_id": node_id},
                    )
                contribution = relax(node_id, state, edge)
                if contribution is None:
                    continue
                if target in next_frontier:
                    next_frontier[target] = merge(next_frontier[target], contribution)
                else:
                    next_frontier[target] = contribution
        if not next_frontier:
            return
        yield depth, next_frontier
        frontier = next_frontier


def undirected_components(adjacency: Dict[str, Set[str]]) -> List[List[str]]:
    """Connected components of a plain undirected adjacency map, visited-once BFS."""
    seen: Set[str] = set()
    components: List[List[str]] = []
    for start in sorted(adjacency):
        if start in seen:
            continue
        component = []
        queue = deque([start])
        seen.add(start)
        while queue:
            current = queue.popleft()
            component.append(current)
            for neighbor in sorted(adjacency[current]):
                if neighbor not in seen:
                    seen.add(neighbor)
                    queue.append(neighbor)
        components.append(sorted(component))
    return components
