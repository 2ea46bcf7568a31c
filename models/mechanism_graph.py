"""
Mechanism Graph Records
=======================
Immutable value objects for the curated disease-mechanism network:
nodes, edges, modules and feedback loops, plus the ``GraphData`` bundle
handed to every analysis.  Records carry no behaviour beyond small derived
properties (edge sign, tier rank) and plain-dict conversion.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple


def _normalise_token(value: str) -> str:
    # "directlyIncreases", "directly-increases" and "DIRECTLY_INCREASES" all map
    # to "directly_increases".
    value = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", value.strip())
    return value.replace("-", "_").replace(" ", "_").lower()


class _ParseableEnum(Enum):
    @classmethod
    def parse(cls, value: Any):
        if isinstance(value, cls):
            return value
        token = _normalise_token(str(value))
        for member in cls:
            if _normalise_token(member.value) == token or member.name.lower() == token:
                return member
        raise ValueError(f"Unknown {cls.__name__} value: {value!r}")


class NodeCategory(_ParseableEnum):
    STOCK = "STOCK"
    STATE = "STATE"
    PROCESS = "PROCESS"
    REGULATOR = "REGULATOR"
    BOUNDARY = "BOUNDARY"


class NodeRole(_ParseableEnum):
    THERAPEUTIC_TARGET = "THERAPEUTIC_TARGET"
    BIOMARKER = "BIOMARKER"
    RATE_LIMITER = "RATE_LIMITER"
    LEVERAGE_POINT = "LEVERAGE_POINT"
    FEEDBACK_HUB = "FEEDBACK_HUB"


class BoundaryDirection(_ParseableEnum):
    INPUT = "input"
    OUTPUT = "output"


class Relation(_ParseableEnum):
    """Causal relation of an edge.  Only the first four carry a sign."""

    INCREASES = "increases"
    DECREASES = "decreases"
    DIRECTLY_INCREASES = "directlyIncreases"
    DIRECTLY_DECREASES = "directlyDecreases"
    REGULATES = "regulates"
    MODULATES = "modulates"
    PRODUCES = "produces"
    ASSOCIATION = "association"
    POSITIVE_CORRELATION = "positiveCorrelation"
    NEGATIVE_CORRELATION = "negativeCorrelation"
    CAUSES_NO_CHANGE = "causesNoChange"
    NO_CORRELATION = "noCorrelation"

    @property
    def sign(self) -> int:
        return _RELATION_SIGNS[self]

    @property
    def is_propagable(self) -> bool:
        return self.sign != 0


_RELATION_SIGNS: Dict[Relation, int] = {
    Relation.INCREASES: 1,
    Relation.DIRECTLY_INCREASES: 1,
    Relation.DECREASES: -1,
    Relation.DIRECTLY_DECREASES: -1,
    Relation.REGULATES: 0,
    Relation.MODULATES: 0,
    Relation.PRODUCES: 0,
    Relation.ASSOCIATION: 0,
    Relation.POSITIVE_CORRELATION: 0,
    Relation.NEGATIVE_CORRELATION: 0,
    Relation.CAUSES_NO_CHANGE: 0,
    Relation.NO_CORRELATION: 0,
}

_unmapped = set(Relation) - set(_RELATION_SIGNS)
if _unmapped:
    raise RuntimeError(f"Relations without a sign mapping: {sorted(r.name for r in _unmapped)}")


class ConfidenceTier(_ParseableEnum):
    """Ordinal evidence tier, L1 strongest (human RCT) to L7 weakest."""

    L1 = "L1"
    L2 = "L2"
    L3 = "L3"
    L4 = "L4"
    L5 = "L5"
    L6 = "L6"
    L7 = "L7"

    @property
    def level(self) -> int:
        return int(self.value[1:])

    @property
    def rank(self) -> int:
        # L1 -> 7 ... L7 -> 1, higher is stronger
        return 8 - self.level

    def at_least(self, threshold: Optional["ConfidenceTier"]) -> bool:
        """True when this tier is as strong as or stronger than *threshold*."""
        return threshold is None or self.level <= threshold.level


class LoopType(_ParseableEnum):
    REINFORCING = "reinforcing"
    BALANCING = "balancing"

    @classmethod
    def from_sign(cls, sign: int) -> "LoopType":
        return cls.REINFORCING if sign > 0 else cls.BALANCING


class InterventionWindow(_ParseableEnum):
    PREVENTION = "prevention"
    EARLY_TREATMENT = "early_treatment"
    TREATMENT = "treatment"
    MANAGEMENT = "management"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Node:
    id: str
    label: str
    category: NodeCategory
    module_id: str
    roles: FrozenSet[NodeRole] = frozenset()
    boundary_direction: Optional[BoundaryDirection] = None
    subtype: Optional[str] = None
    description: Optional[str] = None

    def has_role(self, role: NodeRole) -> bool:
        return role in self.roles

    @property
    def is_input_boundary(self) -> bool:
        return self.boundary_direction is BoundaryDirection.INPUT

    @property
    def is_output_boundary(self) -> bool:
        return self.boundary_direction is BoundaryDirection.OUTPUT


@dataclass(frozen=True)
class Edge:
    id: str
    source: str
    target: str
    relation: Relation
    causal_confidence: ConfidenceTier
    module_id: str
    mechanism_label: Optional[str] = None

    @property
    def sign(self) -> int:
        return self.relation.sign


@dataclass(frozen=True)
class Module:
    id: str
    name: str
    short_name: str = ""
    description: str = ""
    intervention_window: Optional[InterventionWindow] = None


@dataclass(frozen=True)
class GhostEdge:
    """Closing edge of a loop that is implied but not curated in the edge list."""

    source: str
    target: str
    relation: Relation


@dataclass(frozen=True)
class FeedbackLoop:
    id: str
    name: str
    loop_type: LoopType
    edge_ids: Tuple[str, ...]
    intervention_points: Tuple[str, ...] = ()
    ghost_edge: Optional[GhostEdge] = None
    module_ids: Tuple[str, ...] = ()
    description: str = ""


@dataclass(frozen=True)
class GraphData:
    """The complete curated graph as loaded by an external collaborator."""

    nodes: Tuple[Node, ...] = ()
    edges: Tuple[Edge, ...] = ()
    modules: Tuple[Module, ...] = ()
    feedback_loops: Tuple[FeedbackLoop, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "GraphData":
        return cls(
            nodes=tuple(node_from_dict(n) for n in payload.get("nodes", ())),
            edges=tuple(edge_from_dict(e) for e in payload.get("edges", ())),
            modules=tuple(module_from_dict(m) for m in payload.get("modules", ())),
            feedback_loops=tuple(
                loop_from_dict(loop)
                for loop in payload.get("feedbackLoops", payload.get("feedback_loops", ()))
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [node_to_dict(n) for n in self.nodes],
            "edges": [edge_to_dict(e) for e in self.edges],
            "modules": [module_to_dict(m) for m in self.modules],
            "feedbackLoops": [loop_to_dict(loop) for loop in self.feedback_loops],
        }


# ---------------------------------------------------------------------------
# Plain-dict conversion (camelCase keys, as emitted by the curation export)
# ---------------------------------------------------------------------------

def _get(record: Mapping[str, Any], camel: str, snake: str, default: Any = None) -> Any:
    if camel in record:
        return record[camel]
    return record.get(snake, default)


def _optional(parser, value):
    return parser(value) if value not in (None, "") else None


def node_from_dict(record: Mapping[str, Any]) -> Node:
    return Node(
        id=record["id"],
        label=record.get("label", record["id"]),
        category=NodeCategory.parse(record["category"]),
        module_id=_get(record, "moduleId", "module_id"),
        roles=frozenset(NodeRole.parse(r) for r in record.get("roles") or ()),
        boundary_direction=_optional(
            BoundaryDirection.parse, _get(record, "boundaryDirection", "boundary_direction")
        ),
        subtype=record.get("subtype"),
        description=record.get("description"),
    )


def edge_from_dict(record: Mapping[str, Any]) -> Edge:
    return Edge(
        id=record["id"],
        source=record["source"],
        target=record["target"],
        relation=Relation.parse(record["relation"]),
        causal_confidence=ConfidenceTier.parse(_get(record, "causalConfidence", "causal_confidence")),
        module_id=_get(record, "moduleId", "module_id"),
        mechanism_label=_get(record, "mechanismLabel", "mechanism_label"),
    )


def module_from_dict(record: Mapping[str, Any]) -> Module:
    return Module(
        id=record["id"],
        name=record.get("name", record["id"]),
        short_name=_get(record, "shortName", "short_name", ""),
        description=record.get("description", ""),
        intervention_window=_optional(
            InterventionWindow.parse, _get(record, "interventionWindow", "intervention_window")
        ),
    )


def loop_from_dict(record: Mapping[str, Any]) -> FeedbackLoop:
    ghost = _get(record, "ghostEdge", "ghost_edge")
    return FeedbackLoop(
        id=record["id"],
        name=record.get("name", record["id"]),
        loop_type=LoopType.parse(_get(record, "type", "loop_type")),
        edge_ids=tuple(_get(record, "edgeIds", "edge_ids", ())),
        intervention_points=tuple(_get(record, "interventionPoints", "intervention_points", ()) or ()),
        ghost_edge=GhostEdge(
            source=ghost["source"],
            target=ghost["target"],
            relation=Relation.parse(ghost["relation"]),
        ) if ghost else None,
        module_ids=tuple(_get(record, "moduleIds", "module_ids", ()) or ()),
        description=record.get("description", ""),
    )


def node_to_dict(node: Node) -> Dict[str, Any]:
    return {
        "id": node.id,
        "label": node.label,
        "category": node.category.value,
        "moduleId": node.module_id,
        "roles": sorted(r.value for r in node.roles),
        "boundaryDirection": node.boundary_direction.value if node.boundary_direction else None,
        "subtype": node.subtype,
        "description": node.description,
    }


def edge_to_dict(edge: Edge) -> Dict[str, Any]:
    return {
        "id": edge.id,
        "source": edge.source,
        "target": edge.target,
        "relation": edge.relation.value,
        "causalConfidence": edge.causal_confidence.value,
        "moduleId": edge.module_id,
        "mechanismLabel": edge.mechanism_label,
    }


def module_to_dict(module: Module) -> Dict[str, Any]:
    return {
        "id": module.id,
        "name": module.name,
        "shortName": module.short_name,
        "description": module.description,
        "interventionWindow": module.intervention_window.value if module.intervention_window else None,
    }


def loop_to_dict(loop: FeedbackLoop) -> Dict[str, Any]:
    ghost = None
    if loop.ghost_edge is not None:
        ghost = {
            "source": loop.ghost_edge.source,
            "target": loop.ghost_edge.target,
            "relation": loop.ghost_edge.relation.value,
        }
    return {
        "id": loop.id,
        "name": loop.name,
        "type": loop.loop_type.value,
        "edgeIds": list(loop.edge_ids),
        "interventionPoints": list(loop.intervention_points),
        "ghostEdge": ghost,
        "moduleIds": list(loop.module_ids),
        "description": loop.description,
    }


def loop_node_ids(loop: FeedbackLoop, edges_by_id: Mapping[str, Edge]) -> List[str]:
    """Node ids touched by a loop, in traversal order, without duplicates."""
    seen: Dict[str, None] = {}
    for edge_id in loop.edge_ids:
        edge = edges_by_id.get(edge_id)
        if edge is None:
            continue
        seen.setdefault(edge.source)
        seen.setdefault(edge.target)
    if loop.ghost_edge is not None:
        seen.setdefault(loop.ghost_edge.source)
        seen.setdefault(loop.ghost_edge.target)
    return list(seen)


def iter_tier_filtered(edges: Iterable[Edge], min_confidence_tier: Optional[ConfidenceTier]) -> Iterable[Edge]:
    for edge in edges:
        if edge.causal_confidence.at_least(min_confidence_tier):
            yield edge
