from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from .base import Base
from .mechanism_graph import (
    BoundaryDirection,
    ConfidenceTier,
    Edge,
    FeedbackLoop,
    GhostEdge,
    InterventionWindow,
    LoopType,
    Module,
    Node,
    NodeCategory,
    NodeRole,
    Relation,
)


class ModuleRecord(Base):
    """
    A named grouping of mechanisms (e.g. "Lysosomal dysfunction").
    """
    __tablename__ = 'mechanism_modules'

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    short_name = Column(String, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    intervention_window = Column(String, nullable=True)  # prevention | early_treatment | treatment | management

    def to_model(self) -> Module:
        return Module(
            id=self.id,
            name=self.name,
            short_name=self.short_name or "",
            description=self.description or "",
            intervention_window=InterventionWindow.parse(self.intervention_window) if self.intervention_window else None,
        )

    @classmethod
    def from_model(cls, module: Module) -> "ModuleRecord":
        return cls(
            id=module.id,
            name=module.name,
            short_name=module.short_name,
            description=module.description,
            intervention_window=module.intervention_window.value if module.intervention_window else None,
        )

    def __repr__(self):
        return f"<ModuleRecord(id={self.id}, name={self.name})>"


class NodeRecord(Base):
    """
    A biological entity: a stock, state, process, regulator or system boundary.
    """
    __tablename__ = 'mechanism_nodes'

    id = Column(String, primary_key=True)
    label = Column(String, nullable=False)
    category = Column(String, nullable=False)
    module_id = Column(String, nullable=False)
    roles = Column(JSON, nullable=False, default=list)  # e.g. ["THERAPEUTIC_TARGET", "BIOMARKER"]
    boundary_direction = Column(String, nullable=True)
    subtype = Column(String, nullable=True)
    description = Column(Text, nullable=True)

    outgoing_edges = relationship("EdgeRecord", foreign_keys="EdgeRecord.source_id", back_populates="source_node")
    incoming_edges = relationship("EdgeRecord", foreign_keys="EdgeRecord.target_id", back_populates="target_node")

    def to_model(self) -> Node:
        return Node(
            id=self.id,
            label=self.label,
            category=NodeCategory.parse(self.category),
            module_id=self.module_id,
            roles=frozenset(NodeRole.parse(r) for r in self.roles or ()),
            boundary_direction=BoundaryDirection.parse(self.boundary_direction) if self.boundary_direction else None,
            subtype=self.subtype,
            description=self.description,
        )

    @classmethod
    def from_model(cls, node: Node) -> "NodeRecord":
        return cls(
            id=node.id,
            label=node.label,
            category=node.category.value,
            module_id=node.module_id,
            roles=sorted(r.value for r in node.roles),
            boundary_direction=node.boundary_direction.value if node.boundary_direction else None,
            subtype=node.subtype,
            description=node.description,
        )

    def __repr__(self):
        return f"<NodeRecord(id={self.id}, category={self.category}, module={self.module_id})>"


class EdgeRecord(Base):
    """
    A directed causal claim between two nodes, tagged with its evidence tier.
    """
    __tablename__ = 'mechanism_edges'

    id = Column(String, primary_key=True)
    source_id = Column(String, ForeignKey('mechanism_nodes.id'), nullable=False)
    target_id = Column(String, ForeignKey('mechanism_nodes.id'), nullable=False)
    relation = Column(String, nullable=False)
    causal_confidence = Column(String, nullable=False)  # L1 .. L7
    module_id = Column(String, nullable=False)
    mechanism_label = Column(String, nullable=True)
    position = Column(Integer, nullable=False, default=0)  # curation order

    source_node = relationship("NodeRecord", foreign_keys=[source_id], back_populates="outgoing_edges")
    target_node = relationship("NodeRecord", foreign_keys=[target_id], back_populates="incoming_edges")

    def to_model(self) -> Edge:
        return Edge(
            id=self.id,
            source=self.source_id,
            target=self.target_id,
            relation=Relation.parse(self.relation),
            causal_confidence=ConfidenceTier.parse(self.causal_confidence),
            module_id=self.module_id,
            mechanism_label=self.mechanism_label,
        )

    @classmethod
    def from_model(cls, edge: Edge, position: int = 0) -> "EdgeRecord":
        return cls(
            id=edge.id,
            source_id=edge.source,
            target_id=edge.target,
            relation=edge.relation.value,
            causal_confidence=edge.causal_confidence.value,
            module_id=edge.module_id,
            mechanism_label=edge.mechanism_label,
            position=position,
        )

    def __repr__(self):
        return f"<EdgeRecord(source={self.source_id}, target={self.target_id}, relation={self.relation})>"


class FeedbackLoopRecord(Base):
    __tablename__ = 'mechanism_feedback_loops'

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    loop_type = Column(String, nullable=False)
    edge_ids = Column(JSON, nullable=False)  # ordered
    intervention_points = Column(JSON, nullable=False, default=list)
    ghost_edge = Column(JSON, nullable=True)  # {"source": ..., "target": ..., "relation": ...}
    module_ids = Column(JSON, nullable=False, default=list)
    description = Column(Text, nullable=False, default="")
    imported_at = Column(DateTime, default=datetime.utcnow)

    def to_model(self) -> FeedbackLoop:
        ghost = self.ghost_edge
        return FeedbackLoop(
            id=self.id,
            name=self.name,
            loop_type=LoopType.parse(self.loop_type),
            edge_ids=tuple(self.edge_ids or ()),
            intervention_points=tuple(self.intervention_points or ()),
            ghost_edge=GhostEdge(
                source=ghost["source"],
                target=ghost["target"],
                relation=Relation.parse(ghost["relation"]),
            ) if ghost else None,
            module_ids=tuple(self.module_ids or ()),
            description=self.description or "",
        )

    @classmethod
    def from_model(cls, loop: FeedbackLoop) -> "FeedbackLoopRecord":
        ghost = None
        if loop.ghost_edge is not None:
            ghost = {
                "source": loop.ghost_edge.source,
                "target": loop.ghost_edge.target,
                "relation": loop.ghost_edge.relation.value,
            }
        return cls(
            id=loop.id,
            name=loop.name,
            loop_type=loop.loop_type.value,
            edge_ids=list(loop.edge_ids),
            intervention_points=list(loop.intervention_points),
            ghost_edge=ghost,
            module_ids=list(loop.module_ids),
            description=loop.description,
        )

    def __repr__(self):
        return f"<FeedbackLoopRecord(id={self.id}, type={self.loop_type}, edges={len(self.edge_ids or [])})>"
