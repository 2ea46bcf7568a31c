import hashlib
import json
import logging
from typing import Optional

from sqlalchemy.orm import Session

from models.graph_tables import EdgeRecord, FeedbackLoopRecord, ModuleRecord, NodeRecord
from models.mechanism_graph import Edge, GraphData, Node

logger = logging.getLogger(__name__)


def graph_fingerprint(graph: GraphData) -> str:
    """Stable content hash of a graph, recorded with every audited computation."""
    canonical = json.dumps(graph.to_dict(), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class GraphStore:
    """
    Persists the curated mechanism graph and loads it back as ``GraphData``.

    The store performs no validation; integrity is checked when the loaded
    graph is indexed.
    """

    def __init__(self, session: Session):
        self.session = session

    def import_graph(self, graph: GraphData, replace: bool = True) -> int:
        """
        Write every record of *graph*.  With ``replace`` the previous graph is
        removed first; otherwise records are upserted by id.
        Returns the number of records written.
        """
        if replace:
            self.clear()

        records = (
            [ModuleRecord.from_model(m) for m in graph.modules]
            + [NodeRecord.from_model(n) for n in graph.nodes]
            + [EdgeRecord.from_model(e, position=i) for i, e in enumerate(graph.edges)]
            + [FeedbackLoopRecord.from_model(loop) for loop in graph.feedback_loops]
        )
        for record in records:
            if replace:
                self.session.add(record)
            else:
                self.session.merge(record)
        self.session.commit()
        logger.info(
            "Imported graph: %d nodes, %d edges, %d modules, %d loops",
            len(graph.nodes), len(graph.edges), len(graph.modules), len(graph.feedback_loops),
        )
        return len(records)

    def clear(self) -> None:
        for table in (FeedbackLoopRecord, EdgeRecord, NodeRecord, ModuleRecord):
            self.session.query(table).delete()
        self.session.flush()

    def add_node(self, node: Node) -> NodeRecord:
        record = NodeRecord.from_model(node)
        self.session.add(record)
        self.session.commit()
        return record

    def add_edge(self, edge: Edge) -> EdgeRecord:
        position = self.session.query(EdgeRecord).count()
        record = EdgeRecord.from_model(edge, position=position)
        self.session.add(record)
        self.session.commit()
        return record

    def load_graph(self) -> GraphData:
        """Nodes, modules and loops in id order; edges in curation order."""
        nodes = self.session.query(NodeRecord).order_by(NodeRecord.id).all()
        edges = self.session.query(EdgeRecord).order_by(EdgeRecord.position, EdgeRecord.id).all()
        modules = self.session.query(ModuleRecord).order_by(ModuleRecord.id).all()
        loops = self.session.query(FeedbackLoopRecord).order_by(FeedbackLoopRecord.id).all()
        return GraphData(
            nodes=tuple(r.to_model() for r in nodes),
            edges=tuple(r.to_model() for r in edges),
            modules=tuple(r.to_model() for r in modules),
            feedback_loops=tuple(r.to_model() for r in loops),
        )

    def is_empty(self) -> bool:
        return self.session.query(NodeRecord).first() is None

    def node_count(self, module_id: Optional[str] = None) -> int:
        q = self.session.query(NodeRecord)
        if module_id:
            q = q.filter(NodeRecord.module_id == module_id)
        return q.count()
