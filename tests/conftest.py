import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import api.audit_log  # noqa: F401  registers the audit table
import models.graph_tables  # noqa: F401  registers the graph tables
from engine.graph_index import build_index
from models.base import Base
from models.mechanism_graph import GraphData

# risk -> a -> b -> c -> outcome, with a balancing loop b -> c -> d -> b
# and a non-propagable association a -> e.  "iso" has no edges.
SAMPLE_GRAPH = {
    "modules": [
        {"id": "M1", "name": "Upstream", "interventionWindow": "prevention"},
        {"id": "M2", "name": "Core", "interventionWindow": "treatment"},
        {"id": "M3", "name": "Clinical", "interventionWindow": "management"},
    ],
    "nodes": [
        {"id": "risk", "label": "Risk factor", "category": "BOUNDARY", "moduleId": "M1", "boundaryDirection": "input"},
        {"id": "a", "label": "A", "category": "PROCESS", "moduleId": "M1", "roles": ["THERAPEUTIC_TARGET"]},
        {"id": "b", "label": "B", "category": "STATE", "moduleId": "M1"},
        {"id": "c", "label": "C", "category": "STOCK", "moduleId": "M2", "roles": ["BIOMARKER"]},
        {"id": "d", "label": "D", "category": "PROCESS", "moduleId": "M2"},
        {"id": "e", "label": "E", "category": "REGULATOR", "moduleId": "M2"},
        {"id": "outcome", "label": "Outcome", "category": "BOUNDARY", "moduleId": "M3", "boundaryDirection": "output"},
        {"id": "iso", "label": "Isolated", "category": "STATE", "moduleId": "M3"},
    ],
    "edges": [
        {"id": "e1", "source": "risk", "target": "a", "relation": "increases", "causalConfidence": "L2", "moduleId": "M1"},
        {"id": "e2", "source": "a", "target": "b", "relation": "directlyIncreases", "causalConfidence": "L1", "moduleId": "M1"},
        {"id": "e3", "source": "b", "target": "c", "relation": "decreases", "causalConfidence": "L3", "moduleId": "M1"},
        {"id": "e4", "source": "c", "target": "outcome", "relation": "decreases", "causalConfidence": "L4", "moduleId": "M2"},
        {"id": "e5", "source": "c", "target": "d", "relation": "increases", "causalConfidence": "L5", "moduleId": "M2"},
        {"id": "e6", "source": "d", "target": "b", "relation": "increases", "causalConfidence": "L6", "moduleId": "M2"},
        {"id": "e7", "source": "a", "target": "e", "relation": "association", "causalConfidence": "L7", "moduleId": "M1"},
    ],
    "feedbackLoops": [
        {
            "id": "loop1",
            "name": "B-C-D cycle",
            "type": "balancing",
            "edgeIds": ["e3", "e5", "e6"],
            "interventionPoints": ["c"],
        },
    ],
}


@pytest.fixture
def sample_payload():
    return {key: [dict(item) for item in value] for key, value in SAMPLE_GRAPH.items()}


@pytest.fixture
def sample_graph(sample_payload):
    return GraphData.from_dict(sample_payload)


@pytest.fixture
def sample_index(sample_graph):
    return build_index(sample_graph)


@pytest.fixture
def db_session():
    """In-memory SQLite session with all tables created."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.close()
