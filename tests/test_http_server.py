from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import api.audit_log  # noqa: F401
import models.graph_tables  # noqa: F401
from api import http_server
from api.http_server import app, get_db
from models.base import Base


def _client_and_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    def override_get_db():
        try:
            yield session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    client = TestClient(app)
    return client, session


def _import(client, payload):
    response = client.post("/v1/graph", json={**payload, "caller_identity": "http-test"})
    assert response.status_code == 200
    return response.json()


def test_health():
    client, _ = _client_and_session()
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_http_end_to_end_flow(sample_payload):
    client, _ = _client_and_session()

    imported = _import(client, sample_payload)
    assert imported["status"] == "ok"
    assert imported["data"]["records_written"] == 19
    assert imported["api_version"]
    assert imported["audit_id"]

    integrity = client.get("/v1/integrity", params={"caller_identity": "http-test"})
    assert integrity.status_code == 200
    assert integrity.json()["data"]["is_clean"] is True

    propagation = client.post(
        "/v1/propagation",
        json={
            "perturbations": [{"node_id": "a", "sign": 1, "magnitude": 1.0}],
            "max_depth": 5,
            "caller_identity": "http-test",
        },
    )
    propagation_payload = propagation.json()
    assert propagation.status_code == 200
    assert propagation_payload["status"] == "ok"
    assert propagation_payload["data"]["propagation"]["effects"]["b"]["hopDistance"] == 1
    assert propagation_payload["data"]["statistics"]["nearest_outcome_id"] == "outcome"

    pathway = client.post(
        "/v1/pathways",
        json={"drug_id": "drug-x", "targets": [{"node_id": "c", "effect": "inhibits"}], "caller_identity": "http-test"},
    )
    pathway_payload = pathway.json()
    assert pathway.status_code == 200
    assert pathway_payload["data"]["pathway"]["relevant_loops"][0]["involvement"] == "weakens"

    components = client.post("/v1/components", json={"include_isolated": True})
    assert [c["size"] for c in components.json()["data"]] == [7, 1]

    hubs = client.post("/v1/hubs", json={"threshold": 3})
    assert [h["node_id"] for h in hubs.json()["data"]] == ["a", "b", "c"]

    bridges = client.post("/v1/bridges", json={"min_confidence_tier": "L3"})
    assert bridges.json()["data"][0]["edge_ids"] == ["e3"]

    risk = client.post(
        "/v1/risk-scores",
        json={"node_ids": ["a", "b", "c", "d"], "weights": {"centrality": 1.0, "downstream_proximity": 1.0}},
    )
    assert [s["node_id"] for s in risk.json()["data"]] == ["c", "b", "a", "d"]

    trials = client.post(
        "/v1/trial-predictions",
        json={
            "trials": [{"name": "SINGLE", "target_ids": ["c"]}],
            "weights": {"downstream": 1.0},
            "keyword_map": {},
        },
    )
    trials_payload = trials.json()
    assert trials_payload["status"] == "ok"
    assert trials_payload["data"][0]["overall_risk"] == 85.0

    insights = client.get("/v1/insights")
    assert insights.status_code == 200
    assert insights.json()["data"]["summary"]["total_nodes"] == 8

    log = client.post(
        "/v1/audit-log",
        json={"operation": "propagate", "limit": 10, "caller_identity": "http-test"},
    )
    log_payload = log.json()
    assert log.status_code == 200
    assert log_payload["status"] == "ok"
    assert [entry["operation"] for entry in log_payload["records"]] == ["propagate"]
    assert log_payload["records"][0]["caller_identity"] == "http-test"


def test_http_error_path_is_audited(sample_payload):
    client, _ = _client_and_session()
    _import(client, sample_payload)

    bad = client.post(
        "/v1/propagation",
        json={"perturbations": [{"node_id": "does-not-exist"}], "caller_identity": "http-test"},
    )
    payload = bad.json()
    assert bad.status_code == 200
    assert payload["status"] == "error"
    assert payload["metadata"]["error_type"] == "UnknownNodeError"
    assert payload["audit_id"]

    log = client.post("/v1/audit-log", json={"status": "error"})
    assert len(log.json()["records"]) == 1


def test_http_rejects_depth_beyond_cap(sample_payload):
    client, _ = _client_and_session()
    _import(client, sample_payload)
    response = client.post(
        "/v1/propagation",
        json={"perturbations": [{"node_id": "a"}], "max_depth": 50},
    )
    assert response.status_code == 422


def test_http_rejects_invalid_graph(sample_payload):
    client, _ = _client_and_session()
    sample_payload["edges"].append(
        {"id": "bad", "source": "a", "target": "ghost", "relation": "increases", "causalConfidence": "L1", "moduleId": "M1"}
    )
    payload = _import(client, sample_payload)
    assert payload["status"] == "error"
    assert payload["metadata"]["error_type"] == "GraphIntegrityError"


def test_http_uncovered_modules_defaults_to_strong_evidence(sample_payload):
    client, _ = _client_and_session()
    _import(client, sample_payload)
    strong = client.post("/v1/uncovered-modules", json={})
    assert strong.json()["data"] == ["M2", "M3"]
    anything = client.post("/v1/uncovered-modules", json={"min_confidence_tier": None})
    assert anything.json()["data"] == ["M3"]


def test_http_replay_and_algorithm_history(sample_payload):
    client, _ = _client_and_session()
    _import(client, sample_payload)
    hubs = client.post("/v1/hubs", json={"threshold": 3}).json()

    replayed = client.post("/v1/audit-log/replay", json={"audit_id": hubs["audit_id"], "caller_identity": "http-test"})
    payload = replayed.json()
    assert payload["status"] == "ok"
    assert payload["data"]["reproduced"] is True

    history = client.get("/v1/algorithms", params={"operation": "find_hubs"}).json()
    assert history["status"] == "ok"
    assert [v["version"] for v in history["operations"]["find_hubs"]] == ["1.0.0"]

    unknown = client.get("/v1/algorithms", params={"operation": "nope"}).json()
    assert unknown["status"] == "error"


def test_main_serves_app_with_uvicorn(monkeypatch):
    calls = {}
    monkeypatch.setattr(http_server.uvicorn, "run", lambda served, host, port: calls.update(app=served, host=host, port=port))
    http_server.main()
    assert calls == {"app": app, "host": http_server.HOST, "port": http_server.PORT}
