from __future__ import annotations

import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI
from pydantic import BaseModel, Field
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from api.logging_setup import configure_logging
from api.network_analysis_api import NetworkAnalysisAPI
from models.base import Base

DATABASE_URL = os.getenv("MECHNET_DB_URL", "sqlite:///mechanism_network.db")
MAX_HTTP_DEPTH = 10
HOST = os.getenv("MECHNET_HOST", "127.0.0.1")
PORT = int(os.getenv("MECHNET_PORT", "8000"))

_engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)


def init_db() -> None:
    Base.metadata.create_all(bind=_engine)


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class CallerRequest(BaseModel):
    caller_identity: Optional[str] = None


class ImportGraphRequest(CallerRequest):
    nodes: List[Dict[str, Any]]
    edges: List[Dict[str, Any]] = Field(default_factory=list)
    modules: List[Dict[str, Any]] = Field(default_factory=list)
    feedbackLoops: List[Dict[str, Any]] = Field(default_factory=list)
    replace: bool = True


class PerturbationIn(BaseModel):
    node_id: str
    sign: int = 1
    magnitude: float = 1.0


class PropagationRequest(CallerRequest):
    perturbations: List[PerturbationIn] = Field(min_length=1)
    max_depth: int = Field(default=5, ge=0, le=MAX_HTTP_DEPTH)
    min_confidence_tier: Optional[str] = None
    outcome_node_ids: Optional[List[str]] = None
    outcome_roles: Optional[List[str]] = None


class DrugTargetIn(BaseModel):
    node_id: str
    effect: str = "modulates"


class PathwayRequest(CallerRequest):
    drug_id: str
    targets: List[DrugTargetIn] = Field(min_length=1)
    max_depth: int = Field(default=5, ge=1, le=MAX_HTTP_DEPTH)


class ComponentsRequest(CallerRequest):
    min_confidence_tier: Optional[str] = None
    include_isolated: bool = False


class HubsRequest(CallerRequest):
    threshold: int = Field(ge=1)
    min_confidence_tier: Optional[str] = None


class BridgesRequest(CallerRequest):
    min_confidence_tier: Optional[str] = None


class UncoveredModulesRequest(CallerRequest):
    min_confidence_tier: Optional[str] = "L3"


class RiskWeightsIn(BaseModel):
    centrality: float = 0.0
    loop_membership: float = 0.0
    evidence: float = 0.0
    upstream_proximity: float = 0.0
    downstream_proximity: float = 0.0


class RiskScoreRequest(CallerRequest):
    node_ids: List[str] = Field(min_length=1)
    weights: RiskWeightsIn
    min_confidence_tier: Optional[str] = None
    sample_limit: Optional[int] = Field(default=None, ge=1)


class TrialIn(BaseModel):
    name: str
    mechanism: str = ""
    population: str = ""
    target_ids: List[str] = Field(default_factory=list)
    red_flags: str = ""


class FailureWeightsIn(BaseModel):
    downstream: float = 0.0
    loop_miss: float = 0.0
    low_centrality: float = 0.0
    single_target: float = 0.0
    weak_evidence: float = 0.0
    stage_mismatch: float = 0.0


class TrialPredictionRequest(CallerRequest):
    trials: List[TrialIn] = Field(min_length=1)
    weights: FailureWeightsIn
    keyword_map: Dict[str, List[str]] = Field(default_factory=dict)


class ReplayRequest(CallerRequest):
    audit_id: str


class AuditQueryRequest(CallerRequest):
    operation: Optional[str] = None
    since: Optional[datetime] = None
    status: Optional[str] = None
    limit: int = Field(default=50, ge=1, le=500)


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    init_db()
    yield


app = FastAPI(
    title="Mechanism Network Analysis API",
    version="1.0.0",
    description=(
        "Signed perturbation propagation, pathway, structural and risk analyses "
        "over a curated disease-mechanism causal graph."
    ),
    lifespan=lifespan,
)


def _service(db: Session, caller_identity: Optional[str]) -> NetworkAnalysisAPI:
    return NetworkAnalysisAPI(session=db, caller_identity=caller_identity)


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/v1/graph")
def import_graph(payload: ImportGraphRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    service = _service(db, payload.caller_identity)
    graph = payload.model_dump(include={"nodes", "edges", "modules", "feedbackLoops"})
    return service.import_graph(graph, replace=payload.replace).to_dict()


@app.get("/v1/integrity")
def check_integrity(caller_identity: Optional[str] = None, db: Session = Depends(get_db)) -> Dict[str, Any]:
    return _service(db, caller_identity).check_integrity().to_dict()


@app.post("/v1/propagation")
def propagate(payload: PropagationRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    service = _service(db, payload.caller_identity)
    response = service.propagate(
        perturbations=[p.model_dump() for p in payload.perturbations],
        max_depth=payload.max_depth,
        min_confidence_tier=payload.min_confidence_tier,
        outcome_node_ids=payload.outcome_node_ids,
        outcome_roles=payload.outcome_roles,
    )
    return response.to_dict()


@app.post("/v1/pathways")
def compute_pathway(payload: PathwayRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    service = _service(db, payload.caller_identity)
    response = service.compute_pathway(
        drug_id=payload.drug_id,
        targets=[t.model_dump() for t in payload.targets],
        max_depth=payload.max_depth,
    )
    return response.to_dict()


@app.post("/v1/components")
def find_components(payload: ComponentsRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    service = _service(db, payload.caller_identity)
    response = service.find_components(
        min_confidence_tier=payload.min_confidence_tier,
        include_isolated=payload.include_isolated,
    )
    return response.to_dict()


@app.post("/v1/hubs")
def find_hubs(payload: HubsRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    service = _service(db, payload.caller_identity)
    return service.find_hubs(payload.threshold, payload.min_confidence_tier).to_dict()


@app.post("/v1/bridges")
def find_bridges(payload: BridgesRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    service = _service(db, payload.caller_identity)
    return service.find_bridges(payload.min_confidence_tier).to_dict()


@app.post("/v1/uncovered-modules")
def find_uncovered_modules(payload: UncoveredModulesRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    service = _service(db, payload.caller_identity)
    return service.find_uncovered_modules(payload.min_confidence_tier).to_dict()


@app.post("/v1/risk-scores")
def score_risk(payload: RiskScoreRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    service = _service(db, payload.caller_identity)
    response = service.score_risk(
        node_ids=payload.node_ids,
        weights=payload.weights.model_dump(),
        min_confidence_tier=payload.min_confidence_tier,
        sample_limit=payload.sample_limit,
    )
    return response.to_dict()


@app.post("/v1/trial-predictions")
def predict_trials(payload: TrialPredictionRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    service = _service(db, payload.caller_identity)
    response = service.predict_trials(
        trials=[t.model_dump() for t in payload.trials],
        weights=payload.weights.model_dump(),
        keyword_map=payload.keyword_map,
    )
    return response.to_dict()


@app.get("/v1/insights")
def network_insights(caller_identity: Optional[str] = None, db: Session = Depends(get_db)) -> Dict[str, Any]:
    return _service(db, caller_identity).network_insights().to_dict()


@app.post("/v1/audit-log")
def query_audit_log(payload: AuditQueryRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    service = _service(db, payload.caller_identity)
    records = service.query_audit_log(
        operation=payload.operation,
        since=payload.since,
        status=payload.status,
        limit=payload.limit,
    )
    return {"status": "ok", "records": records}


@app.post("/v1/audit-log/replay")
def replay(payload: ReplayRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    return _service(db, payload.caller_identity).replay(payload.audit_id).to_dict()


@app.get("/v1/algorithms")
def algorithm_versions(operation: Optional[str] = None, db: Session = Depends(get_db)) -> Dict[str, Any]:
    try:
        versions = _service(db, None).algorithm_versions(operation)
    except KeyError as exc:
        return {"status": "error", "explanation": exc.args[0], "operations": {}}
    return {"status": "ok", "operations": versions}


def main() -> None:
    uvicorn.run(app, host=HOST, port=PORT)


if __name__ == "__main__":
    main()
