"""
Auditable Analysis Log
======================
Every analysis run through the API is appended to an audit ledger recording
the operation, the algorithm version, the request and result payloads, the
fingerprint of the graph it ran against, timing and outcome.  Re-running a
logged request against a graph with the same fingerprint and the same
algorithm version reproduces the logged result exactly.
"""

from datetime import datetime
import json
import uuid
from typing import Any, Optional

from sqlalchemy import Column, String, Float, DateTime, Text
from sqlalchemy.orm import Session

from models.base import Base


class AuditLogEntry(Base):
    """
    Immutable record of a single analysis run.
    """
    __tablename__ = "analysis_audit_log"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    operation = Column(String, nullable=False)
    algorithm_version = Column(String, nullable=False)
    graph_fingerprint = Column(String, nullable=True)  # sha256 of the canonical graph
    request_payload = Column(Text, nullable=False)  # JSON
    response_payload = Column(Text, nullable=False)  # JSON
    duration_ms = Column(Float, nullable=False)
    caller_identity = Column(String, nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)
    status = Column(String, nullable=False, default="success")  # success | error
    error_detail = Column(Text, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "operation": self.operation,
            "algorithm_version": self.algorithm_version,
            "graph_fingerprint": self.graph_fingerprint,
            "request_payload": json.loads(self.request_payload) if self.request_payload else None,
            "response_payload": json.loads(self.response_payload) if self.response_payload else None,
            "duration_ms": self.duration_ms,
            "caller_identity": self.caller_identity,
            "status": self.status,
            "error_detail": self.error_detail,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self) -> str:
        return (
            f"<AuditLogEntry(op={self.operation}, v={self.algorithm_version}, "
            f"t={self.timestamp}, status={self.status})>"
        )


class AuditLogger:
    """
    Thin helper that writes AuditLogEntry rows.
    """

    def __init__(self, session: Session):
        self.session = session

    def log(
        self,
        operation: str,
        algorithm_version: str,
        request_payload: Any,
        response_payload: Any,
        duration_ms: float,
        graph_fingerprint: Optional[str] = None,
        caller_identity: Optional[str] = None,
        status: str = "success",
        error_detail: Optional[str] = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            operation=operation,
            algorithm_version=algorithm_version,
            graph_fingerprint=graph_fingerprint,
            request_payload=json.dumps(request_payload, default=str),
            response_payload=json.dumps(response_payload, default=str),
            duration_ms=duration_ms,
            caller_identity=caller_identity,
            status=status,
            error_detail=error_detail,
        )
        self.session.add(entry)
        # NOTE: caller is responsible for commit (batch-friendly).
        return entry

    def get(self, entry_id: str) -> Optional[AuditLogEntry]:
        return self.session.get(AuditLogEntry, entry_id)

    def query_log(
        self,
        operation: Optional[str] = None,
        since: Optional[datetime] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ):
        """Retrieve audit entries with optional filters, newest first."""
        q = self.session.query(AuditLogEntry)
        if operation:
            q = q.filter(AuditLogEntry.operation == operation)
        if since:
            q = q.filter(AuditLogEntry.timestamp >= since)
        if status:
            q = q.filter(AuditLogEntry.status == status)
        q = q.order_by(AuditLogEntry.timestamp.desc()).limit(limit)
        return q.all()
