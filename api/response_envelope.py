"""
Structured Response Envelope
=============================
Every API response is wrapped in a uniform envelope:

  - ``operation``    - the logical operation name.
  - ``api_version``  - the algorithm version that produced the result.
  - ``status``       - ``"ok"`` or ``"error"``.
  - ``data``         - the structured payload.
  - ``explanation``  - short human-readable summary of the result or error.
  - ``audit_id``     - the audit-log entry id for the full computation record.
  - ``timestamp``    - ISO-8601 UTC timestamp of response creation.
  - ``metadata``     - optional extras (graph fingerprint, error context).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class ApiResponse:
    operation: str
    api_version: str
    status: str  # "ok" | "error"
    data: Any
    explanation: str
    audit_id: str
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat() + "Z")
    metadata: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "operation": self.operation,
            "api_version": self.api_version,
            "status": self.status,
            "data": self.data,
            "explanation": self.explanation,
            "audit_id": self.audit_id,
            "timestamp": self.timestamp,
        }
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload


def success_envelope(
    operation: str,
    api_version: str,
    data: Any,
    explanation: str,
    audit_id: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> ApiResponse:
    return ApiResponse(
        operation=operation,
        api_version=api_version,
        status="ok",
        data=data,
        explanation=explanation,
        audit_id=audit_id,
        metadata=metadata,
    )


def error_envelope(
    operation: str,
    api_version: str,
    error_message: str,
    audit_id: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> ApiResponse:
    return ApiResponse(
        operation=operation,
        api_version=api_version,
        status="error",
        data=None,
        explanation=error_message,
        audit_id=audit_id,
        metadata=metadata,
    )
