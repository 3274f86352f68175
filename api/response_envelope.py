"""
Response Envelope
=================
Every outcome-memory call answers with an ``ApiResponse``. Besides the
payload it says which algorithm version ran, which estimation rule decided a
single-action probability, and how many ledger events the answer was derived
from, so a caller can tell a learned value from a cold-start default without
parsing ``data``.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class OperationResult:
    """What a facade operation computed, before it is audited and wrapped."""
    data: Any
    explanation: str
    rule: Optional[str] = None
    snapshot_size: Optional[int] = None


@dataclass
class ApiResponse:
    operation: str
    api_version: str
    status: str  # "ok" | "error"
    data: Any
    explanation: str
    audit_id: str
    rule: Optional[str] = None
    snapshot_size: Optional[int] = None
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat() + "Z")

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        # Write operations neither consult a rule nor read a snapshot.
        for key in ("rule", "snapshot_size"):
            if payload[key] is None:
                del payload[key]
        return payload


def success_envelope(operation: str, api_version: str, result: OperationResult, audit_id: str) -> ApiResponse:
    return ApiResponse(
        operation=operation,
        api_version=api_version,
        status="ok",
        data=result.data,
        explanation=result.explanation,
        audit_id=audit_id,
        rule=result.rule,
        snapshot_size=result.snapshot_size,
    )


def error_envelope(operation: str, api_version: str, error_message: str, audit_id: str) -> ApiResponse:
    return ApiResponse(
        operation=operation,
        api_version=api_version,
        status="error",
        data=None,
        explanation=error_message,
        audit_id=audit_id,
    )
