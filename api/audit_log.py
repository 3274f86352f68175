"""
Audit Log
=========
Every outcome-memory API call writes one row: operation, algorithm version,
request and response payloads as JSON, duration, caller, and status. Rows
live in the same database as the action ledger, so an audit row and the
ledger insert it describes commit together.
"""

from datetime import datetime
import json
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, String, Float, DateTime, Text
from sqlalchemy.orm import Session

from models.base import Base


class AuditLogEntry(Base):
    __tablename__ = "api_audit_log"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    operation = Column(String, nullable=False, index=True)
    algorithm_version = Column(String, nullable=False)
    request_payload = Column(Text, nullable=False)  # JSON
    response_payload = Column(Text, nullable=False)  # JSON
    duration_ms = Column(Float, nullable=False)
    caller_identity = Column(String, nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)
    status = Column(String, nullable=False, default="success")  # success | error
    error_detail = Column(Text, nullable=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "operation": self.operation,
            "algorithm_version": self.algorithm_version,
            "request_payload": json.loads(self.request_payload) if self.request_payload else None,
            "response_payload": json.loads(self.response_payload) if self.response_payload else None,
            "duration_ms": self.duration_ms,
            "caller_identity": self.caller_identity,
            "status": self.status,
            "error_detail": self.error_detail,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self) -> str:
        return f"<AuditLogEntry(op={self.operation}, v={self.algorithm_version}, status={self.status})>"


class AuditLogger:
    def __init__(self, session: Session):
        self.session = session

    def log(
        self,
        operation: str,
        algorithm_version: str,
        request_payload: Any,
        response_payload: Any,
        duration_ms: float,
        caller_identity: Optional[str] = None,
        status: str = "success",
        error_detail: Optional[str] = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            operation=operation,
            algorithm_version=algorithm_version,
            request_payload=json.dumps(request_payload, default=str),
            response_payload=json.dumps(response_payload, default=str),
            duration_ms=duration_ms,
            caller_identity=caller_identity,
            status=status,
            error_detail=error_detail,
        )
        self.session.add(entry)
        # NOTE: caller commits.
        return entry

    def query_log(
        self,
        operation: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 50,
    ) -> List[AuditLogEntry]:
        q = self.session.query(AuditLogEntry)
        if operation:
            q = q.filter(AuditLogEntry.operation == operation)
        if since:
            q = q.filter(AuditLogEntry.timestamp >= since)
        return q.order_by(AuditLogEntry.timestamp.desc()).limit(limit).all()
