from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from api.outcome_memory_api import OutcomeMemoryAPI
from models.base import Base

# Tables register on Base.metadata at import.
import api.audit_log  # noqa: F401
import models.action_ledger  # noqa: F401


DATABASE_URL = os.getenv("OUTCOME_MEMORY_DB_URL", "sqlite:///outcome_memory.db")
LOG_LEVEL = os.getenv("OUTCOME_MEMORY_LOG_LEVEL", "INFO")

logger = logging.getLogger(__name__)

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


class RegisterActionRequest(BaseModel):
    action_type: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    action_id: Optional[str] = None
    caller_identity: Optional[str] = None


class StartActionRequest(BaseModel):
    action_id: Optional[str] = None
    started_at: Optional[datetime] = None
    caller_identity: Optional[str] = None


class CompleteActionRequest(BaseModel):
    action_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    caller_identity: Optional[str] = None


class SkipActionRequest(BaseModel):
    action_id: Optional[str] = None
    reason: Optional[str] = None
    caller_identity: Optional[str] = None


class RecordOutcomeRequest(BaseModel):
    outcome: str
    time_to_outcome_days: Optional[float] = None
    impact_observed: Optional[float] = None
    recorded_at: Optional[datetime] = None
    caller_identity: Optional[str] = None


class ActionBatchRequest(BaseModel):
    action_ids: Optional[List[str]] = None
    caller_identity: Optional[str] = None


class AuditQueryRequest(BaseModel):
    operation: Optional[str] = None
    since: Optional[datetime] = None
    limit: int = Field(default=50, ge=1, le=500)
    caller_identity: Optional[str] = None


@asynccontextmanager
async def lifespan(_: FastAPI):
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db()
    logger.info("Outcome memory database ready at %s", DATABASE_URL)
    yield


app = FastAPI(
    title="Outcome Memory API",
    version="1.0.0",
    description=(
        "Action catalog, append-only lifecycle ledger, and learned execution "
        "probabilities and friction penalties per action type."
    ),
    lifespan=lifespan,
)


def _service(db: Session, caller_identity: Optional[str]) -> OutcomeMemoryAPI:
    return OutcomeMemoryAPI(session=db, caller_identity=caller_identity)


def _check_body_id(path_id: str, body_id: Optional[str]) -> None:
    if not body_id or body_id != path_id:
        raise HTTPException(status_code=400, detail="Invalid action ID")


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/v1/actions")
def register_action(payload: RegisterActionRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    service = _service(db, payload.caller_identity)
    response = service.register_action(
        action_type=payload.action_type,
        metadata=payload.metadata,
        action_id=payload.action_id,
    )
    return response.to_dict()


@app.post("/v1/actions/{action_id}/start")
def start_action(action_id: str, payload: StartActionRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    _check_body_id(action_id, payload.action_id)
    service = _service(db, payload.caller_identity)
    response = service.record_event(action_id, "started", timestamp=payload.started_at)
    return response.to_dict()


@app.post("/v1/actions/{action_id}/complete")
def complete_action(action_id: str, payload: CompleteActionRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    _check_body_id(action_id, payload.action_id)
    if payload.completed_at is None:
        raise HTTPException(status_code=400, detail="completed_at timestamp required")
    service = _service(db, payload.caller_identity)
    response = service.record_event(action_id, "completed", timestamp=payload.completed_at)
    return response.to_dict()


@app.post("/v1/actions/{action_id}/skip")
def skip_action(action_id: str, payload: SkipActionRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    _check_body_id(action_id, payload.action_id)
    service = _service(db, payload.caller_identity)
    response = service.record_event(
        action_id,
        "skipped",
        payload={"reason": payload.reason} if payload.reason else None,
    )
    return response.to_dict()


@app.post("/v1/actions/{action_id}/outcome")
def record_outcome(action_id: str, payload: RecordOutcomeRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    service = _service(db, payload.caller_identity)
    response = service.record_outcome(
        action_id,
        payload.outcome,
        time_to_outcome_days=payload.time_to_outcome_days,
        impact_observed=payload.impact_observed,
        recorded_at=payload.recorded_at,
    )
    return response.to_dict()


@app.get("/v1/actions/{action_id}/execution-probability")
def execution_probability(
    action_id: str,
    caller_identity: Optional[str] = None,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    service = _service(db, caller_identity)
    return service.execution_probability(action_id).to_dict()


@app.post("/v1/execution-probabilities")
def execution_probabilities(payload: ActionBatchRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    service = _service(db, payload.caller_identity)
    return service.execution_probabilities(action_ids=payload.action_ids).to_dict()


@app.post("/v1/friction-penalties")
def friction_penalties(payload: ActionBatchRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    service = _service(db, payload.caller_identity)
    return service.friction_penalties(action_ids=payload.action_ids).to_dict()


@app.get("/v1/outcome-stats")
def outcome_stats(
    action_type: Optional[str] = None,
    caller_identity: Optional[str] = None,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    service = _service(db, caller_identity)
    return service.outcome_stats(action_type=action_type).to_dict()


@app.post("/v1/audit-log")
def query_audit_log(payload: AuditQueryRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    service = _service(db, payload.caller_identity)
    records = service.query_audit_log(operation=payload.operation, since=payload.since, limit=payload.limit)
    return {"status": "ok", "records": records}
