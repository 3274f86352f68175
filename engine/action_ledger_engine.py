from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Tuple

from sqlalchemy.orm import Session

from engine.event_validation import EventValidationError, validate_event
from models.action_ledger import ActionEventRecord, ActionRecord
from models.outcome_records import Action, ActionEvent, parse_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerSnapshot:
    """Actions and events read once; what the estimators are handed."""
    actions: Tuple[Action, ...]
    events: Tuple[ActionEvent, ...]


class ActionLedgerEngine:
    """
    Persists the action catalog and the append-only lifecycle ledger.
    Exposes inserts and snapshot reads only.

    With ``autocommit=False`` inserts are only flushed, so a caller can
    commit them together with its own rows.
    """

    def __init__(self, session: Session, autocommit: bool = True):
        self.session = session
        self.autocommit = autocommit

    def _persist(self, record) -> None:
        self.session.add(record)
        if self.autocommit:
            self.session.commit()
        else:
            self.session.flush()

    def register_action(
        self,
        action_type: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
        action_id: Optional[str] = None,
    ) -> ActionRecord:
        if action_id and self.session.get(ActionRecord, action_id) is not None:
            raise ValueError(f"Action {action_id} already exists")

        record = ActionRecord(action_type=action_type, action_metadata=metadata or {})
        if action_id:
            record.id = action_id
        self._persist(record)
        return record

    def get_action(self, action_id: str) -> ActionRecord:
        record = self.session.get(ActionRecord, action_id)
        if not record:
            raise ValueError(f"Action {action_id} not found")
        return record

    def append_event(
        self,
        action_id: str,
        event_type: str,
        timestamp: Optional[Any] = None,
        payload: Optional[Dict[str, Any]] = None,
        actor: str = "user",
        event_id: Optional[str] = None,
    ) -> ActionEventRecord:
        """
        Validates and appends one event. Existing rows are never touched.
        """
        candidate = {
            "id": event_id or f"evt_{uuid.uuid4().hex}",
            "action_id": action_id,
            "event_type": event_type,
            "timestamp": timestamp if timestamp is not None else datetime.utcnow(),
            "actor": actor,
            "payload": payload if payload is not None else {},
        }
        result = validate_event(candidate)
        if not result.valid:
            raise EventValidationError(result.errors)

        self.get_action(action_id)
        if self.session.get(ActionEventRecord, candidate["id"]) is not None:
            raise EventValidationError([f"Duplicate event ID: {candidate['id']}"])

        record = ActionEventRecord(
            id=candidate["id"],
            action_id=action_id,
            event_type=event_type,
            timestamp=parse_timestamp(candidate["timestamp"]),
            payload=dict(candidate["payload"]),
            actor=actor,
        )
        self._persist(record)
        logger.info("Recorded %s event for action %s", event_type, action_id)
        return record

    def record_started(self, action_id: str, started_at: Optional[Any] = None) -> ActionEventRecord:
        return self.append_event(action_id, "started", timestamp=started_at)

    def record_completed(self, action_id: str, completed_at: Optional[Any] = None) -> ActionEventRecord:
        return self.append_event(action_id, "completed", timestamp=completed_at)

    def record_skipped(
        self,
        action_id: str,
        reason: Optional[str] = None,
        skipped_at: Optional[Any] = None,
    ) -> ActionEventRecord:
        return self.append_event(
            action_id,
            "skipped",
            timestamp=skipped_at,
            payload={"reason": reason or "User skipped"},
        )

    def record_outcome(
        self,
        action_id: str,
        outcome: str,
        time_to_outcome_days: Optional[float] = None,
        impact_observed: Optional[float] = None,
        recorded_at: Optional[Any] = None,
    ) -> ActionEventRecord:
        payload: Dict[str, Any] = {"outcome": outcome}
        if time_to_outcome_days is not None:
            payload["timeToOutcomeDays"] = time_to_outcome_days
        if impact_observed is not None:
            payload["impactObserved"] = impact_observed
        return self.append_event(action_id, "outcome_recorded", timestamp=recorded_at, payload=payload)

    def snapshot(self, action_ids: Optional[Iterable[str]] = None) -> LedgerSnapshot:
        """
        Reads the catalog and the ledger once. ``action_ids`` narrows the
        events to those instances; the catalog is always complete.
        """
        actions = tuple(
            row.to_action()
            for row in self.session.query(ActionRecord).order_by(ActionRecord.timestamp).all()
        )

        q = self.session.query(ActionEventRecord)
        if action_ids is not None:
            q = q.filter(ActionEventRecord.action_id.in_(list(action_ids)))
        events = tuple(row.to_event() for row in q.order_by(ActionEventRecord.timestamp).all())
        return LedgerSnapshot(actions=actions, events=events)
