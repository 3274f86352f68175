"""
Outcome Memory API Layer
========================
Facade over the ledger and the outcome engines. Every public method:

  1. Resolves the current algorithm version for the operation.
  2. Reads one ledger snapshot (or appends one event) and delegates to the
     engines.
  3. Returns structured data plus an explanation of which rule fired.
  4. Writes an AuditLogEntry before returning, on success and on failure.
     Ledger rows and the audit row go out in a single commit.

Public operations
~~~~~~~~~~~~~~~~~
  - ``register_action``         – add an action to the catalog.
  - ``record_event``            – append a lifecycle event.
  - ``record_outcome``          – append an ``outcome_recorded`` event.
  - ``execution_probability``   – estimate for one action, with its rule.
  - ``execution_probabilities`` – batch estimate over one snapshot.
  - ``outcome_stats``           – per-type counters and global totals.
  - ``friction_penalties``      – learned friction per action.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from engine.action_friction_engine import ActionFrictionEngine
from engine.action_ledger_engine import ActionLedgerEngine
from engine.execution_probability_engine import ExecutionProbabilityEngine
from engine.outcome_stats_engine import OutcomeAggregator, compute_global_stats

from models.action_ledger import ActionEventRecord, ActionRecord
from models.outcome_records import Action, ProbabilityDecision

from api.audit_log import AuditLogger
from api.algorithm_registry import get_current_version
from api.response_envelope import ApiResponse, OperationResult, error_envelope, success_envelope

logger = logging.getLogger(__name__)

RULE_EXPLANATIONS = {
    "missing_action": "action is unknown or has no action type; cold-start default applies",
    "insufficient_samples": "fewer than the minimum attempts observed for this type; default applies",
    "learned": "empirical completion rate, clamped to the allowed range",
}


def _action_data(record: ActionRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "action_type": record.action_type,
        "metadata": record.action_metadata,
        "timestamp": record.timestamp.isoformat() if record.timestamp else None,
    }


def _event_data(record: ActionEventRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "action_id": record.action_id,
        "event_type": record.event_type,
        "timestamp": record.timestamp.isoformat() if record.timestamp else None,
        "payload": record.payload,
        "actor": record.actor,
    }


def _decision_data(action_id: str, decision: ProbabilityDecision) -> Dict[str, Any]:
    return {
        "action_id": action_id,
        "action_type": decision.action_type,
        "execution_probability": decision.value,
        "rule": decision.rule,
        "counters": decision.counters.to_dict() if decision.counters else None,
    }


class OutcomeMemoryAPI:
    """
    Audited, version-tracked surface of the outcome memory.
    """

    def __init__(self, session: Session, caller_identity: Optional[str] = None):
        self.session = session
        self.caller_identity = caller_identity

        self._ledger = ActionLedgerEngine(session, autocommit=False)
        self._aggregator = OutcomeAggregator()
        self._probability = ExecutionProbabilityEngine(self._aggregator)
        self._friction = ActionFrictionEngine(self._aggregator)
        self._audit = AuditLogger(session)

    def _run(
        self,
        op: str,
        request_payload: Dict[str, Any],
        compute: Callable[[], OperationResult],
    ) -> ApiResponse:
        ver = get_current_version(op)
        t0 = time.perf_counter()
        try:
            result = compute()
        except Exception as exc:
            # Discards any flushed ledger rows so only the error audit row commits.
            self.session.rollback()
            logger.warning("Operation %s failed: %s", op, exc)
            duration = (time.perf_counter() - t0) * 1000
            audit = self._audit.log(
                operation=op,
                algorithm_version=ver.version,
                request_payload=request_payload,
                response_payload=None,
                duration_ms=duration,
                caller_identity=self.caller_identity,
                status="error",
                error_detail=str(exc),
            )
            self.session.commit()
            return error_envelope(
                operation=op,
                api_version=ver.version,
                error_message=str(exc),
                audit_id=audit.id,
            )

        duration = (time.perf_counter() - t0) * 1000
        audit = self._audit.log(
            operation=op,
            algorithm_version=ver.version,
            request_payload=request_payload,
            response_payload=result.data,
            duration_ms=duration,
            caller_identity=self.caller_identity,
        )
        self.session.commit()
        return success_envelope(
            operation=op,
            api_version=ver.version,
            result=result,
            audit_id=audit.id,
        )

    # =====================================================================
    #  Ledger writes
    # =====================================================================
    def register_action(
        self,
        action_type: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
        action_id: Optional[str] = None,
    ) -> ApiResponse:
        request_payload = {"action_type": action_type, "metadata": metadata, "action_id": action_id}

        def compute():
            record = self._ledger.register_action(action_type, metadata=metadata, action_id=action_id)
            explanation = (
                f"Action '{record.id}' registered with type '{record.action_type}'. "
                f"Its outcomes will pool with every other action of that type."
            )
            return OperationResult({"action": _action_data(record)}, explanation)

        return self._run("register_action", request_payload, compute)

    def record_event(
        self,
        action_id: str,
        event_type: str,
        timestamp: Optional[Any] = None,
        payload: Optional[Dict[str, Any]] = None,
        actor: str = "user",
    ) -> ApiResponse:
        request_payload = {
            "action_id": action_id,
            "event_type": event_type,
            "timestamp": timestamp,
            "payload": payload,
            "actor": actor,
        }

        def compute():
            event_payload = dict(payload or {})
            if event_type == "skipped":
                event_payload.setdefault("reason", "User skipped")
            record = self._ledger.append_event(
                action_id, event_type, timestamp=timestamp, payload=event_payload, actor=actor
            )
            explanation = (
                f"'{event_type}' event appended to the ledger for action '{action_id}'. "
                f"Repeated events for the same action count once toward its type's statistics."
            )
            return OperationResult({"event": _event_data(record)}, explanation)

        return self._run("record_event", request_payload, compute)

    def record_outcome(
        self,
        action_id: str,
        outcome: str,
        time_to_outcome_days: Optional[float] = None,
        impact_observed: Optional[float] = None,
        recorded_at: Optional[Any] = None,
    ) -> ApiResponse:
        request_payload = {
            "action_id": action_id,
            "outcome": outcome,
            "time_to_outcome_days": time_to_outcome_days,
            "impact_observed": impact_observed,
            "recorded_at": recorded_at,
        }

        def compute():
            record = self._ledger.record_outcome(
                action_id,
                outcome,
                time_to_outcome_days=time_to_outcome_days,
                impact_observed=impact_observed,
                recorded_at=recorded_at,
            )
            explanation = (
                f"Outcome '{outcome}' recorded for action '{action_id}'. "
                f"The latest recorded outcome per action feeds the friction penalty."
            )
            return OperationResult({"event": _event_data(record)}, explanation)

        return self._run("record_outcome", request_payload, compute)

    # =====================================================================
    #  Estimates
    # =====================================================================
    def execution_probability(self, action_id: str) -> ApiResponse:
        request_payload = {"action_id": action_id}

        def compute():
            snapshot = self._ledger.snapshot()
            catalog = {a.id: a for a in snapshot.actions}
            stats_table = self._probability.build_stats(snapshot.events, snapshot.actions)
            decision = self._probability.explain(catalog.get(action_id), stats_table)

            explanation = (
                f"Execution probability for action '{action_id}' is {decision.value:.4f}: "
                f"{RULE_EXPLANATIONS[decision.rule]}."
            )
            if decision.counters is not None:
                explanation += (
                    f" Type '{decision.action_type}' has {decision.counters.total_completed} "
                    f"completion(s) over {decision.counters.total_attempts} attempt(s)."
                )
            return OperationResult(
                _decision_data(action_id, decision),
                explanation,
                rule=decision.rule,
                snapshot_size=len(snapshot.events),
            )

        return self._run("execution_probability", request_payload, compute)

    def execution_probabilities(self, action_ids: Optional[List[str]] = None) -> ApiResponse:
        """
        Batch estimate. Without ``action_ids`` every catalog action is
        estimated; ids missing from the catalog get the cold-start default.
        """
        request_payload = {"action_ids": action_ids}

        def compute():
            snapshot = self._ledger.snapshot()
            targets = self._targets(snapshot.actions, action_ids)
            probabilities = self._probability.estimate_all(
                targets, snapshot.events, catalog=snapshot.actions
            )
            explanation = (
                f"{len(probabilities)} execution probabilities computed against one ledger "
                f"snapshot of {len(snapshot.events)} event(s); actions sharing a type share a value."
            )
            return OperationResult(
                {"probabilities": probabilities}, explanation, snapshot_size=len(snapshot.events)
            )

        return self._run("execution_probabilities", request_payload, compute)

    def outcome_stats(self, action_type: Optional[str] = None) -> ApiResponse:
        request_payload = {"action_type": action_type}

        def compute():
            snapshot = self._ledger.snapshot()
            stats_table = self._aggregator.aggregate(snapshot.events, snapshot.actions)
            if action_type is not None:
                stats_table = {k: v for k, v in stats_table.items() if k == action_type}

            data = {
                "by_type": {k: v.to_dict() for k, v in stats_table.items()},
                "global": compute_global_stats(stats_table),
            }
            explanation = (
                f"Outcome statistics for {len(stats_table)} action type(s), each action "
                f"counted at most once as an attempt and once as a completion."
            )
            return OperationResult(data, explanation, snapshot_size=len(snapshot.events))

        return self._run("outcome_stats", request_payload, compute)

    def friction_penalties(self, action_ids: Optional[List[str]] = None) -> ApiResponse:
        request_payload = {"action_ids": action_ids}

        def compute():
            snapshot = self._ledger.snapshot()
            targets = self._targets(snapshot.actions, action_ids)
            penalties = self._friction.friction_all(targets, snapshot.events, catalog=snapshot.actions)
            explanation = (
                f"{len(penalties)} friction penalties derived from recorded outcomes and "
                f"inter-event delays; types with fewer than 3 outcomes use the default."
            )
            return OperationResult(
                {"friction_penalties": penalties}, explanation, snapshot_size=len(snapshot.events)
            )

        return self._run("friction_penalties", request_payload, compute)

    def _targets(self, catalog: Tuple[Action, ...], action_ids: Optional[List[str]]) -> List[Action]:
        if action_ids is None:
            return list(catalog)
        by_id = {a.id: a for a in catalog}
        return [by_id.get(aid) or Action(id=aid, action_type=None) for aid in action_ids]

    # =====================================================================
    #  Utility: query audit log
    # =====================================================================
    def query_audit_log(
        self,
        operation: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        entries = self._audit.query_log(operation=operation, since=since, limit=limit)
        return [e.to_dict() for e in entries]
