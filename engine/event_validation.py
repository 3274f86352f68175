"""
Action Event Validation
=======================
Guards the append-only ledger at ingestion time. Events carry raw facts
only: derived scores (probabilities, ranks, penalties) are recomputed from
the ledger and must never be written into it.

Validation runs at the storage boundary, not inside the estimators, which
accept whatever snapshot they are given.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, List, Mapping, Set

from models.outcome_records import parse_timestamp

LIFECYCLE_EVENT_TYPES = ("started", "completed", "skipped")

VALID_EVENT_TYPES = LIFECYCLE_EVENT_TYPES + (
    "created",
    "assigned",
    "outcome_recorded",
    "followup_created",
    "note_added",
)

VALID_OUTCOMES = ("success", "partial", "failed", "abandoned")

FORBIDDEN_PAYLOAD_KEYS = (
    "rankScore",
    "expectedNetImpact",
    "impactScore",
    "rippleScore",
    "priorityScore",
    "healthScore",
    "executionProbability",
    "frictionPenalty",
    "calibratedProbability",
)


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)
    duplicate_ids: List[str] = field(default_factory=list)
    orphaned_refs: List[str] = field(default_factory=list)


class EventValidationError(ValueError):
    """Raised by the ledger when an event fails validation."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid action event")


def _require_string(event: Mapping[str, Any], key: str, errors: List[str]) -> None:
    value = event.get(key)
    if not value or not isinstance(value, str):
        errors.append(f"Event missing required string field: {key}")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_event(event: Mapping[str, Any]) -> ValidationResult:
    """
    Validates a single raw event mapping with keys ``id``, ``action_id``,
    ``event_type``, ``timestamp``, ``actor`` and ``payload``.
    """
    errors: List[str] = []

    for key in ("id", "action_id", "event_type", "actor"):
        _require_string(event, key, errors)

    payload = event.get("payload")
    if not isinstance(payload, Mapping):
        errors.append("Event missing required object field: payload")
        payload = None

    event_type = event.get("event_type")
    if isinstance(event_type, str) and event_type and event_type not in VALID_EVENT_TYPES:
        errors.append(
            f"Invalid event_type: {event_type}. Must be one of: {', '.join(VALID_EVENT_TYPES)}"
        )

    timestamp = event.get("timestamp")
    if timestamp is None:
        errors.append("Event missing required field: timestamp")
    elif not isinstance(timestamp, datetime):
        try:
            parse_timestamp(timestamp)
        except (TypeError, ValueError):
            errors.append(f"Invalid timestamp format: {timestamp}. Must be ISO 8601.")

    if event_type == "outcome_recorded" and payload is not None:
        outcome = payload.get("outcome")
        if not outcome:
            errors.append("outcome_recorded event requires payload.outcome")
        elif outcome not in VALID_OUTCOMES:
            errors.append(
                f"Invalid outcome: {outcome}. Must be one of: {', '.join(VALID_OUTCOMES)}"
            )
        for numeric_key in ("impactObserved", "timeToOutcomeDays"):
            if numeric_key in payload and not _is_number(payload[numeric_key]):
                errors.append(f"payload.{numeric_key} must be a number if provided")

    if payload is not None:
        for key in FORBIDDEN_PAYLOAD_KEYS:
            if key in payload:
                errors.append(f"Forbidden derived key in payload: {key}")

    return ValidationResult(valid=not errors, errors=errors)


def validate_events(events: Iterable[Mapping[str, Any]]) -> ValidationResult:
    all_errors: List[str] = []
    duplicate_ids: List[str] = []
    seen: Set[str] = set()

    for index, event in enumerate(events):
        result = validate_event(event)
        all_errors.extend(f"Event[{index}]: {error}" for error in result.errors)

        event_id = event.get("id")
        if event_id:
            if event_id in seen:
                duplicate_ids.append(event_id)
                all_errors.append(f"Event[{index}]: Duplicate event ID: {event_id}")
            seen.add(event_id)

    return ValidationResult(valid=not all_errors, errors=all_errors, duplicate_ids=duplicate_ids)


def check_referential_integrity(
    events: Iterable[Mapping[str, Any]],
    known_action_ids: Set[str],
) -> ValidationResult:
    """Every event must reference an action present in the catalog."""
    orphaned: List[str] = []
    for event in events:
        action_id = event.get("action_id")
        if action_id and action_id not in known_action_ids:
            orphaned.append(action_id)
    return ValidationResult(
        valid=not orphaned,
        errors=[f"Orphaned action reference: {ref}" for ref in orphaned],
        orphaned_refs=orphaned,
    )
