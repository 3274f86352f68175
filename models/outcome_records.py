"""
In-memory records read by the outcome engines.

Events and actions are frozen: the engines only ever read snapshots of the
ledger and never mutate what they are given. Counters and decisions are
derived per call and discarded afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional


def parse_timestamp(value: Any) -> datetime:
    """Accepts a datetime or an ISO-8601 string (a trailing ``Z`` is allowed)."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise TypeError(f"Unsupported timestamp value: {value!r}")

    # Ledger timestamps are naive UTC, like the rest of the store.
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


@dataclass(frozen=True)
class ActionEvent:
    """
    Immutable lifecycle event for one action instance.
    """
    id: str
    action_id: str
    event_type: str  # "started" | "completed" | "skipped" | auxiliary ledger types
    timestamp: datetime
    payload: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Snapshots may mix naive and aware datetimes; keep them comparable.
        object.__setattr__(self, "timestamp", parse_timestamp(self.timestamp))

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ActionEvent":
        return cls(
            id=raw["id"],
            action_id=raw.get("action_id", raw.get("actionId")),
            event_type=raw.get("event_type", raw.get("eventType", raw.get("type"))),
            timestamp=raw["timestamp"],
            payload=dict(raw.get("payload") or {}),
        )


@dataclass(frozen=True)
class Action:
    """
    A recommendable unit of work. Only ``action_type`` matters to the engines.
    """
    id: str
    action_type: Optional[str]
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Action":
        return cls(
            id=raw["id"],
            action_type=raw.get("action_type", raw.get("actionType")),
            metadata=dict(raw.get("metadata") or {}),
        )


@dataclass
class OutcomeCounters:
    """
    Per-action-type tally derived from the event ledger.

    ``total_attempts`` and ``total_completed`` drive execution probability;
    the remaining fields are diagnostics and friction inputs.
    """
    action_type: str
    total_attempts: int = 0
    total_started: int = 0      # started, never completed
    total_completed: int = 0
    total_skipped: int = 0      # skipped without an attempt
    total_successes: int = 0
    total_partials: int = 0
    total_failures: int = 0
    total_abandoned: int = 0
    outcome_count: int = 0
    total_time_to_outcome: float = 0.0
    delay_sum: float = 0.0
    delay_count: int = 0

    @property
    def completion_rate(self) -> Optional[float]:
        if self.total_attempts == 0:
            return None
        return self.total_completed / self.total_attempts

    @property
    def average_delay_days(self) -> Optional[float]:
        if self.delay_count == 0:
            return None
        return self.delay_sum / self.delay_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_type": self.action_type,
            "total_attempts": self.total_attempts,
            "total_started": self.total_started,
            "total_completed": self.total_completed,
            "total_skipped": self.total_skipped,
            "total_successes": self.total_successes,
            "total_partials": self.total_partials,
            "total_failures": self.total_failures,
            "total_abandoned": self.total_abandoned,
            "outcome_count": self.outcome_count,
            "total_time_to_outcome": self.total_time_to_outcome,
            "delay_sum": self.delay_sum,
            "delay_count": self.delay_count,
            "completion_rate": self.completion_rate,
            "average_delay_days": self.average_delay_days,
        }


OutcomeStatsTable = Dict[str, OutcomeCounters]


@dataclass(frozen=True)
class ProbabilityDecision:
    """Which estimation rule fired for an action, and the value it produced."""
    value: float
    rule: str  # "missing_action" | "insufficient_samples" | "learned"
    action_type: Optional[str] = None
    counters: Optional[OutcomeCounters] = None
