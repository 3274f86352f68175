from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from models.outcome_records import Action, ActionEvent, OutcomeCounters, OutcomeStatsTable

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 60 * 60 * 24

OUTCOME_COUNTER_FIELDS = {
    "success": "total_successes",
    "partial": "total_partials",
    "failed": "total_failures",
    "abandoned": "total_abandoned",
}


@dataclass
class InstanceOutcome:
    """
    Resolved outcome of one action instance, however many raw events it has.
    """
    action_id: str
    started: bool = False
    completed: bool = False
    skipped: bool = False
    recorded_outcome: Optional[Mapping[str, Any]] = None
    timeline: List[ActionEvent] = field(default_factory=list)

    @property
    def attempted(self) -> bool:
        return self.started or self.completed


def group_by_instance(events: Iterable[ActionEvent]) -> Dict[str, InstanceOutcome]:
    """
    Collapses raw events into one InstanceOutcome per action id.

    Duplicate or retried events fold into flags, so an instance contributes
    at most one attempt and one completion. The latest ``outcome_recorded``
    event wins.
    """
    ordered = sorted(events, key=lambda e: e.timestamp)

    instances: Dict[str, InstanceOutcome] = {}
    for event in ordered:
        instance = instances.get(event.action_id)
        if instance is None:
            instance = InstanceOutcome(action_id=event.action_id)
            instances[event.action_id] = instance
        instance.timeline.append(event)

        if event.event_type == "started":
            instance.started = True
        elif event.event_type == "completed":
            instance.completed = True
        elif event.event_type == "skipped":
            instance.skipped = True
        elif event.event_type == "outcome_recorded" and event.payload:
            instance.recorded_outcome = event.payload
    return instances


class OutcomeAggregator:
    """
    Rolls per-instance outcomes up into per-action-type counters.
    Pure: the table is rebuilt from the supplied snapshot on every call.
    """

    def aggregate(
        self,
        events: Iterable[ActionEvent],
        actions: Iterable[Action],
    ) -> OutcomeStatsTable:
        type_by_action = {
            action.id: action.action_type
            for action in actions
            if action.id and action.action_type
        }

        instances = group_by_instance(events)

        stats: OutcomeStatsTable = {}
        unknown = 0
        for action_id, instance in instances.items():
            action_type = type_by_action.get(action_id)
            if action_type is None:
                unknown += 1
                continue

            counters = stats.get(action_type)
            if counters is None:
                counters = OutcomeCounters(action_type=action_type)
                stats[action_type] = counters
            self._apply_instance(counters, instance)

        if unknown:
            logger.debug("Skipped %d action instance(s) missing from the catalog", unknown)
        return stats

    def _apply_instance(self, counters: OutcomeCounters, instance: InstanceOutcome) -> None:
        if instance.attempted:
            counters.total_attempts += 1
            if instance.completed:
                counters.total_completed += 1
            else:
                counters.total_started += 1
        elif instance.skipped:
            counters.total_skipped += 1

        outcome = instance.recorded_outcome
        if outcome is not None:
            counters.outcome_count += 1
            label = outcome.get("outcome")
            field_name = OUTCOME_COUNTER_FIELDS.get(label) if isinstance(label, str) else None
            if field_name:
                setattr(counters, field_name, getattr(counters, field_name) + 1)
            time_to_outcome = outcome.get("timeToOutcomeDays")
            if isinstance(time_to_outcome, (int, float)) and not isinstance(time_to_outcome, bool):
                counters.total_time_to_outcome += float(time_to_outcome)

        timeline = instance.timeline
        for prev, curr in zip(timeline, timeline[1:]):
            delay_days = (curr.timestamp - prev.timestamp).total_seconds() / SECONDS_PER_DAY
            if delay_days >= 0:
                counters.delay_sum += delay_days
                counters.delay_count += 1


def aggregate(events: Iterable[ActionEvent], actions: Iterable[Action]) -> OutcomeStatsTable:
    """Builds the per-action-type stats table for one snapshot."""
    return OutcomeAggregator().aggregate(events, actions)


def get_stats_for_type(stats_table: OutcomeStatsTable, action_type: str) -> Optional[OutcomeCounters]:
    return stats_table.get(action_type)


def compute_global_stats(stats_table: OutcomeStatsTable) -> Dict[str, Any]:
    """
    Sums every counter across action types.
    """
    totals: Dict[str, Any] = {
        "total_attempts": 0,
        "total_started": 0,
        "total_completed": 0,
        "total_skipped": 0,
        "total_successes": 0,
        "total_partials": 0,
        "total_failures": 0,
        "total_abandoned": 0,
        "outcome_count": 0,
        "total_time_to_outcome": 0.0,
        "delay_sum": 0.0,
        "delay_count": 0,
        "type_count": len(stats_table),
    }
    for counters in stats_table.values():
        for key in totals:
            if key != "type_count":
                totals[key] += getattr(counters, key)
    return totals
