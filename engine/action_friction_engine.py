from __future__ import annotations

from typing import Dict, Iterable, Optional

from engine.outcome_stats_engine import OutcomeAggregator, get_stats_for_type
from models.outcome_records import Action, ActionEvent, OutcomeStatsTable

MIN_FRICTION = 0.0
MAX_FRICTION = 1.0
DEFAULT_FRICTION = 0.1
MIN_SAMPLES = 3

# Average inter-event delay (days) mapped linearly onto [0, 1]
IDEAL_DELAY_DAYS = 2.0
MAX_DELAY_DAYS = 14.0

FRICTION_WEIGHTS = {
    "failure_rate": 0.5,
    "delay_factor": 0.3,
    "abandon_rate": 0.2,  # abandoned counts twice: once here, once in failure_rate
}


class ActionFrictionEngine:
    """
    Learned friction penalty per action type.
    Rises with failed/abandoned outcomes and long gaps between lifecycle events.
    """

    def __init__(self, aggregator: Optional[OutcomeAggregator] = None):
        self.aggregator = aggregator or OutcomeAggregator()

    def friction_penalty(self, action: Optional[Action], stats_table: OutcomeStatsTable) -> float:
        if action is None or not action.action_type:
            return DEFAULT_FRICTION

        counters = get_stats_for_type(stats_table, action.action_type)
        if counters is None or counters.outcome_count < MIN_SAMPLES:
            return DEFAULT_FRICTION

        failure_rate = (counters.total_failures + counters.total_abandoned) / counters.outcome_count
        abandon_rate = counters.total_abandoned / counters.outcome_count

        delay_factor = 0.0
        avg_delay = counters.average_delay_days
        if avg_delay is not None:
            delay_factor = (avg_delay - IDEAL_DELAY_DAYS) / (MAX_DELAY_DAYS - IDEAL_DELAY_DAYS)
            delay_factor = max(0.0, min(1.0, delay_factor))

        friction = (
            FRICTION_WEIGHTS["failure_rate"] * failure_rate
            + FRICTION_WEIGHTS["delay_factor"] * delay_factor
            + FRICTION_WEIGHTS["abandon_rate"] * abandon_rate
        )
        return max(MIN_FRICTION, min(MAX_FRICTION, friction))

    def friction_all(
        self,
        actions: Iterable[Action],
        events: Iterable[ActionEvent],
        catalog: Optional[Iterable[Action]] = None,
    ) -> Dict[str, float]:
        targets = tuple(actions)
        type_catalog = targets if catalog is None else tuple(catalog)
        stats_table = self.aggregator.aggregate(tuple(events), type_catalog)
        return {action.id: self.friction_penalty(action, stats_table) for action in targets}


def friction_penalty(action: Optional[Action], stats_table: OutcomeStatsTable) -> float:
    return ActionFrictionEngine().friction_penalty(action, stats_table)


def friction_from_events(
    action: Optional[Action],
    events: Iterable[ActionEvent],
    actions: Iterable[Action],
) -> float:
    """Aggregates the snapshot, then scores one action against it."""
    stats_table = OutcomeAggregator().aggregate(events, actions)
    return friction_penalty(action, stats_table)


def friction_all(
    actions: Iterable[Action],
    events: Iterable[ActionEvent],
    catalog: Optional[Iterable[Action]] = None,
) -> Dict[str, float]:
    return ActionFrictionEngine().friction_all(actions, events, catalog=catalog)
