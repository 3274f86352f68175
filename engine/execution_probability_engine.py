"""
Execution Probability
=====================
Learned likelihood that a surfaced action of a given type gets completed.

Policy, first matching rule wins:

  1. ``missing_action``       – no action or no ``action_type``: default 0.7.
  2. ``insufficient_samples`` – type unseen or fewer than ``MIN_SAMPLES``
                                attempts: default 0.7.
  3. ``learned``              – ``completed / attempts`` clamped to
                                ``[MIN_PROB, MAX_PROB]``.

Every function here is pure: the result depends only on the action's type and
the stats table (or the event snapshot it is built from).
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, Optional, Tuple

from engine.outcome_stats_engine import OutcomeAggregator, get_stats_for_type
from models.outcome_records import Action, ActionEvent, OutcomeStatsTable, ProbabilityDecision

MIN_PROB = 0.05
MAX_PROB = 0.95
DEFAULT_EXECUTION_PROBABILITY = 0.7
MIN_SAMPLES = 3


def clamp_probability(prob: float) -> float:
    return max(MIN_PROB, min(MAX_PROB, prob))


def _missing_action(action: Optional[Action], stats_table: OutcomeStatsTable) -> Optional[ProbabilityDecision]:
    if action is None or not action.action_type:
        return ProbabilityDecision(value=DEFAULT_EXECUTION_PROBABILITY, rule="missing_action")
    return None


def _insufficient_samples(action: Action, stats_table: OutcomeStatsTable) -> Optional[ProbabilityDecision]:
    counters = get_stats_for_type(stats_table, action.action_type)
    if counters is None or counters.total_attempts < MIN_SAMPLES:
        return ProbabilityDecision(
            value=DEFAULT_EXECUTION_PROBABILITY,
            rule="insufficient_samples",
            action_type=action.action_type,
            counters=counters,
        )
    return None


def _learned(action: Action, stats_table: OutcomeStatsTable) -> Optional[ProbabilityDecision]:
    counters = stats_table[action.action_type]
    raw_rate = counters.total_completed / counters.total_attempts
    return ProbabilityDecision(
        value=clamp_probability(raw_rate),
        rule="learned",
        action_type=action.action_type,
        counters=counters,
    )


Rule = Callable[[Optional[Action], OutcomeStatsTable], Optional[ProbabilityDecision]]

ESTIMATION_RULES: Tuple[Rule, ...] = (
    _missing_action,
    _insufficient_samples,
    _learned,
)


def explain(action: Optional[Action], stats_table: OutcomeStatsTable) -> ProbabilityDecision:
    """Runs the rule list and returns the first decision, with the rule name."""
    for rule in ESTIMATION_RULES:
        decision = rule(action, stats_table)
        if decision is not None:
            return decision
    raise RuntimeError("No estimation rule matched")


def estimate(action: Optional[Action], stats_table: OutcomeStatsTable) -> float:
    """Execution probability in ``[MIN_PROB, MAX_PROB]`` for one action."""
    return explain(action, stats_table).value


def estimate_from_events(
    action: Optional[Action],
    events: Iterable[ActionEvent],
    actions: Iterable[Action],
) -> float:
    stats_table = OutcomeAggregator().aggregate(events, actions)
    return estimate(action, stats_table)


def estimate_all(
    actions: Iterable[Action],
    events: Iterable[ActionEvent],
    catalog: Optional[Iterable[Action]] = None,
) -> Dict[str, float]:
    """
    Estimates every action against one aggregation of one snapshot.

    ``catalog`` maps instance ids to types for aggregation; it defaults to
    ``actions`` themselves. Inputs are materialized once, so generators and
    concurrently growing ledgers are read exactly one time.
    """
    return ExecutionProbabilityEngine().estimate_all(actions, events, catalog=catalog)


class ExecutionProbabilityEngine:
    """
    Object seam over the module functions, for callers that wire engines.
    """

    min_prob = MIN_PROB
    max_prob = MAX_PROB
    default_probability = DEFAULT_EXECUTION_PROBABILITY
    min_samples = MIN_SAMPLES

    def __init__(self, aggregator: Optional[OutcomeAggregator] = None):
        self.aggregator = aggregator or OutcomeAggregator()

    def build_stats(self, events: Iterable[ActionEvent], actions: Iterable[Action]) -> OutcomeStatsTable:
        return self.aggregator.aggregate(events, actions)

    def explain(self, action: Optional[Action], stats_table: OutcomeStatsTable) -> ProbabilityDecision:
        return explain(action, stats_table)

    def estimate(self, action: Optional[Action], stats_table: OutcomeStatsTable) -> float:
        return estimate(action, stats_table)

    def estimate_all(
        self,
        actions: Iterable[Action],
        events: Iterable[ActionEvent],
        catalog: Optional[Iterable[Action]] = None,
    ) -> Dict[str, float]:
        targets = tuple(actions)
        snapshot = tuple(events)
        type_catalog = targets if catalog is None else tuple(catalog)
        stats_table = self.build_stats(snapshot, type_catalog)
        return {action.id: estimate(action, stats_table) for action in targets}
