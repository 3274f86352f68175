from datetime import datetime, timedelta, timezone
import itertools

import pytest

from engine.outcome_stats_engine import (
    OutcomeAggregator,
    aggregate,
    compute_global_stats,
    get_stats_for_type,
    group_by_instance,
)
from models.outcome_records import Action, ActionEvent

BASE_TIME = datetime(2026, 1, 5, 9, 0, 0)
_ids = itertools.count(1)


def _event(action_id, event_type, days=0.0, **payload):
    return ActionEvent(
        id=f"evt_{next(_ids)}",
        action_id=action_id,
        event_type=event_type,
        timestamp=BASE_TIME + timedelta(days=days),
        payload=payload,
    )


@pytest.fixture
def catalog():
    return [
        Action(id="a1", action_type="intro"),
        Action(id="a2", action_type="intro"),
        Action(id="a3", action_type="intro"),
        Action(id="b1", action_type="followup"),
        Action(id="c1", action_type=None),
    ]


def test_duplicate_completions_count_once_per_instance(catalog):
    events = [
        _event("a1", "started"),
        _event("a1", "started", days=0.1),
        _event("a1", "completed", days=1),
        _event("a1", "completed", days=1),
        _event("a1", "completed", days=2),
    ]

    stats = aggregate(events, catalog)

    intro = stats["intro"]
    assert intro.total_attempts == 1
    assert intro.total_completed == 1
    assert intro.total_started == 0


def test_started_only_and_completed_instances_roll_up_by_type(catalog):
    events = [
        _event("a1", "started"),
        _event("a1", "completed", days=1),
        _event("a2", "started"),
        _event("a3", "completed"),  # completion without a start is still an attempt
        _event("b1", "started"),
    ]

    stats = aggregate(events, catalog)

    assert stats["intro"].total_attempts == 3
    assert stats["intro"].total_completed == 2
    assert stats["intro"].total_started == 1
    assert stats["followup"].total_attempts == 1
    assert stats["followup"].total_completed == 0


def test_skipped_only_instance_is_not_an_attempt(catalog):
    events = [_event("a1", "skipped", reason="busy"), _event("a2", "skipped")]

    stats = aggregate(events, catalog)

    assert stats["intro"].total_attempts == 0
    assert stats["intro"].total_skipped == 2


def test_skip_after_start_still_counts_as_attempt(catalog):
    events = [_event("a1", "started"), _event("a1", "skipped", days=1)]

    stats = aggregate(events, catalog)

    assert stats["intro"].total_attempts == 1
    assert stats["intro"].total_skipped == 0


def test_unknown_and_untyped_actions_contribute_nothing(catalog):
    events = [
        _event("ghost", "completed"),
        _event("c1", "completed"),
    ]

    stats = aggregate(events, catalog)

    assert stats == {}


def test_type_without_events_has_no_entry(catalog):
    stats = aggregate([_event("a1", "started")], catalog)

    assert "followup" not in stats
    assert get_stats_for_type(stats, "followup") is None
    assert get_stats_for_type(stats, "intro").total_attempts == 1


def test_latest_recorded_outcome_wins_per_instance(catalog):
    events = [
        _event("a1", "completed"),
        _event("a1", "outcome_recorded", days=3, outcome="partial", timeToOutcomeDays=3),
        _event("a1", "outcome_recorded", days=5, outcome="success", timeToOutcomeDays=5),
        _event("a2", "outcome_recorded", days=1, outcome="abandoned"),
    ]

    stats = aggregate(events, catalog)
    intro = stats["intro"]

    assert intro.outcome_count == 2
    assert intro.total_successes == 1
    assert intro.total_partials == 0
    assert intro.total_abandoned == 1
    assert intro.total_time_to_outcome == pytest.approx(5.0)


def test_outcome_label_that_is_not_a_string_is_ignored(catalog):
    events = [
        _event("a1", "completed"),
        _event("a1", "outcome_recorded", days=1, outcome=["failed", "success"]),
    ]

    intro = aggregate(events, catalog)["intro"]

    assert intro.outcome_count == 1
    assert intro.total_failures == 0
    assert intro.total_successes == 0


def test_inter_event_delays_follow_timestamp_order(catalog):
    # Supplied out of order; gaps are measured after sorting: 2 days then 4 days.
    events = [
        _event("b1", "completed", days=6),
        _event("b1", "started", days=0),
        _event("b1", "assigned", days=2),
    ]

    stats = aggregate(events, catalog)

    assert stats["followup"].delay_count == 2
    assert stats["followup"].delay_sum == pytest.approx(6.0)
    assert stats["followup"].average_delay_days == pytest.approx(3.0)


def test_grouping_pass_resolves_each_instance():
    events = [
        _event("x", "started"),
        _event("x", "completed", days=1),
        _event("y", "skipped"),
    ]

    instances = group_by_instance(events)

    assert set(instances) == {"x", "y"}
    assert instances["x"].attempted and instances["x"].completed
    assert not instances["y"].attempted and instances["y"].skipped
    assert [e.event_type for e in instances["x"].timeline] == ["started", "completed"]


def test_aggregation_is_idempotent_and_reads_generators_once(catalog):
    events = [_event("a1", "started"), _event("a2", "completed"), _event("b1", "skipped")]
    aggregator = OutcomeAggregator()

    first = aggregator.aggregate(iter(events), iter(catalog))
    second = aggregator.aggregate(events, catalog)

    assert {k: v.to_dict() for k, v in first.items()} == {k: v.to_dict() for k, v in second.items()}


def test_global_stats_sum_across_types(catalog):
    events = [
        _event("a1", "completed"),
        _event("a2", "started"),
        _event("b1", "completed"),
    ]

    totals = compute_global_stats(aggregate(events, catalog))

    assert totals["type_count"] == 2
    assert totals["total_attempts"] == 3
    assert totals["total_completed"] == 2
    assert totals["total_started"] == 1


def test_naive_and_aware_timestamps_aggregate_together(catalog):
    events = [
        _event("a1", "completed"),
        ActionEvent(
            id="evt_aware",
            action_id="a2",
            event_type="completed",
            timestamp=datetime(2026, 1, 5, 11, 0, 0, tzinfo=timezone(timedelta(hours=2))),
        ),
        _event("a3", "started", days=1),
    ]

    intro = aggregate(events, catalog)["intro"]

    assert intro.total_attempts == 3
    assert intro.total_completed == 2
    assert events[1].timestamp == datetime(2026, 1, 5, 9, 0, 0)
    assert events[1].timestamp.tzinfo is None


def test_event_accepts_iso_string_timestamps():
    event = ActionEvent(id="e1", action_id="a1", event_type="started", timestamp="2026-01-05T09:00:00Z")

    assert event.timestamp == datetime(2026, 1, 5, 9, 0, 0)
