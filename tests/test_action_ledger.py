from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from engine.action_ledger_engine import ActionLedgerEngine
from engine.event_validation import EventValidationError
from engine.execution_probability_engine import estimate_all
from models.base import Base
from models.action_ledger import ActionEventRecord, ActionRecord
from models.outcome_records import Action, ActionEvent


@pytest.fixture
def session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.close()


def test_register_action_and_snapshot_records(session):
    ledger = ActionLedgerEngine(session)
    record = ledger.register_action("intro", metadata={"title": "Meet Dana"}, action_id="act_1")

    assert record.id == "act_1"
    assert session.query(ActionRecord).count() == 1

    snapshot = ledger.snapshot()
    assert snapshot.actions == (Action(id="act_1", action_type="intro", metadata={"title": "Meet Dana"}),)
    assert snapshot.events == ()


def test_duplicate_action_id_rejected(session):
    ledger = ActionLedgerEngine(session)
    ledger.register_action("intro", action_id="act_1")

    with pytest.raises(ValueError):
        ledger.register_action("followup", action_id="act_1")


def test_lifecycle_events_are_appended_in_order(session):
    ledger = ActionLedgerEngine(session)
    ledger.register_action("intro", action_id="act_1")
    t0 = datetime(2026, 4, 1, 9, 0, 0)

    ledger.record_started("act_1", started_at=t0)
    ledger.record_completed("act_1", completed_at="2026-04-02T09:00:00Z")
    ledger.record_completed("act_1", completed_at=t0 + timedelta(days=1, minutes=5))

    snapshot = ledger.snapshot()
    assert [e.event_type for e in snapshot.events] == ["started", "completed", "completed"]
    assert all(isinstance(e, ActionEvent) for e in snapshot.events)
    assert snapshot.events[1].timestamp == datetime(2026, 4, 2, 9, 0, 0)


def test_skip_records_default_reason(session):
    ledger = ActionLedgerEngine(session)
    ledger.register_action("intro", action_id="act_1")

    record = ledger.record_skipped("act_1")

    assert record.event_type == "skipped"
    assert record.payload == {"reason": "User skipped"}


def test_unknown_action_rejected(session):
    ledger = ActionLedgerEngine(session)

    with pytest.raises(ValueError, match="not found"):
        ledger.record_completed("ghost")
    assert session.query(ActionEventRecord).count() == 0


def test_invalid_events_rejected(session):
    ledger = ActionLedgerEngine(session)
    ledger.register_action("intro", action_id="act_1")

    with pytest.raises(EventValidationError):
        ledger.append_event("act_1", "teleported")
    with pytest.raises(EventValidationError):
        ledger.append_event("act_1", "completed", payload={"rankScore": 3.2})
    with pytest.raises(EventValidationError):
        ledger.record_outcome("act_1", "meh")

    ledger.append_event("act_1", "started", event_id="evt_fixed")
    with pytest.raises(EventValidationError, match="Duplicate event ID"):
        ledger.append_event("act_1", "completed", event_id="evt_fixed")


def test_snapshot_filters_events_by_action(session):
    ledger = ActionLedgerEngine(session)
    ledger.register_action("intro", action_id="act_1")
    ledger.register_action("intro", action_id="act_2")
    ledger.record_started("act_1")
    ledger.record_started("act_2")

    snapshot = ledger.snapshot(action_ids=["act_2"])

    assert len(snapshot.actions) == 2
    assert [e.action_id for e in snapshot.events] == ["act_2"]


def test_snapshot_feeds_batch_estimate(session):
    ledger = ActionLedgerEngine(session)
    for i in range(4):
        ledger.register_action("intro", action_id=f"act_{i}")
        ledger.record_started(f"act_{i}")
    for i in range(3):
        ledger.record_completed(f"act_{i}", completed_at=datetime.utcnow())

    snapshot = ledger.snapshot()
    result = estimate_all(snapshot.actions, snapshot.events)

    # 3 completions over 4 attempts
    assert result == {f"act_{i}": pytest.approx(0.75) for i in range(4)}
