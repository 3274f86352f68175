from datetime import datetime
import uuid
from sqlalchemy import Column, String, DateTime, JSON, ForeignKey
from sqlalchemy.orm import relationship
from .base import Base
from .outcome_records import Action, ActionEvent


class ActionRecord(Base):
    """
    Catalog entry for an action surfaced to the user.
    """
    __tablename__ = 'actions'

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))

    # Classification used to pool outcomes (e.g. "intro", "followup", "review")
    action_type = Column(String, nullable=True, index=True)

    # Scheduling and display metadata; opaque to the engines
    action_metadata = Column(JSON, nullable=True)

    timestamp = Column(DateTime, default=datetime.utcnow)

    events = relationship("ActionEventRecord", back_populates="action")

    def to_action(self) -> Action:
        return Action(
            id=self.id,
            action_type=self.action_type,
            metadata=dict(self.action_metadata or {}),
        )

    def __repr__(self):
        return f"<ActionRecord(id={self.id[:8]}, type={self.action_type})>"


class ActionEventRecord(Base):
    """
    Append-only lifecycle event. Rows are inserted, never updated or deleted.
    """
    __tablename__ = 'action_events'

    id = Column(String, primary_key=True, default=lambda: f"evt_{uuid.uuid4().hex}")
    action_id = Column(String, ForeignKey('actions.id'), nullable=False, index=True)

    # started | completed | skipped | outcome_recorded | ...
    event_type = Column(String, nullable=False)

    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Raw facts only (reason, outcome, timeToOutcomeDays); never derived scores
    payload = Column(JSON, nullable=False, default=dict)

    actor = Column(String, nullable=False, default="user")

    action = relationship("ActionRecord", back_populates="events")

    def to_event(self) -> ActionEvent:
        return ActionEvent(
            id=self.id,
            action_id=self.action_id,
            event_type=self.event_type,
            timestamp=self.timestamp,
            payload=dict(self.payload or {}),
        )

    def __repr__(self):
        return f"<ActionEventRecord(action={self.action_id[:8]}, type={self.event_type}, t={self.timestamp})>"
