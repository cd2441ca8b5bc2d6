import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from fanqueue.db.types import GUID

from .base import Base


class Event(Base):
    """
    A time-boxed meet-and-greet run by one organizer.
    Read-mostly: only the organizer mutates it, and it is deactivated rather than deleted.
    """

    __tablename__ = "events"

    __table_args__ = (
        Index('ix_events_organizer_id', 'organizer_id'),
        Index('ix_events_is_active', 'is_active'),
        CheckConstraint('slot_duration > 0', name='ck_events_slot_duration_positive'),
        CheckConstraint('max_capacity >= 0', name='ck_events_max_capacity_non_negative'),
        CheckConstraint('physical_line_threshold >= 0', name='ck_events_physical_line_non_negative'),
        CheckConstraint('price IS NULL OR price >= 0', name='ck_events_price_non_negative'),
    )

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    organizer_id = Column(GUID, nullable=False)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String, nullable=False)
    event_code = Column(String(12), unique=True, nullable=False)

    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    max_duration = Column(Integer, nullable=False)  # minutes
    slot_duration = Column(Integer, nullable=False)  # minutes per fan
    max_capacity = Column(Integer, nullable=False)
    # People already standing in the physical line, served before the first virtual entry
    physical_line_threshold = Column(Integer, nullable=False, default=0)

    is_active = Column(Boolean, nullable=False, default=True)

    # Minor currency units (cents); NULL or 0 means free
    price = Column(Integer, nullable=True)
    currency = Column(String(3), nullable=False, default="usd")
    # Organizer's connected payment account receiving the transfer
    payment_account_id = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    entries = relationship("QueueEntry", back_populates="event", lazy="noload")

    @property
    def requires_payment(self) -> bool:
        return bool(self.price and self.price > 0)
