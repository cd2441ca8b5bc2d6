import uuid
from enum import Enum
from datetime import datetime

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SQLAlchemyEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    text,
)
from sqlalchemy.orm import relationship

from fanqueue.db.types import GUID

from .base import Base


class EntryStatus(str, Enum):
    WAITING = "waiting"
    CALLED = "called"
    COMPLETED = "completed"
    MISSED = "missed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


# A user may hold at most one entry in these states per event
LIVE_STATUSES = (EntryStatus.WAITING, EntryStatus.CALLED)

_LIVE_STATUS_SQL = text("status IN ('waiting', 'called')")
_HAS_PAYMENT_INTENT_SQL = text("payment_intent_id IS NOT NULL")


class QueueEntry(Base):
    """
    One fan's ticket in one event's queue. Never physically deleted.
    """

    __tablename__ = "queue_entries"

    __table_args__ = (
        Index('ix_queue_entries_event_status', 'event_id', 'status'),
        Index('ix_queue_entries_user_id', 'user_id'),
        Index('ix_queue_entries_status', 'status'),
        Index(
            'uq_queue_entries_payment_intent_id',
            'payment_intent_id',
            unique=True,
            postgresql_where=_HAS_PAYMENT_INTENT_SQL,
            sqlite_where=_HAS_PAYMENT_INTENT_SQL,
        ),
        Index(
            'uq_queue_entries_live_user',
            'event_id',
            'user_id',
            unique=True,
            postgresql_where=_LIVE_STATUS_SQL,
            sqlite_where=_LIVE_STATUS_SQL,
        ),
    )

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    event_id = Column(GUID, ForeignKey("events.id"), nullable=False)
    user_id = Column(GUID, nullable=False)

    position = Column(Integer, nullable=False)
    # Derived from position and event configuration; rewritten by renumbering
    estimated_call_time = Column(DateTime, nullable=False)

    status = Column(
        SQLAlchemyEnum(EntryStatus, name="entry_status_enum", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=EntryStatus.WAITING,
    )

    payment_intent_id = Column(String, nullable=True)
    payment_status = Column(
        SQLAlchemyEnum(PaymentStatus, name="payment_status_enum", values_callable=lambda x: [e.value for e in x]),
        nullable=True,
    )
    amount_paid = Column(Integer, nullable=True)

    joined_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    called_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    # Notification kinds already emitted for this entry
    notifications_sent = Column(JSON, nullable=False, default=list)

    event = relationship("Event", back_populates="entries", lazy="noload")

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES

    def has_sent(self, kind) -> bool:
        value = kind.value if isinstance(kind, Enum) else kind
        return value in (self.notifications_sent or [])
