import uuid
from enum import Enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SQLAlchemyEnum,
    ForeignKey,
    Index,
    Text,
)

from fanqueue.db.types import GUID

from .base import Base


class NotificationKind(str, Enum):
    QUEUE_JOINED = "queue_joined"
    POSITION_UPDATE = "position_update"
    COMING_UP = "coming_up"
    NEXT_UP = "next_up"
    YOUR_TURN = "your_turn"
    MISSED_TURN = "missed_turn"
    PAYMENT_FAILED = "payment_failed"


class Notification(Base):
    """
    Append-only message to a fan. Only `is_read` ever changes.
    """

    __tablename__ = "notifications"

    __table_args__ = (
        Index('ix_notifications_user_read', 'user_id', 'is_read'),
        Index('ix_notifications_user_created', 'user_id', 'created_at'),
        Index('ix_notifications_queue_entry_id', 'queue_entry_id'),
    )

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    user_id = Column(GUID, nullable=False)
    event_id = Column(GUID, ForeignKey("events.id"), nullable=False)
    queue_entry_id = Column(GUID, ForeignKey("queue_entries.id"), nullable=False)

    kind = Column(
        SQLAlchemyEnum(NotificationKind, name="notification_kind_enum", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
