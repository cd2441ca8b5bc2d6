from .base import Base
from .event import Event
from .notification import Notification, NotificationKind
from .queue_entry import EntryStatus, PaymentStatus, QueueEntry

__all__ = [
    "Base",
    "EntryStatus",
    "Event",
    "Notification",
    "NotificationKind",
    "PaymentStatus",
    "QueueEntry",
]
