from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from fanqueue.models.queue_entry import EntryStatus, PaymentStatus
from fanqueue.schemas.event import EventSchema


class JoinQueueRequest(BaseModel):
    event_id: UUID
    payment_intent_id: str | None = Field(default=None, min_length=1, max_length=255)


class QueueEntrySchema(BaseModel):
    id: UUID
    event_id: UUID
    user_id: UUID
    position: int
    estimated_call_time: datetime
    status: EntryStatus
    payment_intent_id: str | None = None
    payment_status: PaymentStatus | None = None
    amount_paid: int | None = None
    joined_at: datetime
    called_at: datetime | None = None
    completed_at: datetime | None = None
    notifications_sent: list[str] = []

    model_config = ConfigDict(from_attributes=True)


class QueueEntryWithEventSchema(QueueEntrySchema):
    event: EventSchema | None = None
