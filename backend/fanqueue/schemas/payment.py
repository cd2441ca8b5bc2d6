from uuid import UUID

from pydantic import BaseModel, Field

from fanqueue.models.queue_entry import PaymentStatus


class PaymentIntentCreate(BaseModel):
    event_id: UUID


class PaymentIntentSchema(BaseModel):
    client_secret: str
    payment_intent_id: str


class PaymentVerificationSchema(BaseModel):
    status: str
    amount: int


class RefundSchema(BaseModel):
    refund_id: str
    status: str
    amount: int | None = None


class PaymentUpdate(BaseModel):
    """
    Normalised payment gateway callback: which intent, what it settled to, for how much.
    """
    payment_intent_id: str = Field(min_length=1)
    status: PaymentStatus
    amount: int | None = Field(default=None, ge=0)


class SweepResultSchema(BaseModel):
    processed: int
