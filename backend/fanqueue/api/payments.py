import logging
import uuid

from fastapi import APIRouter, Depends, Header, Request

from fanqueue.api.dependencies.auth import get_current_user_id
from fanqueue.api.dependencies.services import get_payment_service
from fanqueue.rate_limiter import limiter
from fanqueue.schemas.payment import (
    PaymentIntentCreate,
    PaymentIntentSchema,
    PaymentVerificationSchema,
    RefundSchema,
)
from fanqueue.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/intents", response_model=PaymentIntentSchema)
@limiter.limit("10/minute")
async def create_payment_intent(
    request: Request,
    intent_in: PaymentIntentCreate,
    payment_service: PaymentService = Depends(get_payment_service),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    return await payment_service.create_payment_intent(intent_in.event_id, user_id)


@router.get("/intents/{payment_intent_id}", response_model=PaymentVerificationSchema)
async def verify_payment(
    payment_intent_id: str,
    payment_service: PaymentService = Depends(get_payment_service),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    return await payment_service.verify_payment(payment_intent_id)


@router.post("/entries/{entry_id}/refund", response_model=RefundSchema)
async def refund_entry(
    entry_id: uuid.UUID,
    payment_service: PaymentService = Depends(get_payment_service),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    return await payment_service.refund_entry(entry_id, user_id)


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    payment_service: PaymentService = Depends(get_payment_service),
    stripe_signature: str = Header(default="", alias="Stripe-Signature"),
):
    """
    Payment provider callback. Authenticated by signature, not by bearer token.
    """
    payload = await request.body()
    entry = await payment_service.handle_webhook(payload, stripe_signature)
    return {"received": True, "entry_id": str(entry.id) if entry else None}
