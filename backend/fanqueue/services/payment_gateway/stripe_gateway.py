"""
Stripe implementation of the payment gateway.

The stripe SDK is synchronous; calls run in a worker thread so the event
loop is never blocked on the network.
"""
import asyncio
import logging
from typing import Optional

import stripe

from fanqueue.exceptions import InvalidWebhookSignatureError, PaymentConfigurationError
from fanqueue.models.queue_entry import PaymentStatus
from fanqueue.schemas.payment import (
    PaymentIntentSchema,
    PaymentUpdate,
    PaymentVerificationSchema,
    RefundSchema,
)
from fanqueue.services.payment_gateway.error_mapping import map_gateway_errors
from fanqueue.services.payment_gateway.interface import PaymentGatewayInterface

logger = logging.getLogger(__name__)

# Webhook event type -> settled payment status
WEBHOOK_STATUS_MAP = {
    "payment_intent.succeeded": PaymentStatus.SUCCEEDED,
    "payment_intent.payment_failed": PaymentStatus.FAILED,
    "payment_intent.canceled": PaymentStatus.FAILED,
    "payment_intent.processing": PaymentStatus.PENDING,
    "charge.refunded": PaymentStatus.REFUNDED,
}


class StripeGateway(PaymentGatewayInterface):
    def __init__(self, api_key: Optional[str], webhook_secret: Optional[str]):
        if not api_key:
            raise PaymentConfigurationError("Payment provider is not configured.")
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    @map_gateway_errors
    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        destination_account: str,
        application_fee: int,
        metadata: dict,
        description: str,
    ) -> PaymentIntentSchema:
        intent = await asyncio.to_thread(
            stripe.PaymentIntent.create,
            api_key=self.api_key,
            amount=amount,
            currency=currency,
            automatic_payment_methods={"enabled": True},
            application_fee_amount=application_fee,
            transfer_data={"destination": destination_account},
            metadata={key: str(value) for key, value in metadata.items()},
            description=description,
        )
        logger.info(f"Created payment intent {intent.id} for {amount} {currency} (fee {application_fee})")
        return PaymentIntentSchema(client_secret=intent.client_secret, payment_intent_id=intent.id)

    @map_gateway_errors
    async def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentVerificationSchema:
        intent = await asyncio.to_thread(
            stripe.PaymentIntent.retrieve, payment_intent_id, api_key=self.api_key
        )
        return PaymentVerificationSchema(status=intent.status, amount=intent.amount)

    @map_gateway_errors
    async def create_refund(self, payment_intent_id: str) -> RefundSchema:
        refund = await asyncio.to_thread(
            stripe.Refund.create,
            api_key=self.api_key,
            payment_intent=payment_intent_id,
            # Platform fee and transfer are reversed along with the charge
            refund_application_fee=True,
            reverse_transfer=True,
        )
        logger.info(f"Refund {refund.id} for payment intent {payment_intent_id}: {refund.status}")
        return RefundSchema(refund_id=refund.id, status=refund.status, amount=refund.amount)

    def parse_webhook(self, payload: bytes, signature: str) -> Optional[PaymentUpdate]:
        if not self.webhook_secret:
            raise PaymentConfigurationError("Payment webhooks are not configured.")

        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning(f"Rejected payment webhook: {e}")
            raise InvalidWebhookSignatureError() from e

        event_type = event["type"]
        status = WEBHOOK_STATUS_MAP.get(event_type)
        if status is None:
            logger.debug(f"Ignoring payment webhook of type {event_type}")
            return None

        obj = event["data"]["object"]
        if event_type == "charge.refunded":
            intent_id = obj.get("payment_intent")
            amount = obj.get("amount_refunded")
        else:
            intent_id = obj.get("id")
            amount = obj.get("amount_received") or obj.get("amount")

        if not intent_id:
            logger.warning(f"Payment webhook {event.get('id')} ({event_type}) carries no payment intent")
            return None

        return PaymentUpdate(payment_intent_id=intent_id, status=status, amount=amount)
