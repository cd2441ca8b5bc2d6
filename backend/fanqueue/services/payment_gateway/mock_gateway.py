"""
In-memory payment gateway for development and tests.

Webhook bodies are JSON `{"payment_intent_id", "status", "amount"}` signed
with HMAC-SHA256 over the raw body using the webhook secret.
"""
import hashlib
import hmac
import json
import logging
import uuid
from typing import Optional

from pydantic import ValidationError

from fanqueue.exceptions import (
    InvalidWebhookSignatureError,
    PaymentGatewayError,
    PaymentNotRefundableError,
)
from fanqueue.schemas.payment import (
    PaymentIntentSchema,
    PaymentUpdate,
    PaymentVerificationSchema,
    RefundSchema,
)
from fanqueue.services.payment_gateway.interface import PaymentGatewayInterface

logger = logging.getLogger(__name__)


def sign_payload(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


class MockGateway(PaymentGatewayInterface):
    def __init__(self, webhook_secret: str = "whsec_test"):
        self.webhook_secret = webhook_secret
        self.intents: dict[str, dict] = {}
        self.refunds: dict[str, dict] = {}

    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        destination_account: str,
        application_fee: int,
        metadata: dict,
        description: str,
    ) -> PaymentIntentSchema:
        intent_id = f"pi_mock_{uuid.uuid4().hex[:24]}"
        self.intents[intent_id] = {
            "amount": amount,
            "currency": currency,
            "destination": destination_account,
            "application_fee": application_fee,
            "metadata": dict(metadata),
            "description": description,
            "status": "requires_payment_method",
        }
        return PaymentIntentSchema(client_secret=f"{intent_id}_secret_mock", payment_intent_id=intent_id)

    def settle(self, payment_intent_id: str, status: str = "succeeded") -> None:
        """Simulate the customer completing (or failing) checkout."""
        self.intents[payment_intent_id]["status"] = status

    async def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentVerificationSchema:
        intent = self.intents.get(payment_intent_id)
        if intent is None:
            raise PaymentGatewayError("Payment not found.", status_code=404)
        return PaymentVerificationSchema(status=intent["status"], amount=intent["amount"])

    async def create_refund(self, payment_intent_id: str) -> RefundSchema:
        intent = self.intents.get(payment_intent_id)
        if intent is None:
            raise PaymentGatewayError("Payment not found.", status_code=404)
        if intent["status"] == "refunded":
            raise PaymentNotRefundableError("This payment has already been refunded.")

        refund_id = f"re_mock_{uuid.uuid4().hex[:24]}"
        intent["status"] = "refunded"
        self.refunds[refund_id] = {"payment_intent": payment_intent_id, "amount": intent["amount"]}
        return RefundSchema(refund_id=refund_id, status="succeeded", amount=intent["amount"])

    def parse_webhook(self, payload: bytes, signature: str) -> Optional[PaymentUpdate]:
        expected = sign_payload(payload, self.webhook_secret)
        if not signature or not hmac.compare_digest(expected, signature):
            logger.warning("Rejected mock payment webhook with bad signature")
            raise InvalidWebhookSignatureError()

        try:
            return PaymentUpdate(**json.loads(payload))
        except (ValueError, TypeError, ValidationError) as e:
            logger.warning(f"Ignoring malformed mock payment webhook: {e}")
            return None
