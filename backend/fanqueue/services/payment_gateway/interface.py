from abc import ABC, abstractmethod
from typing import Optional

from fanqueue.schemas.payment import (
    PaymentIntentSchema,
    PaymentUpdate,
    PaymentVerificationSchema,
    RefundSchema,
)


class PaymentGatewayInterface(ABC):
    """
    Abstract base class for payment providers.
    Amounts are always integer minor units (cents).
    """
    @abstractmethod
    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        destination_account: str,
        application_fee: int,
        metadata: dict,
        description: str,
    ) -> PaymentIntentSchema:
        """
        Creates an intent whose funds are transferred to `destination_account`
        minus `application_fee`.
        """
        pass

    @abstractmethod
    async def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentVerificationSchema:
        pass

    @abstractmethod
    async def create_refund(self, payment_intent_id: str) -> RefundSchema:
        pass

    @abstractmethod
    def parse_webhook(self, payload: bytes, signature: str) -> Optional[PaymentUpdate]:
        """
        Verifies a webhook delivery and normalises it.

        Returns None for events that carry no payment state change.
        Raises InvalidWebhookSignatureError if the signature does not match.
        """
        pass
