import logging
import uuid
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from fanqueue.core.config import settings
from fanqueue.exceptions import (
    EntryNotFoundError,
    EventInactiveError,
    EventNotFoundError,
    PaymentConfigurationError,
    PaymentNotRefundableError,
    UnauthorizedActionError,
)
from fanqueue.models.queue_entry import EntryStatus, PaymentStatus
from fanqueue.repositories.event import EventRepository
from fanqueue.repositories.queue_entry import QueueEntryRepository
from fanqueue.schemas.payment import (
    PaymentIntentSchema,
    PaymentUpdate,
    PaymentVerificationSchema,
    RefundSchema,
)
from fanqueue.services.payment_gateway.interface import PaymentGatewayInterface
from fanqueue.services.queue_manager import QueueManagerService

logger = logging.getLogger(__name__)


def platform_fee(amount: int, fee_percent: int) -> int:
    """Platform's cut in minor units, rounded down."""
    return amount * fee_percent // 100


class PaymentService:
    """
    Payment gate for paid events.

    Intents are created before the fan joins; the resulting intent id is
    passed to join. Settlement arrives asynchronously through the webhook
    and is applied to the queue by QueueManagerService.update_payment_status.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncSession],
        gateway: PaymentGatewayInterface,
        queue_manager_service: QueueManagerService,
        event_repository_class=EventRepository,
        queue_entry_repository_class=QueueEntryRepository,
        fee_percent: int = settings.PLATFORM_FEE_PERCENT,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.queue_manager = queue_manager_service
        self.event_repository_class = event_repository_class
        self.queue_entry_repository_class = queue_entry_repository_class
        self.fee_percent = fee_percent

    async def create_payment_intent(self, event_id: uuid.UUID, user_id: uuid.UUID) -> PaymentIntentSchema:
        async with self.session_factory() as session:
            event = await self.event_repository_class(session).get_by_id(event_id)

        if not event:
            raise EventNotFoundError()
        if not event.is_active:
            raise EventInactiveError()
        if not event.requires_payment:
            raise PaymentConfigurationError("This event is free; no payment is needed.", status_code=409)
        if not event.payment_account_id:
            logger.error(f"Paid event {event.id} has no connected payment account")
            raise PaymentConfigurationError()

        fee = platform_fee(event.price, self.fee_percent)
        intent = await self.gateway.create_payment_intent(
            amount=event.price,
            currency=event.currency,
            destination_account=event.payment_account_id,
            application_fee=fee,
            metadata={
                "eventId": event.id,
                "userId": user_id,
                "organizerId": event.organizer_id,
            },
            description=f"Meet & greet queue: {event.title}",
        )
        logger.info(f"Payment intent {intent.payment_intent_id} created for user {user_id} on event {event.id}")
        return intent

    async def verify_payment(self, payment_intent_id: str) -> PaymentVerificationSchema:
        return await self.gateway.retrieve_payment_intent(payment_intent_id)

    async def refund_entry(self, entry_id: uuid.UUID, actor_id: uuid.UUID) -> RefundSchema:
        """
        Refund the payment behind a cancelled entry. The fan who owns the entry
        or the event's organizer may request it.
        """
        async with self.session_factory() as session:
            entry = await self.queue_entry_repository_class(session).get_by_id(entry_id)
            if not entry:
                raise EntryNotFoundError()
            event = await self.event_repository_class(session).get_by_id(entry.event_id)

        if actor_id not in (entry.user_id, event.organizer_id if event else None):
            raise UnauthorizedActionError("You cannot refund this queue entry.")
        if entry.status != EntryStatus.CANCELLED:
            raise PaymentNotRefundableError("Only cancelled queue entries can be refunded.")
        if not entry.payment_intent_id or entry.payment_status not in (PaymentStatus.SUCCEEDED, PaymentStatus.PENDING):
            raise PaymentNotRefundableError()

        refund = await self.gateway.create_refund(entry.payment_intent_id)
        await self.queue_manager.update_payment_status(
            PaymentUpdate(
                payment_intent_id=entry.payment_intent_id,
                status=PaymentStatus.REFUNDED,
                amount=entry.amount_paid,
            )
        )
        return refund

    async def handle_webhook(self, payload: bytes, signature: str):
        """
        Verify and apply one payment provider callback.

        Returns the affected entry, or None when the delivery carries no
        state change or names an unknown intent.
        """
        update: Optional[PaymentUpdate] = self.gateway.parse_webhook(payload, signature)
        if update is None:
            return None
        return await self.queue_manager.update_payment_status(update)
