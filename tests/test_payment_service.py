import json
import uuid

import pytest

from fanqueue.exceptions import (
    EventInactiveError,
    EventNotFoundError,
    InvalidWebhookSignatureError,
    PaymentConfigurationError,
    PaymentNotRefundableError,
    UnauthorizedActionError,
)
from fanqueue.models.queue_entry import EntryStatus, PaymentStatus
from fanqueue.services.payment_gateway.mock_gateway import sign_payload
from fanqueue.services.payment_service import platform_fee


@pytest.fixture
async def paid_event(make_event, persist):
    return await persist(make_event(price=2599, currency="usd", payment_account_id="acct_organizer"))


def _webhook(intent_id, status, amount=None):
    body = json.dumps({"payment_intent_id": intent_id, "status": status, "amount": amount}).encode()
    return body, sign_payload(body, "whsec_test")


@pytest.mark.parametrize(
    "amount, percent, expected",
    [(2599, 10, 259), (1000, 10, 100), (999, 0, 0), (1, 10, 0), (5000, 100, 5000)],
)
def test_platform_fee_rounds_down(amount, percent, expected):
    assert platform_fee(amount, percent) == expected


@pytest.mark.asyncio
async def test_create_payment_intent(payment_service, mock_gateway, paid_event):
    user_id = uuid.uuid4()

    intent = await payment_service.create_payment_intent(paid_event.id, user_id)

    stored = mock_gateway.intents[intent.payment_intent_id]
    assert stored["amount"] == 2599
    assert stored["application_fee"] == 259
    assert stored["destination"] == "acct_organizer"
    assert stored["metadata"] == {
        "eventId": paid_event.id,
        "userId": user_id,
        "organizerId": paid_event.organizer_id,
    }
    assert intent.client_secret.startswith(intent.payment_intent_id)


@pytest.mark.asyncio
async def test_create_intent_unknown_event(payment_service):
    with pytest.raises(EventNotFoundError):
        await payment_service.create_payment_intent(uuid.uuid4(), uuid.uuid4())


@pytest.mark.asyncio
async def test_create_intent_inactive_event(payment_service, make_event, persist):
    event = await persist(make_event(price=500, payment_account_id="acct_1", is_active=False))

    with pytest.raises(EventInactiveError):
        await payment_service.create_payment_intent(event.id, uuid.uuid4())


@pytest.mark.asyncio
async def test_create_intent_free_event(payment_service, make_event, persist):
    event = await persist(make_event(price=None))

    with pytest.raises(PaymentConfigurationError) as exc_info:
        await payment_service.create_payment_intent(event.id, uuid.uuid4())
    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_create_intent_without_connected_account(payment_service, make_event, persist):
    event = await persist(make_event(price=500, payment_account_id=None))

    with pytest.raises(PaymentConfigurationError):
        await payment_service.create_payment_intent(event.id, uuid.uuid4())


@pytest.mark.asyncio
async def test_paid_join_then_successful_webhook(payment_service, queue_manager, paid_event):
    user_id = uuid.uuid4()
    intent = await payment_service.create_payment_intent(paid_event.id, user_id)
    entry = await queue_manager.join(paid_event.id, user_id, payment_intent_id=intent.payment_intent_id)
    assert entry.payment_status == PaymentStatus.PENDING

    body, signature = _webhook(intent.payment_intent_id, "succeeded", 2599)
    updated = await payment_service.handle_webhook(body, signature)

    assert updated.id == entry.id
    assert updated.payment_status == PaymentStatus.SUCCEEDED
    assert updated.status == EntryStatus.WAITING


@pytest.mark.asyncio
async def test_failed_webhook_cancels_entry(payment_service, queue_manager, paid_event):
    user_id = uuid.uuid4()
    entry = await queue_manager.join(paid_event.id, user_id, payment_intent_id="pi_declined")

    body, signature = _webhook("pi_declined", "failed")
    updated = await payment_service.handle_webhook(body, signature)

    assert updated.status == EntryStatus.CANCELLED
    assert updated.payment_status == PaymentStatus.FAILED

    # A failed payment does not block a fresh attempt
    again = await queue_manager.join(paid_event.id, user_id, payment_intent_id="pi_retry")
    assert again.id != entry.id


@pytest.mark.asyncio
async def test_webhook_with_bad_signature(payment_service):
    body, _ = _webhook("pi_any", "failed")

    with pytest.raises(InvalidWebhookSignatureError):
        await payment_service.handle_webhook(body, "not-the-signature")


@pytest.mark.asyncio
async def test_malformed_webhook_is_ignored(payment_service):
    body = b'{"hello": "world"}'

    assert await payment_service.handle_webhook(body, sign_payload(body, "whsec_test")) is None


@pytest.mark.asyncio
async def test_refund_cancelled_paid_entry(payment_service, queue_manager, mock_gateway, paid_event):
    user_id = uuid.uuid4()
    intent = await payment_service.create_payment_intent(paid_event.id, user_id)
    entry = await queue_manager.join(paid_event.id, user_id, payment_intent_id=intent.payment_intent_id)
    body, signature = _webhook(intent.payment_intent_id, "succeeded", 2599)
    await payment_service.handle_webhook(body, signature)
    await queue_manager.cancel(entry.id, user_id)

    refund = await payment_service.refund_entry(entry.id, user_id)

    assert refund.amount == 2599
    assert mock_gateway.intents[intent.payment_intent_id]["status"] == "refunded"
    stored = await queue_manager.get_entry(entry.id)
    assert stored.payment_status == PaymentStatus.REFUNDED
    assert stored.status == EntryStatus.CANCELLED


@pytest.mark.asyncio
async def test_refund_requires_cancelled_entry(payment_service, queue_manager, paid_event):
    user_id = uuid.uuid4()
    entry = await queue_manager.join(paid_event.id, user_id, payment_intent_id="pi_waiting")

    with pytest.raises(PaymentNotRefundableError):
        await payment_service.refund_entry(entry.id, user_id)


@pytest.mark.asyncio
async def test_refund_pending_payment(payment_service, queue_manager, mock_gateway, paid_event):
    user_id = uuid.uuid4()
    intent = await payment_service.create_payment_intent(paid_event.id, user_id)
    entry = await queue_manager.join(paid_event.id, user_id, payment_intent_id=intent.payment_intent_id)
    await queue_manager.cancel(entry.id, user_id)

    await payment_service.refund_entry(entry.id, paid_event.organizer_id)

    stored = await queue_manager.get_entry(entry.id)
    assert stored.payment_status == PaymentStatus.REFUNDED
    assert mock_gateway.intents[intent.payment_intent_id]["status"] == "refunded"


@pytest.mark.asyncio
async def test_failed_payment_is_not_refundable(payment_service, queue_manager, paid_event):
    user_id = uuid.uuid4()
    intent = await payment_service.create_payment_intent(paid_event.id, user_id)
    entry = await queue_manager.join(paid_event.id, user_id, payment_intent_id=intent.payment_intent_id)
    body, signature = _webhook(intent.payment_intent_id, "failed", 2599)
    await payment_service.handle_webhook(body, signature)

    with pytest.raises(PaymentNotRefundableError):
        await payment_service.refund_entry(entry.id, user_id)


@pytest.mark.asyncio
async def test_refund_by_stranger(payment_service, queue_manager, paid_event):
    entry = await queue_manager.join(paid_event.id, uuid.uuid4(), payment_intent_id="pi_x")

    with pytest.raises(UnauthorizedActionError):
        await payment_service.refund_entry(entry.id, uuid.uuid4())


@pytest.mark.asyncio
async def test_verify_payment(payment_service, mock_gateway, paid_event):
    intent = await payment_service.create_payment_intent(paid_event.id, uuid.uuid4())
    mock_gateway.settle(intent.payment_intent_id)

    result = await payment_service.verify_payment(intent.payment_intent_id)

    assert result.status == "succeeded"
    assert result.amount == 2599


@pytest.mark.asyncio
async def test_late_webhook_cannot_reopen_a_refund(payment_service, queue_manager, paid_event):
    user_id = uuid.uuid4()
    intent = await payment_service.create_payment_intent(paid_event.id, user_id)
    entry = await queue_manager.join(paid_event.id, user_id, payment_intent_id=intent.payment_intent_id)
    await payment_service.handle_webhook(*_webhook(intent.payment_intent_id, "succeeded", 2599))
    await queue_manager.cancel(entry.id, user_id)
    await payment_service.refund_entry(entry.id, user_id)

    # Delivered out of order after the refund
    await payment_service.handle_webhook(*_webhook(intent.payment_intent_id, "pending", 2599))
    await payment_service.handle_webhook(*_webhook(intent.payment_intent_id, "succeeded", 2599))

    stored = await queue_manager.get_entry(entry.id)
    assert stored.payment_status == PaymentStatus.REFUNDED
    with pytest.raises(PaymentNotRefundableError):
        await payment_service.refund_entry(entry.id, user_id)
