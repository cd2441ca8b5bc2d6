from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import stripe

from fanqueue.exceptions import (
    InvalidWebhookSignatureError,
    PaymentConfigurationError,
    PaymentGatewayError,
    PaymentNotRefundableError,
)
from fanqueue.models.queue_entry import PaymentStatus
from fanqueue.services.payment_gateway import factory
from fanqueue.services.payment_gateway.mock_gateway import MockGateway
from fanqueue.services.payment_gateway.stripe_gateway import StripeGateway


@pytest.fixture
def gateway():
    return StripeGateway(api_key="sk_test_123", webhook_secret="whsec_abc")


def test_stripe_gateway_requires_api_key():
    with pytest.raises(PaymentConfigurationError):
        StripeGateway(api_key=None, webhook_secret="whsec_abc")


@pytest.mark.asyncio
async def test_create_payment_intent_sends_destination_and_fee(gateway):
    fake_intent = SimpleNamespace(id="pi_1", client_secret="pi_1_secret")
    with patch.object(stripe.PaymentIntent, "create", return_value=fake_intent) as create:
        result = await gateway.create_payment_intent(
            amount=2000,
            currency="usd",
            destination_account="acct_9",
            application_fee=200,
            metadata={"eventId": "e1", "userId": "u1", "organizerId": "o1"},
            description="Meet & greet queue: Test",
        )

    assert result.payment_intent_id == "pi_1"
    assert result.client_secret == "pi_1_secret"
    kwargs = create.call_args.kwargs
    assert kwargs["api_key"] == "sk_test_123"
    assert kwargs["amount"] == 2000
    assert kwargs["application_fee_amount"] == 200
    assert kwargs["transfer_data"] == {"destination": "acct_9"}
    assert kwargs["metadata"] == {"eventId": "e1", "userId": "u1", "organizerId": "o1"}


@pytest.mark.asyncio
async def test_provider_errors_are_mapped(gateway):
    with patch.object(stripe.PaymentIntent, "retrieve", side_effect=stripe.APIConnectionError("network down")):
        with pytest.raises(PaymentGatewayError) as exc_info:
            await gateway.retrieve_payment_intent("pi_1")
    # Provider details never reach the caller
    assert "network" not in exc_info.value.message


@pytest.mark.asyncio
async def test_auth_errors_become_configuration_errors(gateway):
    with patch.object(stripe.Refund, "create", side_effect=stripe.AuthenticationError("bad key")):
        with pytest.raises(PaymentConfigurationError):
            await gateway.create_refund("pi_1")


@pytest.mark.asyncio
async def test_already_refunded_is_not_refundable(gateway):
    error = stripe.InvalidRequestError("already refunded", param=None, code="charge_already_refunded")
    with patch.object(stripe.Refund, "create", side_effect=error):
        with pytest.raises(PaymentNotRefundableError):
            await gateway.create_refund("pi_1")


@pytest.mark.parametrize(
    "event_type, obj, expected",
    [
        ("payment_intent.succeeded", {"id": "pi_1", "amount_received": 900}, (PaymentStatus.SUCCEEDED, 900)),
        ("payment_intent.payment_failed", {"id": "pi_1", "amount": 900}, (PaymentStatus.FAILED, 900)),
        ("payment_intent.canceled", {"id": "pi_1", "amount": 900}, (PaymentStatus.FAILED, 900)),
        ("charge.refunded", {"payment_intent": "pi_1", "amount_refunded": 900}, (PaymentStatus.REFUNDED, 900)),
    ],
)
def test_webhook_events_are_normalised(gateway, event_type, obj, expected):
    event = {"id": "evt_1", "type": event_type, "data": {"object": obj}}
    with patch.object(stripe.Webhook, "construct_event", return_value=event) as construct:
        update = gateway.parse_webhook(b"{}", "t=1,v1=abc")

    construct.assert_called_once_with(b"{}", "t=1,v1=abc", "whsec_abc")
    assert update.payment_intent_id == "pi_1"
    assert (update.status, update.amount) == expected


def test_irrelevant_webhook_events_are_ignored(gateway):
    event = {"id": "evt_1", "type": "customer.created", "data": {"object": {}}}
    with patch.object(stripe.Webhook, "construct_event", return_value=event):
        assert gateway.parse_webhook(b"{}", "sig") is None


def test_bad_webhook_signature(gateway):
    error = stripe.SignatureVerificationError("no match", "sig")
    with patch.object(stripe.Webhook, "construct_event", side_effect=error):
        with pytest.raises(InvalidWebhookSignatureError):
            gateway.parse_webhook(b"{}", "sig")


@pytest.mark.asyncio
async def test_mock_gateway_refund_twice():
    gateway = MockGateway()
    intent = await gateway.create_payment_intent(100, "usd", "acct_1", 10, {}, "test")

    await gateway.create_refund(intent.payment_intent_id)
    with pytest.raises(PaymentNotRefundableError):
        await gateway.create_refund(intent.payment_intent_id)


def test_factory_returns_mock_in_tests():
    gateway = factory.get_payment_gateway("mock")

    assert isinstance(gateway, MockGateway)
    assert factory.get_payment_gateway("mock") is gateway


def test_factory_rejects_unknown_provider():
    with pytest.raises(factory.UnsupportedPaymentProviderError):
        factory.get_payment_gateway("paypal")
