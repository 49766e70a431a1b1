import types

import pytest
import stripe

from payments.exceptions import GatewayUnavailable
from payments.services.gateway import (
    GatewayStatus,
    StripeGatewayClient,
    StubGatewayClient,
    get_gateway_client,
    map_payment_intent,
)


def _intent(status, last_payment_error=None):
    return types.SimpleNamespace(status=status, last_payment_error=last_payment_error)


@pytest.mark.parametrize(
    "intent, expected",
    [
        (_intent("succeeded"), GatewayStatus.PAID),
        (_intent("canceled"), GatewayStatus.CANCELLED),
        (_intent("requires_payment_method", {"code": "card_declined"}), GatewayStatus.REJECTED),
        (_intent("requires_payment_method"), GatewayStatus.PENDING),
        (_intent("processing"), GatewayStatus.PENDING),
        (_intent("requires_action"), GatewayStatus.PENDING),
    ],
)
def test_map_payment_intent(intent, expected):
    assert map_payment_intent(intent) == expected


def test_stripe_client_queries_payment_intent(monkeypatch):
    captured = {}

    def fake_retrieve(payment_ref, **kwargs):
        captured["ref"] = payment_ref
        captured["kwargs"] = kwargs
        return _intent("succeeded")

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", staticmethod(fake_retrieve))

    client = StripeGatewayClient(api_key="sk_test_123")
    assert client.query_status("pi_123", owner_ref="7") == GatewayStatus.PAID
    assert captured["ref"] == "pi_123"
    assert captured["kwargs"]["api_key"] == "sk_test_123"


def test_stripe_errors_become_gateway_unavailable(monkeypatch):
    def fake_retrieve(payment_ref, **kwargs):
        raise stripe.error.APIConnectionError("network down")

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", staticmethod(fake_retrieve))

    with pytest.raises(GatewayUnavailable):
        StripeGatewayClient(api_key="sk_test_123").query_status("pi_123")


def test_stub_client_defaults_to_pending():
    stub = StubGatewayClient()
    assert stub.query_status("pi_unknown") == GatewayStatus.PENDING
    stub.set_status("pi_unknown", GatewayStatus.PAID)
    assert stub.query_status("pi_unknown") == GatewayStatus.PAID
    stub.unavailable.add("pi_unknown")
    with pytest.raises(GatewayUnavailable):
        stub.query_status("pi_unknown")
    assert stub.calls == ["pi_unknown"] * 3


def test_gateway_client_selection(settings):
    settings.STRIPE_USE_STUB = True
    settings.STRIPE_SECRET_KEY = "sk_test_123"
    assert isinstance(get_gateway_client(), StubGatewayClient)

    settings.STRIPE_USE_STUB = False
    settings.STRIPE_SECRET_KEY = ""
    assert isinstance(get_gateway_client(), StubGatewayClient)

    settings.STRIPE_SECRET_KEY = "sk_test_123"
    client = get_gateway_client()
    assert isinstance(client, StripeGatewayClient)
    assert client.api_key == "sk_test_123"
