from datetime import timedelta

import pytest
from django.utils import timezone

from bookings.models import Booking
from payments.models import Payment
from payments.services.gateway import StubGatewayClient
from payments.services.notifier import ChangeNotifier


@pytest.fixture
def owner(django_user_model):
    return django_user_model.objects.create_user(
        username="clinic@example.com",
        email="clinic@example.com",
        password="password123",
    )


@pytest.fixture
def make_booking(owner):
    def factory(**overrides):
        data = {
            "owner": owner,
            "client_ref": "Ana Souza",
            "client_email": "ana@example.com",
            "scheduled_at": timezone.now() + timedelta(days=2),
            "status": Booking.Status.PENDING,
            "amount_due_cents": 15000,
        }
        data.update(overrides)
        return Booking.objects.create(**data)

    return factory


@pytest.fixture
def make_payment(owner):
    counter = {"value": 0}

    def factory(booking=None, **overrides):
        counter["value"] += 1
        data = {
            "booking": booking,
            "owner": owner,
            "amount_cents": booking.amount_due_cents if booking else 10000,
            "gateway_reference": f"pi_test_{counter['value']}",
        }
        data.update(overrides)
        return Payment.objects.create(**data)

    return factory


@pytest.fixture
def gateway():
    return StubGatewayClient()


@pytest.fixture
def notifier():
    return ChangeNotifier()


@pytest.fixture
def trigger_registry():
    from payments.services.triggers import get_trigger_registry

    registry = get_trigger_registry()
    yield registry
    registry.stop_all()
