import pytest
import stripe
from django.urls import reverse
from rest_framework.test import APIClient

from bookings.models import Booking
from payments.models import Payment
from payments.services import reconciliation
from payments.services.gateway import GatewayStatus, StubGatewayClient
from payments.services.notifier import BookingChanged, get_notifier
from payments.services.triggers import Scope, TriggerConfig


@pytest.fixture
def paid_gateway(monkeypatch):
    stub = StubGatewayClient()
    monkeypatch.setattr(reconciliation, "get_gateway_client", lambda: stub)
    return stub


@pytest.fixture
def staff_client(django_user_model):
    user = django_user_model.objects.create_user(
        username="ops@example.com",
        email="ops@example.com",
        password="password123",
        is_staff=True,
    )
    client = APIClient()
    client.force_authenticate(user)
    return client


@pytest.mark.django_db
def test_payment_check_confirms_paid_booking(make_booking, make_payment, paid_gateway):
    booking = make_booking()
    payment = make_payment(booking)
    paid_gateway.set_status(payment.gateway_reference, GatewayStatus.PAID)

    response = APIClient().post(reverse("booking-payment-check", args=[booking.pk]))

    assert response.status_code == 200
    assert response.data["outcome"] == "confirmed"
    assert response.data["booking"]["status"] == Booking.Status.CONFIRMED
    assert response.data["booking"]["amount_paid_cents"] == booking.amount_due_cents


@pytest.mark.django_db
def test_payment_check_degrades_to_unchanged(make_booking, make_payment, paid_gateway):
    booking = make_booking()
    payment = make_payment(booking)
    paid_gateway.unavailable.add(payment.gateway_reference)

    response = APIClient().post(reverse("booking-payment-check", args=[booking.pk]))

    assert response.status_code == 200
    assert response.data["outcome"] == "unchanged"
    assert response.data["booking"]["status"] == Booking.Status.PENDING


@pytest.mark.django_db
def test_payment_check_unknown_booking():
    response = APIClient().post(reverse("booking-payment-check", args=[999999]))
    assert response.status_code == 404


@pytest.mark.django_db
def test_watch_starts_and_stops_heartbeat(make_booking, trigger_registry, monkeypatch):
    monkeypatch.setattr(
        TriggerConfig,
        "booking_heartbeat",
        classmethod(lambda cls: cls(scope=Scope.BOOKING, interval=60)),
    )
    booking = make_booking()
    client = APIClient()

    response = client.post(reverse("booking-watch", args=[booking.pk]))
    assert response.status_code == 202
    assert [t.booking_id for t in trigger_registry.active()] == [booking.pk]

    response = client.delete(reverse("booking-watch", args=[booking.pk]))
    assert response.status_code == 204


@pytest.mark.django_db
def test_watch_on_confirmed_booking_is_a_no_op(make_booking, trigger_registry):
    booking = make_booking(status=Booking.Status.CONFIRMED)

    response = APIClient().post(reverse("booking-watch", args=[booking.pk]))

    assert response.status_code == 200
    assert response.data["status"] == Booking.Status.CONFIRMED
    assert trigger_registry.active() == []


@pytest.mark.django_db
def test_owner_monitor_lifecycle(owner, trigger_registry, monkeypatch):
    monkeypatch.setattr(
        TriggerConfig,
        "owner_monitor",
        classmethod(lambda cls: cls(scope=Scope.OWNER, interval=60)),
    )
    client = APIClient()
    client.force_authenticate(owner)
    url = reverse("payment-monitor")

    assert client.get(url).data["running"] is False
    response = client.post(url)
    assert response.status_code == 202
    assert response.data["running"] is True
    assert client.get(url).data["running"] is True
    assert client.delete(url).status_code == 204


@pytest.mark.django_db
def test_watch_limit_returns_429(make_booking, trigger_registry, monkeypatch, settings):
    monkeypatch.setattr(
        TriggerConfig,
        "booking_heartbeat",
        classmethod(lambda cls: cls(scope=Scope.BOOKING, interval=60)),
    )
    settings.PAYMENT_MAX_WATCHED_BOOKINGS = 1
    watched = make_booking()
    other = make_booking()
    client = APIClient()

    assert client.post(reverse("booking-watch", args=[watched.pk])).status_code == 202
    # Watching the same booking again only renews it.
    assert client.post(reverse("booking-watch", args=[watched.pk])).status_code == 202
    response = client.post(reverse("booking-watch", args=[other.pk]))

    assert response.status_code == 429
    assert [t.booking_id for t in trigger_registry.active()] == [watched.pk]


@pytest.mark.django_db
def test_owner_monitor_lists_confirmed_bookings(owner, trigger_registry, monkeypatch):
    monkeypatch.setattr(
        TriggerConfig,
        "owner_monitor",
        classmethod(lambda cls: cls(scope=Scope.OWNER, interval=60)),
    )
    client = APIClient()
    client.force_authenticate(owner)
    url = reverse("payment-monitor")

    response = client.post(url)
    assert response.data["confirmed_bookings"] == []

    get_notifier().publish(BookingChanged(booking_id=301, owner_id=owner.pk, status=Booking.Status.CONFIRMED))

    assert client.get(url).data["confirmed_bookings"] == [301]
    client.delete(url)
    assert client.get(url).data == {
        "owner_id": owner.pk,
        "running": False,
        "confirmed_bookings": [],
        "pending_bookings": 0,
    }


@pytest.mark.django_db
def test_owner_monitor_requires_login():
    assert APIClient().get(reverse("payment-monitor")).status_code == 401


@pytest.mark.django_db
def test_sweep_requires_secret(make_booking, make_payment):
    url = reverse("payment-sweep", args=["heartbeat"])
    client = APIClient()

    assert client.post(url).status_code == 403
    assert client.post(url, HTTP_X_SWEEP_SECRET="wrong").status_code == 403

    booking = make_booking()
    make_payment(booking)
    response = client.post(url, HTTP_X_SWEEP_SECRET="sweep-secret")
    assert response.status_code == 200
    assert response.data == {"processed": 1, "confirmed": 0, "failed": 0}


@pytest.mark.django_db
def test_unknown_sweep_is_404():
    url = reverse("payment-sweep", args=["nightly"])
    response = APIClient().post(url, HTTP_X_SWEEP_SECRET="sweep-secret")
    assert response.status_code == 404


@pytest.mark.django_db
def test_sweep_refused_without_configured_secret(settings):
    settings.RECONCILIATION_SWEEP_SECRET = ""
    url = reverse("payment-sweep", args=["backup"])
    assert APIClient().post(url, HTTP_X_SWEEP_SECRET="").status_code == 403


@pytest.mark.django_db
def test_repairs_require_staff(owner):
    client = APIClient()
    client.force_authenticate(owner)
    response = client.post(reverse("payment-repair-package"), {"package_token": "PMT1"}, format="json")
    assert response.status_code == 403


@pytest.mark.django_db
def test_package_repair_endpoint(staff_client, make_booking, make_payment):
    booking = make_booking(package_token="PMT321")
    make_payment(booking, package_token="PMT321", status=Payment.Status.APPROVED)

    response = staff_client.post(reverse("payment-repair-package"), {"package_token": " PMT321 "}, format="json")

    assert response.status_code == 200
    assert response.data["updated"] == 1
    booking.refresh_from_db()
    assert booking.status == Booking.Status.CONFIRMED


@pytest.mark.django_db
def test_repair_not_found_maps_to_404(staff_client):
    response = staff_client.post(reverse("payment-repair-rejected"), {"booking_id": 999999}, format="json")

    assert response.status_code == 404
    assert response.data["code"] == "NotFound"


@pytest.mark.django_db
def test_force_package_repair_validation_and_discover(staff_client, make_booking, make_payment):
    url = reverse("payment-repair-force-package")
    assert staff_client.post(url, {}, format="json").status_code == 400
    assert staff_client.post(url, {"discover": True}, format="json").status_code == 404

    booking = make_booking(package_token="PMT654")
    payment = make_payment(booking, package_token="PMT654", status=Payment.Status.APPROVED)
    response = staff_client.post(url, {"payment_ref": payment.gateway_reference}, format="json")
    assert response.status_code == 200
    assert response.data["updated"] == 1


@pytest.mark.django_db
def test_stripe_webhook_reconciles_payment(settings, monkeypatch, make_booking, make_payment, paid_gateway):
    settings.STRIPE_WEBHOOK_SECRET = "whsec_test"
    booking = make_booking()
    payment = make_payment(booking)
    paid_gateway.set_status(payment.gateway_reference, GatewayStatus.PAID)

    def fake_construct_event(payload, sig_header, secret):
        assert secret == "whsec_test"
        return {
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": payment.gateway_reference}},
        }

    monkeypatch.setattr(stripe.Webhook, "construct_event", staticmethod(fake_construct_event))

    response = APIClient().post(
        reverse("stripe-webhook"),
        data=b"{}",
        content_type="application/json",
        HTTP_STRIPE_SIGNATURE="t=1,v1=abc",
    )

    assert response.status_code == 200
    assert response.data == {"outcome": "confirmed"}
    booking.refresh_from_db()
    assert booking.status == Booking.Status.CONFIRMED


@pytest.mark.django_db
def test_stripe_webhook_rejects_bad_signature(settings, monkeypatch):
    settings.STRIPE_WEBHOOK_SECRET = "whsec_test"

    def fake_construct_event(payload, sig_header, secret):
        raise stripe.error.SignatureVerificationError("bad signature", sig_header)

    monkeypatch.setattr(stripe.Webhook, "construct_event", staticmethod(fake_construct_event))

    response = APIClient().post(
        reverse("stripe-webhook"),
        data=b"{}",
        content_type="application/json",
        HTTP_STRIPE_SIGNATURE="t=1,v1=abc",
    )
    assert response.status_code == 400


@pytest.mark.django_db
def test_stripe_webhook_ignores_unrelated_events(settings, monkeypatch):
    settings.STRIPE_WEBHOOK_SECRET = "whsec_test"
    monkeypatch.setattr(
        stripe.Webhook,
        "construct_event",
        staticmethod(lambda payload, sig_header, secret: {"type": "charge.refunded", "data": {"object": {}}}),
    )

    response = APIClient().post(reverse("stripe-webhook"), data=b"{}", content_type="application/json")
    assert response.status_code == 200


@pytest.mark.django_db
def test_stripe_webhook_without_secret_is_500(settings):
    settings.STRIPE_WEBHOOK_SECRET = ""
    response = APIClient().post(reverse("stripe-webhook"), data=b"{}", content_type="application/json")
    assert response.status_code == 500
