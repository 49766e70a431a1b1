from __future__ import annotations

import enum
import logging
from typing import Optional, Protocol

import stripe
from django.conf import settings

from payments.exceptions import GatewayUnavailable

logger = logging.getLogger(__name__)


class GatewayStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class GatewayStatusClient(Protocol):
    def query_status(self, payment_ref: str, *, owner_ref: str | None = None) -> GatewayStatus:
        ...


class StubGatewayClient:
    """
    Gateway stand-in used in tests and local development.

    Every reference reports ``pending`` until a status is assigned with
    :meth:`set_status`. References listed in ``unavailable`` raise
    :class:`GatewayUnavailable` to mimic a network failure.
    """

    def __init__(self, statuses: Optional[dict[str, GatewayStatus]] = None):
        self.statuses: dict[str, GatewayStatus] = dict(statuses or {})
        self.unavailable: set[str] = set()
        self.calls: list[str] = []

    def set_status(self, payment_ref: str, status: GatewayStatus) -> None:
        self.statuses[payment_ref] = status

    def query_status(self, payment_ref: str, *, owner_ref: str | None = None) -> GatewayStatus:
        self.calls.append(payment_ref)
        if payment_ref in self.unavailable:
            raise GatewayUnavailable(f"Gateway unavailable for {payment_ref}.")
        return self.statuses.get(payment_ref, GatewayStatus.PENDING)


STRIPE_STATUS_MAP = {
    "succeeded": GatewayStatus.PAID,
    "canceled": GatewayStatus.CANCELLED,
}


class StripeGatewayClient:
    """Ask Stripe for the authoritative state of a PaymentIntent."""

    def __init__(self, api_key: str):
        self.api_key = api_key

    def query_status(self, payment_ref: str, *, owner_ref: str | None = None) -> GatewayStatus:
        try:
            intent = stripe.PaymentIntent.retrieve(payment_ref, api_key=self.api_key)
        except stripe.error.StripeError as exc:
            logger.warning("Stripe status query failed for %s: %s", payment_ref, exc)
            raise GatewayUnavailable(str(exc)) from exc
        return map_payment_intent(intent)


def map_payment_intent(intent) -> GatewayStatus:
    status = getattr(intent, "status", "") or ""
    if status in STRIPE_STATUS_MAP:
        return STRIPE_STATUS_MAP[status]
    # A failed attempt sends the intent back to requires_payment_method with the error attached.
    if status == "requires_payment_method" and getattr(intent, "last_payment_error", None):
        return GatewayStatus.REJECTED
    return GatewayStatus.PENDING


def _get_stripe_api_key() -> Optional[str]:
    key = getattr(settings, "STRIPE_SECRET_KEY", "")
    return key or None


def _should_use_stub() -> bool:
    if getattr(settings, "STRIPE_USE_STUB", False):
        return True
    return _get_stripe_api_key() is None


def get_gateway_client() -> GatewayStatusClient:
    """Return the Stripe client, or the stub when Stripe is not configured."""

    if _should_use_stub():
        return StubGatewayClient()
    return StripeGatewayClient(api_key=_get_stripe_api_key())
