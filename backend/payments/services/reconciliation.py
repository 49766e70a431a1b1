"""
Converge a booking and its pending payment to the gateway's answer.

``reconcile`` is safe to call from any number of triggers at once. Every
state change is a conditional ``UPDATE ... WHERE status IN (...)`` so only one
caller can move a row forward; the others see zero matched rows and report
``ALREADY_TERMINAL`` instead of crediting the booking twice.
"""

from __future__ import annotations

import enum
import logging
from typing import Optional

from django.db import DatabaseError, models, transaction
from django.db.models import F
from django.db.models.functions import Least
from django.utils import timezone

from bookings.models import Booking
from payments.exceptions import ConflictIgnored, GatewayUnavailable, PersistenceFailure, RepairNotFound
from payments.models import Payment
from payments.services.gateway import GatewayStatus, GatewayStatusClient, get_gateway_client
from payments.services.notifier import ChangeNotifier, booking_changed, get_notifier, payment_changed
from payments.services.settlement import settle_package

logger = logging.getLogger(__name__)


class Outcome(str, enum.Enum):
    UNCHANGED = "unchanged"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    ALREADY_TERMINAL = "already-terminal"


REJECTION_STATUSES = {
    GatewayStatus.REJECTED: Payment.Status.REJECTED,
    GatewayStatus.CANCELLED: Payment.Status.CANCELLED,
}


def find_pending_payment(booking: Booking) -> Optional[Payment]:
    """Latest pending payment for the booking whose checkout has not expired."""
    return (
        Payment.for_booking(booking)
        .filter(Payment.unexpired(), status=Payment.Status.PENDING)
        .order_by("-created_at", "-id")
        .first()
    )


def reconcile(
    booking_id: int,
    *,
    gateway: Optional[GatewayStatusClient] = None,
    notifier: Optional[ChangeNotifier] = None,
) -> Outcome:
    """
    Apply at most one gateway-confirmed transition to the booking.

    Gateway failures come back as ``UNCHANGED``. Database failures raise
    :class:`PersistenceFailure` so the calling trigger can log and retry.
    """

    booking = Booking.objects.filter(pk=booking_id).first()
    if booking is None:
        logger.warning("Reconcile requested for unknown booking %s", booking_id)
        return Outcome.UNCHANGED
    if not booking.is_open:
        return Outcome.ALREADY_TERMINAL

    payment = find_pending_payment(booking)
    if payment is None:
        return Outcome.UNCHANGED

    gateway = gateway or get_gateway_client()
    try:
        gateway_status = gateway.query_status(payment.gateway_reference, owner_ref=str(booking.owner_id))
    except GatewayUnavailable as exc:
        logger.warning(
            "Gateway unavailable while reconciling booking %s (payment %s): %s",
            booking.pk,
            payment.gateway_reference,
            exc,
        )
        return Outcome.UNCHANGED

    if gateway_status == GatewayStatus.PENDING:
        return Outcome.UNCHANGED

    notifier = notifier or get_notifier()
    try:
        if gateway_status == GatewayStatus.PAID:
            return _confirm(booking, payment, gateway=gateway, notifier=notifier)
        return _reject(booking, payment, REJECTION_STATUSES[gateway_status], notifier=notifier)
    except DatabaseError as exc:
        logger.exception("Persistence failure while reconciling booking %s", booking.pk)
        raise PersistenceFailure(str(exc)) from exc


def _confirm(booking: Booking, payment: Payment, *, gateway, notifier: ChangeNotifier) -> Outcome:
    now = timezone.now()
    try:
        with transaction.atomic():
            claimed = Payment.objects.filter(pk=payment.pk, status=Payment.Status.PENDING).update(
                status=Payment.Status.APPROVED,
                updated_at=now,
            )
            if not claimed:
                raise ConflictIgnored(f"Payment {payment.pk} was already settled.")
            notifier.publish_on_commit(payment_changed(payment, Payment.Status.APPROVED))

            if not payment.package_token:
                # The credit never exceeds what the booking costs.
                confirmed = Booking.objects.filter(
                    pk=booking.pk,
                    status__in=Booking.OPEN_STATUSES,
                ).update(
                    status=Booking.Status.CONFIRMED,
                    amount_paid_cents=Least(
                        F("amount_due_cents"),
                        F("amount_paid_cents") + payment.amount_cents,
                        output_field=models.PositiveIntegerField(),
                    ),
                    updated_at=now,
                )
                if not confirmed:
                    raise ConflictIgnored(f"Booking {booking.pk} left the open states.")
                notifier.publish_on_commit(
                    booking_changed(booking.pk, booking.owner_id, Booking.Status.CONFIRMED)
                )
    except ConflictIgnored as exc:
        logger.info("Reconcile of booking %s lost the race: %s", booking.pk, exc)
        return Outcome.ALREADY_TERMINAL

    if payment.package_token:
        # The approved payment is committed; settlement confirms each sibling on its own and
        # can be replayed from the repair entry points if it stops halfway.
        try:
            result = settle_package(payment.gateway_reference, notifier=notifier)
        except RepairNotFound as exc:
            logger.error(
                "Payment %s approved but package %s could not be settled: %s",
                payment.gateway_reference,
                payment.package_token,
                exc,
            )
            return Outcome.UNCHANGED
        logger.info(
            "Package %s settled from booking %s: %s bookings confirmed",
            payment.package_token,
            booking.pk,
            result.bookings_updated,
        )
    else:
        logger.info(
            "Booking %s confirmed by payment %s (%s cents)",
            booking.pk,
            payment.gateway_reference,
            payment.amount_cents,
        )
        excess = booking.amount_paid_cents + payment.amount_cents - booking.amount_due_cents
        if excess > 0:
            logger.warning(
                "Payment %s exceeds the amount due on booking %s by %s cents; credit capped",
                payment.gateway_reference,
                booking.pk,
                excess,
            )
    return Outcome.CONFIRMED


def _reject(booking: Booking, payment: Payment, payment_status: str, *, notifier: ChangeNotifier) -> Outcome:
    now = timezone.now()
    try:
        with transaction.atomic():
            closed = Payment.objects.filter(pk=payment.pk, status=Payment.Status.PENDING).update(
                status=payment_status,
                updated_at=now,
            )
            if not closed:
                raise ConflictIgnored(f"Payment {payment.pk} was already settled.")
            notifier.publish_on_commit(payment_changed(payment, payment_status))

            # The booking stays bookable so the client can start a new checkout.
            reopened = Booking.objects.filter(
                pk=booking.pk,
                status__in=Booking.OPEN_STATUSES,
            ).update(status=Booking.Status.PENDING, updated_at=now)
            if not reopened:
                raise ConflictIgnored(f"Booking {booking.pk} left the open states.")
            notifier.publish_on_commit(
                booking_changed(booking.pk, booking.owner_id, Booking.Status.PENDING)
            )
    except ConflictIgnored as exc:
        logger.info("Reconcile of booking %s lost the race: %s", booking.pk, exc)
        return Outcome.ALREADY_TERMINAL

    logger.info(
        "Payment %s for booking %s marked %s; booking reopened for checkout",
        payment.gateway_reference,
        booking.pk,
        payment_status,
    )
    return Outcome.REJECTED
