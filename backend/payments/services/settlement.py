from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from django.db import models, transaction
from django.db.models import Exists, F, OuterRef
from django.db.models.functions import Least
from django.utils import timezone

from bookings.models import Booking
from bookings.services.packages import split_amount
from payments.exceptions import PackageNotFound, SettlementNotFound
from payments.models import Payment
from payments.services.notifier import booking_changed, get_notifier

logger = logging.getLogger(__name__)


@dataclass
class SettlementResult:
    payment_ref: str
    package_token: str
    bookings_updated: int
    sibling_count: int
    shares: dict[int, int] = field(default_factory=dict)


def package_siblings(payment: Payment):
    """Bookings that share the payment's package, oldest slot first."""
    return (
        Booking.objects.filter(owner_id=payment.owner_id, package_token=payment.package_token)
        .exclude(status=Booking.Status.CANCELLED)
        .order_by("scheduled_at", "id")
    )


def settle_package(payment_ref: str, *, notifier=None) -> SettlementResult:
    """
    Confirm every sibling booking of an approved package payment.

    Each sibling is confirmed with its own conditional update, so re-running
    after a partial failure only touches the bookings that are still open and
    never credits a confirmed booking twice.
    """

    payment = (
        Payment.objects.filter(gateway_reference=payment_ref, status=Payment.Status.APPROVED)
        .exclude(package_token="")
        .first()
    )
    if payment is None:
        raise SettlementNotFound(f"No approved package payment with reference {payment_ref}.")

    siblings = list(package_siblings(payment))
    if not siblings:
        raise PackageNotFound(f"No bookings found for package {payment.package_token}.")

    notifier = notifier or get_notifier()
    shares = split_amount(payment.amount_cents, len(siblings))
    result = SettlementResult(
        payment_ref=payment_ref,
        package_token=payment.package_token,
        bookings_updated=0,
        sibling_count=len(siblings),
    )
    for sibling, share in zip(siblings, shares):
        result.shares[sibling.pk] = share
        with transaction.atomic():
            updated = Booking.objects.filter(
                pk=sibling.pk,
                status__in=Booking.OPEN_STATUSES,
            ).update(
                status=Booking.Status.CONFIRMED,
                amount_paid_cents=Least(
                    F("amount_due_cents"), share, output_field=models.PositiveIntegerField()
                ),
                updated_at=timezone.now(),
            )
            if updated:
                notifier.publish_on_commit(
                    booking_changed(sibling.pk, sibling.owner_id, Booking.Status.CONFIRMED)
                )
        if updated:
            result.bookings_updated += 1
            if share > sibling.amount_due_cents:
                logger.warning(
                    "Package %s: share of %s cents exceeds booking %s due of %s cents; credit capped",
                    payment.package_token,
                    share,
                    sibling.pk,
                    sibling.amount_due_cents,
                )
            logger.info(
                "Package %s: booking %s confirmed with %s cents",
                payment.package_token,
                sibling.pk,
                share,
            )
    return result


def find_approved_package_payment(package_token: str) -> Optional[Payment]:
    return (
        Payment.objects.filter(package_token=package_token, status=Payment.Status.APPROVED)
        .order_by("-updated_at", "-id")
        .first()
    )


def settle_package_by_token(package_token: str, *, notifier=None) -> SettlementResult:
    token = (package_token or "").strip()
    payment = find_approved_package_payment(token) if token else None
    if payment is None:
        if token and not Booking.objects.filter(package_token=token).exists():
            raise PackageNotFound(f"No bookings found for package {token}.")
        raise SettlementNotFound(f"No approved payment found for package {token}.")
    return settle_package(payment.gateway_reference, notifier=notifier)


def find_unsettled_packages():
    """Approved package payments that still have open sibling bookings."""
    open_siblings = Booking.objects.filter(
        owner_id=OuterRef("owner_id"),
        package_token=OuterRef("package_token"),
        status__in=Booking.OPEN_STATUSES,
    )
    return (
        Payment.objects.filter(status=Payment.Status.APPROVED)
        .exclude(package_token="")
        .filter(Exists(open_siblings))
        .order_by("created_at", "id")
    )
