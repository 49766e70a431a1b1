from __future__ import annotations

import logging
from dataclasses import dataclass

from django.db import DatabaseError
from django.utils import timezone

from bookings.models import Booking
from payments.exceptions import BookingNotFound, PersistenceFailure, RepairNotFound
from payments.models import Payment
from payments.services.notifier import booking_changed, get_notifier
from payments.services.settlement import (
    SettlementResult,
    find_unsettled_packages,
    settle_package,
    settle_package_by_token,
)

logger = logging.getLogger(__name__)


@dataclass
class RepairResult:
    updated: int
    detail: str = ""

    def as_dict(self) -> dict:
        return {"updated": self.updated, "detail": self.detail}


def _from_settlement(result: SettlementResult) -> RepairResult:
    return RepairResult(
        updated=result.bookings_updated,
        detail=f"Package {result.package_token}: {result.bookings_updated} of {result.sibling_count} bookings confirmed.",
    )


def fix_rejected(booking_id: int, *, notifier=None) -> RepairResult:
    """Reopen a booking whose payment was rejected so checkout can start again."""

    booking = Booking.objects.filter(pk=booking_id).first()
    has_rejection = booking is not None and Payment.for_booking(booking).filter(
        status__in=[Payment.Status.REJECTED, Payment.Status.CANCELLED]
    ).exists()
    if not has_rejection:
        raise BookingNotFound(f"No booking {booking_id} with a rejected payment.")

    try:
        updated = Booking.objects.filter(pk=booking.pk, status=Booking.Status.SCHEDULED).update(
            status=Booking.Status.PENDING,
            updated_at=timezone.now(),
        )
    except DatabaseError as exc:
        raise PersistenceFailure(str(exc)) from exc
    if updated:
        (notifier or get_notifier()).publish_on_commit(
            booking_changed(booking.pk, booking.owner_id, Booking.Status.PENDING)
        )
        logger.info("Booking %s reopened after a rejected payment", booking.pk)
        return RepairResult(updated=updated, detail=f"Booking {booking.pk} reopened for checkout.")
    booking.refresh_from_db(fields=["status"])
    return RepairResult(updated=0, detail=f"Booking {booking.pk} already {booking.get_status_display().lower()}.")


def fix_package(package_token: str, *, notifier=None) -> RepairResult:
    try:
        result = settle_package_by_token(package_token, notifier=notifier)
    except DatabaseError as exc:
        raise PersistenceFailure(str(exc)) from exc
    return _from_settlement(result)


def force_fix_package(payment_ref: str, *, notifier=None) -> RepairResult:
    try:
        result = settle_package(payment_ref, notifier=notifier)
    except DatabaseError as exc:
        raise PersistenceFailure(str(exc)) from exc
    return _from_settlement(result)


def force_fix_unsettled_packages(*, notifier=None) -> RepairResult:
    """Settle every approved package payment that still has open bookings."""

    updated = 0
    settled = []
    for payment in find_unsettled_packages():
        try:
            result = force_fix_package(payment.gateway_reference, notifier=notifier)
        except RepairNotFound as exc:
            logger.warning("Skipping package payment %s: %s", payment.gateway_reference, exc)
            continue
        updated += result.updated
        settled.append(payment.package_token)
    if not settled:
        raise RepairNotFound("No unsettled package payments found.")
    return RepairResult(updated=updated, detail=f"Settled packages: {', '.join(settled)}.")
