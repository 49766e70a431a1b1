from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Union

from django.db import transaction
from django.dispatch import Signal

from bookings.models import Booking
from payments.models import Payment

logger = logging.getLogger(__name__)

# Sent once per committed reconciliation write with ``change=<StatusChange>``.
status_changed = Signal()


@dataclass(frozen=True)
class BookingChanged:
    booking_id: int
    owner_id: int
    status: Booking.Status


@dataclass(frozen=True)
class PaymentChanged:
    payment_id: int
    booking_id: Optional[int]
    owner_id: int
    status: Payment.Status


StatusChange = Union[BookingChanged, PaymentChanged]


def booking_changed(booking_id: int, owner_id: int, status: str) -> BookingChanged:
    return BookingChanged(booking_id=booking_id, owner_id=owner_id, status=Booking.Status(status))


def payment_changed(payment: Payment, status: str) -> PaymentChanged:
    return PaymentChanged(
        payment_id=payment.pk,
        booking_id=payment.booking_id,
        owner_id=payment.owner_id,
        status=Payment.Status(status),
    )


class Subscription:
    def __init__(self, notifier: "ChangeNotifier", callback, booking_id=None, owner_id=None):
        self._notifier = notifier
        self.callback = callback
        self.booking_id = booking_id
        self.owner_id = owner_id

    def matches(self, change: StatusChange) -> bool:
        if self.booking_id is not None:
            return change.booking_id == self.booking_id
        return change.owner_id == self.owner_id

    def cancel(self) -> None:
        self._notifier.unsubscribe(self)


class ChangeNotifier:
    """
    In-process fan-out of committed booking/payment transitions.

    Subscribers register for a booking id or an owner id. Delivery is a
    latency hint only: a subscriber that never hears about a change keeps
    polling and still converges.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: list[Subscription] = []

    def subscribe(
        self,
        callback: Callable[[StatusChange], None],
        *,
        booking_id: Optional[int] = None,
        owner_id: Optional[int] = None,
    ) -> Subscription:
        if (booking_id is None) == (owner_id is None):
            raise ValueError("Subscribe to exactly one of booking_id or owner_id.")
        subscription = Subscription(self, callback, booking_id=booking_id, owner_id=owner_id)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def publish(self, change: StatusChange) -> None:
        with self._lock:
            targets = [sub for sub in self._subscriptions if sub.matches(change)]
        for subscription in targets:
            try:
                subscription.callback(change)
            except Exception:
                logger.exception("Change subscriber failed for %s", change)
        for receiver, error in status_changed.send_robust(sender=type(change), change=change):
            if isinstance(error, Exception):
                logger.error(
                    "status_changed receiver %r failed for %s", receiver, change, exc_info=error
                )

    def publish_on_commit(self, change: StatusChange) -> None:
        transaction.on_commit(lambda: self.publish(change))

    def __len__(self):
        with self._lock:
            return len(self._subscriptions)


def get_notifier() -> ChangeNotifier:
    from django.apps import apps

    return apps.get_app_config("payments").notifier
