"""
Redundant schedulers that call ``reconcile``.

None of them owns correctness. A per-booking heartbeat and an owner monitor
run while someone is looking; two system sweeps run from an external
scheduler and are the backstop when nobody is. All four are the same
``ReconciliationTrigger`` with a different ``TriggerConfig``.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Callable, Optional

from django.conf import settings
from django.db import close_old_connections, connection, models
from django.db.models import Exists, OuterRef, Q, Subquery
from django.db.models.functions import Coalesce
from django.utils import timezone

from bookings.models import Booking
from payments.exceptions import ReconciliationError, WatchLimitReached
from payments.models import Payment
from payments.services.gateway import GatewayStatusClient
from payments.services.notifier import BookingChanged, ChangeNotifier, StatusChange
from payments.services.reconciliation import Outcome, reconcile

logger = logging.getLogger(__name__)

# Outcomes after which there is nothing left to poll for on a single booking.
TERMINAL_OUTCOMES = {Outcome.CONFIRMED, Outcome.ALREADY_TERMINAL}


class Scope(str, enum.Enum):
    BOOKING = "booking"
    OWNER = "owner"
    SYSTEM_PAYMENTS = "system-payments"
    SYSTEM_BOOKINGS = "system-bookings"


@dataclass(frozen=True)
class TriggerConfig:
    scope: Scope
    interval: float = 0.0
    min_spacing: float = 0.0
    batch_size: Optional[int] = None
    pause: float = 0.0
    window: timedelta = timedelta(hours=24)
    grace: timedelta = timedelta(0)
    run_immediately: bool = False
    # Seconds a background trigger keeps running without being renewed.
    lease: Optional[float] = None

    @classmethod
    def booking_heartbeat(cls) -> "TriggerConfig":
        return cls(
            scope=Scope.BOOKING,
            interval=settings.PAYMENT_HEARTBEAT_INTERVAL,
            min_spacing=settings.PAYMENT_HEARTBEAT_MIN_SPACING,
            lease=settings.PAYMENT_HEARTBEAT_LEASE,
        )

    @classmethod
    def owner_monitor(cls) -> "TriggerConfig":
        return cls(
            scope=Scope.OWNER,
            interval=settings.PAYMENT_OWNER_MONITOR_INTERVAL,
            window=timedelta(hours=settings.PAYMENT_RECENT_WINDOW_HOURS),
            run_immediately=True,
            lease=settings.PAYMENT_RECENT_WINDOW_HOURS * 3600.0,
        )

    @classmethod
    def backup_sweep(cls) -> "TriggerConfig":
        return cls(
            scope=Scope.SYSTEM_PAYMENTS,
            batch_size=settings.PAYMENT_BACKUP_BATCH_SIZE,
            pause=settings.PAYMENT_BACKUP_PAUSE,
            window=timedelta(hours=settings.PAYMENT_RECENT_WINDOW_HOURS),
            grace=timedelta(minutes=settings.PAYMENT_BACKUP_GRACE_MINUTES),
        )

    @classmethod
    def heartbeat_sweep(cls) -> "TriggerConfig":
        return cls(
            scope=Scope.SYSTEM_BOOKINGS,
            batch_size=settings.PAYMENT_HEARTBEAT_BATCH_SIZE,
            pause=settings.PAYMENT_HEARTBEAT_PAUSE,
            window=timedelta(hours=settings.PAYMENT_RECENT_WINDOW_HOURS),
        )


@dataclass
class SweepReport:
    processed: int = 0
    confirmed: int = 0
    failed: int = 0

    def as_dict(self) -> dict:
        return {"processed": self.processed, "confirmed": self.confirmed, "failed": self.failed}


def _live_pending_payments(now):
    return Payment.objects.filter(Payment.unexpired(now), status=Payment.Status.PENDING)


def _open_bookings_with_pending_payment(since, now):
    """
    Open bookings created since ``since`` that have a live pending payment,
    attached directly or through a package payment with no booking of its own.
    """
    pending = _live_pending_payments(now)
    direct = pending.filter(booking_id=OuterRef("pk"))
    via_package = pending.filter(
        booking__isnull=True,
        owner_id=OuterRef("owner_id"),
        package_token=OuterRef("package_token"),
    ).exclude(package_token="")
    return (
        Booking.objects.filter(status__in=Booking.OPEN_STATUSES, created_at__gte=since)
        .filter(Exists(direct) | Exists(via_package))
        .order_by("created_at", "id")
    )


def _pending_payment_targets(since, until, now):
    """Booking ids to reconcile for pending payments created between ``since`` and ``until``."""
    first_open_sibling = (
        Booking.objects.filter(
            owner_id=OuterRef("owner_id"),
            package_token=OuterRef("package_token"),
            status__in=Booking.OPEN_STATUSES,
        )
        .order_by("scheduled_at", "id")
        .values("id")[:1]
    )
    return (
        _live_pending_payments(now)
        .filter(created_at__gte=since, created_at__lte=until)
        .filter(
            Q(booking__status__in=Booking.OPEN_STATUSES)
            | (Q(booking__isnull=True) & ~Q(package_token=""))
        )
        .annotate(
            target_booking=Coalesce(
                "booking_id",
                Subquery(first_open_sibling),
                output_field=models.BigIntegerField(),
            )
        )
        .filter(target_booking__isnull=False)
        .order_by("created_at", "id")
        .values_list("target_booking", flat=True)
    )


class ReconciliationTrigger:
    """
    One reconciliation scheduler.

    ``run_once`` performs a single pass over the trigger's targets.
    ``start`` runs passes every ``interval`` seconds on a daemon thread until
    ``stop`` is called, the watched booking reaches a terminal outcome, a
    change notification reports it confirmed or cancelled, or the lease runs
    out without a ``renew``.
    """

    def __init__(
        self,
        config: TriggerConfig,
        *,
        booking_id: Optional[int] = None,
        owner_id: Optional[int] = None,
        gateway: Optional[GatewayStatusClient] = None,
        notifier: Optional[ChangeNotifier] = None,
        on_confirmed: Optional[Callable[[int], None]] = None,
    ):
        if config.scope == Scope.BOOKING and booking_id is None:
            raise ValueError("A booking heartbeat needs a booking_id.")
        if config.scope == Scope.OWNER and owner_id is None:
            raise ValueError("An owner monitor needs an owner_id.")
        self.config = config
        self.booking_id = booking_id
        self.owner_id = owner_id
        self.gateway = gateway
        self.notifier = notifier
        self.on_confirmed = on_confirmed
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._subscription = None
        self._last_check: Optional[float] = None
        self._lease_until: Optional[float] = None
        self._reported: list[int] = []
        self._reported_lock = threading.Lock()

    def __repr__(self):
        target = self.booking_id if self.config.scope == Scope.BOOKING else self.owner_id
        if target is None:
            return f"<ReconciliationTrigger {self.config.scope.value}>"
        return f"<ReconciliationTrigger {self.config.scope.value} {target}>"

    # Targets ---------------------------------------------------------------

    def targets(self) -> list[int]:
        now = timezone.now()
        since = now - self.config.window
        scope = self.config.scope
        if scope == Scope.BOOKING:
            return [self.booking_id]
        if scope == Scope.SYSTEM_PAYMENTS:
            ids = _pending_payment_targets(since, now - self.config.grace, now)
            if self.config.batch_size:
                ids = ids[: self.config.batch_size]
            # Several pending attempts may point at one booking; one reconcile covers them.
            return list(dict.fromkeys(ids))

        queryset = _open_bookings_with_pending_payment(since, now)
        if scope == Scope.OWNER:
            queryset = queryset.filter(owner_id=self.owner_id)
        rows = queryset.values_list("id", "owner_id", "package_token")
        if self.config.batch_size:
            rows = rows[: self.config.batch_size]
        targets = []
        seen_packages = set()
        for booking_id, owner_id, package_token in rows:
            # Reconciling one sibling settles the whole package.
            if package_token:
                if (owner_id, package_token) in seen_packages:
                    continue
                seen_packages.add((owner_id, package_token))
            targets.append(booking_id)
        return targets

    # Single pass -------------------------------------------------------------

    def run_once(self) -> SweepReport:
        report = SweepReport()
        if self.config.min_spacing and self._last_check is not None:
            if time.monotonic() - self._last_check < self.config.min_spacing:
                return report
        self._last_check = time.monotonic()

        targets = self.targets()
        for index, booking_id in enumerate(targets):
            if self._stop.is_set():
                break
            if index and self.config.pause:
                # Paces gateway calls within a batch; returns early when stopped.
                if self._stop.wait(self.config.pause):
                    break
            report.processed += 1
            try:
                outcome = reconcile(booking_id, gateway=self.gateway, notifier=self.notifier)
            except ReconciliationError as exc:
                report.failed += 1
                logger.error("%r failed to reconcile booking %s: %s", self, booking_id, exc)
                continue
            if outcome == Outcome.CONFIRMED:
                report.confirmed += 1
                self._report_confirmed(booking_id)
            if self.config.scope == Scope.BOOKING and outcome in TERMINAL_OUTCOMES:
                logger.info("%r reached %s; stopping", self, outcome.value)
                self._stop.set()

        if targets:
            logger.info(
                "%r pass finished: %s processed, %s confirmed, %s failed",
                self,
                report.processed,
                report.confirmed,
                report.failed,
            )
        return report

    # Lifecycle -----------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    @property
    def lease_expired(self) -> bool:
        return self._lease_until is not None and time.monotonic() >= self._lease_until

    @property
    def confirmed_bookings(self) -> list[int]:
        """Bookings this trigger saw confirmed, oldest first."""
        with self._reported_lock:
            return list(self._reported)

    def renew(self) -> None:
        if self.config.lease:
            self._lease_until = time.monotonic() + self.config.lease

    def start(self) -> "ReconciliationTrigger":
        if self.config.interval <= 0:
            raise ValueError("Only triggers with a positive interval can run in the background.")
        if self.is_running:
            return self
        self._stop.clear()
        self.renew()
        if self.notifier is not None:
            if self.config.scope == Scope.BOOKING:
                self._subscription = self.notifier.subscribe(self._on_change, booking_id=self.booking_id)
            elif self.config.scope == Scope.OWNER:
                self._subscription = self.notifier.subscribe(self._on_change, owner_id=self.owner_id)
        self._thread = threading.Thread(target=self._run, name=repr(self), daemon=True)
        self._thread.start()
        return self

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _on_change(self, change: StatusChange) -> None:
        if isinstance(change, BookingChanged):
            confirmed = change.status == Booking.Status.CONFIRMED
            finished = confirmed or change.status == Booking.Status.CANCELLED
        else:
            confirmed = False
            finished = change.status == Payment.Status.APPROVED

        if self.config.scope == Scope.OWNER:
            if confirmed:
                self._report_confirmed(change.booking_id)
            return
        if finished:
            logger.info("%r notified of %s; stopping", self, change)
            self._stop.set()

    def _report_confirmed(self, booking_id: int) -> None:
        with self._reported_lock:
            if booking_id in self._reported:
                return
            self._reported.append(booking_id)
        if self.on_confirmed:
            self.on_confirmed(booking_id)

    def _wait(self) -> bool:
        timeout = self.config.interval
        if self._lease_until is not None:
            timeout = max(0.0, min(timeout, self._lease_until - time.monotonic()))
        return self._stop.wait(timeout)

    def _run(self) -> None:
        logger.info("%r started (every %ss)", self, self.config.interval)
        try:
            if not self.config.run_immediately:
                self._wait()
            while not self._stop.is_set():
                if self.lease_expired:
                    logger.info("%r lease expired; stopping", self)
                    self._stop.set()
                    break
                close_old_connections()
                try:
                    self.run_once()
                except Exception:
                    # A broken pass must not kill the loop; the next tick retries.
                    logger.exception("%r pass crashed", self)
                if self._wait():
                    break
        finally:
            if self._subscription is not None:
                self._subscription.cancel()
                self._subscription = None
            connection.close()
            logger.info("%r stopped", self)


def run_backup_sweep(*, gateway=None, notifier=None, **overrides) -> SweepReport:
    config = replace(TriggerConfig.backup_sweep(), **overrides)
    return ReconciliationTrigger(config, gateway=gateway, notifier=notifier).run_once()


def run_heartbeat_sweep(*, gateway=None, notifier=None, **overrides) -> SweepReport:
    config = replace(TriggerConfig.heartbeat_sweep(), **overrides)
    return ReconciliationTrigger(config, gateway=gateway, notifier=notifier).run_once()


def _log_owner_confirmation(owner_id: int):
    def report(booking_id: int) -> None:
        logger.info("Owner %s: booking %s confirmed", owner_id, booking_id)

    return report


class TriggerRegistry:
    """
    Long-lived triggers keyed by what they watch.

    Starting a trigger for a target that already has a live one renews and
    returns the existing handle, so repeated "start watching" calls never
    stack pollers. Handles of triggers that stopped on their own are dropped
    on the next start or listing.
    """

    def __init__(self, notifier: Optional[ChangeNotifier] = None, max_watchers: Optional[int] = None):
        self.notifier = notifier
        self.max_watchers = max_watchers
        self._lock = threading.Lock()
        self._handles: dict[tuple[Scope, int], ReconciliationTrigger] = {}

    def __len__(self):
        with self._lock:
            self._prune()
            return len(self._handles)

    def _prune(self) -> None:
        for key, trigger in list(self._handles.items()):
            if trigger.stopped or not trigger.is_running:
                del self._handles[key]

    def _watch_limit(self) -> int:
        if self.max_watchers is not None:
            return self.max_watchers
        return settings.PAYMENT_MAX_WATCHED_BOOKINGS

    def _start(self, key, factory) -> ReconciliationTrigger:
        with self._lock:
            self._prune()
            existing = self._handles.get(key)
            if existing is not None:
                existing.renew()
                return existing
            scope = key[0]
            if scope == Scope.BOOKING:
                watching = sum(1 for handle_scope, _ in self._handles if handle_scope == Scope.BOOKING)
                if watching >= self._watch_limit():
                    raise WatchLimitReached(f"Already watching {watching} bookings.")
            trigger = factory()
            self._handles[key] = trigger
        return trigger.start()

    def _stop(self, key) -> bool:
        with self._lock:
            trigger = self._handles.pop(key, None)
        if trigger is None:
            return False
        trigger.stop(timeout=0)
        return True

    def watch_booking(self, booking_id: int, *, gateway=None, config=None) -> ReconciliationTrigger:
        return self._start(
            (Scope.BOOKING, booking_id),
            lambda: ReconciliationTrigger(
                config or TriggerConfig.booking_heartbeat(),
                booking_id=booking_id,
                gateway=gateway,
                notifier=self.notifier,
            ),
        )

    def unwatch_booking(self, booking_id: int) -> bool:
        return self._stop((Scope.BOOKING, booking_id))

    def start_owner_monitor(
        self, owner_id: int, *, gateway=None, config=None, on_confirmed=None
    ) -> ReconciliationTrigger:
        return self._start(
            (Scope.OWNER, owner_id),
            lambda: ReconciliationTrigger(
                config or TriggerConfig.owner_monitor(),
                owner_id=owner_id,
                gateway=gateway,
                notifier=self.notifier,
                on_confirmed=on_confirmed or _log_owner_confirmation(owner_id),
            ),
        )

    def stop_owner_monitor(self, owner_id: int) -> bool:
        return self._stop((Scope.OWNER, owner_id))

    def owner_monitor(self, owner_id: int) -> Optional[ReconciliationTrigger]:
        with self._lock:
            self._prune()
            return self._handles.get((Scope.OWNER, owner_id))

    def active(self) -> list[ReconciliationTrigger]:
        with self._lock:
            self._prune()
            return list(self._handles.values())

    def stop_all(self) -> None:
        with self._lock:
            keys = list(self._handles)
        for key in keys:
            self._stop(key)


def get_trigger_registry() -> TriggerRegistry:
    from django.apps import apps

    return apps.get_app_config("payments").triggers
