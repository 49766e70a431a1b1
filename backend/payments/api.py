import logging

import stripe
from django.conf import settings
from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from bookings.models import Booking
from payments.exceptions import ReconciliationError, RepairNotFound
from payments.models import Payment
from payments.permissions import HasSweepSecret
from payments.serializers import (
    ForcePackageRepairSerializer,
    MonitorStatusSerializer,
    PackageRepairSerializer,
    RejectedRepairSerializer,
    RepairResultSerializer,
    SweepReportSerializer,
)
from payments.services import repairs
from payments.services.reconciliation import reconcile
from payments.services.triggers import get_trigger_registry, run_backup_sweep, run_heartbeat_sweep

logger = logging.getLogger(__name__)

PAYMENT_INTENT_EVENTS = {
    "payment_intent.succeeded",
    "payment_intent.payment_failed",
    "payment_intent.canceled",
}


class OwnerMonitorView(APIView):
    """Start, inspect or stop the payment monitor for the signed-in owner."""

    permission_classes = [IsAuthenticated]

    def _payload(self, request, monitor):
        return MonitorStatusSerializer(
            {
                "owner_id": request.user.pk,
                "running": monitor is not None,
                "confirmed_bookings": monitor.confirmed_bookings if monitor else [],
            }
        ).data

    def get(self, request, *args, **kwargs):
        monitor = get_trigger_registry().owner_monitor(request.user.pk)
        return Response(self._payload(request, monitor))

    def post(self, request, *args, **kwargs):
        monitor = get_trigger_registry().start_owner_monitor(request.user.pk)
        return Response(self._payload(request, monitor), status=status.HTTP_202_ACCEPTED)

    def delete(self, request, *args, **kwargs):
        get_trigger_registry().stop_owner_monitor(request.user.pk)
        return Response(status=status.HTTP_204_NO_CONTENT)


class SweepView(APIView):
    """Run one reconciliation sweep; called by the external scheduler."""

    permission_classes = [HasSweepSecret]
    authentication_classes: list = []

    sweeps = {
        "backup": run_backup_sweep,
        "heartbeat": run_heartbeat_sweep,
    }

    def post(self, request, sweep, *args, **kwargs):
        runner = self.sweeps.get(sweep)
        if runner is None:
            return Response({"detail": f"Unknown sweep '{sweep}'."}, status=status.HTTP_404_NOT_FOUND)
        report = runner()
        return Response(SweepReportSerializer(report.as_dict()).data)


class RepairBaseView(APIView):
    """Operator escape hatches; results map to 200 / 404 / 500."""

    permission_classes = [IsAuthenticated, IsAdminUser]
    serializer_class = None

    def perform_repair(self, data):
        raise NotImplementedError

    def post(self, request, *args, **kwargs):
        serializer = self.serializer_class(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            result = self.perform_repair(serializer.validated_data)
        except RepairNotFound as exc:
            return Response(
                {"code": "NotFound", "detail": str(exc)},
                status=status.HTTP_404_NOT_FOUND,
            )
        except ReconciliationError as exc:
            logger.exception("Repair %s failed", type(self).__name__)
            return Response(
                {"code": "InternalError", "detail": str(exc)},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        logger.info("Repair %s by %s: %s", type(self).__name__, request.user, result.detail)
        return Response(RepairResultSerializer(result.as_dict()).data)


class RejectedPaymentRepairView(RepairBaseView):
    serializer_class = RejectedRepairSerializer

    def perform_repair(self, data):
        return repairs.fix_rejected(data["booking_id"])


class PackageRepairView(RepairBaseView):
    serializer_class = PackageRepairSerializer

    def perform_repair(self, data):
        return repairs.fix_package(data["package_token"])


class ForcePackageRepairView(RepairBaseView):
    serializer_class = ForcePackageRepairSerializer

    def perform_repair(self, data):
        if data.get("discover"):
            return repairs.force_fix_unsettled_packages()
        return repairs.force_fix_package(data["payment_ref"].strip())


def _booking_for_payment(payment: Payment):
    if payment.booking_id:
        return payment.booking_id
    return (
        Booking.objects.filter(owner_id=payment.owner_id, package_token=payment.package_token)
        .order_by("scheduled_at", "id")
        .values_list("id", flat=True)
        .first()
    )


class StripeWebhookView(APIView):
    """
    Receive Stripe PaymentIntent events.

    The event only tells us which payment to look at; ``reconcile`` asks
    Stripe for the authoritative status before anything is written.
    """

    permission_classes: list = []
    authentication_classes: list = []

    def post(self, request, *args, **kwargs):
        payload = request.body
        sig_header = request.META.get("HTTP_STRIPE_SIGNATURE")
        if not settings.STRIPE_WEBHOOK_SECRET:
            logger.error("Stripe webhook secret not configured.")
            return Response(status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        try:
            event = stripe.Webhook.construct_event(
                payload, sig_header, settings.STRIPE_WEBHOOK_SECRET
            )
        except ValueError:
            logger.warning("Invalid payload received on Stripe webhook.")
            return Response(status=status.HTTP_400_BAD_REQUEST)
        except stripe.error.SignatureVerificationError:
            logger.warning("Invalid Stripe signature.")
            return Response(status=status.HTTP_400_BAD_REQUEST)

        if event["type"] not in PAYMENT_INTENT_EVENTS:
            return Response(status=status.HTTP_200_OK)

        intent_id = event["data"]["object"].get("id")
        payment = Payment.objects.filter(gateway_reference=intent_id).first() if intent_id else None
        if payment is None:
            logger.info("Stripe event %s for unknown payment intent %s", event["type"], intent_id)
            return Response(status=status.HTTP_200_OK)

        booking_id = _booking_for_payment(payment)
        if booking_id is None:
            logger.warning("Payment %s has no booking to reconcile", payment.gateway_reference)
            return Response(status=status.HTTP_200_OK)

        try:
            outcome = reconcile(booking_id)
        except ReconciliationError as exc:
            # Acknowledge anyway; the sweeps retry this payment.
            logger.error("Webhook reconcile failed for booking %s: %s", booking_id, exc)
            return Response(status=status.HTTP_200_OK)
        logger.info("Stripe %s reconciled booking %s: %s", event["type"], booking_id, outcome.value)
        return Response({"outcome": outcome.value}, status=status.HTTP_200_OK)
