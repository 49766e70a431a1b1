import logging

from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from bookings.models import Booking
from bookings.serializers import BookingStatusSerializer, PaymentCheckSerializer
from payments.exceptions import ReconciliationError, WatchLimitReached
from payments.services.reconciliation import Outcome, reconcile
from payments.services.triggers import get_trigger_registry

logger = logging.getLogger(__name__)


class PaymentCheckView(APIView):
    """
    Manual "check my payment" for a booking being viewed by its client.

    The gateway is the only source of truth, so anyone holding the booking id
    may ask; failures degrade to the current status rather than an error.
    """

    permission_classes: list = []

    def post(self, request, booking_id, *args, **kwargs):
        booking = get_object_or_404(Booking, pk=booking_id)
        try:
            outcome = reconcile(booking.pk)
        except ReconciliationError as exc:
            logger.warning("Manual payment check failed for booking %s: %s", booking.pk, exc)
            outcome = Outcome.UNCHANGED
        booking.refresh_from_db()
        serializer = PaymentCheckSerializer({"outcome": outcome.value, "booking": booking})
        return Response(serializer.data)


class BookingWatchView(APIView):
    """Start or stop the payment heartbeat for a booking a client is watching."""

    permission_classes: list = []

    def post(self, request, booking_id, *args, **kwargs):
        booking = get_object_or_404(Booking, pk=booking_id)
        if not booking.is_open:
            return Response(BookingStatusSerializer(booking).data, status=status.HTTP_200_OK)
        try:
            get_trigger_registry().watch_booking(booking.pk)
        except WatchLimitReached as exc:
            logger.warning("Not watching booking %s: %s", booking.pk, exc)
            return Response({"detail": str(exc)}, status=status.HTTP_429_TOO_MANY_REQUESTS)
        return Response(BookingStatusSerializer(booking).data, status=status.HTTP_202_ACCEPTED)

    def delete(self, request, booking_id, *args, **kwargs):
        get_trigger_registry().unwatch_booking(booking_id)
        return Response(status=status.HTTP_204_NO_CONTENT)
