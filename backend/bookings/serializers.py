from rest_framework import serializers

from bookings.models import Booking


class BookingStatusSerializer(serializers.ModelSerializer):
    is_package = serializers.BooleanField(read_only=True)

    class Meta:
        model = Booking
        fields = [
            "id",
            "status",
            "scheduled_at",
            "amount_due_cents",
            "amount_paid_cents",
            "package_token",
            "is_package",
            "updated_at",
        ]
        read_only_fields = fields


class PaymentCheckSerializer(serializers.Serializer):
    outcome = serializers.CharField()
    booking = BookingStatusSerializer()
