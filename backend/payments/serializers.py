from rest_framework import serializers

from bookings.models import Booking


class RejectedRepairSerializer(serializers.Serializer):
    booking_id = serializers.IntegerField(min_value=1)


class PackageRepairSerializer(serializers.Serializer):
    package_token = serializers.CharField(max_length=64)

    def validate_package_token(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Package token is required.")
        return value


class ForcePackageRepairSerializer(serializers.Serializer):
    payment_ref = serializers.CharField(max_length=200, required=False, allow_blank=True)
    discover = serializers.BooleanField(required=False, default=False)

    def validate(self, attrs):
        if not attrs.get("discover") and not attrs.get("payment_ref", "").strip():
            raise serializers.ValidationError("Provide payment_ref or set discover.")
        return attrs


class RepairResultSerializer(serializers.Serializer):
    updated = serializers.IntegerField()
    detail = serializers.CharField(allow_blank=True)


class SweepReportSerializer(serializers.Serializer):
    processed = serializers.IntegerField()
    confirmed = serializers.IntegerField()
    failed = serializers.IntegerField()


class MonitorStatusSerializer(serializers.Serializer):
    owner_id = serializers.IntegerField()
    running = serializers.BooleanField()
    confirmed_bookings = serializers.ListField(child=serializers.IntegerField())
    pending_bookings = serializers.SerializerMethodField()

    def get_pending_bookings(self, obj):
        return Booking.objects.filter(
            owner_id=obj["owner_id"],
            status__in=Booking.OPEN_STATUSES,
        ).count()
