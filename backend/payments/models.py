from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q
from django.utils import timezone


class Payment(models.Model):
    """One charge attempt for a booking, or for every booking of a package."""

    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        APPROVED = "APPROVED", "Approved"
        REJECTED = "REJECTED", "Rejected"
        CANCELLED = "CANCELLED", "Cancelled"

    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.CASCADE,
        related_name="payments",
        null=True,
        blank=True,
    )
    package_token = models.CharField(max_length=64, blank=True, db_index=True)
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="payments",
    )
    amount_cents = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    currency = models.CharField(max_length=10, default="brl")
    status = models.CharField(max_length=12, choices=Status.choices, default=Status.PENDING)
    gateway_reference = models.CharField(max_length=200, unique=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    expires_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="payment_status_created_idx"),
        ]

    def __str__(self):
        return f"Payment {self.gateway_reference} ({self.status})"

    @classmethod
    def for_booking(cls, booking):
        """Payments attached to the booking directly or through its package."""
        condition = Q(booking=booking)
        if booking.package_token:
            condition |= Q(package_token=booking.package_token, owner_id=booking.owner_id)
        return cls.objects.filter(condition)

    @staticmethod
    def unexpired(at=None) -> Q:
        """Filter for payments whose checkout window is still open at ``at``."""
        at = at or timezone.now()
        return Q(expires_at__isnull=True) | Q(expires_at__gt=at)
