from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models

from bookings.services.packages import extract_package_token


class Booking(models.Model):
    """A scheduled service slot that may be paid for in advance."""

    class Status(models.TextChoices):
        SCHEDULED = "SCHEDULED", "Scheduled"
        PENDING = "PENDING", "Pending payment"
        CONFIRMED = "CONFIRMED", "Confirmed"
        CANCELLED = "CANCELLED", "Cancelled"

    # Statuses a payment confirmation may still move forward.
    OPEN_STATUSES = (Status.SCHEDULED, Status.PENDING)

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="bookings",
    )
    client_ref = models.CharField(max_length=120, blank=True)
    client_email = models.EmailField(blank=True)
    scheduled_at = models.DateTimeField()
    status = models.CharField(max_length=12, choices=Status.choices, default=Status.SCHEDULED)
    amount_due_cents = models.PositiveIntegerField(default=0)
    amount_paid_cents = models.PositiveIntegerField(default=0, validators=[MinValueValidator(0)])
    notes = models.TextField(blank=True)
    package_token = models.CharField(max_length=64, blank=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["scheduled_at", "id"]
        indexes = [
            models.Index(fields=["owner", "status", "created_at"], name="booking_owner_status_idx"),
        ]

    def __str__(self):
        return f"Booking {self.pk} at {self.scheduled_at:%Y-%m-%d %H:%M} ({self.status})"

    def save(self, *args, **kwargs):
        if not self.package_token:
            self.package_token = extract_package_token(self.notes)
            update_fields = kwargs.get("update_fields")
            if update_fields is not None and self.package_token:
                kwargs["update_fields"] = {*update_fields, "package_token"}
        super().save(*args, **kwargs)

    @property
    def is_open(self) -> bool:
        return self.status in self.OPEN_STATUSES

    @property
    def is_package(self) -> bool:
        return bool(self.package_token)
