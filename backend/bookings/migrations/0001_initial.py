from django.conf import settings
from django.db import migrations, models
import django.core.validators
import django.db.models.deletion


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Booking",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("client_ref", models.CharField(blank=True, max_length=120)),
                ("client_email", models.EmailField(blank=True, max_length=254)),
                ("scheduled_at", models.DateTimeField()),
                ("status", models.CharField(choices=[("SCHEDULED", "Scheduled"), ("PENDING", "Pending payment"), ("CONFIRMED", "Confirmed"), ("CANCELLED", "Cancelled")], default="SCHEDULED", max_length=12)),
                ("amount_due_cents", models.PositiveIntegerField(default=0)),
                ("amount_paid_cents", models.PositiveIntegerField(default=0, validators=[django.core.validators.MinValueValidator(0)])),
                ("notes", models.TextField(blank=True)),
                ("package_token", models.CharField(blank=True, db_index=True, max_length=64)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("owner", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="bookings", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["scheduled_at", "id"],
                "indexes": [models.Index(fields=["owner", "status", "created_at"], name="booking_owner_status_idx")],
            },
        ),
    ]
