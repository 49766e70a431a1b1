from django.contrib import admin, messages

from payments.exceptions import RepairNotFound
from payments.models import Payment
from payments.services import repairs

from .models import Booking


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    fields = ("gateway_reference", "amount_cents", "status", "created_at")
    readonly_fields = ("gateway_reference", "amount_cents", "status", "created_at")
    can_delete = False


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ("id", "owner", "scheduled_at", "status", "amount_due_cents", "amount_paid_cents", "package_token")
    list_filter = ("status",)
    search_fields = ("client_ref", "client_email", "package_token", "notes")
    readonly_fields = ("status", "amount_paid_cents", "created_at", "updated_at")
    inlines = [PaymentInline]
    actions = ["reopen_rejected", "settle_package"]

    @admin.action(description="Reopen bookings with a rejected payment")
    def reopen_rejected(self, request, queryset):
        for booking in queryset:
            try:
                result = repairs.fix_rejected(booking.pk)
            except RepairNotFound as exc:
                self.message_user(request, str(exc), level=messages.WARNING)
                continue
            self.message_user(request, result.detail)

    @admin.action(description="Re-run package settlement")
    def settle_package(self, request, queryset):
        tokens = {booking.package_token for booking in queryset if booking.package_token}
        for token in sorted(tokens):
            try:
                result = repairs.fix_package(token)
            except RepairNotFound as exc:
                self.message_user(request, str(exc), level=messages.WARNING)
                continue
            self.message_user(request, result.detail)
