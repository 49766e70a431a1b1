from django.contrib import admin

from .models import Payment


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("gateway_reference", "booking", "package_token", "owner", "amount_cents", "status", "created_at")
    list_filter = ("status", "currency")
    search_fields = ("gateway_reference", "package_token", "booking__client_email")
    readonly_fields = ("status", "created_at", "updated_at")
