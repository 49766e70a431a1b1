from django.contrib import admin
from django.urls import path
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from bookings.api import BookingWatchView, PaymentCheckView
from payments.api import (
    ForcePackageRepairView,
    OwnerMonitorView,
    PackageRepairView,
    RejectedPaymentRepairView,
    StripeWebhookView,
    SweepView,
)

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/auth/token/", TokenObtainPairView.as_view(), name="auth-token"),
    path("api/auth/refresh/", TokenRefreshView.as_view(), name="auth-refresh"),
    path(
        "api/bookings/<int:booking_id>/payment-check/",
        PaymentCheckView.as_view(),
        name="booking-payment-check",
    ),
    path(
        "api/bookings/<int:booking_id>/watch/",
        BookingWatchView.as_view(),
        name="booking-watch",
    ),
    path("api/payments/monitor/", OwnerMonitorView.as_view(), name="payment-monitor"),
    path(
        "api/payments/sweeps/<str:sweep>/",
        SweepView.as_view(),
        name="payment-sweep",
    ),
    path(
        "api/payments/repairs/rejected/",
        RejectedPaymentRepairView.as_view(),
        name="payment-repair-rejected",
    ),
    path(
        "api/payments/repairs/package/",
        PackageRepairView.as_view(),
        name="payment-repair-package",
    ),
    path(
        "api/payments/repairs/force-package/",
        ForcePackageRepairView.as_view(),
        name="payment-repair-force-package",
    ),
    path("api/webhooks/stripe/", StripeWebhookView.as_view(), name="stripe-webhook"),
]
