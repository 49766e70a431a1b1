import hmac

from django.conf import settings
from rest_framework.permissions import BasePermission


class HasSweepSecret(BasePermission):
    """
    Allow sweep runs from the external scheduler.

    The scheduler sends ``X-Sweep-Secret`` matching ``RECONCILIATION_SWEEP_SECRET``.
    With no secret configured every request is refused.
    """

    header = "HTTP_X_SWEEP_SECRET"

    def has_permission(self, request, view):
        expected = getattr(settings, "RECONCILIATION_SWEEP_SECRET", "")
        if not expected:
            return False
        provided = request.META.get(self.header, "")
        return hmac.compare_digest(provided.encode(), expected.encode())
