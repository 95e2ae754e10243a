"""
Role based access control for order and payment endpoints.
"""
from django.conf import settings
from django.utils.crypto import constant_time_compare
from rest_framework.permissions import BasePermission

from clinic.exceptions import Forbidden, Unauthorized

STAFF_ROLES = {"staff", "admin"}


def is_staff_user(user) -> bool:
    return bool(
        user and user.is_authenticated
        and (getattr(user, "role", None) in STAFF_ROLES or getattr(user, "is_superuser", False))
    )


def ensure_can_access(user, owner_id: int) -> None:
    """Patients only see their own records; staff see everything."""
    if is_staff_user(user):
        return
    if getattr(user, "id", None) != owner_id:
        raise Forbidden("You do not have access to this resource")


class IsStaffRole(BasePermission):
    """Allow access only to staff and admin users."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return is_staff_user(getattr(request, "user", None))


class HasReceiverApiKey(BasePermission):
    """``Authorization: Apikey <SEPAY_WEBHOOK_API_KEY>`` from the bank gateway."""
    keyword = "Apikey"

    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        expected = getattr(settings, "SEPAY_WEBHOOK_API_KEY", "")
        parts = request.META.get("HTTP_AUTHORIZATION", "").split(None, 1)
        if (
            expected and len(parts) == 2 and parts[0].lower() == self.keyword.lower()
            and constant_time_compare(parts[1].strip(), expected)
        ):
            return True
        raise Unauthorized("Invalid API key")
