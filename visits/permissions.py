"""
Role based access control for clinic staff.
"""
from rest_framework.permissions import BasePermission

STAFF_ROLES = {"receptionist", "nurse", "doctor", "admin"}


class IsStaffRole(BasePermission):
    """Any authenticated clinic staff member."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, "user", None)
        return bool(user and user.is_authenticated and getattr(user, "role", None) in STAFF_ROLES)


class IsAdminRole(BasePermission):
    """Allow access only to clinic administrators."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, "user", None)
        return bool(user and user.is_authenticated and getattr(user, "role", None) == "admin")
