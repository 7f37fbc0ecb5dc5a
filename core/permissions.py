"""
Role based permission classes for clinic staff.
"""
from rest_framework.permissions import BasePermission

CLINIC_ROLES = {"owner", "staff", "nurse", "doctor"}


class _RolePermission(BasePermission):
    roles: frozenset = frozenset()

    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, "user", None)
        return bool(user and user.is_authenticated and getattr(user, "role", None) in self.roles)


class IsClinicStaff(_RolePermission):
    """Any logged-in clinic role."""
    roles = frozenset(CLINIC_ROLES)


class CanManageFamilies(_RolePermission):
    """owner, staff or doctor."""
    roles = frozenset({"owner", "staff", "doctor"})


class CanEditPatients(_RolePermission):
    """owner or staff."""
    roles = frozenset({"owner", "staff"})


class CanPostReceipts(_RolePermission):
    """owner, staff or nurse."""
    roles = frozenset({"owner", "staff", "nurse"})


class IsOwner(_RolePermission):
    """Only the clinic owner."""
    roles = frozenset({"owner"})
