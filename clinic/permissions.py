"""
Role based permission classes.

Every endpoint names the login roles allowed to call it; a user's
``role`` field is compared against that set.  Superusers pass every
check.
"""
from rest_framework.permissions import BasePermission

from clinic.errors import AuthorizationError

CLINICAL_ROLES = {"doctor", "nurse", "admin", "receptionist"}
BILLING_ROLES = {"admin", "receptionist", "accountant"}


class RolePermission(BasePermission):
    """Allow access only to authenticated users whose role is in ``roles``."""
    roles: set[str] = set()
    message = "Your role is not allowed to perform this action."

    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, "user", None)
        if not (user and user.is_authenticated):
            return False
        if getattr(user, "is_superuser", False):
            return True
        return getattr(user, "role", None) in self.roles


class IsClinicalStaff(RolePermission):
    roles = CLINICAL_ROLES


class CanDeleteAppointments(RolePermission):
    roles = {"doctor", "admin"}


class CanViewAppointmentStats(RolePermission):
    roles = {"admin", "doctor"}


class IsBillingStaff(RolePermission):
    roles = BILLING_ROLES


class CanViewInvoices(RolePermission):
    """Billing staff plus doctors, read only."""
    roles = BILLING_ROLES | {"doctor"}


class IsAdminRole(RolePermission):
    roles = {"admin"}


class CanViewBillingStats(RolePermission):
    roles = {"admin", "accountant"}


def require_role(request, permission_cls: type[RolePermission]) -> None:
    """Raise ``AuthorizationError`` unless ``permission_cls`` admits the request.

    Used where one URL serves several methods with different role sets.
    """
    if not permission_cls().has_permission(request, None):
        raise AuthorizationError(permission_cls.message)
