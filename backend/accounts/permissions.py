from rest_framework.permissions import BasePermission

from .models import User


class IsAdminRole(BasePermission):
    """
    Allow venue admins and super admins. Superusers automatically pass.
    """

    allowed_roles = {User.ADMIN, User.SUPER_ADMIN}
    message = "Admin access required."

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        return request.user.effective_role in self.allowed_roles


class IsSuperAdmin(IsAdminRole):
    allowed_roles = {User.SUPER_ADMIN}
    message = "Only super admins can perform payment actions."
