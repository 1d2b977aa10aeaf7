"""Permission classes for the payments admin surface."""
import logging

from rest_framework.permissions import BasePermission

logger = logging.getLogger(__name__)


class IsPlatformAdmin(BasePermission):
    """Allow only superusers and users carrying the platform admin role."""

    message = "Platform administrator role required."

    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return False
        allowed = bool(getattr(user, "is_platform_admin", False))
        if not allowed:
            logger.info("Denied admin payments access to user %s", user.pk)
        return allowed
