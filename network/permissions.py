"""
Custom permission classes for role based access control.
"""
from rest_framework.permissions import BasePermission

from network.authentication import is_federation_peer

CENTRAL_ADMIN = "central_admin"
HOSPITAL_ADMIN = "hospital_admin"
STAFF_ROLES = {"doctor", HOSPITAL_ADMIN}


def _role(request):
    user = getattr(request, "user", None)
    if not (user and user.is_authenticated):
        return None
    return getattr(user, "role", None)


class IsCentralAdmin(BasePermission):
    """Only the central administrator."""
    def has_permission(self, request, view) -> bool:
        return _role(request) == CENTRAL_ADMIN


class IsAuditReader(BasePermission):
    """Central or hospital admins; hospital admins are scoped to their hospital by the view."""
    def has_permission(self, request, view) -> bool:
        return _role(request) in {CENTRAL_ADMIN, HOSPITAL_ADMIN}


class IsHospitalStaff(BasePermission):
    """Doctors and hospital admins of the hospital in the URL, or the central admin."""
    def has_permission(self, request, view) -> bool:
        role = _role(request)
        if role == CENTRAL_ADMIN:
            return True
        hospital_id = view.kwargs.get("hospital_id") if hasattr(view, "kwargs") else None
        return role in STAFF_ROLES and request.user.hospital_id == hospital_id


class IsFederationPeerOrAuthenticated(BasePermission):
    """A peer node presenting the shared key, or any signed-in user."""
    def has_permission(self, request, view) -> bool:
        return is_federation_peer(request) or _role(request) is not None


class IsFederationPeer(BasePermission):
    """Another deployment's hub, identified by the shared node key."""
    def has_permission(self, request, view) -> bool:
        return is_federation_peer(request)
