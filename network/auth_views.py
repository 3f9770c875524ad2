"""
Authentication views: login, logout and token refresh.

Users are identified by IC number; one person may hold several accounts
with different roles (a doctor is usually also a patient), so login
takes an optional role and otherwise picks the only matching account.
Every login attempt and every logout is written to the audit log.
"""
from __future__ import annotations

import logging

from django.contrib.auth import authenticate
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.exceptions import AuthenticationFailed, ValidationError
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.serializers import TokenRefreshSerializer
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken, OutstandingToken
from rest_framework_simplejwt.tokens import RefreshToken

from network.authentication import client_ip, tokens_for
from network.models import AuditLog, User
from network.serializers.auth import LoginSerializer, LogoutSerializer
from network.services.audit import log_action

logger = logging.getLogger(__name__)


class LoginRateThrottle(AnonRateThrottle):
    scope = 'login'


def _account_for(ic_number: str, role: str | None) -> User | None:
    qs = User.objects.filter(ic_number=ic_number, is_active=True)
    if role:
        qs = qs.filter(role=role)
    accounts = list(qs[:2])
    if len(accounts) != 1:
        return None
    return accounts[0]


def format_user(user: User) -> dict:
    return {
        'id': user.id,
        'icNumber': user.ic_number,
        'name': user.full_name or user.username,
        'role': user.role,
        'hospitalId': user.hospital_id,
        'hospitalName': user.hospital.name if user.hospital_id else None,
        'specialization': user.specialization,
    }


# ---------------------------------------------------------------------
# IC number / password login
# ---------------------------------------------------------------------
@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([LoginRateThrottle])
def login_view(request):
    """
    Accepts fields:
      - icNumber
      - password
      - role (needed only when the IC number holds several accounts)
    """
    s = LoginSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    ip = client_ip(request)

    account = _account_for(vd['icNumber'], vd.get('role'))
    user = None
    if account is not None:
        user = authenticate(request, username=account.username, password=vd['password'])
    if user is None:
        logger.info("failed login for %s from %s", vd['icNumber'], ip)
        log_action(user=None, action=AuditLog.ACTION_LOGIN, target_ic_number=vd['icNumber'],
                   details='Failed login attempt', ip=ip, success=False)
        raise AuthenticationFailed('Invalid IC number or password')

    log_action(user=user, action=AuditLog.ACTION_LOGIN, details=f"Logged in as {user.role}", ip=ip)
    return Response({'ok': True, 'data': {**tokens_for(user), 'user': format_user(user)}})


# ---------------------------------------------------------------------
# JWT: refresh & logout
# ---------------------------------------------------------------------
@api_view(['POST'])
@permission_classes([AllowAny])
def refresh_view(request):
    """Return a new access token from a refresh token."""
    s = TokenRefreshSerializer(data=request.data)
    try:
        s.is_valid(raise_exception=True)
    except TokenError as e:
        raise AuthenticationFailed(str(e)) from e
    return Response({'ok': True, 'data': s.validated_data})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def logout_view(request):
    """Blacklist the given refresh token, or all of the user's tokens."""
    s = LogoutSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    refresh = s.validated_data.get('refresh')
    count = 0
    if refresh:
        try:
            RefreshToken(refresh).blacklist()
        except TokenError as e:
            raise ValidationError({'refresh': str(e)}) from e
        count = 1
    else:
        for token in OutstandingToken.objects.filter(user=request.user):
            _, created = BlacklistedToken.objects.get_or_create(token=token)
            count += int(created)
    log_action(user=request.user, action=AuditLog.ACTION_LOGOUT, details='Logged out', ip=client_ip(request))
    return Response({'ok': True, 'data': {'blacklisted': count}})
