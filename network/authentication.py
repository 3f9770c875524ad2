"""
Authentication for the MedLink API.

Users authenticate with simplejwt bearer tokens.  Access tokens carry
the role, IC number and home hospital so other services can trust them
without a lookup.  Peer hospital nodes do not hold user accounts; they
present the shared node key in the ``X-Node-Key`` header instead (see
:func:`is_federation_peer`).

DRF imports this module while it is still initialising
``rest_framework.views``, so nothing here may import a module that
pulls in DRF views (``network.exceptions``, ``network.services.nodes``).
"""
from __future__ import annotations

import hmac
from typing import Optional

from django.conf import settings
from rest_framework_simplejwt import authentication
from rest_framework_simplejwt.tokens import RefreshToken

from network.services.types import Principal

NODE_KEY_HEADER = 'X-Node-Key'


class JWTAuthentication(authentication.JWTAuthentication):
    """simplejwt bearer authentication.

    Exists to give the settings a stable import path and to name the
    realm in ``WWW-Authenticate`` challenges.
    """

    www_authenticate_realm = 'medlink'


def tokens_for(user) -> dict:
    refresh = RefreshToken.for_user(user)
    refresh['role'] = user.role
    refresh['ic_number'] = user.ic_number
    refresh['hospital_id'] = user.hospital_id
    return {'access': str(refresh.access_token), 'refresh': str(refresh)}


def principal_for(user) -> Optional[Principal]:
    if user is None or not getattr(user, 'is_authenticated', False):
        return None
    return Principal(
        principal_id=str(user.id),
        principal_type=user.role,
        ic_number=user.ic_number,
        home_hospital_id=user.hospital_id,
    )


def is_federation_peer(request) -> bool:
    key = settings.NODE_SHARED_KEY
    presented = request.headers.get(NODE_KEY_HEADER, '')
    return bool(key) and bool(presented) and hmac.compare_digest(key, presented)


def client_ip(request) -> Optional[str]:
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')
