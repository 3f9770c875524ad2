"""
Central hub endpoints: federated query, patient summary, emergency
access and the hub's own directory and index.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.exceptions import NotFound
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle

from network.authentication import client_ip, principal_for
from network.models import Hospital
from network.permissions import IsCentralAdmin
from network.services.coordinator import get_coordinator
from network.services.emergency import emergency_query
from network.services.index import ModelIndexStore
from network.services.stats import central_stats, format_hospital, format_index_entry


class EmergencyRateThrottle(AnonRateThrottle):
    """Per client IP, whether or not the caller is signed in."""
    scope = 'emergency'

    def get_cache_key(self, request, view):
        return self.cache_format % {'scope': self.scope, 'ident': self.get_ident(request)}


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def query_patient(request, ic_number: str):
    result = get_coordinator().query_patient(ic_number, principal_for(request.user), ip=client_ip(request))
    return Response({'ok': True, 'data': result.as_dict()})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def patient_summary(request, ic_number: str):
    data = get_coordinator().get_patient_summary(ic_number, principal_for(request.user), ip=client_ip(request))
    return Response({'ok': True, 'data': data})


@api_view(['GET'])
@permission_classes([AllowAny])
@throttle_classes([EmergencyRateThrottle])
def emergency_access(request, ic_number: str):
    profile = emergency_query(ic_number, principal_for(request.user), client_ip(request))
    return Response({'ok': True, 'data': profile.as_dict()})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def list_hospitals(request):
    qs = Hospital.objects.filter(is_active=True).order_by('id')
    return Response({'ok': True, 'data': [format_hospital(h) for h in qs]})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def stats(request):
    return Response({'ok': True, 'data': central_stats()})


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsCentralAdmin])
def list_indexes(request):
    entries = ModelIndexStore().all()
    return Response({'ok': True, 'data': [format_index_entry(e) for e in entries],
                     'meta': {'total': len(entries)}})


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsCentralAdmin])
def get_index(request, ic_number: str):
    entry = ModelIndexStore().get(ic_number)
    if entry is None:
        raise NotFound('Patient not found in index')
    return Response({'ok': True, 'data': format_index_entry(entry)})
