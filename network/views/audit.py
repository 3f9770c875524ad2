"""
Audit trail views.

Admins browse the full log (hospital admins only their hospital's share
of it); every signed-in user can see who looked at their records and
what they themselves did.
"""
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from network.authentication import principal_for
from network.permissions import HOSPITAL_ADMIN, IsAuditReader
from network.serializers.audit import AuditLogQuerySerializer, PersonalLogQuerySerializer
from network.services.audit import enrich, my_access_logs, my_activity_logs, query_logs


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAuditReader])
def audit_logs(request):
    q = AuditLogQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    vd = q.validated_data
    hospital_id = request.user.hospital_id if request.user.role == HOSPITAL_ADMIN else None
    logs = query_logs(
        actor_id=vd.get('actorId'),
        target_ic_number=vd.get('icNumber'),
        action=vd.get('action'),
        actor_hospital_id=hospital_id,
        start=vd.get('startDate'),
        end=vd.get('endDate'),
        limit=vd['limit'],
    )
    return Response({'ok': True, 'data': enrich(logs), 'meta': {'count': len(logs)}})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def my_access(request):
    q = PersonalLogQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    data = my_access_logs(principal_for(request.user), limit=q.validated_data.get('limit') or 20)
    return Response({'ok': True, 'data': data})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def my_activity(request):
    q = PersonalLogQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    data = my_activity_logs(principal_for(request.user), limit=q.validated_data.get('limit') or 10)
    return Response({'ok': True, 'data': data})
