from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from network.authentication import client_ip, principal_for
from network.serializers.audit import HospitalAccessSerializer
from network.services.policy import AccessPolicyFilter


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def privacy_settings(request):
    """The caller's own per-hospital access flags."""
    principal = principal_for(request.user)
    return Response({'ok': True, 'data': AccessPolicyFilter().privacy_settings(principal.ic_number)})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def set_hospital_access(request):
    s = HospitalAccessSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    principal = principal_for(request.user)
    hospital_id = s.validated_data['hospitalId']
    blocked = s.validated_data['isBlocked']
    AccessPolicyFilter().set_blocked(principal.ic_number, hospital_id, blocked, principal, ip=client_ip(request))
    return Response({'ok': True, 'data': {'hospitalId': hospital_id, 'isBlocked': blocked}})
