"""
Hospital node endpoints.

These serve the hospitals hosted by this deployment.  The central hub
of another deployment calls them with the shared node key; signed-in
users may call them directly for hospitals they work at (patients only
for their own IC number).
"""
from __future__ import annotations

from django.db import transaction
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound
from rest_framework.response import Response

from network.authentication import client_ip, is_federation_peer, principal_for
from network.exceptions import AuthorizationError
from network.models import AuditLog, Hospital
from network.permissions import CENTRAL_ADMIN, IsFederationPeer, IsFederationPeerOrAuthenticated, IsHospitalStaff
from network.serializers.records import PatientRegisterSerializer, RecordCreateSerializer
from network.services.audit import log_action
from network.services.coordinator import get_coordinator
from network.services.nodes import LocalHospitalNodeClient


def _local_node(hospital_id: str) -> LocalHospitalNodeClient:
    h = Hospital.objects.filter(id=hospital_id, is_active=True).first()
    if h is None or h.api_endpoint:
        raise NotFound('Hospital is not served by this node')
    return LocalHospitalNodeClient(h.id, h.name)


def _check_reader(request, hospital_id: str, ic_number: str) -> None:
    if is_federation_peer(request):
        return
    principal = principal_for(request.user)
    if principal.principal_type == CENTRAL_ADMIN:
        return
    if principal.is_patient:
        if principal.owns(ic_number):
            return
    elif principal.home_hospital_id == hospital_id:
        return
    raise AuthorizationError('Not permitted to read records at this hospital')


@api_view(['GET'])
@permission_classes([IsFederationPeerOrAuthenticated])
def node_records(request, hospital_id: str, ic_number: str):
    node = _local_node(hospital_id)
    _check_reader(request, hospital_id, ic_number)
    return Response({'ok': True, 'data': node.fetch_records(ic_number)})


@api_view(['GET'])
@permission_classes([IsFederationPeerOrAuthenticated])
def node_patient(request, hospital_id: str, ic_number: str):
    node = _local_node(hospital_id)
    _check_reader(request, hospital_id, ic_number)
    patient = node.get_patient(ic_number)
    if patient is None:
        raise NotFound('Patient not found at this hospital')
    if not is_federation_peer(request):
        log_action(user=request.user, action=AuditLog.ACTION_VIEW, target_ic_number=ic_number,
                   target_hospital_id=hospital_id, details=f"Viewed patient at {hospital_id}",
                   ip=client_ip(request))
    return Response({'ok': True, 'data': patient})


@api_view(['POST'])
@permission_classes([IsFederationPeer | IsHospitalStaff])
def node_create_record(request, hospital_id: str):
    s = RecordCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    ic_number = s.validated_data['icNumber']
    doctor_id = s.validated_data.get('doctorId') or None

    if is_federation_peer(request):
        # the calling hub already updated its index and audit trail
        node = _local_node(hospital_id)
        with transaction.atomic():
            record_id = node.create_record(ic_number, doctor_id, s.node_payload())
        data = {'id': record_id, 'hospitalId': hospital_id, 'icNumber': ic_number}
    else:
        data = get_coordinator().create_record(
            hospital_id, ic_number, doctor_id, s.node_payload(),
            principal_for(request.user), ip=client_ip(request),
        )
    return Response({'ok': True, 'data': data}, status=201)


@api_view(['POST'])
@permission_classes([IsFederationPeer | IsHospitalStaff])
def node_register_patient(request, hospital_id: str):
    s = PatientRegisterSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    ic_number = s.validated_data['icNumber']

    if is_federation_peer(request):
        data = _local_node(hospital_id).register_patient(ic_number, s.node_payload())
    else:
        data = get_coordinator().register_patient(
            hospital_id, ic_number, s.node_payload(), principal_for(request.user), ip=client_ip(request),
        )
    return Response({'ok': True, 'data': data}, status=201)
