"""
Clients for the hospital nodes taking part in the federation.

A hospital without an ``api_endpoint`` is served by this deployment and
read straight from the local tables; any other hospital is a peer
reached over HTTP.  Whatever goes wrong inside a client, ``query`` turns
it into a tagged :class:`NodeOutcome` so one bad node cannot sink a
federated query.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Optional

import requests
from django.conf import settings
from django.contrib.auth import get_user_model
from django.utils.dateparse import parse_date

from network.authentication import NODE_KEY_HEADER
from network.exceptions import MalformedNodeResponse, NodeError, NodeTimeout, NodeUnreachable
from network.models import Hospital, LocalPatient, MedicalRecord
from network.services.types import (
    STATUS_ERROR, STATUS_OK, STATUS_TIMEOUT, STATUS_UNREACHABLE, NodeOutcome,
)

logger = logging.getLogger(__name__)


def format_record(r: MedicalRecord) -> dict:
    doctor = r.doctor
    return {
        'id': str(r.id),
        'icNumber': r.ic_number,
        'hospitalId': r.hospital_id,
        'doctorId': str(doctor.id) if doctor else None,
        'doctorName': (doctor.full_name or doctor.username) if doctor else '',
        'visitDate': r.visit_date.isoformat(),
        'visitType': r.visit_type,
        'chiefComplaint': r.chief_complaint,
        'diagnosis': r.diagnosis,
        'diagnosisCodes': r.diagnosis_codes,
        'symptoms': r.symptoms,
        'notes': r.notes,
        'vitalSigns': r.vital_signs,
        'prescriptions': r.prescriptions,
        'followUpDate': r.follow_up_date.isoformat() if r.follow_up_date else None,
        'createdAt': r.created_at.isoformat(),
        'updatedAt': r.updated_at.isoformat(),
    }


def format_patient(p: LocalPatient) -> dict:
    return {
        'icNumber': p.ic_number,
        'fullName': p.full_name,
        'dateOfBirth': p.date_of_birth.isoformat() if p.date_of_birth else None,
        'gender': p.gender,
        'bloodType': p.blood_type,
        'phone': p.phone,
        'email': p.email,
        'address': p.address,
        'emergencyContact': p.emergency_contact,
        'emergencyPhone': p.emergency_phone,
        'allergies': list(p.allergies or []),
        'chronicConditions': list(p.chronic_conditions or []),
        'createdAt': p.created_at.isoformat(),
        'updatedAt': p.updated_at.isoformat(),
    }


class HospitalNodeClient:
    """One hospital's record store."""

    def __init__(self, hospital_id: str, hospital_name: str):
        self.hospital_id = hospital_id
        self.hospital_name = hospital_name

    def fetch_records(self, ic_number: str) -> list[dict]:
        raise NotImplementedError

    def get_patient(self, ic_number: str) -> Optional[dict]:
        raise NotImplementedError

    def create_record(self, ic_number: str, doctor_id: Optional[str], payload: dict) -> str:
        raise NotImplementedError

    def register_patient(self, ic_number: str, payload: dict) -> dict:
        """Create or update demographics; returns the stored patient."""
        raise NotImplementedError

    def _guarded(self, call: Callable[[], Any]) -> tuple[Optional[NodeOutcome], Any]:
        try:
            return None, call()
        except NodeTimeout as e:
            logger.warning("node %s timed out: %s", self.hospital_id, e)
            return NodeOutcome(STATUS_TIMEOUT, error=str(e) or 'timeout'), None
        except NodeUnreachable as e:
            logger.warning("node %s unreachable: %s", self.hospital_id, e)
            return NodeOutcome(STATUS_UNREACHABLE, error=str(e) or 'unreachable'), None
        except Exception as e:
            logger.warning("node %s failed: %r", self.hospital_id, e)
            return NodeOutcome(STATUS_ERROR, error=str(e) or e.__class__.__name__), None

    def query(self, ic_number: str) -> NodeOutcome:
        """Records for ``ic_number``; never raises."""
        failed, records = self._guarded(lambda: self.fetch_records(ic_number))
        if failed:
            return failed
        if not isinstance(records, list) or not all(isinstance(r, dict) for r in records):
            logger.warning("node %s returned malformed records", self.hospital_id)
            return NodeOutcome(STATUS_ERROR, error='malformed response')
        return NodeOutcome(STATUS_OK, records=records)

    def lookup_patient(self, ic_number: str) -> NodeOutcome:
        """Demographics as a zero- or one-element outcome; never raises."""
        failed, patient = self._guarded(lambda: self.get_patient(ic_number))
        if failed:
            return failed
        if patient is not None and not isinstance(patient, dict):
            return NodeOutcome(STATUS_ERROR, error='malformed response')
        return NodeOutcome(STATUS_OK, records=[patient] if patient else [])

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.hospital_id}>"


class LocalHospitalNodeClient(HospitalNodeClient):
    """Node served from this deployment's own tables."""

    def fetch_records(self, ic_number: str) -> list[dict]:
        qs = (MedicalRecord.objects
              .filter(hospital_id=self.hospital_id, ic_number=ic_number)
              .select_related('doctor')
              .order_by('-visit_date', '-created_at'))
        return [format_record(r) for r in qs]

    def get_patient(self, ic_number: str) -> Optional[dict]:
        p = LocalPatient.objects.filter(hospital_id=self.hospital_id, ic_number=ic_number).first()
        return format_patient(p) if p else None

    def create_record(self, ic_number: str, doctor_id: Optional[str], payload: dict) -> str:
        LocalPatient.objects.get_or_create(
            hospital_id=self.hospital_id,
            ic_number=ic_number,
            defaults={'full_name': payload.get('patientName') or f"Patient {ic_number}"},
        )
        doctor = None
        if doctor_id:
            doctor = get_user_model().objects.filter(id=doctor_id).first()
        record = MedicalRecord.objects.create(
            hospital_id=self.hospital_id,
            ic_number=ic_number,
            doctor=doctor,
            visit_date=payload['visitDate'],
            visit_type=payload.get('visitType') or 'outpatient',
            chief_complaint=payload.get('chiefComplaint', ''),
            diagnosis=payload.get('diagnosis') or [],
            diagnosis_codes=payload.get('diagnosisCodes') or [],
            symptoms=payload.get('symptoms') or [],
            notes=payload.get('notes', ''),
            vital_signs=payload.get('vitalSigns'),
            prescriptions=payload.get('prescriptions') or [],
            follow_up_date=payload.get('followUpDate'),
        )
        logger.info("record %s created at %s for %s", record.id, self.hospital_id, ic_number)
        return str(record.id)

    def register_patient(self, ic_number: str, payload: dict) -> dict:
        dob = payload.get('dateOfBirth')
        patient, created = LocalPatient.objects.update_or_create(
            hospital_id=self.hospital_id,
            ic_number=ic_number,
            defaults={
                'full_name': payload['fullName'],
                'date_of_birth': parse_date(dob) if dob else None,
                'gender': payload.get('gender') or '',
                'blood_type': payload.get('bloodType') or '',
                'phone': payload.get('phone') or '',
                'email': payload.get('email') or '',
                'address': payload.get('address') or '',
                'emergency_contact': payload.get('emergencyContact') or '',
                'emergency_phone': payload.get('emergencyPhone') or '',
                'allergies': payload.get('allergies') or [],
                'chronic_conditions': payload.get('chronicConditions') or [],
            },
        )
        logger.info("patient %s %s at %s", ic_number, 'registered' if created else 'updated', self.hospital_id)
        return format_patient(patient)


class HttpHospitalNodeClient(HospitalNodeClient):
    """Peer node reached over HTTP, authenticated with the shared node key."""

    def __init__(self, hospital_id: str, hospital_name: str, base_url: str, *,
                 timeout: Optional[float] = None, node_key: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        super().__init__(hospital_id, hospital_name)
        self.base_url = base_url.rstrip('/')
        self.timeout = settings.NODE_TIMEOUT_SECONDS if timeout is None else timeout
        self.session = session or requests.Session()
        key = settings.NODE_SHARED_KEY if node_key is None else node_key
        if key:
            self.session.headers[NODE_KEY_HEADER] = key

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api/hospitals/{self.hospital_id}/{path}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            return self.session.request(method, self._url(path), timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise NodeTimeout(f"no answer within {self.timeout}s") from e
        except requests.ConnectionError as e:
            raise NodeUnreachable(str(e)) from e
        except requests.RequestException as e:
            raise NodeError(str(e)) from e

    @staticmethod
    def _payload(resp: requests.Response) -> Any:
        if resp.status_code >= 400:
            raise NodeError(f"HTTP {resp.status_code}")
        try:
            body = resp.json()
        except ValueError as e:
            raise MalformedNodeResponse('response is not JSON') from e
        if isinstance(body, dict) and 'data' in body:
            return body['data']
        return body

    def fetch_records(self, ic_number: str) -> list[dict]:
        data = self._payload(self._request('GET', f"records/{ic_number}"))
        if not isinstance(data, list):
            raise MalformedNodeResponse('records payload is not a list')
        return data

    def get_patient(self, ic_number: str) -> Optional[dict]:
        resp = self._request('GET', f"patients/{ic_number}")
        if resp.status_code == 404:
            return None
        data = self._payload(resp)
        if data is not None and not isinstance(data, dict):
            raise MalformedNodeResponse('patient payload is not an object')
        return data

    def create_record(self, ic_number: str, doctor_id: Optional[str], payload: dict) -> str:
        body = {'icNumber': ic_number, 'doctorId': doctor_id, **payload}
        data = self._payload(self._request('POST', 'records', json=body))
        if not isinstance(data, dict) or 'id' not in data:
            raise MalformedNodeResponse('create response carries no record id')
        return str(data['id'])

    def register_patient(self, ic_number: str, payload: dict) -> dict:
        data = self._payload(self._request('POST', 'patients', json={**payload, 'icNumber': ic_number}))
        if not isinstance(data, dict):
            raise MalformedNodeResponse('patient payload is not an object')
        return data


class NodeRegistry:
    """Maps hospital ids to node clients."""

    def __init__(self, clients: Optional[dict[str, HospitalNodeClient]] = None):
        self.clients = dict(clients or {})

    def client_for(self, hospital_id: str) -> Optional[HospitalNodeClient]:
        return self.clients.get(hospital_id)

    def hospital_name(self, hospital_id: str) -> str:
        client = self.client_for(hospital_id)
        return client.hospital_name if client else hospital_id

    @classmethod
    def from_directory(cls) -> 'NodeRegistry':
        clients: dict[str, HospitalNodeClient] = {}
        for h in Hospital.objects.filter(is_active=True):
            if h.api_endpoint:
                clients[h.id] = HttpHospitalNodeClient(h.id, h.name, h.api_endpoint)
            else:
                clients[h.id] = LocalHospitalNodeClient(h.id, h.name)
        return cls(clients)


def get_node_registry() -> NodeRegistry:
    return NodeRegistry.from_directory()
