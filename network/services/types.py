"""
Value objects shared by the federation services.

These are plain dataclasses rather than models: a query result is built
fresh for every request and only the audit trail of the query is
persisted.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

STATUS_OK = 'ok'
STATUS_BLOCKED = 'blocked'
STATUS_UNREACHABLE = 'unreachable'
STATUS_TIMEOUT = 'timeout'
STATUS_ERROR = 'error'

PRINCIPAL_TYPES = ('patient', 'doctor', 'hospital_admin', 'central_admin')


@dataclass(frozen=True)
class Principal:
    """The authenticated caller of a service operation."""
    principal_id: str
    principal_type: str
    ic_number: str = ''
    home_hospital_id: Optional[str] = None

    @property
    def is_patient(self) -> bool:
        return self.principal_type == 'patient'

    def owns(self, ic_number: str) -> bool:
        return bool(self.ic_number) and self.ic_number == ic_number


@dataclass(frozen=True)
class IndexEntry:
    ic_number: str
    hospitals: tuple[str, ...]
    last_updated: datetime


@dataclass
class NodeOutcome:
    """Normalized result of one call to a hospital node."""
    status: str
    records: list[dict] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class HospitalQueryResult:
    hospital_id: str
    hospital_name: str
    status: str
    records: list[dict] = field(default_factory=list)
    elapsed_ms: int = 0
    error: Optional[str] = None

    @property
    def record_count(self) -> int:
        return len(self.records)

    def as_dict(self) -> dict:
        data = {
            'hospitalId': self.hospital_id,
            'hospitalName': self.hospital_name,
            'status': self.status,
            'records': self.records,
            'recordCount': self.record_count,
            'responseTime': self.elapsed_ms,
        }
        if self.error:
            data['error'] = self.error
        return data


@dataclass
class QueryStep:
    step: int
    action: str
    source: str
    target: str
    status: str
    timestamp: str
    data: Optional[dict[str, Any]] = None

    def as_dict(self) -> dict:
        return {
            'step': self.step,
            'action': self.action,
            'from': self.source,
            'to': self.target,
            'status': self.status,
            'timestamp': self.timestamp,
            'data': self.data,
        }


@dataclass
class AggregatedQueryResponse:
    query_id: str
    ic_number: str
    steps: list[QueryStep] = field(default_factory=list)
    hospitals: list[HospitalQueryResult] = field(default_factory=list)
    total_records: int = 0
    elapsed_ms: int = 0

    def records(self) -> list[dict]:
        """All records, hospital by hospital in index order."""
        out: list[dict] = []
        for h in self.hospitals:
            out.extend(h.records)
        return out

    def as_dict(self) -> dict:
        return {
            'queryId': self.query_id,
            'icNumber': self.ic_number,
            'querySteps': [s.as_dict() for s in self.steps],
            'hospitals': [h.as_dict() for h in self.hospitals],
            'totalRecords': self.total_records,
            'queryTime': self.elapsed_ms,
        }


@dataclass
class MinimalSafetyProfile:
    """Break-glass view: never carries visit history or diagnoses."""
    ic_number: str
    found: bool
    full_name: str = ''
    blood_type: str = ''
    allergies: list[str] = field(default_factory=list)
    chronic_conditions: list[str] = field(default_factory=list)
    emergency_contact: str = ''
    emergency_phone: str = ''
    hospitals_with_records: int = 0
    sources: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        if not self.found:
            return {
                'found': False,
                'icNumber': self.ic_number,
                'message': 'Patient not found in any hospital',
            }
        return {
            'found': True,
            'icNumber': self.ic_number,
            'fullName': self.full_name,
            'bloodType': self.blood_type,
            'allergies': self.allergies,
            'chronicConditions': self.chronic_conditions,
            'emergencyContact': self.emergency_contact,
            'emergencyPhone': self.emergency_phone,
            'hospitalsWithRecords': self.hospitals_with_records,
            'sources': self.sources,
            'accessType': 'emergency',
            'warning': 'This is emergency access. Full audit trail has been recorded.',
        }
