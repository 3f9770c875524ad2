import pytest

from conftest import PATIENT_IC
from network.authentication import principal_for
from network.exceptions import IndexStoreFailure
from network.models import AuditLog
from network.services.coordinator import FederatedQueryCoordinator
from network.services.emergency import emergency_query
from network.services.index import IndexStore, ModelIndexStore
from network.services.nodes import NodeRegistry
from network.services.policy import AccessPolicyFilter

pytestmark = pytest.mark.django_db


class BrokenIndex(IndexStore):
    def get(self, ic_number):
        raise IndexStoreFailure()


def _coordinator(nodes, **kw):
    return FederatedQueryCoordinator(registry=NodeRegistry(nodes), timeout=2, **kw)


def test_emergency_ignores_blocking_and_returns_minimal_profile(patient, fake_nodes):
    store = ModelIndexStore()
    for hid in ('hospital-kl', 'hospital-penang', 'hospital-jb'):
        store.add_hospital(PATIENT_IC, hid)
    AccessPolicyFilter().set_blocked(PATIENT_IC, 'hospital-kl', True, principal_for(patient))

    profile = emergency_query(PATIENT_IC, None, '10.9.8.7', coordinator=_coordinator(fake_nodes))

    assert profile.found is True
    assert profile.full_name == 'Ahmad bin Abdullah'
    assert profile.blood_type == 'O+'
    assert profile.allergies == ['Penicillin', 'Peanuts']
    assert profile.emergency_phone == '012-3456789'
    assert profile.hospitals_with_records == 3
    assert profile.sources == ['hospital-kl', 'hospital-penang']
    assert fake_nodes['hospital-kl'].calls == 1

    data = profile.as_dict()
    assert data['accessType'] == 'emergency'
    assert 'records' not in data and 'phone' not in data

    [entry] = AuditLog.objects.filter(action=AuditLog.ACTION_EMERGENCY)
    assert entry.actor_type == 'system'
    assert entry.ip_address == '10.9.8.7'
    assert entry.success is True


def test_emergency_not_found_is_still_audited(doctor, fake_nodes):
    profile = emergency_query(PATIENT_IC, principal_for(doctor), coordinator=_coordinator(fake_nodes))
    assert profile.found is False
    assert profile.as_dict() == {'found': False, 'icNumber': PATIENT_IC,
                                 'message': 'Patient not found in any hospital'}
    [entry] = AuditLog.objects.filter(action=AuditLog.ACTION_EMERGENCY)
    assert entry.actor_id == str(doctor.id)
    assert 'not found' in entry.details


def test_emergency_lookup_failure_is_audited(fake_nodes):
    with pytest.raises(IndexStoreFailure):
        emergency_query(PATIENT_IC, coordinator=_coordinator(fake_nodes, index=BrokenIndex()))
    [entry] = AuditLog.objects.filter(action=AuditLog.ACTION_EMERGENCY)
    assert entry.success is False
