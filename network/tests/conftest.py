"""
Shared fixtures.

Fan-out runs node clients on worker threads, which cannot see the
test transaction, so coordinator and API tests use the in-memory
:class:`FakeNode` clients below instead of the local database nodes.
"""
import threading
import time

import pytest
from django.core.cache import cache
from rest_framework.test import APIClient

from network.exceptions import NodeTimeout, NodeUnreachable
from network.models import Hospital, User
from network.services import audit as audit_service
from network.services.nodes import HospitalNodeClient, NodeRegistry

PASSWORD = 'Str0ng-pass!'

PATIENT_IC = '880101-14-5678'
OTHER_IC = '950320-10-1234'


class FakeNode(HospitalNodeClient):
    """Node client answering from memory; ``fail`` picks a failure mode."""

    def __init__(self, hospital_id, hospital_name=None, *, records=None, patient=None,
                 fail=None, delay=0.0, fail_times=None):
        super().__init__(hospital_id, hospital_name or hospital_id.upper())
        self.records = records or []
        self.patient = patient
        self.fail = fail
        self.delay = delay
        self.fail_times = fail_times
        self.calls = 0
        self.created = []
        self._lock = threading.Lock()

    def _maybe_fail(self):
        with self._lock:
            self.calls += 1
            calls = self.calls
        if self.delay:
            time.sleep(self.delay)
        if self.fail is None or (self.fail_times is not None and calls > self.fail_times):
            return
        if self.fail == 'unreachable':
            raise NodeUnreachable('connection refused')
        if self.fail == 'timeout':
            raise NodeTimeout('read timed out')
        if self.fail == 'malformed':
            return 'malformed'
        raise RuntimeError('node exploded')

    def fetch_records(self, ic_number):
        if self._maybe_fail() == 'malformed':
            return {'not': 'a list'}
        return [dict(r) for r in self.records]

    def get_patient(self, ic_number):
        self._maybe_fail()
        return dict(self.patient) if self.patient else None

    def create_record(self, ic_number, doctor_id, payload):
        self._maybe_fail()
        self.created.append((ic_number, doctor_id, payload))
        return f"rec-{len(self.created)}"

    def register_patient(self, ic_number, payload):
        self._maybe_fail()
        self.patient = {**(self.patient or {}), **payload, 'icNumber': ic_number}
        return dict(self.patient)


@pytest.fixture(autouse=True)
def _isolate(settings, monkeypatch):
    cache.clear()
    settings.QUERY_FLOW_BROADCAST = False
    monkeypatch.setattr(audit_service, '_writer', None)


@pytest.fixture
def hospitals(db):
    out = {}
    for hid, name in [('hospital-kl', 'KL General'), ('hospital-penang', 'Penang General'),
                      ('hospital-jb', 'JB Sultanah Aminah')]:
        out[hid] = Hospital.objects.create(id=hid, name=name, city=name.split()[0])
    return out


def make_user(ic, role, hospital=None, name=''):
    return User.objects.create_user(
        username=f"{ic}:{role}", password=PASSWORD, role=role, ic_number=ic,
        hospital=hospital, full_name=name,
    )


@pytest.fixture
def patient(hospitals):
    return make_user(PATIENT_IC, User.ROLE_PATIENT, name='Ahmad bin Abdullah')


@pytest.fixture
def other_patient(hospitals):
    return make_user(OTHER_IC, User.ROLE_PATIENT, name='Nurul Aisyah')


@pytest.fixture
def doctor(hospitals):
    return make_user('750101-14-5001', User.ROLE_DOCTOR, hospitals['hospital-kl'], 'Dr. Lim Wei Ming')


@pytest.fixture
def hospital_admin(hospitals):
    return make_user('admin-kl', User.ROLE_HOSPITAL_ADMIN, hospitals['hospital-kl'])


@pytest.fixture
def central_admin(hospitals):
    return make_user('central-admin', User.ROLE_CENTRAL_ADMIN)


@pytest.fixture
def fake_nodes():
    return {
        'hospital-kl': FakeNode('hospital-kl', 'KL General',
                                records=[{'id': 'kl-1', 'diagnosis': ['Hypertension']},
                                         {'id': 'kl-2', 'diagnosis': ['Flu']}],
                                patient={'fullName': 'Ahmad bin Abdullah', 'bloodType': 'O+',
                                         'allergies': ['Penicillin'], 'chronicConditions': ['Hypertension'],
                                         'emergencyContact': 'Siti', 'emergencyPhone': '012-3456789'}),
        'hospital-penang': FakeNode('hospital-penang', 'Penang General',
                                    records=[{'id': 'pg-1', 'diagnosis': ['Asthma']}],
                                    patient={'fullName': '', 'bloodType': 'O+', 'phone': '04-2222222',
                                             'allergies': ['Penicillin', 'Peanuts'],
                                             'chronicConditions': ['Asthma']}),
        'hospital-jb': FakeNode('hospital-jb', 'JB Sultanah Aminah', records=[{'id': 'jb-1'}]),
    }


@pytest.fixture
def use_fake_nodes(monkeypatch, fake_nodes):
    """Route every coordinator built by the app to the fake nodes."""
    from network.services import coordinator
    monkeypatch.setattr(coordinator, 'get_node_registry', lambda: NodeRegistry(fake_nodes))
    return fake_nodes


@pytest.fixture
def api():
    def _client(user=None):
        client = APIClient()
        if user is not None:
            client.force_authenticate(user=user)
        return client
    return _client
