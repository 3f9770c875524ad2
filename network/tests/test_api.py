"""
Integration tests for the MedLink HTTP API.

Node fan-out is routed to in-memory fake nodes (see ``use_fake_nodes``);
everything else runs against the test database through DRF's APIClient.
"""
import pytest

from conftest import OTHER_IC, PASSWORD, PATIENT_IC, make_user
from network.models import AccessPolicy, AuditLog, MedicalRecord, User
from network.services.index import ModelIndexStore

pytestmark = pytest.mark.django_db


def _index(*hospital_ids, ic=PATIENT_IC):
    for hid in hospital_ids:
        ModelIndexStore().add_hospital(ic, hid)


# ---------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------
def test_login_with_ic_number_returns_jwt_pair(api, patient):
    r = api().post('/api/auth/login', {'icNumber': PATIENT_IC, 'password': PASSWORD}, format='json')
    assert r.status_code == 200
    data = r.data['data']
    assert data['access'] and data['refresh']
    assert data['user']['role'] == 'patient'

    client = api()
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {data['access']}")
    assert client.get('/api/central/hospitals').status_code == 200
    assert AuditLog.objects.filter(action=AuditLog.ACTION_LOGIN, success=True).count() == 1


def test_dual_identity_login_needs_role(api, hospitals):
    make_user('750101-14-5001', User.ROLE_DOCTOR, hospitals['hospital-kl'])
    make_user('750101-14-5001', User.ROLE_PATIENT)

    r = api().post('/api/auth/login', {'icNumber': '750101-14-5001', 'password': PASSWORD}, format='json')
    assert r.status_code == 401
    r = api().post('/api/auth/login', {'icNumber': '750101-14-5001', 'password': PASSWORD, 'role': 'doctor'},
                   format='json')
    assert r.status_code == 200
    assert r.data['data']['user']['hospitalId'] == 'hospital-kl'


def test_failed_login_is_audited(api, patient):
    r = api().post('/api/auth/login', {'icNumber': PATIENT_IC, 'password': 'wrong'}, format='json')
    assert r.status_code == 401
    assert r.data['ok'] is False
    entry = AuditLog.objects.get(action=AuditLog.ACTION_LOGIN)
    assert entry.success is False
    assert entry.target_ic_number == PATIENT_IC


def test_logout_blacklists_refresh_token(api, patient):
    tokens = api().post('/api/auth/login', {'icNumber': PATIENT_IC, 'password': PASSWORD},
                        format='json').data['data']
    client = api()
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {tokens['access']}")
    r = client.post('/api/auth/logout', {'refresh': tokens['refresh']}, format='json')
    assert r.status_code == 200
    assert AuditLog.objects.filter(action=AuditLog.ACTION_LOGOUT).count() == 1

    r = api().post('/api/auth/refresh', {'refresh': tokens['refresh']}, format='json')
    assert r.status_code == 401


def test_refresh_returns_new_access_token(api, patient):
    tokens = api().post('/api/auth/login', {'icNumber': PATIENT_IC, 'password': PASSWORD},
                        format='json').data['data']
    r = api().post('/api/auth/refresh', {'refresh': tokens['refresh']}, format='json')
    assert r.status_code == 200
    assert r.data['data']['access']


# ---------------------------------------------------------------------
# Federated query
# ---------------------------------------------------------------------
def test_query_requires_authentication(api, use_fake_nodes):
    assert api().get(f'/api/central/query/{PATIENT_IC}').status_code in (401, 403)


def test_doctor_query_returns_aggregate(api, doctor, use_fake_nodes):
    _index('hospital-kl', 'hospital-penang')
    r = api(doctor).get(f'/api/central/query/{PATIENT_IC}')
    assert r.status_code == 200
    data = r.data['data']
    assert data['icNumber'] == PATIENT_IC
    assert data['totalRecords'] == 3
    assert [h['hospitalId'] for h in data['hospitals']] == ['hospital-kl', 'hospital-penang']
    assert len(data['querySteps']) == 3


def test_unknown_patient_query_is_not_an_error(api, doctor, use_fake_nodes):
    r = api(doctor).get('/api/central/query/000000-00-0000')
    assert r.status_code == 200
    assert r.data['data']['hospitals'] == []


def test_patient_query_for_other_ic_is_forbidden(api, patient, use_fake_nodes):
    _index('hospital-kl', ic=OTHER_IC)
    r = api(patient).get(f'/api/central/query/{OTHER_IC}')
    assert r.status_code == 403
    assert r.data['error']['code'] == 'not_permitted'
    assert use_fake_nodes['hospital-kl'].calls == 0
    assert AuditLog.objects.get(action=AuditLog.ACTION_QUERY).success is False


def test_patient_summary(api, patient, use_fake_nodes):
    _index('hospital-kl')
    r = api(patient).get(f'/api/central/patient/{PATIENT_IC}')
    assert r.status_code == 200
    assert r.data['data']['bloodType'] == 'O+'
    assert api(patient).get(f'/api/central/patient/{OTHER_IC}').status_code == 403


def test_patient_summary_unknown_is_404(api, doctor, use_fake_nodes):
    r = api(doctor).get(f'/api/central/patient/{PATIENT_IC}')
    assert r.status_code == 404
    assert r.data['ok'] is False


# ---------------------------------------------------------------------
# Emergency
# ---------------------------------------------------------------------
def test_emergency_is_anonymous_and_rate_limited(api, hospitals, use_fake_nodes):
    _index('hospital-kl')
    client = api()
    r = client.get(f'/api/central/emergency/{PATIENT_IC}')
    assert r.status_code == 200
    assert r.data['data']['found'] is True
    assert r.data['data']['bloodType'] == 'O+'

    r = client.get(f'/api/central/emergency/{PATIENT_IC}')
    assert r.status_code == 429
    assert AuditLog.objects.filter(action=AuditLog.ACTION_EMERGENCY).count() == 1


# ---------------------------------------------------------------------
# Privacy settings
# ---------------------------------------------------------------------
def test_privacy_settings_round_trip(api, patient):
    client = api(patient)
    r = client.post('/api/central/privacy-settings/hospital-access',
                    {'hospitalId': 'hospital-penang', 'isBlocked': True}, format='json')
    assert r.status_code == 200
    assert AccessPolicy.objects.get(ic_number=PATIENT_IC, hospital_id='hospital-penang').is_blocked

    rows = client.get('/api/central/privacy-settings').data['data']
    assert {r['hospitalId']: r['isBlocked'] for r in rows}['hospital-penang'] is True


def test_privacy_settings_reject_unknown_hospital(api, patient):
    r = api(patient).post('/api/central/privacy-settings/hospital-access',
                          {'hospitalId': 'hospital-nowhere', 'isBlocked': True}, format='json')
    assert r.status_code == 400
    assert not AccessPolicy.objects.exists()


# ---------------------------------------------------------------------
# Audit views
# ---------------------------------------------------------------------
def test_audit_logs_are_admin_only(api, doctor, central_admin, use_fake_nodes):
    api(doctor).get(f'/api/central/query/{PATIENT_IC}')
    assert api(doctor).get('/api/central/audit-logs').status_code == 403

    r = api(central_admin).get('/api/central/audit-logs', {'action': 'query'})
    assert r.status_code == 200
    [entry] = r.data['data']
    assert entry['actorName'] == 'Dr. Lim Wei Ming'


def test_hospital_admin_sees_only_own_hospital(api, doctor, patient, hospital_admin, use_fake_nodes):
    api(doctor).get(f'/api/central/query/{PATIENT_IC}')
    api(patient).get(f'/api/central/query/{PATIENT_IC}')
    r = api(hospital_admin).get('/api/central/audit-logs')
    assert r.status_code == 200
    assert [e['actorId'] for e in r.data['data']] == [str(doctor.id)]


def test_my_access_and_activity_logs(api, doctor, patient, use_fake_nodes):
    _index('hospital-kl')
    api(doctor).get(f'/api/central/query/{PATIENT_IC}')

    r = api(patient).get('/api/central/my-access-logs')
    assert r.status_code == 200
    assert [e['actorType'] for e in r.data['data']] == ['doctor']

    r = api(doctor).get('/api/central/my-activity-logs')
    assert [(e['action'], e['targetIcNumber']) for e in r.data['data']] == [('query', PATIENT_IC)]


# ---------------------------------------------------------------------
# Directory, stats and index
# ---------------------------------------------------------------------
def test_hospitals_and_stats(api, doctor, use_fake_nodes):
    _index('hospital-kl')
    api(doctor).get(f'/api/central/query/{PATIENT_IC}')
    hospitals = api(doctor).get('/api/central/hospitals').data['data']
    assert [h['id'] for h in hospitals] == ['hospital-jb', 'hospital-kl', 'hospital-penang']

    stats = api(doctor).get('/api/central/stats').data['data']
    assert stats['totalPatients'] == 1
    assert stats['activeHospitals'] == 3
    assert stats['todayQueries'] == 1


def test_index_endpoints_are_central_admin_only(api, doctor, central_admin):
    _index('hospital-kl', 'hospital-jb')
    assert api(doctor).get('/api/central/indexes').status_code == 403
    r = api(central_admin).get(f'/api/central/index/{PATIENT_IC}')
    assert r.data['data']['hospitals'] == ['hospital-kl', 'hospital-jb']
    assert api(central_admin).get('/api/central/index/nobody').status_code == 404
    assert api(central_admin).get('/api/central/indexes').data['meta']['total'] == 1


# ---------------------------------------------------------------------
# Hospital node endpoints
# ---------------------------------------------------------------------
RECORD = {
    'icNumber': PATIENT_IC,
    'visitDate': '2026-04-01T09:15:00+08:00',
    'visitType': 'outpatient',
    'chiefComplaint': '<b>Chest pain</b>',
    'diagnosis': ['Angina'],
    'vitalSigns': {'heartRate': 88},
    'prescriptions': [{'medicationName': 'Aspirin', 'dosage': '100mg'}],
}


def test_doctor_creates_record_at_own_hospital(api, doctor):
    r = api(doctor).post('/api/hospitals/hospital-kl/records', RECORD, format='json')
    assert r.status_code == 201
    record = MedicalRecord.objects.get(id=r.data['data']['id'])
    assert record.chief_complaint == 'Chest pain'
    assert record.doctor == doctor
    assert record.prescriptions[0]['medicationName'] == 'Aspirin'
    assert ModelIndexStore().get(PATIENT_IC).hospitals == ('hospital-kl',)


def test_record_creation_elsewhere_is_forbidden(api, doctor, patient):
    assert api(doctor).post('/api/hospitals/hospital-penang/records', RECORD, format='json').status_code == 403
    assert api(patient).post('/api/hospitals/hospital-kl/records', RECORD, format='json').status_code == 403
    assert not MedicalRecord.objects.exists()


def test_node_records_and_patient_endpoints(api, doctor, patient):
    api(doctor).post('/api/hospitals/hospital-kl/records', RECORD, format='json')

    r = api(patient).get(f'/api/hospitals/hospital-kl/records/{PATIENT_IC}')
    assert r.status_code == 200
    assert [x['diagnosis'] for x in r.data['data']] == [['Angina']]

    r = api(doctor).get(f'/api/hospitals/hospital-kl/patients/{PATIENT_IC}')
    assert r.status_code == 200
    assert r.data['data']['icNumber'] == PATIENT_IC
    assert AuditLog.objects.filter(action=AuditLog.ACTION_VIEW, target_hospital_id='hospital-kl').count() == 1

    assert api(doctor).get(f'/api/hospitals/hospital-penang/records/{PATIENT_IC}').status_code == 403
    assert api(patient).get(f'/api/hospitals/hospital-kl/records/{OTHER_IC}').status_code == 403


def test_peer_node_key_grants_access(api, hospitals, settings):
    settings.NODE_SHARED_KEY = 'peer-secret'
    client = api()
    client.credentials(HTTP_X_NODE_KEY='peer-secret')
    r = client.post('/api/hospitals/hospital-penang/records', RECORD, format='json')
    assert r.status_code == 201
    r = client.get(f'/api/hospitals/hospital-penang/records/{PATIENT_IC}')
    assert len(r.data['data']) == 1

    client.credentials(HTTP_X_NODE_KEY='wrong')
    assert client.get(f'/api/hospitals/hospital-penang/records/{PATIENT_IC}').status_code in (401, 403)


def test_remote_hospital_is_not_served_locally(api, central_admin, hospitals):
    hospitals['hospital-jb'].api_endpoint = 'https://jb.example.org'
    hospitals['hospital-jb'].save()
    r = api(central_admin).get(f'/api/hospitals/hospital-jb/records/{PATIENT_IC}')
    assert r.status_code == 404


def test_healthz(api, hospitals):
    r = api().get('/healthz')
    assert r.status_code == 200
    assert r.json()['activeHospitals'] == 3


def test_metrics_expose_node_outcomes(api, doctor, use_fake_nodes):
    _index('hospital-kl')
    api(doctor).get(f'/api/central/query/{PATIENT_IC}')
    r = api().get('/metrics')
    assert r.status_code == 200
    assert b'medlink_node_outcomes_total' in r.content


REGISTRATION = {
    'icNumber': OTHER_IC,
    'fullName': 'Nurul Aisyah',
    'dateOfBirth': '1995-03-20',
    'gender': 'female',
    'bloodType': 'A-',
    'emergencyContact': '<i>Siti</i> binti Ahmad',
    'allergies': ['Latex'],
}


def test_staff_registers_patient_at_own_hospital(api, doctor):
    r = api(doctor).post('/api/hospitals/hospital-kl/patients', REGISTRATION, format='json')
    assert r.status_code == 201
    assert r.data['data']['bloodType'] == 'A-'
    assert ModelIndexStore().get(OTHER_IC).hospitals == ('hospital-kl',)

    r = api(doctor).get(f'/api/hospitals/hospital-kl/patients/{OTHER_IC}')
    assert r.data['data']['emergencyContact'] == 'Siti binti Ahmad'
    assert r.data['data']['allergies'] == ['Latex']
    assert r.data['data']['dateOfBirth'] == '1995-03-20'


def test_patient_registration_is_staff_only(api, doctor, other_patient):
    assert api(other_patient).post('/api/hospitals/hospital-kl/patients', REGISTRATION,
                                   format='json').status_code == 403
    assert api(doctor).post('/api/hospitals/hospital-penang/patients', REGISTRATION,
                            format='json').status_code == 403
    assert ModelIndexStore().get(OTHER_IC) is None
    assert not AuditLog.objects.filter(action=AuditLog.ACTION_CREATE, success=True).exists()


def test_patient_registration_needs_a_name(api, doctor):
    r = api(doctor).post('/api/hospitals/hospital-kl/patients', {'icNumber': OTHER_IC, 'fullName': '<b></b>'},
                         format='json')
    assert r.status_code == 400
