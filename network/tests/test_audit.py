import logging
from datetime import timedelta

import pytest
from django.db import OperationalError
from django.utils import timezone

from conftest import PATIENT_IC
from network.authentication import principal_for
from network.exceptions import AuditStoreFailure
from network.models import AuditLog
from network.services.audit import (
    AuditEntry, AuditLogWriter, AuditStore, my_access_logs, my_activity_logs, query_logs,
)
from network.services.types import Principal


class FlakyStore(AuditStore):
    """Fails the first ``failures`` appends, then keeps entries in memory."""

    def __init__(self, failures):
        self.failures = failures
        self.attempts = 0
        self.entries = []

    def append(self, entry):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise OperationalError('database is locked')
        self.entries.append(entry)


def _entry(**kw):
    return AuditEntry.for_principal(
        AuditLog.ACTION_QUERY, Principal('7', 'doctor', '750101-14-5001', 'hospital-kl'),
        target_ic_number=PATIENT_IC, **kw,
    )


def test_entry_from_principal_and_anonymous():
    e = _entry(details='x')
    assert (e.actor_id, e.actor_type, e.actor_hospital_id) == ('7', 'doctor', 'hospital-kl')
    anon = AuditEntry.for_principal(AuditLog.ACTION_EMERGENCY, None, target_ic_number=PATIENT_IC)
    assert anon.actor_type == 'system' and anon.actor_id is None


@pytest.mark.django_db
def test_append_persists_entry():
    e = _entry(details='Federated query', ip_address='10.1.2.3')
    AuditLogWriter(fail_closed=False).append(e)
    row = AuditLog.objects.get(id=e.id)
    assert row.action == AuditLog.ACTION_QUERY
    assert row.ip_address == '10.1.2.3'
    assert row.success is True


@pytest.mark.django_db
def test_entries_are_append_only():
    e = _entry()
    AuditLogWriter(fail_closed=False).append(e)
    row = AuditLog.objects.get(id=e.id)
    row.details = 'tampered'
    with pytest.raises(RuntimeError):
        row.save()
    with pytest.raises(RuntimeError):
        row.delete()


def test_fail_closed_raises():
    writer = AuditLogWriter(FlakyStore(failures=1), fail_closed=True)
    with pytest.raises(AuditStoreFailure):
        writer.append(_entry())


def test_failed_write_is_retried_in_background():
    store = FlakyStore(failures=2)
    writer = AuditLogWriter(store, fail_closed=False, retry_attempts=3, retry_backoff=0)
    e = _entry()
    writer.append(e)
    writer.flush(timeout=5)
    assert store.attempts == 3
    assert store.entries == [e]


def test_exhausted_retries_are_logged_critical(caplog):
    store = FlakyStore(failures=10)
    writer = AuditLogWriter(store, fail_closed=False, retry_attempts=2, retry_backoff=0)
    e = _entry(details='must not vanish')
    with caplog.at_level(logging.WARNING, logger='network.services.audit'):
        writer.append(e)
        writer.flush(timeout=5)
    critical = [r for r in caplog.records if r.levelno == logging.CRITICAL]
    assert len(critical) == 1
    assert str(e.id) in critical[0].getMessage()
    assert 'must not vanish' in critical[0].getMessage()


def _log(action, actor_id, ts, *, target=PATIENT_IC, actor_type='doctor', hospital='hospital-kl'):
    return AuditLog.objects.create(
        timestamp=ts, action=action, actor_id=actor_id, actor_type=actor_type,
        actor_hospital_id=hospital, target_ic_number=target,
    )


@pytest.mark.django_db
def test_query_filters_and_orders_most_recent_first():
    now = timezone.now()
    old = _log(AuditLog.ACTION_QUERY, '1', now - timedelta(days=2))
    new = _log(AuditLog.ACTION_QUERY, '1', now)
    _log(AuditLog.ACTION_VIEW, '1', now)
    _log(AuditLog.ACTION_QUERY, '2', now)

    logs = query_logs(actor_id='1', action=AuditLog.ACTION_QUERY)
    assert [l.id for l in logs] == [new.id, old.id]
    assert [l.id for l in query_logs(actor_id='1', action='query', start=now - timedelta(days=1))] == [new.id]
    assert len(query_logs(limit=2)) == 2


@pytest.mark.django_db
def test_my_access_logs_collapse_repeats_and_skip_own_entries(patient, doctor):
    now = timezone.now()
    _log(AuditLog.ACTION_QUERY, str(doctor.id), now)
    _log(AuditLog.ACTION_QUERY, str(doctor.id), now - timedelta(minutes=2))
    _log(AuditLog.ACTION_QUERY, str(doctor.id), now - timedelta(minutes=30))
    _log(AuditLog.ACTION_QUERY, str(patient.id), now, actor_type='patient', hospital=None)

    logs = my_access_logs(principal_for(patient))
    assert len(logs) == 2
    assert all(l['actorId'] == str(doctor.id) for l in logs)
    assert logs[0]['actorName'] == 'Dr. Lim Wei Ming'
    assert logs[0]['hospitalName'] == 'KL General'


@pytest.mark.django_db
def test_my_activity_logs_skip_login_and_collapse(doctor):
    now = timezone.now()
    me = str(doctor.id)
    _log(AuditLog.ACTION_LOGIN, me, now, target=None)
    _log(AuditLog.ACTION_VIEW, me, now - timedelta(minutes=1))
    _log(AuditLog.ACTION_VIEW, me, now - timedelta(minutes=3))
    _log(AuditLog.ACTION_QUERY, me, now - timedelta(minutes=4))

    logs = my_activity_logs(principal_for(doctor))
    assert [l['action'] for l in logs] == ['view', 'query']


@pytest.mark.django_db
def test_my_access_logs_fill_the_limit_past_own_entries(patient, doctor):
    now = timezone.now()
    for i in range(30):
        _log(AuditLog.ACTION_VIEW, str(patient.id), now - timedelta(seconds=i), actor_type='patient', hospital=None)
    for i in range(25):
        _log(AuditLog.ACTION_QUERY, str(doctor.id), now - timedelta(hours=1, minutes=10 * i))

    logs = my_access_logs(principal_for(patient), limit=20)
    assert len(logs) == 20
    assert {l['actorId'] for l in logs} == {str(doctor.id)}
