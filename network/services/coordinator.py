"""
Federated query coordinator.

Resolves an IC number through the central index, applies the patient's
access policy, fans out to every allowed hospital node in parallel and
merges what comes back.  Per-hospital failures are reported in-band;
only an index failure or an authorization denial fails a query.
"""
from __future__ import annotations

import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Callable, Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.db import connections, transaction
from django.utils import timezone
from prometheus_client import Counter, Histogram
from rest_framework.exceptions import NotFound, ValidationError
from tenacity import Retrying, retry_if_result, stop_after_attempt

from network.exceptions import (
    AuthorizationError, IndexStoreFailure, MalformedNodeResponse, NodeError, NodeTimeout, RecordCreateFailure,
)
from network.models import AuditLog, User
from network.services.audit import AuditEntry, AuditLogWriter, get_audit_writer
from network.services.index import IndexStore, ModelIndexStore
from network.services.nodes import HospitalNodeClient, NodeRegistry, get_node_registry
from network.services.policy import AccessPolicyFilter
from network.services.types import (
    STATUS_BLOCKED, STATUS_ERROR, STATUS_OK, STATUS_TIMEOUT, STATUS_UNREACHABLE,
    AggregatedQueryResponse, HospitalQueryResult, NodeOutcome, Principal, QueryStep,
)

logger = logging.getLogger(__name__)

QUERY_FLOW_GROUP = 'network.queries'
CENTRAL_HUB = 'Central Hub'
# extra seconds on top of the per-hospital timeout before giving up on a node
FANOUT_GRACE = 0.5

DEMOGRAPHIC_FIELDS = (
    'fullName', 'dateOfBirth', 'gender', 'bloodType', 'phone', 'email',
    'address', 'emergencyContact', 'emergencyPhone',
)

NODE_OUTCOMES = Counter(
    'medlink_node_outcomes_total', 'Per-hospital outcomes of federated queries', ['hospital', 'status']
)
FANOUT_SECONDS = Histogram('medlink_fanout_seconds', 'Wall-clock duration of a node fan-out')

_STEP_STATUS = {STATUS_OK: 'completed', STATUS_BLOCKED: 'blocked'}


def _now_iso() -> str:
    return timezone.now().isoformat()


def _ms_since(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class FederatedQueryCoordinator:
    def __init__(self, index: Optional[IndexStore] = None, policy: Optional[AccessPolicyFilter] = None,
                 registry: Optional[NodeRegistry] = None, audit: Optional[AuditLogWriter] = None, *,
                 timeout: Optional[float] = None, max_workers: Optional[int] = None,
                 retry_attempts: Optional[int] = None):
        self.index = index or ModelIndexStore()
        self.audit = audit or get_audit_writer()
        self.policy = policy or AccessPolicyFilter(audit=self.audit)
        self.registry = registry if registry is not None else get_node_registry()
        self.timeout = settings.NODE_TIMEOUT_SECONDS if timeout is None else timeout
        self.max_workers = settings.NODE_MAX_WORKERS if max_workers is None else max_workers
        self.retry_attempts = settings.NODE_RETRY_ATTEMPTS if retry_attempts is None else retry_attempts

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _audit(self, action: str, principal: Optional[Principal], ic_number: str, details: str, *,
               ip: Optional[str] = None, success: bool = True, hospital_id: Optional[str] = None) -> None:
        self.audit.append(AuditEntry.for_principal(
            action, principal,
            target_ic_number=ic_number,
            target_hospital_id=hospital_id,
            details=details,
            ip_address=ip,
            success=success,
        ))

    def _authorize(self, ic_number: str, principal: Principal, action: str, ip: Optional[str]) -> None:
        if principal.is_patient and not principal.owns(ic_number):
            logger.warning("patient %s denied %s on %s", principal.principal_id, action, ic_number)
            self._audit(action, principal, ic_number, 'Denied: patients may only access their own records',
                        ip=ip, success=False)
            raise AuthorizationError('Patients may only access their own records')

    def _publish(self, query_id: str, step: QueryStep) -> None:
        if not settings.QUERY_FLOW_BROADCAST:
            return
        channel_layer = get_channel_layer()
        if channel_layer is None:
            return
        try:
            async_to_sync(channel_layer.group_send)(
                QUERY_FLOW_GROUP, {'type': 'query.step', 'queryId': query_id, 'step': step.as_dict()}
            )
        except Exception as e:
            logger.warning("could not publish query step %s/%d: %s", query_id, step.step, e)

    def _within_deadline(self, started: float):
        """Stop retrying once another attempt of the same length would overrun the node timeout."""
        def stop(retry_state) -> bool:
            spent = time.monotonic() - started
            return spent + spent / retry_state.attempt_number > self.timeout
        return stop

    def _call_node(self, hospital_id: str, call: Callable[[HospitalNodeClient], NodeOutcome]) -> tuple[NodeOutcome, int]:
        started = time.monotonic()
        try:
            client = self.registry.client_for(hospital_id)
            if client is None:
                return NodeOutcome(STATUS_ERROR, error='no node configured for this hospital'), _ms_since(started)
            retrying = Retrying(
                stop=stop_after_attempt(self.retry_attempts + 1) | self._within_deadline(started),
                retry=retry_if_result(lambda o: o.status == STATUS_UNREACHABLE),
                before_sleep=lambda state: logger.info(
                    "retrying unreachable node %s (%d/%d)", hospital_id, state.attempt_number, self.retry_attempts
                ),
                retry_error_callback=lambda state: state.outcome.result(),
            )
            outcome = retrying(call, client)
            return outcome, _ms_since(started)
        finally:
            connections.close_all()

    def fan_out(self, hospital_ids: list[str],
                 call: Callable[[HospitalNodeClient], NodeOutcome]) -> dict[str, tuple[NodeOutcome, int]]:
        """Run ``call`` against every hospital concurrently and wait for all of them.

        Nodes still running once the ceiling passes are reported as timed out.
        """
        if not hospital_ids:
            return {}
        started = time.monotonic()
        pool = ThreadPoolExecutor(max_workers=min(self.max_workers, len(hospital_ids)),
                                  thread_name_prefix='node-fanout')
        results: dict[str, tuple[NodeOutcome, int]] = {}
        try:
            futures = {pool.submit(self._call_node, hid, call): hid for hid in hospital_ids}
            done, pending = wait(futures, timeout=self.timeout + FANOUT_GRACE)
            for f in done:
                results[futures[f]] = f.result()
            for f in pending:
                f.cancel()
                hid = futures[f]
                logger.warning("node %s did not settle within %.1fs", hid, self.timeout)
                results[hid] = (NodeOutcome(STATUS_TIMEOUT, error='no answer before deadline'), _ms_since(started))
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
            FANOUT_SECONDS.observe(time.monotonic() - started)
        return results

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------
    def query_patient(self, ic_number: str, principal: Principal, *, ip: Optional[str] = None) -> AggregatedQueryResponse:
        started = time.monotonic()
        query_id = uuid.uuid4().hex
        self._authorize(ic_number, principal, AuditLog.ACTION_QUERY, ip)

        try:
            entry = self.index.get(ic_number)
        except IndexStoreFailure:
            self._audit(AuditLog.ACTION_QUERY, principal, ic_number, 'Federated query failed: index unavailable',
                        ip=ip, success=False)
            raise
        candidates = list(entry.hospitals) if entry else []
        response = AggregatedQueryResponse(query_id=query_id, ic_number=ic_number)

        lookup = QueryStep(1, 'Looking up patient in central index', CENTRAL_HUB, 'Patient Index',
                           'completed', _now_iso(), {'found': entry is not None, 'hospitals': len(candidates)})
        response.steps.append(lookup)
        self._publish(query_id, lookup)

        blocked = self.policy.blocked_hospitals(ic_number) if candidates else set()
        allowed = [h for h in candidates if h not in blocked]
        outcomes = self.fan_out(allowed, lambda client: client.query(ic_number))

        for i, hid in enumerate(candidates):
            name = self.registry.hospital_name(hid)
            if hid in blocked:
                result = HospitalQueryResult(hid, name, STATUS_BLOCKED)
            else:
                outcome, elapsed = outcomes[hid]
                records = []
                if outcome.status == STATUS_OK:
                    records = [{
                        **r,
                        'hospitalId': hid,
                        'hospitalName': name,
                        'sourceHospital': name,
                        'isReadOnly': principal.home_hospital_id != hid,
                    } for r in outcome.records]
                result = HospitalQueryResult(hid, name, outcome.status, records, elapsed, outcome.error)
            NODE_OUTCOMES.labels(hospital=hid, status=result.status).inc()
            response.hospitals.append(result)
            step = QueryStep(i + 2, f"Querying {name}", CENTRAL_HUB, name,
                             _STEP_STATUS.get(result.status, 'error'), _now_iso(),
                             {'status': result.status, 'recordCount': result.record_count,
                              'responseTime': result.elapsed_ms})
            response.steps.append(step)
            self._publish(query_id, step)

        response.total_records = sum(h.record_count for h in response.hospitals if h.status == STATUS_OK)
        response.elapsed_ms = _ms_since(started)
        self._audit(AuditLog.ACTION_QUERY, principal, ic_number,
                    f"Federated query: {response.total_records} records from {len(candidates)} hospitals",
                    ip=ip)
        logger.info("query %s for %s: %d hospitals, %d records in %dms",
                    query_id, ic_number, len(candidates), response.total_records, response.elapsed_ms)
        return response

    def get_patient_summary(self, ic_number: str, principal: Principal, *, ip: Optional[str] = None) -> dict:
        self._authorize(ic_number, principal, AuditLog.ACTION_VIEW, ip)
        entry = self.index.get(ic_number)
        if entry is None:
            raise NotFound('Patient not found in the network')

        blocked = self.policy.blocked_hospitals(ic_number)
        allowed = [h for h in entry.hospitals if h not in blocked]
        outcomes = self.fan_out(allowed, lambda client: client.lookup_patient(ic_number))

        summary: dict = {f: '' for f in DEMOGRAPHIC_FIELDS}
        allergies: list[str] = []
        conditions: list[str] = []
        for hid in allowed:
            outcome, _ = outcomes[hid]
            if outcome.status != STATUS_OK or not outcome.records:
                continue
            patient = outcome.records[0]
            for f in DEMOGRAPHIC_FIELDS:
                if not summary[f] and patient.get(f):
                    summary[f] = patient[f]
            for a in patient.get('allergies') or []:
                if a not in allergies:
                    allergies.append(a)
            for c in patient.get('chronicConditions') or []:
                if c not in conditions:
                    conditions.append(c)

        self._audit(AuditLog.ACTION_VIEW, principal, ic_number, 'Viewed patient summary', ip=ip)
        return {
            'icNumber': ic_number,
            **summary,
            'allergies': allergies,
            'chronicConditions': conditions,
            'hospitals': [{
                'hospitalId': hid,
                'hospitalName': self.registry.hospital_name(hid),
                'blocked': hid in blocked,
            } for hid in entry.hospitals],
            'lastUpdated': entry.last_updated.isoformat(),
        }

    def _authorize_write(self, hospital_id: str, ic_number: str, principal: Principal, ip: Optional[str],
                         what: str) -> None:
        may_write = (
            principal.principal_type == User.ROLE_CENTRAL_ADMIN
            or (principal.principal_type in (User.ROLE_DOCTOR, User.ROLE_HOSPITAL_ADMIN)
                and principal.home_hospital_id == hospital_id)
        )
        if not may_write:
            self._audit(AuditLog.ACTION_CREATE, principal, ic_number, f"Denied {what} at {hospital_id}",
                        ip=ip, success=False, hospital_id=hospital_id)
            raise AuthorizationError(f"Only staff of this hospital may perform {what}")

    def _indexed_write(self, hospital_id: str, ic_number: str, principal: Principal, ip: Optional[str],
                       what: str, write: Callable[[HospitalNodeClient], Any]) -> Any:
        """Index ``hospital_id`` for the patient and run ``write`` against its node, all or nothing.

        When the node's answer is lost (timeout, unreadable reply) the write may
        have landed, so the index entry is kept to leave it findable.
        """
        client = self.registry.client_for(hospital_id)
        if client is None:
            raise NotFound('Unknown hospital')
        try:
            with transaction.atomic():
                self.index.add_hospital(ic_number, hospital_id)
                return write(client)
        except NodeError as e:
            logger.warning("%s at %s failed: %s", what, hospital_id, e)
            if isinstance(e, (NodeTimeout, MalformedNodeResponse)):
                self.index.add_hospital(ic_number, hospital_id)
            self._audit(AuditLog.ACTION_CREATE, principal, ic_number, f"{what.capitalize()} at {hospital_id} failed",
                        ip=ip, success=False, hospital_id=hospital_id)
            raise RecordCreateFailure(f"Hospital node could not complete {what}") from e

    def create_record(self, hospital_id: str, ic_number: str, doctor_id: Optional[str], payload: dict,
                      principal: Principal, *, ip: Optional[str] = None) -> dict:
        self._authorize_write(hospital_id, ic_number, principal, ip, 'record creation')

        if principal.principal_type == User.ROLE_DOCTOR:
            doctor_id = principal.principal_id
        elif doctor_id and not User.objects.filter(
                id=doctor_id, role=User.ROLE_DOCTOR, hospital_id=hospital_id).exists():
            raise ValidationError({'doctorId': 'Doctor does not belong to this hospital'})

        record_id = self._indexed_write(hospital_id, ic_number, principal, ip, 'record creation',
                                        lambda client: client.create_record(ic_number, doctor_id, payload))
        self._audit(AuditLog.ACTION_CREATE, principal, ic_number, f"Created record {record_id}",
                    ip=ip, hospital_id=hospital_id)
        return {'id': record_id, 'hospitalId': hospital_id, 'icNumber': ic_number}

    def register_patient(self, hospital_id: str, ic_number: str, payload: dict, principal: Principal, *,
                         ip: Optional[str] = None) -> dict:
        """Create or update the patient's demographics at one hospital."""
        self._authorize_write(hospital_id, ic_number, principal, ip, 'patient registration')
        patient = self._indexed_write(hospital_id, ic_number, principal, ip, 'patient registration',
                                      lambda client: client.register_patient(ic_number, payload))
        self._audit(AuditLog.ACTION_CREATE, principal, ic_number, f"Registered patient at {hospital_id}",
                    ip=ip, hospital_id=hospital_id)
        return patient


def get_coordinator() -> FederatedQueryCoordinator:
    return FederatedQueryCoordinator(registry=get_node_registry())
