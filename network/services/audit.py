"""
Audit trail of every access to the network.

Entries are written through :class:`AuditLogWriter`.  A failing store
never silently drops an entry: depending on ``AUDIT_FAIL_CLOSED`` the
write either raises :class:`AuditStoreFailure` or is retried in the
background with exponential backoff.
"""
from __future__ import annotations

import json
import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import DatabaseError, IntegrityError, connections
from django.utils import timezone
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from network.exceptions import AuditStoreFailure
from network.models import AuditLog, Hospital
from network.services.types import Principal

logger = logging.getLogger(__name__)

User = get_user_model()

DEDUP_WINDOW = timedelta(minutes=5)


@dataclass(frozen=True)
class AuditEntry:
    action: str
    actor_type: str
    actor_id: Optional[str] = None
    actor_hospital_id: Optional[str] = None
    target_ic_number: Optional[str] = None
    target_hospital_id: Optional[str] = None
    details: str = ''
    ip_address: Optional[str] = None
    success: bool = True
    timestamp: datetime = field(default_factory=timezone.now)
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    @classmethod
    def for_principal(cls, action: str, principal: Optional[Principal], **kwargs) -> 'AuditEntry':
        if principal is None:
            return cls(action=action, actor_type='system', **kwargs)
        return cls(
            action=action,
            actor_type=principal.principal_type,
            actor_id=principal.principal_id,
            actor_hospital_id=principal.home_hospital_id,
            **kwargs,
        )


class AuditStore:
    def append(self, entry: AuditEntry) -> None:
        AuditLog.objects.create(**asdict(entry))


class AuditLogWriter:
    def __init__(self, store: Optional[AuditStore] = None, *, fail_closed: Optional[bool] = None,
                 retry_attempts: Optional[int] = None, retry_backoff: Optional[float] = None):
        self.store = store or AuditStore()
        self.fail_closed = settings.AUDIT_FAIL_CLOSED if fail_closed is None else fail_closed
        self.retry_attempts = settings.AUDIT_RETRY_ATTEMPTS if retry_attempts is None else retry_attempts
        self.retry_backoff = settings.AUDIT_RETRY_BACKOFF if retry_backoff is None else retry_backoff
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: list[Future] = []
        self._lock = threading.Lock()

    def append(self, entry: AuditEntry) -> None:
        try:
            self.store.append(entry)
            return
        except DatabaseError as e:
            logger.warning("audit write failed (%s %s): %s", entry.action, entry.id, e)
            if self.fail_closed:
                raise AuditStoreFailure() from e
        self._schedule_retry(entry)

    def _schedule_retry(self, entry: AuditEntry) -> None:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='audit-retry')
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(self._executor.submit(self._retry, entry))

    def _store_again(self, entry: AuditEntry) -> None:
        try:
            self.store.append(entry)
        except IntegrityError:
            # the first write went through after all
            logger.info("audit entry %s was already stored", entry.id)

    def _retry(self, entry: AuditEntry) -> bool:
        retrying = Retrying(
            stop=stop_after_attempt(max(1, self.retry_attempts)),
            wait=wait_exponential(multiplier=self.retry_backoff),
            retry=retry_if_exception_type(DatabaseError),
            before_sleep=lambda state: logger.warning(
                "audit retry %d/%d failed for %s: %s",
                state.attempt_number, self.retry_attempts, entry.id, state.outcome.exception(),
            ),
            reraise=True,
        )
        try:
            retrying(self._store_again, entry)
        except DatabaseError as e:
            logger.critical("audit entry could not be stored (%s): %s", e, json.dumps(asdict(entry), default=str))
            return False
        finally:
            connections.close_all()
        return True

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for background retries to finish."""
        with self._lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)


_writer: Optional[AuditLogWriter] = None


def get_audit_writer() -> AuditLogWriter:
    global _writer
    if _writer is None:
        _writer = AuditLogWriter()
    return _writer


def log_action(*, user, action: str, target_ic_number: Optional[str] = None,
               target_hospital_id: Optional[str] = None, details: str = '',
               ip: Optional[str] = None, success: bool = True) -> None:
    """Audit an action by a user object (or anonymously when ``user`` is None)."""
    principal = None
    if user is not None and getattr(user, 'id', None):
        principal = Principal(
            principal_id=str(user.id),
            principal_type=user.role,
            ic_number=user.ic_number,
            home_hospital_id=user.hospital_id,
        )
    get_audit_writer().append(AuditEntry.for_principal(
        action, principal,
        target_ic_number=target_ic_number,
        target_hospital_id=target_hospital_id,
        details=details,
        ip_address=ip,
        success=success,
    ))


# ---------------------------------------------------------------------
# Read paths
# ---------------------------------------------------------------------
def query_logs(*, actor_id: Optional[str] = None, target_ic_number: Optional[str] = None,
               action: Optional[str] = None, actor_hospital_id: Optional[str] = None,
               start: Optional[datetime] = None, end: Optional[datetime] = None,
               limit: int = 100) -> list[AuditLog]:
    qs = AuditLog.objects.all()
    if actor_id:
        qs = qs.filter(actor_id=actor_id)
    if target_ic_number:
        qs = qs.filter(target_ic_number=target_ic_number)
    if action:
        qs = qs.filter(action=action)
    if actor_hospital_id:
        qs = qs.filter(actor_hospital_id=actor_hospital_id)
    if start:
        qs = qs.filter(timestamp__gte=start)
    if end:
        qs = qs.filter(timestamp__lte=end)
    return list(qs.order_by('-timestamp')[:limit])


def format_log(log: AuditLog) -> dict:
    return {
        'id': str(log.id),
        'timestamp': log.timestamp.isoformat(),
        'action': log.action,
        'actorId': log.actor_id,
        'actorType': log.actor_type,
        'actorHospitalId': log.actor_hospital_id,
        'targetIcNumber': log.target_ic_number,
        'targetHospitalId': log.target_hospital_id,
        'details': log.details,
        'ipAddress': log.ip_address,
        'success': log.success,
    }


def _mask_ic(ic: str) -> str:
    return f"{ic[:6]}****" if len(ic) > 6 else ic


def _actor_name(log: AuditLog, users: dict[str, Any], hospital_name: str) -> str:
    if log.actor_type == 'system' or not log.actor_id:
        return 'System'
    user = users.get(log.actor_id)
    if user is None:
        return f"Unknown {log.actor_type.replace('_', ' ').title()}"
    if log.actor_type == 'doctor':
        return user.full_name or f"Dr. {user.ic_number}"
    if log.actor_type == 'patient':
        return f"Patient {_mask_ic(user.ic_number)}"
    if log.actor_type == 'hospital_admin':
        return f"Admin ({hospital_name})"
    return 'Central Administrator'


def enrich(logs: Iterable[AuditLog]) -> list[dict]:
    """Add display names for the actor and the actor's hospital."""
    logs = list(logs)
    actor_ids = {l.actor_id for l in logs if l.actor_id}
    users = {str(u.id): u for u in User.objects.filter(id__in=[a for a in actor_ids if a.isdigit()])}
    hospitals = dict(Hospital.objects.values_list('id', 'name'))
    out = []
    for log in logs:
        hospital_name = hospitals.get(log.actor_hospital_id, log.actor_hospital_id or 'Central Hub')
        out.append({
            **format_log(log),
            'actorName': _actor_name(log, users, hospital_name),
            'hospitalName': hospital_name,
        })
    return out


def _collapse(logs: Iterable[AuditLog], key, limit: int) -> list[AuditLog]:
    """Drop entries repeating the previous kept entry's key within the window.

    Stops reading ``logs`` once ``limit`` entries are kept.
    """
    kept: list[AuditLog] = []
    for log in logs:
        last = kept[-1] if kept else None
        if last and key(last) == key(log) and abs(last.timestamp - log.timestamp) < DEDUP_WINDOW:
            continue
        kept.append(log)
        if len(kept) >= limit:
            break
    return kept


def my_access_logs(principal: Principal, limit: int = 20) -> list[dict]:
    """Who accessed the caller's records (their own actions excluded)."""
    qs = (AuditLog.objects.filter(target_ic_number=principal.ic_number)
          .exclude(actor_id=principal.principal_id)
          .order_by('-timestamp'))
    logs = _collapse(qs.iterator(), lambda l: (l.actor_id, l.action, l.actor_hospital_id), limit)
    return enrich(logs)


def my_activity_logs(principal: Principal, limit: int = 10) -> list[dict]:
    """Patient-targeted actions performed by the caller."""
    qs = (AuditLog.objects.filter(actor_id=principal.principal_id, target_ic_number__isnull=False)
          .exclude(target_ic_number='')
          .exclude(action__in=(AuditLog.ACTION_LOGIN, AuditLog.ACTION_LOGOUT))
          .order_by('-timestamp'))
    logs = _collapse(qs.iterator(), lambda l: (l.target_ic_number, l.action), limit)
    return [format_log(l) for l in logs]
