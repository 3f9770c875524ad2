"""
Patient controlled access policy.

This is the only privacy control in the federation: the coordinator
consults it before any node is contacted, and only the identity owner
may change it.
"""
from __future__ import annotations

import logging
from typing import Optional

from network.exceptions import AuthorizationError
from network.models import AccessPolicy, AuditLog, Hospital
from network.services.audit import AuditEntry, AuditLogWriter, get_audit_writer
from network.services.types import Principal

logger = logging.getLogger(__name__)


class AccessPolicyStore:

    def is_blocked(self, ic_number: str, hospital_id: str) -> bool:
        return AccessPolicy.objects.filter(
            ic_number=ic_number, hospital_id=hospital_id, is_blocked=True
        ).exists()

    def blocked_hospitals(self, ic_number: str) -> set[str]:
        return set(
            AccessPolicy.objects.filter(ic_number=ic_number, is_blocked=True)
            .values_list('hospital_id', flat=True)
        )

    def settings_for(self, ic_number: str) -> dict[str, bool]:
        return dict(AccessPolicy.objects.filter(ic_number=ic_number).values_list('hospital_id', 'is_blocked'))

    def upsert(self, ic_number: str, hospital_id: str, blocked: bool) -> None:
        AccessPolicy.objects.update_or_create(
            ic_number=ic_number, hospital_id=hospital_id, defaults={'is_blocked': blocked}
        )


class AccessPolicyFilter:
    def __init__(self, store: Optional[AccessPolicyStore] = None, audit: Optional[AuditLogWriter] = None):
        self.store = store or AccessPolicyStore()
        self.audit = audit or get_audit_writer()

    def is_blocked(self, ic_number: str, hospital_id: str) -> bool:
        return self.store.is_blocked(ic_number, hospital_id)

    def blocked_hospitals(self, ic_number: str) -> set[str]:
        return self.store.blocked_hospitals(ic_number)

    def set_blocked(self, ic_number: str, hospital_id: str, blocked: bool, principal: Principal, *, ip: Optional[str] = None) -> None:
        verb = 'blocked' if blocked else 'unblocked'
        if not principal.owns(ic_number):
            logger.warning("policy change for %s refused for principal %s", ic_number, principal.principal_id)
            self.audit.append(AuditEntry.for_principal(
                AuditLog.ACTION_UPDATE, principal,
                target_ic_number=ic_number,
                target_hospital_id=hospital_id,
                details=f"Denied: only the patient may set access for hospital {hospital_id}",
                ip_address=ip,
                success=False,
            ))
            raise AuthorizationError('Only the patient may change access to their records')
        self.store.upsert(ic_number, hospital_id, blocked)
        self.audit.append(AuditEntry.for_principal(
            AuditLog.ACTION_UPDATE, principal,
            target_ic_number=ic_number,
            target_hospital_id=hospital_id,
            details=f"Patient {verb} access for hospital {hospital_id}",
            ip_address=ip,
        ))

    def privacy_settings(self, ic_number: str) -> list[dict]:
        """Every active hospital with the patient's blocked flag."""
        flags = self.store.settings_for(ic_number)
        return [{
            'hospitalId': h.id,
            'hospitalName': h.name,
            'city': h.city,
            'isBlocked': flags.get(h.id, False),
        } for h in Hospital.objects.filter(is_active=True).order_by('id')]
