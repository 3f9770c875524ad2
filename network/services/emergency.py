"""
Break-glass access for emergency staff.

No authorization and no access policy: anyone may ask, and blocked
hospitals are consulted too.  In exchange the answer is limited to what
keeps a patient alive (blood type, allergies, chronic conditions,
emergency contact) and every request leaves exactly one audit entry.
"""
from __future__ import annotations

import logging
from typing import Optional

from network.models import AuditLog
from network.services.audit import AuditEntry
from network.services.coordinator import FederatedQueryCoordinator, get_coordinator
from network.services.types import STATUS_OK, MinimalSafetyProfile, Principal

logger = logging.getLogger(__name__)


def _lookup(coordinator: FederatedQueryCoordinator, ic_number: str) -> MinimalSafetyProfile:
    entry = coordinator.index.get(ic_number)
    if entry is None:
        return MinimalSafetyProfile(ic_number=ic_number, found=False)

    hospitals = list(entry.hospitals)
    outcomes = coordinator.fan_out(hospitals, lambda client: client.lookup_patient(ic_number))
    profile = MinimalSafetyProfile(ic_number=ic_number, found=True, hospitals_with_records=len(hospitals))
    for hid in hospitals:
        outcome, _ = outcomes[hid]
        if outcome.status != STATUS_OK or not outcome.records:
            continue
        patient = outcome.records[0]
        profile.sources.append(hid)
        profile.full_name = profile.full_name or patient.get('fullName') or ''
        profile.blood_type = profile.blood_type or patient.get('bloodType') or ''
        profile.emergency_contact = profile.emergency_contact or patient.get('emergencyContact') or ''
        profile.emergency_phone = profile.emergency_phone or patient.get('emergencyPhone') or ''
        for a in patient.get('allergies') or []:
            if a not in profile.allergies:
                profile.allergies.append(a)
        for c in patient.get('chronicConditions') or []:
            if c not in profile.chronic_conditions:
                profile.chronic_conditions.append(c)
    return profile


def emergency_query(ic_number: str, principal: Optional[Principal] = None, ip: Optional[str] = None, *,
                    coordinator: Optional[FederatedQueryCoordinator] = None) -> MinimalSafetyProfile:
    coordinator = coordinator or get_coordinator()
    profile: Optional[MinimalSafetyProfile] = None
    try:
        profile = _lookup(coordinator, ic_number)
        return profile
    finally:
        if profile is None:
            details = 'Emergency access failed'
        elif profile.found:
            details = f"Emergency access: patient found in {profile.hospitals_with_records} hospitals"
        else:
            details = 'Emergency access: patient not found'
        logger.warning("emergency access to %s from %s: %s", ic_number, ip or 'unknown', details)
        coordinator.audit.append(AuditEntry.for_principal(
            AuditLog.ACTION_EMERGENCY, principal,
            target_ic_number=ic_number,
            details=details,
            ip_address=ip,
            success=profile is not None,
        ))
