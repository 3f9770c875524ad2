"""
Database models for the MedLink network.

The central tier owns the hospital directory, the patient index, the
per-hospital access policies and the audit log.  ``LocalPatient`` and
``MedicalRecord`` hold the data of hospital nodes that are served by
this deployment; each row belongs to exactly one hospital and is only
ever read by other hospitals through the federated query.
"""
from __future__ import annotations

import uuid
from django.contrib.auth.models import AbstractUser
from django.db import models


class Hospital(models.Model):
    """A hospital node in the network directory.

    ``api_endpoint`` is the base URL of an independently deployed node.
    When it is blank the node's records live in this database and are
    served by :class:`network.services.nodes.LocalHospitalNodeClient`.
    """
    id = models.CharField(max_length=50, primary_key=True, help_text="e.g. 'hospital-kl'")
    name = models.CharField(max_length=255)
    short_name = models.CharField(max_length=100, blank=True)
    city = models.CharField(max_length=100, blank=True)
    state = models.CharField(max_length=100, blank=True)
    api_endpoint = models.URLField(max_length=255, blank=True)
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.name} ({self.id})"


class User(AbstractUser):
    """Network user authenticated by IC number.

    A person may hold several accounts with different roles (a doctor is
    usually also a patient), so ``ic_number`` is not unique on its own.
    Hospital staff are bound to their hospital.
    """
    ROLE_PATIENT = 'patient'
    ROLE_DOCTOR = 'doctor'
    ROLE_HOSPITAL_ADMIN = 'hospital_admin'
    ROLE_CENTRAL_ADMIN = 'central_admin'
    ROLE_CHOICES = [
        (ROLE_PATIENT, 'Patient'),
        (ROLE_DOCTOR, 'Doctor'),
        (ROLE_HOSPITAL_ADMIN, 'Hospital Administrator'),
        (ROLE_CENTRAL_ADMIN, 'Central Administrator'),
    ]
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=ROLE_PATIENT)
    ic_number = models.CharField(max_length=32, db_index=True)
    hospital = models.ForeignKey(
        Hospital, null=True, blank=True, on_delete=models.SET_NULL, related_name='staff'
    )
    full_name = models.CharField(max_length=255, blank=True)
    specialization = models.CharField(max_length=100, blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['ic_number', 'role'], name='uniq_user_ic_role'),
        ]

    def __str__(self) -> str:
        return f"{self.ic_number} ({self.role})"


class PatientIndex(models.Model):
    """Central index entry: which hospitals hold records for an IC number."""
    ic_number = models.CharField(max_length=32, primary_key=True)
    last_updated = models.DateTimeField(auto_now=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return self.ic_number


class PatientIndexHospital(models.Model):
    """One hospital of an index entry.

    Rows are only ever inserted.  Insertion order (the primary key) is the
    order in which hospitals are reported by the coordinator.
    """
    index = models.ForeignKey(PatientIndex, on_delete=models.CASCADE, related_name='hospitals')
    hospital_id = models.CharField(max_length=50)
    added_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['id']
        constraints = [
            models.UniqueConstraint(fields=['index', 'hospital_id'], name='uniq_index_hospital'),
        ]

    def __str__(self) -> str:
        return f"{self.index_id} @ {self.hospital_id}"


class AccessPolicy(models.Model):
    """Patient controlled blocking of one hospital. No row means allowed."""
    ic_number = models.CharField(max_length=32, db_index=True)
    hospital_id = models.CharField(max_length=50)
    is_blocked = models.BooleanField(default=False)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['ic_number', 'hospital_id'], name='uniq_policy_ic_hospital'),
        ]

    def __str__(self) -> str:
        return f"{self.ic_number} -> {self.hospital_id}: {'blocked' if self.is_blocked else 'allowed'}"


class AuditLog(models.Model):
    """Append-only record of an access to the network.

    Rows can be created but never changed or deleted.
    """
    ACTION_QUERY = 'query'
    ACTION_VIEW = 'view'
    ACTION_CREATE = 'create'
    ACTION_UPDATE = 'update'
    ACTION_EMERGENCY = 'emergency_access'
    ACTION_LOGIN = 'login'
    ACTION_LOGOUT = 'logout'
    ACTION_CHOICES = (
        (ACTION_QUERY, 'query'),
        (ACTION_VIEW, 'view'),
        (ACTION_CREATE, 'create'),
        (ACTION_UPDATE, 'update'),
        (ACTION_EMERGENCY, 'emergency_access'),
        (ACTION_LOGIN, 'login'),
        (ACTION_LOGOUT, 'logout'),
    )
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    timestamp = models.DateTimeField(db_index=True)
    action = models.CharField(max_length=32, choices=ACTION_CHOICES)
    actor_id = models.CharField(max_length=64, blank=True, null=True)
    actor_type = models.CharField(max_length=20)
    actor_hospital_id = models.CharField(max_length=50, blank=True, null=True)
    target_ic_number = models.CharField(max_length=32, blank=True, null=True)
    target_hospital_id = models.CharField(max_length=50, blank=True, null=True)
    details = models.TextField(blank=True)
    ip_address = models.GenericIPAddressField(blank=True, null=True)
    success = models.BooleanField(default=True)

    class Meta:
        ordering = ['-timestamp']
        indexes = [
            models.Index(fields=['action', 'timestamp'], name='audit_action_ts_idx'),
            models.Index(fields=['actor_id', 'timestamp'], name='audit_actor_ts_idx'),
            models.Index(fields=['target_ic_number', 'timestamp'], name='audit_target_ts_idx'),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise RuntimeError("AuditLog entries are immutable")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise RuntimeError("AuditLog entries cannot be deleted")

    def __str__(self):
        return f"{self.action}:{self.actor_id}@{self.timestamp:%F %T}"


# ---------------------------------------------------------------------------
# Hospital-local store (nodes served by this deployment)
# ---------------------------------------------------------------------------

class LocalPatient(models.Model):
    """Demographics of a patient as known by one hospital."""
    GENDER_CHOICES = [('male', 'Male'), ('female', 'Female')]

    hospital = models.ForeignKey(Hospital, on_delete=models.CASCADE, related_name='patients')
    ic_number = models.CharField(max_length=32)
    full_name = models.CharField(max_length=255)
    date_of_birth = models.DateField(null=True, blank=True)
    gender = models.CharField(max_length=10, choices=GENDER_CHOICES, blank=True)
    blood_type = models.CharField(max_length=5, blank=True)
    phone = models.CharField(max_length=32, blank=True)
    email = models.EmailField(blank=True)
    address = models.TextField(blank=True)
    emergency_contact = models.CharField(max_length=255, blank=True)
    emergency_phone = models.CharField(max_length=32, blank=True)
    allergies = models.JSONField(default=list, blank=True)
    chronic_conditions = models.JSONField(default=list, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['hospital', 'ic_number'], name='uniq_local_patient'),
        ]

    def __str__(self) -> str:
        return f"{self.full_name} ({self.ic_number}) @ {self.hospital_id}"


class MedicalRecord(models.Model):
    VISIT_CHOICES = [
        ('outpatient', 'Outpatient'),
        ('inpatient', 'Inpatient'),
        ('emergency', 'Emergency'),
    ]
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    hospital = models.ForeignKey(Hospital, on_delete=models.CASCADE, related_name='records')
    ic_number = models.CharField(max_length=32)
    doctor = models.ForeignKey(User, null=True, on_delete=models.SET_NULL, related_name='records')
    visit_date = models.DateTimeField()
    visit_type = models.CharField(max_length=20, choices=VISIT_CHOICES, default='outpatient')
    chief_complaint = models.TextField(blank=True)
    diagnosis = models.JSONField(default=list, blank=True)
    diagnosis_codes = models.JSONField(default=list, blank=True, help_text="ICD-10 codes")
    symptoms = models.JSONField(default=list, blank=True)
    notes = models.TextField(blank=True)
    vital_signs = models.JSONField(null=True, blank=True)
    prescriptions = models.JSONField(default=list, blank=True)
    follow_up_date = models.DateField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['hospital', 'ic_number', 'visit_date'], name='record_hosp_ic_visit_idx'),
        ]

    def __str__(self):
        return f"record {self.id} ic={self.ic_number} @ {self.hospital_id}"
