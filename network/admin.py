"""
Django admin registrations for the network models.

The audit log is exposed read-only: entries can be searched and
inspected but never added, edited or deleted from the admin.
"""

from django.contrib import admin

from .models import (
    AccessPolicy,
    AuditLog,
    Hospital,
    LocalPatient,
    MedicalRecord,
    PatientIndex,
    PatientIndexHospital,
    User,
)


@admin.register(Hospital)
class HospitalAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'city', 'state', 'api_endpoint', 'is_active')
    list_filter = ('is_active', 'state')
    search_fields = ('id', 'name', 'short_name')


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'ic_number', 'role', 'hospital', 'full_name', 'is_active')
    list_filter = ('role', 'hospital')
    search_fields = ('username', 'ic_number', 'full_name')


class PatientIndexHospitalInline(admin.TabularInline):
    model = PatientIndexHospital
    extra = 0
    readonly_fields = ('added_at',)


@admin.register(PatientIndex)
class PatientIndexAdmin(admin.ModelAdmin):
    list_display = ('ic_number', 'last_updated', 'created_at')
    search_fields = ('ic_number',)
    inlines = [PatientIndexHospitalInline]


@admin.register(AccessPolicy)
class AccessPolicyAdmin(admin.ModelAdmin):
    list_display = ('ic_number', 'hospital_id', 'is_blocked', 'updated_at')
    list_filter = ('is_blocked', 'hospital_id')
    search_fields = ('ic_number',)


@admin.register(LocalPatient)
class LocalPatientAdmin(admin.ModelAdmin):
    list_display = ('ic_number', 'full_name', 'hospital', 'blood_type', 'updated_at')
    list_filter = ('hospital',)
    search_fields = ('ic_number', 'full_name')


@admin.register(MedicalRecord)
class MedicalRecordAdmin(admin.ModelAdmin):
    list_display = ('id', 'ic_number', 'hospital', 'visit_type', 'visit_date', 'doctor')
    list_filter = ('hospital', 'visit_type')
    search_fields = ('ic_number', 'chief_complaint')
    date_hierarchy = 'visit_date'


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ('timestamp', 'action', 'actor_type', 'actor_id', 'target_ic_number',
                    'target_hospital_id', 'success')
    list_filter = ('action', 'actor_type', 'success')
    search_fields = ('actor_id', 'target_ic_number', 'details')
    date_hierarchy = 'timestamp'

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
