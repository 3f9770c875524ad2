"""
URL mappings for the MedLink API.

Trailing slashes are deliberately omitted (``APPEND_SLASH = False``).
"""
from django.urls import path, include

from .auth_views import login_view, logout_view, refresh_view
from .views import audit, central, health, hospital_nodes, privacy


urlpatterns = [
    path('', include('django_prometheus.urls')),
    path('healthz', health.healthz),
    # Authentication
    path('api/auth/login', login_view),
    path('api/auth/logout', logout_view),
    path('api/auth/refresh', refresh_view),
    # Central hub
    path('api/central/query/<str:ic_number>', central.query_patient),
    path('api/central/patient/<str:ic_number>', central.patient_summary),
    path('api/central/emergency/<str:ic_number>', central.emergency_access),
    path('api/central/hospitals', central.list_hospitals),
    path('api/central/stats', central.stats),
    path('api/central/indexes', central.list_indexes),
    path('api/central/index/<str:ic_number>', central.get_index),
    # Privacy
    path('api/central/privacy-settings', privacy.privacy_settings),
    path('api/central/privacy-settings/hospital-access', privacy.set_hospital_access),
    # Audit
    path('api/central/audit-logs', audit.audit_logs),
    path('api/central/my-access-logs', audit.my_access),
    path('api/central/my-activity-logs', audit.my_activity),
    # Hospital nodes
    path('api/hospitals/<str:hospital_id>/records', hospital_nodes.node_create_record),
    path('api/hospitals/<str:hospital_id>/records/<str:ic_number>', hospital_nodes.node_records),
    path('api/hospitals/<str:hospital_id>/patients', hospital_nodes.node_register_patient),
    path('api/hospitals/<str:hospital_id>/patients/<str:ic_number>', hospital_nodes.node_patient),
]
