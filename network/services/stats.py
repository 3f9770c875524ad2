from datetime import timedelta

from django.utils import timezone

from network.models import AuditLog, Hospital, PatientIndex


def _queries_between(start, end) -> int:
    return AuditLog.objects.filter(action=AuditLog.ACTION_QUERY, timestamp__gte=start, timestamp__lt=end).count()


def central_stats() -> dict:
    today = timezone.localtime().replace(hour=0, minute=0, second=0, microsecond=0)
    yesterday = today - timedelta(days=1)
    today_queries = _queries_between(today, today + timedelta(days=1))
    yesterday_queries = _queries_between(yesterday, today)
    if yesterday_queries:
        change = round((today_queries - yesterday_queries) / yesterday_queries * 100, 1)
    else:
        change = 100.0 if today_queries else 0.0
    return {
        'totalPatients': PatientIndex.objects.count(),
        'activeHospitals': Hospital.objects.filter(is_active=True).count(),
        'todayQueries': today_queries,
        'yesterdayQueries': yesterday_queries,
        'queryChange': change,
        'emergencyAccessToday': AuditLog.objects.filter(
            action=AuditLog.ACTION_EMERGENCY, timestamp__gte=today).count(),
    }


def format_hospital(h: Hospital) -> dict:
    return {
        'id': h.id,
        'name': h.name,
        'shortName': h.short_name,
        'city': h.city,
        'state': h.state,
        'isActive': h.is_active,
        'isLocal': not h.api_endpoint,
    }


def format_index_entry(entry) -> dict:
    return {
        'icNumber': entry.ic_number,
        'hospitals': list(entry.hospitals),
        'lastUpdated': entry.last_updated.isoformat(),
    }
