from django.core.management.base import BaseCommand, CommandError
from django.contrib.auth.hashers import make_password

from network.models import Hospital, User

# (ic_number, role, hospital_id, full_name)
DEMO_SET = [
    ("central-admin", User.ROLE_CENTRAL_ADMIN, None, "Central Administrator"),
    ("admin-kl", User.ROLE_HOSPITAL_ADMIN, "hospital-kl", "KL Administrator"),
    ("admin-penang", User.ROLE_HOSPITAL_ADMIN, "hospital-penang", "Penang Administrator"),
    ("750101-14-5001", User.ROLE_DOCTOR, "hospital-kl", "Dr. Lim Wei Ming"),
    ("750101-14-5001", User.ROLE_PATIENT, None, "Lim Wei Ming"),
    ("760612-07-5001", User.ROLE_DOCTOR, "hospital-penang", "Dr. Tan Mei Ling"),
    ("880101-14-5678", User.ROLE_PATIENT, None, "Ahmad bin Abdullah"),
    ("950320-10-1234", User.ROLE_PATIENT, None, "Nurul Aisyah"),
]


class Command(BaseCommand):
    help = "Ensure demo users exist with a known password (idempotent). Run sync_hospitals first."

    def add_arguments(self, parser):
        parser.add_argument("--password", default="demo1234")

    def handle(self, *args, **opts):
        password = make_password(opts["password"])
        for ic, role, hospital_id, name in DEMO_SET:
            if hospital_id and not Hospital.objects.filter(id=hospital_id).exists():
                raise CommandError(f"hospital {hospital_id} missing; run sync_hospitals first")
            u, created = User.objects.get_or_create(
                ic_number=ic, role=role,
                defaults={
                    "username": f"{ic}:{role}",
                    "hospital_id": hospital_id,
                    "full_name": name,
                    "password": password,
                    "is_active": True,
                    "is_staff": role == User.ROLE_CENTRAL_ADMIN,
                },
            )
            if not created:
                u.password = password
                u.hospital_id = hospital_id
                u.is_active = True
                u.save(update_fields=["password", "hospital", "is_active"])
            self.stdout.write(self.style.SUCCESS(f"ok: {ic} ({role})"))
        self.stdout.write(self.style.SUCCESS("All demo users ensured."))
