from django.conf import settings
from django.core.management.base import BaseCommand

from network.models import Hospital


class Command(BaseCommand):
    help = "Create or update the hospital directory from settings.HOSPITAL_NODES (idempotent)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--deactivate-missing", action="store_true",
            help="Mark hospitals that are not in HOSPITAL_NODES as inactive.",
        )

    def handle(self, *args, **opts):
        known = []
        for node in settings.HOSPITAL_NODES:
            defaults = {k: v for k, v in node.items() if k != "id"}
            defaults.setdefault("is_active", True)
            h, created = Hospital.objects.update_or_create(id=node["id"], defaults=defaults)
            known.append(h.id)
            where = h.api_endpoint or "local"
            self.stdout.write(self.style.SUCCESS(f"{'created' if created else 'updated'}: {h.id} ({where})"))
        if opts["deactivate_missing"]:
            n = Hospital.objects.exclude(id__in=known).update(is_active=False)
            self.stdout.write(self.style.WARNING(f"deactivated {n} hospitals"))
        self.stdout.write(self.style.SUCCESS(f"Hospital directory synced: {len(known)} hospitals."))
