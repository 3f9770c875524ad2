"""
Central patient index: IC number -> hospitals holding records.

Entries only ever grow.  ``add_hospital`` is idempotent so concurrent
record creation at the same hospital for a new patient cannot produce
duplicates or lost updates.
"""
from __future__ import annotations

import logging
from typing import Optional

from django.db import DatabaseError, IntegrityError, OperationalError, transaction
from django.utils import timezone
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from network.exceptions import IndexStoreFailure
from network.models import PatientIndex, PatientIndexHospital
from network.services.types import IndexEntry

logger = logging.getLogger(__name__)


class IndexStore:
    """Read/upsert interface over the index; see :class:`ModelIndexStore`."""

    def get(self, ic_number: str) -> Optional[IndexEntry]:
        raise NotImplementedError

    def add_hospital(self, ic_number: str, hospital_id: str) -> bool:
        """Add ``hospital_id`` to the entry, creating it if needed.

        Returns True when the hospital was newly added.
        """
        raise NotImplementedError

    def all(self) -> list[IndexEntry]:
        raise NotImplementedError


def _entry(index: PatientIndex) -> IndexEntry:
    return IndexEntry(
        ic_number=index.ic_number,
        hospitals=tuple(h.hospital_id for h in index.hospitals.all()),
        last_updated=index.last_updated,
    )


class ModelIndexStore(IndexStore):

    def get(self, ic_number: str) -> Optional[IndexEntry]:
        try:
            index = PatientIndex.objects.prefetch_related('hospitals').filter(ic_number=ic_number).first()
        except DatabaseError as e:
            logger.error("index lookup failed for %s: %s", ic_number, e)
            raise IndexStoreFailure() from e
        return _entry(index) if index else None

    @retry(
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=0.05, max=1),
        retry=retry_if_exception_type(OperationalError),
        before_sleep=lambda state: logger.warning(
            "index write attempt %d hit a locked table, retrying", state.attempt_number
        ),
        reraise=True,
    )
    def _insert(self, ic_number: str, hospital_id: str) -> bool:
        with transaction.atomic():
            index, _ = PatientIndex.objects.get_or_create(ic_number=ic_number)
            try:
                with transaction.atomic():
                    PatientIndexHospital.objects.create(index=index, hospital_id=hospital_id)
            except IntegrityError:
                # already present (possibly inserted by a concurrent create)
                return False
            PatientIndex.objects.filter(ic_number=ic_number).update(last_updated=timezone.now())
        return True

    def add_hospital(self, ic_number: str, hospital_id: str) -> bool:
        try:
            added = self._insert(ic_number, hospital_id)
        except DatabaseError as e:
            logger.error("index update failed for %s @ %s: %s", ic_number, hospital_id, e)
            raise IndexStoreFailure() from e
        if added:
            logger.info("index: %s now includes %s", ic_number, hospital_id)
        return added

    def all(self) -> list[IndexEntry]:
        try:
            qs = PatientIndex.objects.prefetch_related('hospitals').order_by('ic_number')
            return [_entry(i) for i in qs]
        except DatabaseError as e:
            raise IndexStoreFailure() from e

    def count(self) -> int:
        return PatientIndex.objects.count()
