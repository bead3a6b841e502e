"""
Waitlist cascade.

When an interval is freed (cancel or reschedule), the oldest waiting patient
for that doctor is notified exactly once. The entry is claimed with a
conditional waiting -> notified update before the message goes out, so two
concurrent cascades cannot notify the same entry twice.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from app.core.scheduling.dates import format_for_patient
from app.core.scheduling.store import SchedulingStore
from app.core.scheduling.types import (
    ClinicProfile,
    PreferredTime,
    WaitlistRecord,
    WaitlistStatus,
)
from app.infra.notifications import Notifier

logger = logging.getLogger(__name__)

WAITLIST_OFFER_TEXT = (
    "¡Hola {name}! Se liberó un espacio: {date} "
    "¿Te gustaría agendarte? Responde \"sí\" para confirmar."
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WaitlistCascade:
    """Adds patients to the waitlist and offers them freed intervals."""

    def __init__(
        self,
        store: SchedulingStore,
        notifier: Notifier,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.notifier = notifier
        self._clock = clock or _utcnow

    async def add_entry(
        self,
        clinic: ClinicProfile,
        doctor_id: str,
        patient_id: str,
        preferred_dates: Optional[list[str]] = None,
        preferred_time: PreferredTime = PreferredTime.ANY,
        reason: Optional[str] = None,
    ) -> tuple[WaitlistRecord, bool]:
        """Insert a waiting entry unless the patient already has one.

        Returns:
            (entry, created). created is False for an existing entry.
        """
        existing = await self.store.find_waiting_entry(clinic.id, patient_id)
        if existing is not None:
            return existing, False

        entry = WaitlistRecord(
            clinic_id=clinic.id,
            patient_id=patient_id,
            doctor_id=doctor_id,
            preferred_dates=list(preferred_dates or []),
            preferred_time=preferred_time,
            reason=reason,
            created_at=self._clock(),
        )
        entry = await self.store.insert_waitlist_entry(entry)
        logger.info(f"Waitlist entry {entry.id} added for doctor {doctor_id}")
        return entry, True

    async def on_interval_freed(
        self,
        clinic: ClinicProfile,
        doctor_id: str,
        freed_start: datetime,
    ) -> Optional[WaitlistRecord]:
        """Notify the oldest waiting entry for the doctor.

        Returns:
            The notified entry, or None when nobody was waiting
        """
        entry = await self.store.oldest_waiting_entry(clinic.id, doctor_id)
        if entry is None:
            return None

        patient = await self.store.get_patient(clinic.id, entry.patient_id)
        if patient is None:
            logger.warning(f"Waitlist entry {entry.id} points to a missing patient")
            return None

        notified_at = self._clock()
        claimed = await self.store.mark_waitlist_notified(clinic.id, entry.id, notified_at)
        if not claimed:
            logger.info(f"Waitlist entry {entry.id} already notified")
            return None

        entry.status = WaitlistStatus.NOTIFIED
        entry.notified_at = notified_at

        text = WAITLIST_OFFER_TEXT.format(
            name=patient.name,
            date=format_for_patient(freed_start, clinic.tz),
        )
        try:
            delivered = await self.notifier.send(patient.phone, text)
        except Exception as e:
            logger.warning(f"Waitlist notification for entry {entry.id} failed: {e}")
            delivered = False

        if not delivered:
            logger.warning(f"Waitlist entry {entry.id} marked notified but not delivered")

        return entry
