"""
Appointment reminders.

A reminder goes out roughly one day ahead (appointments starting between
lead-1h and lead+1h from now, so an hourly job never misses one). The
patient answers yes/no; a reminder left unanswered for the answer window
counts as not confirmed. Every answer, given or inferred, recomputes the
patient's no-show risk.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from app.config import get_settings
from app.core.scheduling.dates import format_date_for_patient, format_time_for_patient
from app.core.scheduling.risk import NoShowRiskModel
from app.core.scheduling.store import SchedulingStore
from app.core.scheduling.types import AppointmentRecord, ClinicProfile
from app.infra.notifications import Notifier

logger = logging.getLogger(__name__)

_CONFIRM_PATTERN = re.compile(r"^(s[ií]|yes|confirmo|confirmar|dale|claro|ok|listo)$", re.IGNORECASE)
_DECLINE_PATTERN = re.compile(r"^(no|cancelar|cancelo|no puedo)$", re.IGNORECASE)

REMINDER_CONFIRMED_TEXT = (
    "✅ ¡Perfecto, tu cita está confirmada! Te esperamos. "
    "Si necesitas algo más, escríbeme."
)
REMINDER_DECLINED_TEXT = (
    "😔 Entendido. ¿Te gustaría reagendar tu cita para otro día? "
    "Escríbeme la fecha que prefieras."
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_reminder_reply(text: str) -> Optional[bool]:
    """Classify a reply to a reminder.

    Returns:
        True for a confirmation, False for a decline, None otherwise
    """
    normalized = (text or "").strip().lower()
    if _CONFIRM_PATTERN.match(normalized):
        return True
    if _DECLINE_PATTERN.match(normalized):
        return False
    return None


@dataclass
class ReminderRun:
    """Outcome of one reminder job pass."""

    sent: int = 0
    failed: int = 0
    skipped: int = 0
    marked_unanswered: int = 0

    def to_dict(self) -> dict:
        return {
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "marked_unanswered": self.marked_unanswered,
        }


class ReminderService:
    """Sends reminders and records the patient's answer."""

    def __init__(
        self,
        store: SchedulingStore,
        notifier: Notifier,
        risk_model: NoShowRiskModel,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.notifier = notifier
        self.risk_model = risk_model
        self._clock = clock or _utcnow

        settings = get_settings()
        self.lead = timedelta(hours=settings.reminder_lead_hours)
        self.answer_window = timedelta(hours=settings.reminder_answer_window_hours)

    async def run(self, clinic: ClinicProfile) -> ReminderRun:
        """Send due reminders, then expire unanswered ones."""
        result = await self.send_due_reminders(clinic)
        result.marked_unanswered = await self.mark_unanswered(clinic)
        return result

    async def send_due_reminders(self, clinic: ClinicProfile) -> ReminderRun:
        """Remind every active appointment starting in the reminder window."""
        now = self._clock()
        window_start = now + self.lead - timedelta(hours=1)
        window_end = now + self.lead + timedelta(hours=1)

        result = ReminderRun()
        candidates = await self.store.list_reminder_candidates(
            clinic.id, window_start, window_end
        )
        logger.info(f"{len(candidates)} appointments due for reminder in clinic {clinic.id}")

        for appointment in candidates:
            patient = await self.store.get_patient(clinic.id, appointment.patient_id)
            doctor = await self.store.get_doctor(clinic.id, appointment.doctor_id)
            if patient is None or doctor is None:
                logger.warning(f"Incomplete data for appointment {appointment.id}, reminder skipped")
                result.skipped += 1
                continue

            text = self._reminder_text(clinic, appointment, patient.name, doctor.name)
            if await self.notifier.send(patient.phone, text):
                await self.store.mark_reminder_sent(clinic.id, appointment.id, self._clock())
                result.sent += 1
            else:
                result.failed += 1

        return result

    async def mark_unanswered(self, clinic: ClinicProfile) -> int:
        """Mark reminders older than the answer window as not confirmed."""
        cutoff = self._clock() - self.answer_window
        pending = await self.store.list_unanswered_reminders(clinic.id, cutoff)

        for appointment in pending:
            await self.store.set_reminder_confirmed(clinic.id, appointment.id, False)
            await self.risk_model.recompute(clinic.id, appointment.patient_id)

        if pending:
            logger.info(f"{len(pending)} reminders marked unanswered in clinic {clinic.id}")
        return len(pending)

    async def record_response(
        self,
        clinic: ClinicProfile,
        patient_id: str,
        confirmed: bool,
    ) -> Optional[AppointmentRecord]:
        """Apply a yes/no answer to the nearest appointment awaiting one.

        Returns:
            The answered appointment, or None when nothing was pending
        """
        now = self._clock()
        appointments = await self.store.list_patient_appointments(clinic.id, patient_id)
        pending = [
            a for a in appointments
            if a.is_active
            and a.reminder_sent
            and a.reminder_confirmed is None
            and a.starts_at >= now
        ]
        if not pending:
            return None

        appointment = min(pending, key=lambda a: a.starts_at)
        await self.store.set_reminder_confirmed(clinic.id, appointment.id, confirmed)
        appointment.reminder_confirmed = confirmed

        await self.risk_model.recompute(clinic.id, patient_id)
        logger.info(
            f"Reminder {'confirmed' if confirmed else 'declined'} for appointment {appointment.id}"
        )
        return appointment

    @staticmethod
    def _reminder_text(
        clinic: ClinicProfile,
        appointment: AppointmentRecord,
        patient_name: str,
        doctor_name: str,
    ) -> str:
        lines = [
            f"Hola {patient_name} 👋",
            "",
            "Te recordamos tu cita mañana:",
            f"📅 {format_date_for_patient(appointment.starts_at, clinic.tz)}",
            f"🕐 {format_time_for_patient(appointment.starts_at, clinic.tz)}",
            f"👨‍⚕️ {doctor_name}",
        ]
        if clinic.address:
            lines.append(f"📍 {clinic.address}")
        lines += [
            "",
            "¿Confirmas tu asistencia?",
            "Responde \"Sí\" para confirmar o \"No\" si no puedes asistir.",
        ]
        return "\n".join(lines)
