"""
Scheduling Engine.

Deterministic booking rules: slot availability, conflict-free booking,
cancellation and reschedule. Availability and booking share one conflict
rule (half-open interval overlap against active appointments of the same
doctor), so a slot shown as free is bookable unless someone else takes it
first.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional

from app.core.errors import ConflictError, NotFoundError
from app.core.scheduling.slots import TimeSlot, free_slots, generate_slots, has_conflict
from app.core.scheduling.store import SchedulingStore
from app.core.scheduling.types import (
    WEEKDAYS,
    AppointmentRecord,
    AppointmentSource,
    AppointmentStatus,
    ClinicProfile,
    DoctorProfile,
    WorkingDay,
)
from app.core.scheduling.waitlist import WaitlistCascade

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 3

# Plural weekday names, indexed by date.weekday()
_CLOSED_DAY_NAMES = (
    "lunes", "martes", "miércoles", "jueves", "viernes", "sábados", "domingos",
)

NO_SLOTS_REASON = "No hay horarios disponibles para esta fecha"
NO_SLOTS_SUGGESTION = (
    "Puedes ofrecer al paciente unirse a la lista de espera o probar otro día"
)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def closed_day_reason(day: date) -> str:
    return f"El consultorio no atiende los {_CLOSED_DAY_NAMES[day.weekday()]}"


@dataclass
class Availability:
    """Free slots of a doctor on one local day."""

    day: date
    doctor: DoctorProfile
    available: bool
    slots: list[TimeSlot] = field(default_factory=list)
    suggested: list[TimeSlot] = field(default_factory=list)
    reason: Optional[str] = None
    closed: bool = False
    working_hours: Optional[dict[str, WorkingDay]] = None


@dataclass
class RescheduleOutcome:
    """Superseded original and its replacement."""

    original: AppointmentRecord
    replacement: AppointmentRecord


def nearest_slots(
    slots: list[TimeSlot],
    preferred: time,
    tz,
    limit: int = MAX_SUGGESTIONS,
) -> list[TimeSlot]:
    """Slots closest to a preferred local time, earliest first on ties."""
    target = preferred.hour * 60 + preferred.minute

    def distance(slot: TimeSlot) -> tuple[int, datetime]:
        local = slot.starts_at.astimezone(tz)
        return abs(local.hour * 60 + local.minute - target), slot.starts_at

    return sorted(slots, key=distance)[:limit]


class SchedulingEngine:
    """
    Booking rules for one store.

    The waitlist cascade is optional: without it, freed intervals are not
    offered to anyone.
    """

    def __init__(
        self,
        store: SchedulingStore,
        waitlist: Optional[WaitlistCascade] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.waitlist = waitlist
        self._clock = clock or _utcnow

    def now(self) -> datetime:
        return self._clock()

    async def resolve_doctor(
        self, clinic: ClinicProfile, doctor_id: Optional[str] = None
    ) -> DoctorProfile:
        """Schedulable doctor by id, or the clinic's primary doctor.

        Raises:
            NotFoundError: missing, inactive or in another clinic
        """
        if doctor_id:
            doctor = await self.store.get_doctor(clinic.id, doctor_id)
        else:
            doctor = await self.store.get_primary_doctor(clinic.id)

        if doctor is None or not doctor.is_active:
            raise NotFoundError("Doctor no encontrado", code="not_found")
        return doctor

    async def check_availability(
        self,
        clinic: ClinicProfile,
        doctor: DoctorProfile,
        day: date,
        preferred_time: Optional[time] = None,
    ) -> Availability:
        """Free slots for a doctor on a local calendar day.

        Args:
            clinic: Clinic owning the doctor
            doctor: Doctor to check
            day: Local calendar day
            preferred_time: When given, the nearest free slots are returned
                in `suggested`

        Returns:
            Availability. A closed weekday yields available=False with a
            reason and the doctor's working hours.
        """
        hours = doctor.hours_for(clinic)
        window = hours.get(WEEKDAYS[day.weekday()])

        if window is None or not window.active:
            return Availability(
                day=day,
                doctor=doctor,
                available=False,
                reason=closed_day_reason(day),
                closed=True,
                working_hours=hours,
            )

        candidates = generate_slots(
            day, window, clinic.appointment_duration_minutes, clinic.tz
        )
        booked = []
        if candidates:
            booked = await self.store.list_active_appointments(
                clinic.id,
                doctor.id,
                candidates[0].starts_at,
                candidates[-1].ends_at,
            )

        now = self.now()
        slots = [
            slot
            for slot in free_slots(candidates, [(a.starts_at, a.ends_at) for a in booked])
            if slot.starts_at >= now
        ]
        if not slots:
            return Availability(
                day=day,
                doctor=doctor,
                available=False,
                reason=NO_SLOTS_REASON,
            )

        suggested = []
        if preferred_time is not None:
            suggested = nearest_slots(slots, preferred_time, clinic.tz)

        return Availability(
            day=day,
            doctor=doctor,
            available=True,
            slots=slots,
            suggested=suggested,
        )

    async def is_free(
        self, clinic: ClinicProfile, doctor_id: str, starts_at: datetime
    ) -> bool:
        """Non-locking pre-check. book() still enforces the rule atomically."""
        ends_at = starts_at + timedelta(minutes=clinic.appointment_duration_minutes)
        booked = await self.store.list_active_appointments(
            clinic.id, doctor_id, starts_at, ends_at
        )
        return not has_conflict(starts_at, ends_at, [(a.starts_at, a.ends_at) for a in booked])

    async def book(
        self,
        clinic: ClinicProfile,
        doctor_id: str,
        patient_id: str,
        starts_at: datetime,
        reason: Optional[str] = None,
        source: AppointmentSource = AppointmentSource.WHATSAPP_AGENT,
    ) -> AppointmentRecord:
        """Book [starts_at, starts_at + clinic duration).

        Raises:
            NotFoundError: unknown doctor
            ConflictError: slot_conflict
        """
        doctor = await self.resolve_doctor(clinic, doctor_id)
        appointment = AppointmentRecord(
            clinic_id=clinic.id,
            doctor_id=doctor.id,
            patient_id=patient_id,
            starts_at=starts_at,
            ends_at=starts_at + timedelta(minutes=clinic.appointment_duration_minutes),
            source=source,
            reason=reason,
            created_at=self.now(),
        )
        appointment = await self.store.insert_appointment_if_free(appointment)
        logger.info(
            f"Appointment {appointment.id} booked for doctor {doctor.id} "
            f"at {appointment.starts_at.isoformat()}"
        )
        return appointment

    async def cancel(
        self,
        clinic: ClinicProfile,
        appointment_id: str,
        reason: Optional[str] = None,
    ) -> AppointmentRecord:
        """Cancel an active appointment and offer its interval to the waitlist.

        Raises:
            NotFoundError: missing or in another clinic
            ConflictError: already_cancelled, not_active
        """
        appointment = await self._get_appointment(clinic, appointment_id)
        if not appointment.is_active:
            raise self._inactive_error(appointment)

        cancelled = await self.store.cancel_appointment(
            clinic.id, appointment.id, reason, self.now()
        )
        if cancelled is None:
            # Lost a race with another writer
            current = await self._get_appointment(clinic, appointment_id)
            raise self._inactive_error(current)

        logger.info(f"Appointment {cancelled.id} cancelled")
        await self._release(clinic, cancelled.doctor_id, cancelled.starts_at)
        return cancelled

    async def reschedule(
        self,
        clinic: ClinicProfile,
        appointment_id: str,
        new_starts_at: datetime,
    ) -> RescheduleOutcome:
        """Move an active appointment to a new start.

        The original is kept as a superseded `rescheduled` row and a new
        confirmed row takes the new interval.

        Raises:
            NotFoundError: missing or in another clinic
            ConflictError: not_active, slot_conflict
        """
        original = await self._get_appointment(clinic, appointment_id)
        if not original.is_active:
            raise ConflictError(
                "Esta cita ya no está activa y no se puede reagendar",
                code="not_active",
            )

        replacement = AppointmentRecord(
            clinic_id=clinic.id,
            doctor_id=original.doctor_id,
            patient_id=original.patient_id,
            starts_at=new_starts_at,
            ends_at=new_starts_at + timedelta(minutes=clinic.appointment_duration_minutes),
            source=original.source,
            reason=original.reason,
            rescheduled_from_id=original.id,
            created_at=self.now(),
        )
        replacement = await self.store.reschedule_appointment(
            clinic.id, original.id, replacement
        )

        original.status = AppointmentStatus.RESCHEDULED
        original.rescheduled_to_id = replacement.id
        logger.info(f"Appointment {original.id} rescheduled to {replacement.id}")

        await self._release(clinic, original.doctor_id, original.starts_at)
        return RescheduleOutcome(original=original, replacement=replacement)

    async def upcoming_for_patient(
        self, clinic: ClinicProfile, patient_id: str
    ) -> list[AppointmentRecord]:
        """Future active appointments of a patient, soonest first."""
        now = self.now()
        appointments = await self.store.list_patient_appointments(clinic.id, patient_id)
        upcoming = [a for a in appointments if a.is_active and a.starts_at >= now]
        return sorted(upcoming, key=lambda a: a.starts_at)

    async def _get_appointment(
        self, clinic: ClinicProfile, appointment_id: str
    ) -> AppointmentRecord:
        appointment = await self.store.get_appointment(clinic.id, appointment_id)
        if appointment is None:
            raise NotFoundError("Cita no encontrada", code="not_found")
        return appointment

    @staticmethod
    def _inactive_error(appointment: AppointmentRecord) -> ConflictError:
        if appointment.status == AppointmentStatus.CANCELLED:
            return ConflictError("Esta cita ya está cancelada", code="already_cancelled")
        return ConflictError("Esta cita ya no está activa", code="not_active")

    async def _release(
        self, clinic: ClinicProfile, doctor_id: str, freed_start: datetime
    ) -> None:
        """Run the waitlist cascade. Failures never undo the primary action."""
        if self.waitlist is None:
            return
        try:
            await self.waitlist.on_interval_freed(clinic, doctor_id, freed_start)
        except Exception as e:
            logger.warning(f"Waitlist cascade for doctor {doctor_id} failed: {e}")
