"""
No-show risk.

probability = min(95, base + penalty)
    base    = 100 * no_shows / past appointments (completed or no_show)
    penalty = 30 when the nearest upcoming confirmed appointment has a
              reminder that was declined or went unanswered

Example: 2 no-shows out of 10 past appointments = 20, reminder declined
-> 50.0.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, Optional

from app.config import get_settings
from app.core.scheduling.dates import format_time_for_patient, local_day_bounds
from app.core.scheduling.store import SchedulingStore
from app.core.scheduling.types import (
    AppointmentRecord,
    AppointmentStatus,
    ClinicProfile,
    DoctorProfile,
)

logger = logging.getLogger(__name__)

MAX_PROBABILITY = 95.0
UNCONFIRMED_REMINDER_PENALTY = 30.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_probability(
    no_shows: int,
    total_past: int,
    reminder_confirmed: Optional[bool],
) -> float:
    """Pure risk formula, rounded to one decimal."""
    probability = 100.0 * no_shows / total_past if total_past > 0 else 0.0
    if reminder_confirmed is False:
        probability += UNCONFIRMED_REMINDER_PENALTY
    return round(min(probability, MAX_PROBABILITY), 1)


@dataclass
class RiskSnapshot:
    """Result of one recompute. Not persisted beyond the patient fields."""

    patient_id: str
    probability: float
    total_appointments: int
    no_shows: int
    reminder_confirmed: Optional[bool] = None


@dataclass
class PatientRisk:
    """One row of the daily report."""

    patient_id: str
    name: str
    phone: str
    probability: float
    starts_at: datetime
    reminder_confirmed: Optional[bool] = None

    def to_dict(self) -> dict:
        return {
            "patient_id": self.patient_id,
            "name": self.name,
            "phone": self.phone,
            "probability": self.probability,
            "starts_at": self.starts_at.isoformat(),
            "reminder_confirmed": self.reminder_confirmed,
        }


@dataclass
class DailyRisk:
    """Expected no-shows for a clinic day."""

    day: date
    expected_no_shows: float
    recommend_overbooking: bool
    patients: list[PatientRisk] = field(default_factory=list)

    @property
    def total_appointments(self) -> int:
        return len(self.patients)

    def high_risk(self, threshold: Optional[float] = None) -> list[PatientRisk]:
        if threshold is None:
            threshold = get_settings().high_risk_threshold
        return [p for p in self.patients if p.probability > threshold]

    def to_dict(self) -> dict:
        return {
            "date": self.day.isoformat(),
            "total_appointments": self.total_appointments,
            "expected_no_shows": self.expected_no_shows,
            "recommend_overbooking": self.recommend_overbooking,
            "patients": [p.to_dict() for p in self.patients],
        }


class NoShowRiskModel:
    """Recomputes and aggregates no-show probabilities."""

    def __init__(
        self,
        store: SchedulingStore,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self._clock = clock or _utcnow

    async def recompute(self, clinic_id: str, patient_id: str) -> RiskSnapshot:
        """Recompute from appointment history and store on the patient."""
        appointments = await self.store.list_patient_appointments(clinic_id, patient_id)

        past = [a for a in appointments if a.status in (
            AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW,
        )]
        no_shows = sum(1 for a in past if a.status == AppointmentStatus.NO_SHOW)

        next_appointment = self._nearest_confirmed(appointments)
        reminder_confirmed = (
            next_appointment.reminder_confirmed if next_appointment else None
        )

        snapshot = RiskSnapshot(
            patient_id=patient_id,
            probability=compute_probability(no_shows, len(past), reminder_confirmed),
            total_appointments=len(past),
            no_shows=no_shows,
            reminder_confirmed=reminder_confirmed,
        )

        patient = await self.store.get_patient(clinic_id, patient_id)
        if patient is not None:
            patient.no_show_probability = snapshot.probability
            patient.no_show_count = snapshot.no_shows
            patient.total_appointments = snapshot.total_appointments
            await self.store.update_patient(patient)

        logger.debug(f"No-show risk for patient {patient_id}: {snapshot.probability}")
        return snapshot

    async def daily_risk(
        self,
        clinic: ClinicProfile,
        day: date,
        refresh: bool = False,
    ) -> DailyRisk:
        """Expected no-shows for active appointments starting on a local day.

        Args:
            clinic: Clinic to report on
            day: Local calendar day
            refresh: Recompute each patient's probability first

        Returns:
            DailyRisk with rows ordered by start time
        """
        start, end = local_day_bounds(day, clinic.tz)
        appointments = await self.store.list_active_appointments(clinic.id, None, start, end)
        appointments = sorted(
            (a for a in appointments if start <= a.starts_at < end),
            key=lambda a: a.starts_at,
        )

        if refresh:
            for patient_id in dict.fromkeys(a.patient_id for a in appointments):
                await self.recompute(clinic.id, patient_id)

        rows = []
        total = 0.0
        for appointment in appointments:
            patient = await self.store.get_patient(clinic.id, appointment.patient_id)
            if patient is None:
                continue
            total += patient.no_show_probability / 100
            rows.append(PatientRisk(
                patient_id=patient.id,
                name=patient.name,
                phone=patient.phone,
                probability=patient.no_show_probability,
                starts_at=appointment.starts_at,
                reminder_confirmed=appointment.reminder_confirmed,
            ))

        expected = round(total, 1)
        return DailyRisk(
            day=day,
            expected_no_shows=expected,
            recommend_overbooking=expected >= 1,
            patients=rows,
        )

    def _nearest_confirmed(
        self, appointments: list[AppointmentRecord]
    ) -> Optional[AppointmentRecord]:
        now = self._clock()
        upcoming = [
            a for a in appointments
            if a.status == AppointmentStatus.CONFIRMED
            and a.rescheduled_to_id is None
            and a.starts_at >= now
        ]
        return min(upcoming, key=lambda a: a.starts_at, default=None)


def format_morning_report(
    report: DailyRisk,
    clinic: ClinicProfile,
    doctor: DoctorProfile,
    threshold: Optional[float] = None,
) -> str:
    """WhatsApp text for the doctor's morning report."""
    if threshold is None:
        threshold = get_settings().high_risk_threshold

    if report.total_appointments == 0:
        return (
            f"☀️ Buenos días, {doctor.name}.\n\n"
            "No tienes citas agendadas para hoy. ¡Buen día!"
        )

    count = report.total_appointments
    lines = [
        f"☀️ Buenos días, {doctor.name}",
        f"📊 Reporte del día — {clinic.name}",
        "",
        f"📋 Tienes {count} cita{'s' if count > 1 else ''} hoy:",
        "",
    ]

    for row in report.patients:
        if row.reminder_confirmed is True:
            indicator = "🟢"
        elif row.probability > threshold:
            indicator = "🔴"
        else:
            indicator = "🟡"
        line = f"{indicator} {format_time_for_patient(row.starts_at, clinic.tz)} — {row.name}"
        if row.probability > threshold:
            line += f" ⚠️ {row.probability}% riesgo no-show"
        lines.append(line)

    at_risk = report.high_risk(threshold)
    if at_risk:
        plural = "s" if len(at_risk) > 1 else ""
        lines += ["", f"⚠️ {len(at_risk)} paciente{plural} con riesgo alto de no-show"]

    if report.recommend_overbooking:
        plural = "s" if report.expected_no_shows > 1 else ""
        lines += [
            "",
            f"📈 Basado en el historial, se esperan ~{report.expected_no_shows} "
            f"no-show{plural} hoy. Recomendamos abrir 1 slot adicional.",
        ]

    lines += ["", "🟢 Confirmó  🟡 Pendiente  🔴 Alto riesgo"]
    return "\n".join(lines)
