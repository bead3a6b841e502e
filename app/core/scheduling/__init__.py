"""
Scheduling Module

Deterministic scheduling core: slot generation, conflict-free booking,
cancellation and reschedule with waitlist cascade, no-show risk and
reminders. Storage and notifications are injected.

Usage:
    from app.core.scheduling import SchedulingEngine, WaitlistCascade

    waitlist = WaitlistCascade(store, notifier)
    engine = SchedulingEngine(store, waitlist=waitlist)

    availability = await engine.check_availability(clinic, doctor, day)
    appointment = await engine.book(clinic, doctor.id, patient.id, starts_at)
"""

# Records
from app.core.scheduling.types import (
    AppointmentRecord,
    AppointmentSource,
    AppointmentStatus,
    ClinicProfile,
    ConversationRecord,
    DoctorProfile,
    MessageRecord,
    MessageRole,
    PatientRecord,
    PreferredTime,
    WaitlistRecord,
    WaitlistStatus,
    WorkingDay,
)

# Storage boundary
from app.core.scheduling.store import ConversationStore, SchedulingStore

# Slots
from app.core.scheduling.slots import (
    TimeSlot,
    generate_slots,
    has_conflict,
    intervals_overlap,
)

# Engine
from app.core.scheduling.engine import (
    Availability,
    RescheduleOutcome,
    SchedulingEngine,
)

# Waitlist, risk, reminders
from app.core.scheduling.waitlist import WaitlistCascade
from app.core.scheduling.risk import (
    DailyRisk,
    NoShowRiskModel,
    RiskSnapshot,
    compute_probability,
)
from app.core.scheduling.reminders import ReminderService, parse_reminder_reply

__all__ = [
    # Records
    "AppointmentRecord",
    "AppointmentSource",
    "AppointmentStatus",
    "ClinicProfile",
    "ConversationRecord",
    "DoctorProfile",
    "MessageRecord",
    "MessageRole",
    "PatientRecord",
    "PreferredTime",
    "WaitlistRecord",
    "WaitlistStatus",
    "WorkingDay",
    # Storage
    "ConversationStore",
    "SchedulingStore",
    # Slots
    "TimeSlot",
    "generate_slots",
    "has_conflict",
    "intervals_overlap",
    # Engine
    "Availability",
    "RescheduleOutcome",
    "SchedulingEngine",
    # Waitlist, risk, reminders
    "WaitlistCascade",
    "DailyRisk",
    "NoShowRiskModel",
    "RiskSnapshot",
    "compute_probability",
    "ReminderService",
    "parse_reminder_reply",
]
