"""
Storage boundary for scheduling and conversations.

Every query is scoped by clinic id. A record that exists but belongs to
another clinic is indistinguishable from a missing one.

The SQLAlchemy implementation lives in app.infra.store.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from app.core.scheduling.types import (
    AppointmentRecord,
    ClinicProfile,
    ConversationRecord,
    DoctorProfile,
    MessageRecord,
    MessageRole,
    PatientRecord,
    WaitlistRecord,
)


class SchedulingStore(ABC):
    """Persistence operations used by the scheduling core."""

    # Clinics and doctors

    @abstractmethod
    async def get_clinic(self, clinic_id: str) -> Optional[ClinicProfile]:
        ...

    @abstractmethod
    async def get_primary_doctor(self, clinic_id: str) -> Optional[DoctorProfile]:
        """Oldest active doctor of the clinic."""
        ...

    @abstractmethod
    async def get_doctor(self, clinic_id: str, doctor_id: str) -> Optional[DoctorProfile]:
        ...

    # Appointments

    @abstractmethod
    async def list_active_appointments(
        self,
        clinic_id: str,
        doctor_id: Optional[str],
        start: datetime,
        end: datetime,
    ) -> list[AppointmentRecord]:
        """Active appointments overlapping [start, end), ordered by start.

        doctor_id=None lists every doctor of the clinic.
        """
        ...

    @abstractmethod
    async def insert_appointment_if_free(
        self, appointment: AppointmentRecord
    ) -> AppointmentRecord:
        """Insert unless the interval overlaps an active appointment.

        The overlap check and the insert are one atomic step.

        Raises:
            ConflictError: slot_conflict
        """
        ...

    @abstractmethod
    async def get_appointment(
        self, clinic_id: str, appointment_id: str
    ) -> Optional[AppointmentRecord]:
        ...

    @abstractmethod
    async def cancel_appointment(
        self,
        clinic_id: str,
        appointment_id: str,
        reason: Optional[str],
        cancelled_at: datetime,
    ) -> Optional[AppointmentRecord]:
        """Cancel only if still active. Returns None when the condition failed."""
        ...

    @abstractmethod
    async def reschedule_appointment(
        self,
        clinic_id: str,
        original_id: str,
        replacement: AppointmentRecord,
    ) -> AppointmentRecord:
        """Supersede the original and insert its replacement atomically.

        The original becomes `rescheduled` with rescheduled_to_id set. The
        overlap check ignores the original.

        Raises:
            ConflictError: slot_conflict or not_active
        """
        ...

    @abstractmethod
    async def list_patient_appointments(
        self, clinic_id: str, patient_id: str
    ) -> list[AppointmentRecord]:
        """All appointments of a patient, ordered by start."""
        ...

    @abstractmethod
    async def list_reminder_candidates(
        self, clinic_id: str, start: datetime, end: datetime
    ) -> list[AppointmentRecord]:
        """Active appointments starting in [start, end) without a reminder."""
        ...

    @abstractmethod
    async def list_unanswered_reminders(
        self, clinic_id: str, sent_before: datetime
    ) -> list[AppointmentRecord]:
        """Active appointments whose reminder was sent at or before
        sent_before and never answered."""
        ...

    @abstractmethod
    async def mark_reminder_sent(
        self, clinic_id: str, appointment_id: str, sent_at: datetime
    ) -> None:
        ...

    @abstractmethod
    async def set_reminder_confirmed(
        self, clinic_id: str, appointment_id: str, confirmed: bool
    ) -> None:
        ...

    # Patients

    @abstractmethod
    async def get_patient(self, clinic_id: str, patient_id: str) -> Optional[PatientRecord]:
        ...

    @abstractmethod
    async def find_patient_by_phone(
        self, clinic_id: str, phone: str
    ) -> Optional[PatientRecord]:
        """Lookup by normalized phone."""
        ...

    @abstractmethod
    async def create_patient(self, patient: PatientRecord) -> PatientRecord:
        ...

    @abstractmethod
    async def update_patient(self, patient: PatientRecord) -> PatientRecord:
        ...

    @abstractmethod
    async def increment_patient_appointments(self, clinic_id: str, patient_id: str) -> None:
        ...

    # Waitlist

    @abstractmethod
    async def find_waiting_entry(
        self, clinic_id: str, patient_id: str
    ) -> Optional[WaitlistRecord]:
        ...

    @abstractmethod
    async def insert_waitlist_entry(self, entry: WaitlistRecord) -> WaitlistRecord:
        ...

    @abstractmethod
    async def oldest_waiting_entry(
        self, clinic_id: str, doctor_id: str
    ) -> Optional[WaitlistRecord]:
        """First `waiting` entry for the doctor by created_at."""
        ...

    @abstractmethod
    async def mark_waitlist_notified(
        self, clinic_id: str, entry_id: str, notified_at: datetime
    ) -> bool:
        """Transition waiting -> notified. False when no longer waiting."""
        ...

    # Audit

    @abstractmethod
    async def record_audit(
        self,
        clinic_id: str,
        action: str,
        actor_type: str,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        ...


class ConversationStore(ABC):
    """Persistence of conversations and their messages."""

    @abstractmethod
    async def get_or_create_conversation(
        self, clinic_id: str, patient_id: str, channel_identity: str
    ) -> ConversationRecord:
        """Latest open conversation for the patient, or a new active one."""
        ...

    @abstractmethod
    async def recent_messages(
        self, conversation_id: str, limit: int
    ) -> list[MessageRecord]:
        """The `limit` most recent messages, oldest first."""
        ...

    @abstractmethod
    async def save_message(
        self, conversation_id: str, role: MessageRole, content: str
    ) -> MessageRecord:
        ...

    @abstractmethod
    async def mark_escalated(self, conversation_id: str, escalated_at: datetime) -> None:
        ...
