"""
SQLAlchemy stores.

Implements SchedulingStore and ConversationStore on the async engine.
Each public method runs in its own transaction. ORM rows never leave this
module: they are mapped to the scheduling dataclasses on the way out.

Identifiers cross the boundary as strings. A string that is not a UUID
cannot name any row, so it behaves like a missing record.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.core.errors import ConflictError, slot_conflict_error
from app.core.scheduling.store import ConversationStore, SchedulingStore
from app.core.scheduling.types import (
    ACTIVE_STATUSES,
    AppointmentRecord,
    AppointmentStatus,
    ClinicProfile,
    ConversationRecord,
    ConversationStatus,
    DoctorProfile,
    MessageRecord,
    MessageRole,
    PatientRecord,
    WaitlistRecord,
    WaitlistStatus,
    parse_working_hours,
)
from app.models.database import (
    ActorType,
    Appointment,
    AuditLog,
    Clinic,
    ClinicStatus,
    Conversation,
    Doctor,
    Message,
    Patient,
    WaitlistEntry,
)

logger = logging.getLogger(__name__)


def _uuid(value: Optional[str]) -> Optional[uuid.UUID]:
    """Parse an identifier. None when it is not a UUID."""
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _str(value: Optional[uuid.UUID]) -> Optional[str]:
    return str(value) if value is not None else None


def _active():
    """Appointment holds its interval."""
    return and_(
        Appointment.status.in_(ACTIVE_STATUSES),
        Appointment.rescheduled_to_id.is_(None),
    )


def _overlapping(start: datetime, end: datetime):
    """Half-open [start, end) overlap."""
    return and_(Appointment.starts_at < end, Appointment.ends_at > start)


# =============================================================================
# Row mappers
# =============================================================================

def clinic_to_record(row: Clinic) -> ClinicProfile:
    return ClinicProfile(
        id=str(row.id),
        name=row.name,
        working_hours=parse_working_hours(row.working_hours) or {},
        appointment_duration_minutes=row.appointment_duration_minutes,
        timezone=row.timezone or settings.default_timezone,
        agent_name=row.agent_name,
        address=row.address,
        welcome_message=row.welcome_message,
    )


def doctor_to_record(row: Doctor) -> DoctorProfile:
    return DoctorProfile(
        id=str(row.id),
        clinic_id=str(row.clinic_id),
        name=row.name,
        specialty=row.specialty,
        phone=row.phone,
        is_active=row.is_active,
        working_hours=parse_working_hours(row.working_hours),
    )


def patient_to_record(row: Patient) -> PatientRecord:
    return PatientRecord(
        id=str(row.id),
        clinic_id=str(row.clinic_id),
        name=row.name,
        phone=row.phone,
        date_of_birth=row.date_of_birth,
        document_type=row.document_type,
        document_number=row.document_number,
        no_show_count=row.no_show_count,
        total_appointments=row.total_appointments,
        no_show_probability=row.no_show_probability,
        data_consent_at=row.data_consent_at,
        created_at=row.created_at,
    )


def appointment_to_record(row: Appointment) -> AppointmentRecord:
    return AppointmentRecord(
        id=str(row.id),
        clinic_id=str(row.clinic_id),
        doctor_id=str(row.doctor_id),
        patient_id=str(row.patient_id),
        starts_at=row.starts_at,
        ends_at=row.ends_at,
        status=AppointmentStatus(row.status),
        source=row.source,
        reason=row.reason,
        reminder_sent=row.reminder_sent,
        reminder_sent_at=row.reminder_sent_at,
        reminder_confirmed=row.reminder_confirmed,
        cancelled_at=row.cancelled_at,
        cancellation_reason=row.cancellation_reason,
        rescheduled_from_id=_str(row.rescheduled_from_id),
        rescheduled_to_id=_str(row.rescheduled_to_id),
        created_at=row.created_at,
    )


def appointment_to_row(record: AppointmentRecord) -> Appointment:
    return Appointment(
        id=_uuid(record.id),
        clinic_id=_uuid(record.clinic_id),
        doctor_id=_uuid(record.doctor_id),
        patient_id=_uuid(record.patient_id),
        starts_at=record.starts_at,
        ends_at=record.ends_at,
        status=record.status,
        source=record.source,
        reason=record.reason,
        reminder_sent=record.reminder_sent,
        reminder_sent_at=record.reminder_sent_at,
        reminder_confirmed=record.reminder_confirmed,
        rescheduled_from_id=_uuid(record.rescheduled_from_id),
        created_at=record.created_at,
    )


def waitlist_to_record(row: WaitlistEntry) -> WaitlistRecord:
    return WaitlistRecord(
        id=str(row.id),
        clinic_id=str(row.clinic_id),
        patient_id=str(row.patient_id),
        doctor_id=str(row.doctor_id),
        preferred_dates=list(row.preferred_dates or []),
        preferred_time=row.preferred_time,
        reason=row.reason,
        status=row.status,
        notified_at=row.notified_at,
        created_at=row.created_at,
    )


def conversation_to_record(row: Conversation) -> ConversationRecord:
    return ConversationRecord(
        id=str(row.id),
        clinic_id=str(row.clinic_id),
        patient_id=str(row.patient_id),
        channel_identity=row.channel_identity,
        status=row.status,
        escalated_at=row.escalated_at,
        last_message_at=row.last_message_at,
    )


def message_to_record(row: Message) -> MessageRecord:
    return MessageRecord(
        id=str(row.id),
        conversation_id=str(row.conversation_id),
        role=row.role,
        content=row.content,
        created_at=row.created_at,
    )


class _SessionMixin:
    """Shared transaction handling for the SQL stores."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """Session inside a transaction. Commits on exit, rolls back on error."""
        async with self._session_factory() as session:
            async with session.begin():
                yield session


class SqlSchedulingStore(_SessionMixin, SchedulingStore):
    """SchedulingStore backed by PostgreSQL."""

    # -------------------------------------------------------------------------
    # Clinics and doctors
    # -------------------------------------------------------------------------

    async def get_clinic(self, clinic_id: str) -> Optional[ClinicProfile]:
        cid = _uuid(clinic_id)
        if cid is None:
            return None
        async with self._transaction() as session:
            result = await session.execute(
                select(Clinic).where(
                    Clinic.id == cid,
                    Clinic.status == ClinicStatus.ACTIVE,
                )
            )
            row = result.scalar_one_or_none()
            return clinic_to_record(row) if row else None

    async def get_primary_doctor(self, clinic_id: str) -> Optional[DoctorProfile]:
        cid = _uuid(clinic_id)
        if cid is None:
            return None
        async with self._transaction() as session:
            result = await session.execute(
                select(Doctor)
                .where(Doctor.clinic_id == cid, Doctor.is_active.is_(True))
                .order_by(Doctor.created_at)
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return doctor_to_record(row) if row else None

    async def get_doctor(self, clinic_id: str, doctor_id: str) -> Optional[DoctorProfile]:
        cid, did = _uuid(clinic_id), _uuid(doctor_id)
        if cid is None or did is None:
            return None
        async with self._transaction() as session:
            result = await session.execute(
                select(Doctor).where(Doctor.id == did, Doctor.clinic_id == cid)
            )
            row = result.scalar_one_or_none()
            return doctor_to_record(row) if row else None

    # -------------------------------------------------------------------------
    # Appointments
    # -------------------------------------------------------------------------

    async def list_active_appointments(
        self,
        clinic_id: str,
        doctor_id: Optional[str],
        start: datetime,
        end: datetime,
    ) -> list[AppointmentRecord]:
        cid = _uuid(clinic_id)
        if cid is None:
            return []
        query = select(Appointment).where(
            Appointment.clinic_id == cid,
            _active(),
            _overlapping(start, end),
        )
        if doctor_id is not None:
            did = _uuid(doctor_id)
            if did is None:
                return []
            query = query.where(Appointment.doctor_id == did)

        async with self._transaction() as session:
            result = await session.execute(query.order_by(Appointment.starts_at))
            return [appointment_to_record(row) for row in result.scalars()]

    async def _lock_doctor(self, session: AsyncSession, clinic_id: uuid.UUID, doctor_id: uuid.UUID) -> None:
        """Serialize bookings per doctor for the rest of the transaction."""
        await session.execute(
            select(Doctor.id)
            .where(Doctor.id == doctor_id, Doctor.clinic_id == clinic_id)
            .with_for_update()
        )

    async def _has_overlap(
        self,
        session: AsyncSession,
        doctor_id: uuid.UUID,
        start: datetime,
        end: datetime,
        ignore_id: Optional[uuid.UUID] = None,
    ) -> bool:
        query = select(Appointment.id).where(
            Appointment.doctor_id == doctor_id,
            _active(),
            _overlapping(start, end),
        )
        if ignore_id is not None:
            query = query.where(Appointment.id != ignore_id)
        result = await session.execute(query.limit(1))
        return result.first() is not None

    async def _insert(self, session: AsyncSession, appointment: AppointmentRecord) -> Appointment:
        row = appointment_to_row(appointment)
        session.add(row)
        try:
            await session.flush()
        except IntegrityError as e:
            # Exclusion constraint caught a concurrent booking
            logger.info(f"Appointment insert rejected by database: {e.orig}")
            raise slot_conflict_error() from e
        return row

    async def insert_appointment_if_free(
        self, appointment: AppointmentRecord
    ) -> AppointmentRecord:
        cid, did = _uuid(appointment.clinic_id), _uuid(appointment.doctor_id)

        async with self._transaction() as session:
            await self._lock_doctor(session, cid, did)
            if await self._has_overlap(session, did, appointment.starts_at, appointment.ends_at):
                raise slot_conflict_error()
            row = await self._insert(session, appointment)
            return appointment_to_record(row)

    async def get_appointment(
        self, clinic_id: str, appointment_id: str
    ) -> Optional[AppointmentRecord]:
        cid, aid = _uuid(clinic_id), _uuid(appointment_id)
        if cid is None or aid is None:
            return None
        async with self._transaction() as session:
            result = await session.execute(
                select(Appointment).where(
                    Appointment.id == aid,
                    Appointment.clinic_id == cid,
                )
            )
            row = result.scalar_one_or_none()
            return appointment_to_record(row) if row else None

    async def cancel_appointment(
        self,
        clinic_id: str,
        appointment_id: str,
        reason: Optional[str],
        cancelled_at: datetime,
    ) -> Optional[AppointmentRecord]:
        cid, aid = _uuid(clinic_id), _uuid(appointment_id)
        if cid is None or aid is None:
            return None

        async with self._transaction() as session:
            result = await session.execute(
                update(Appointment)
                .where(Appointment.id == aid, Appointment.clinic_id == cid, _active())
                .values(
                    status=AppointmentStatus.CANCELLED,
                    cancelled_at=cancelled_at,
                    cancellation_reason=reason,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None

            row = await session.get(Appointment, aid, populate_existing=True)
            return appointment_to_record(row)

    async def reschedule_appointment(
        self,
        clinic_id: str,
        original_id: str,
        replacement: AppointmentRecord,
    ) -> AppointmentRecord:
        cid, oid = _uuid(clinic_id), _uuid(original_id)
        did = _uuid(replacement.doctor_id)

        async with self._transaction() as session:
            await self._lock_doctor(session, cid, did)

            if await self._has_overlap(
                session, did, replacement.starts_at, replacement.ends_at, ignore_id=oid
            ):
                raise slot_conflict_error()

            # Supersede first so the original no longer holds its interval
            result = await session.execute(
                update(Appointment)
                .where(Appointment.id == oid, Appointment.clinic_id == cid, _active())
                .values(
                    status=AppointmentStatus.RESCHEDULED,
                    rescheduled_to_id=_uuid(replacement.id),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError("Esta cita ya no está activa", code="not_active")

            row = await self._insert(session, replacement)
            return appointment_to_record(row)

    async def list_patient_appointments(
        self, clinic_id: str, patient_id: str
    ) -> list[AppointmentRecord]:
        cid, pid = _uuid(clinic_id), _uuid(patient_id)
        if cid is None or pid is None:
            return []
        async with self._transaction() as session:
            result = await session.execute(
                select(Appointment)
                .where(Appointment.clinic_id == cid, Appointment.patient_id == pid)
                .order_by(Appointment.starts_at)
            )
            return [appointment_to_record(row) for row in result.scalars()]

    async def list_reminder_candidates(
        self, clinic_id: str, start: datetime, end: datetime
    ) -> list[AppointmentRecord]:
        cid = _uuid(clinic_id)
        if cid is None:
            return []
        async with self._transaction() as session:
            result = await session.execute(
                select(Appointment)
                .where(
                    Appointment.clinic_id == cid,
                    _active(),
                    Appointment.reminder_sent.is_(False),
                    Appointment.starts_at >= start,
                    Appointment.starts_at < end,
                )
                .order_by(Appointment.starts_at)
            )
            return [appointment_to_record(row) for row in result.scalars()]

    async def list_unanswered_reminders(
        self, clinic_id: str, sent_before: datetime
    ) -> list[AppointmentRecord]:
        cid = _uuid(clinic_id)
        if cid is None:
            return []
        async with self._transaction() as session:
            result = await session.execute(
                select(Appointment)
                .where(
                    Appointment.clinic_id == cid,
                    _active(),
                    Appointment.reminder_sent.is_(True),
                    Appointment.reminder_confirmed.is_(None),
                    Appointment.reminder_sent_at <= sent_before,
                )
                .order_by(Appointment.starts_at)
            )
            return [appointment_to_record(row) for row in result.scalars()]

    async def mark_reminder_sent(
        self, clinic_id: str, appointment_id: str, sent_at: datetime
    ) -> None:
        await self._update_appointment(
            clinic_id, appointment_id, reminder_sent=True, reminder_sent_at=sent_at
        )

    async def set_reminder_confirmed(
        self, clinic_id: str, appointment_id: str, confirmed: bool
    ) -> None:
        await self._update_appointment(clinic_id, appointment_id, reminder_confirmed=confirmed)

    async def _update_appointment(self, clinic_id: str, appointment_id: str, **values) -> None:
        cid, aid = _uuid(clinic_id), _uuid(appointment_id)
        if cid is None or aid is None:
            return
        async with self._transaction() as session:
            await session.execute(
                update(Appointment)
                .where(Appointment.id == aid, Appointment.clinic_id == cid)
                .values(**values)
                .execution_options(synchronize_session=False)
            )

    # -------------------------------------------------------------------------
    # Patients
    # -------------------------------------------------------------------------

    async def get_patient(self, clinic_id: str, patient_id: str) -> Optional[PatientRecord]:
        cid, pid = _uuid(clinic_id), _uuid(patient_id)
        if cid is None or pid is None:
            return None
        async with self._transaction() as session:
            result = await session.execute(
                select(Patient).where(Patient.id == pid, Patient.clinic_id == cid)
            )
            row = result.scalar_one_or_none()
            return patient_to_record(row) if row else None

    async def find_patient_by_phone(
        self, clinic_id: str, phone: str
    ) -> Optional[PatientRecord]:
        cid = _uuid(clinic_id)
        if cid is None:
            return None
        async with self._transaction() as session:
            result = await session.execute(
                select(Patient).where(Patient.clinic_id == cid, Patient.phone == phone)
            )
            row = result.scalar_one_or_none()
            return patient_to_record(row) if row else None

    async def create_patient(self, patient: PatientRecord) -> PatientRecord:
        row = Patient(
            id=_uuid(patient.id),
            clinic_id=_uuid(patient.clinic_id),
            name=patient.name,
            phone=patient.phone,
            date_of_birth=patient.date_of_birth,
            document_type=patient.document_type,
            document_number=patient.document_number,
            no_show_count=patient.no_show_count,
            total_appointments=patient.total_appointments,
            no_show_probability=patient.no_show_probability,
            data_consent_at=patient.data_consent_at,
            created_at=patient.created_at,
        )
        async with self._transaction() as session:
            session.add(row)
            await session.flush()
            return patient_to_record(row)

    async def update_patient(self, patient: PatientRecord) -> PatientRecord:
        cid, pid = _uuid(patient.clinic_id), _uuid(patient.id)
        async with self._transaction() as session:
            await session.execute(
                update(Patient)
                .where(Patient.id == pid, Patient.clinic_id == cid)
                .values(
                    name=patient.name,
                    date_of_birth=patient.date_of_birth,
                    document_type=patient.document_type,
                    document_number=patient.document_number,
                    no_show_count=patient.no_show_count,
                    total_appointments=patient.total_appointments,
                    no_show_probability=patient.no_show_probability,
                    data_consent_at=patient.data_consent_at,
                )
                .execution_options(synchronize_session=False)
            )
        return patient

    async def increment_patient_appointments(self, clinic_id: str, patient_id: str) -> None:
        cid, pid = _uuid(clinic_id), _uuid(patient_id)
        if cid is None or pid is None:
            return
        async with self._transaction() as session:
            await session.execute(
                update(Patient)
                .where(Patient.id == pid, Patient.clinic_id == cid)
                .values(total_appointments=Patient.total_appointments + 1)
                .execution_options(synchronize_session=False)
            )

    # -------------------------------------------------------------------------
    # Waitlist
    # -------------------------------------------------------------------------

    async def find_waiting_entry(
        self, clinic_id: str, patient_id: str
    ) -> Optional[WaitlistRecord]:
        cid, pid = _uuid(clinic_id), _uuid(patient_id)
        if cid is None or pid is None:
            return None
        async with self._transaction() as session:
            result = await session.execute(
                select(WaitlistEntry)
                .where(
                    WaitlistEntry.clinic_id == cid,
                    WaitlistEntry.patient_id == pid,
                    WaitlistEntry.status == WaitlistStatus.WAITING,
                )
                .order_by(WaitlistEntry.created_at)
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return waitlist_to_record(row) if row else None

    async def insert_waitlist_entry(self, entry: WaitlistRecord) -> WaitlistRecord:
        row = WaitlistEntry(
            id=_uuid(entry.id),
            clinic_id=_uuid(entry.clinic_id),
            patient_id=_uuid(entry.patient_id),
            doctor_id=_uuid(entry.doctor_id),
            preferred_dates=list(entry.preferred_dates),
            preferred_time=entry.preferred_time,
            reason=entry.reason,
            status=entry.status,
            created_at=entry.created_at,
        )
        async with self._transaction() as session:
            session.add(row)
            await session.flush()
            return waitlist_to_record(row)

    async def oldest_waiting_entry(
        self, clinic_id: str, doctor_id: str
    ) -> Optional[WaitlistRecord]:
        cid, did = _uuid(clinic_id), _uuid(doctor_id)
        if cid is None or did is None:
            return None
        async with self._transaction() as session:
            result = await session.execute(
                select(WaitlistEntry)
                .where(
                    WaitlistEntry.clinic_id == cid,
                    WaitlistEntry.doctor_id == did,
                    WaitlistEntry.status == WaitlistStatus.WAITING,
                )
                .order_by(WaitlistEntry.created_at)
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return waitlist_to_record(row) if row else None

    async def mark_waitlist_notified(
        self, clinic_id: str, entry_id: str, notified_at: datetime
    ) -> bool:
        cid, eid = _uuid(clinic_id), _uuid(entry_id)
        if cid is None or eid is None:
            return False
        async with self._transaction() as session:
            result = await session.execute(
                update(WaitlistEntry)
                .where(
                    WaitlistEntry.id == eid,
                    WaitlistEntry.clinic_id == cid,
                    WaitlistEntry.status == WaitlistStatus.WAITING,
                )
                .values(status=WaitlistStatus.NOTIFIED, notified_at=notified_at)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    async def record_audit(
        self,
        clinic_id: str,
        action: str,
        actor_type: str,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        cid = _uuid(clinic_id)
        if cid is None:
            return
        async with self._transaction() as session:
            session.add(AuditLog(
                clinic_id=cid,
                action=action,
                actor_type=ActorType(actor_type),
                target_type=target_type,
                target_id=str(target_id) if target_id is not None else None,
                details=details,
            ))


class SqlConversationStore(_SessionMixin, ConversationStore):
    """ConversationStore backed by PostgreSQL."""

    async def get_or_create_conversation(
        self, clinic_id: str, patient_id: str, channel_identity: str
    ) -> ConversationRecord:
        cid, pid = _uuid(clinic_id), _uuid(patient_id)
        async with self._transaction() as session:
            result = await session.execute(
                select(Conversation)
                .where(
                    Conversation.clinic_id == cid,
                    Conversation.patient_id == pid,
                    Conversation.status.in_(
                        (ConversationStatus.ACTIVE, ConversationStatus.ESCALATED)
                    ),
                )
                .order_by(Conversation.created_at.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = Conversation(
                    id=uuid.uuid4(),
                    clinic_id=cid,
                    patient_id=pid,
                    channel_identity=channel_identity,
                    status=ConversationStatus.ACTIVE,
                )
                session.add(row)
                await session.flush()
                logger.info(f"Conversation {row.id} opened for patient {pid}")
            return conversation_to_record(row)

    async def recent_messages(
        self, conversation_id: str, limit: int
    ) -> list[MessageRecord]:
        cid = _uuid(conversation_id)
        if cid is None or limit <= 0:
            return []
        async with self._transaction() as session:
            result = await session.execute(
                select(Message)
                .where(Message.conversation_id == cid)
                .order_by(Message.created_at.desc())
                .limit(limit)
            )
            rows = list(result.scalars())
        rows.reverse()
        return [message_to_record(row) for row in rows]

    async def save_message(
        self, conversation_id: str, role: MessageRole, content: str
    ) -> MessageRecord:
        cid = _uuid(conversation_id)
        now = datetime.now(timezone.utc)
        row = Message(
            id=uuid.uuid4(),
            conversation_id=cid,
            role=MessageRole(role),
            content=content,
            created_at=now,
        )
        async with self._transaction() as session:
            session.add(row)
            await session.execute(
                update(Conversation)
                .where(Conversation.id == cid)
                .values(last_message_at=now)
                .execution_options(synchronize_session=False)
            )
        return message_to_record(row)

    async def mark_escalated(self, conversation_id: str, escalated_at: datetime) -> None:
        cid = _uuid(conversation_id)
        if cid is None:
            return
        async with self._transaction() as session:
            await session.execute(
                update(Conversation)
                .where(Conversation.id == cid)
                .values(status=ConversationStatus.ESCALATED, escalated_at=escalated_at)
                .execution_options(synchronize_session=False)
            )
