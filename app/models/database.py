"""
Database Models

SQLAlchemy ORM models for the multi-tenant clinic scheduler.

Every table below the clinic carries clinic_id; queries always filter on it.
Timestamps are timezone-aware (TIMESTAMP WITH TIME ZONE, stored as UTC).
"""

import uuid
from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text,
    UniqueConstraint, Enum as SQLEnum, func, literal_column, text
)
from sqlalchemy.dialects.postgresql import ExcludeConstraint, JSON, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.core.scheduling.types import (
    AppointmentSource,
    AppointmentStatus,
    ConversationStatus,
    MessageRole,
    PreferredTime,
    WaitlistStatus,
)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=func.now(),
        nullable=False
    )


def _enum(enum_cls: type[Enum], name: str) -> SQLEnum:
    """Store enum values ("confirmed"), not member names ("CONFIRMED")."""
    return SQLEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
    )


class ClinicStatus(str, Enum):
    """Clinic status enumeration."""
    ACTIVE = "active"
    SUSPENDED = "suspended"
    INACTIVE = "inactive"


class ActorType(str, Enum):
    """Who performed an audited action."""
    AGENT = "agent"
    STAFF = "staff"
    SYSTEM = "system"
    PATIENT = "patient"


class Clinic(Base, TimestampMixin):
    """
    Clinic model (Tenant).

    Each clinic is a separate tenant with its own doctors, patients,
    appointments and conversations.

    working_hours: {"monday": {"start": "08:00", "end": "18:00", "active": true}, ...}
    """

    __tablename__ = "clinics"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timezone: Mapped[str] = mapped_column(String(50), default="America/Bogota")
    working_hours: Mapped[dict] = mapped_column(JSON, default=dict)
    appointment_duration_minutes: Mapped[int] = mapped_column(Integer, default=30)
    agent_name: Mapped[str] = mapped_column(String(100), default="Sofía")
    welcome_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[ClinicStatus] = mapped_column(
        _enum(ClinicStatus, "clinic_status"),
        default=ClinicStatus.ACTIVE
    )

    # Relationships
    doctors: Mapped[List["Doctor"]] = relationship("Doctor", back_populates="clinic")
    patients: Mapped[List["Patient"]] = relationship("Patient", back_populates="clinic")

    def __repr__(self) -> str:
        return f"<Clinic(id={self.id}, name='{self.name}', status={self.status.value})>"


class Doctor(Base, TimestampMixin):
    """
    Doctor model.

    working_hours overrides the clinic's hours when set. Only active
    doctors are schedulable. phone receives the morning report.
    """

    __tablename__ = "doctors"
    __table_args__ = (
        Index("idx_doctor_clinic", "clinic_id", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    specialty: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    working_hours: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Relationships
    clinic: Mapped["Clinic"] = relationship("Clinic", back_populates="doctors")

    def __repr__(self) -> str:
        return f"<Doctor(id={self.id}, name='{self.name}', active={self.is_active})>"


class Patient(Base, TimestampMixin):
    """
    Patient model.

    Keyed by normalized phone within a clinic. Created on first contact or
    first booking, never deleted.
    """

    __tablename__ = "patients"
    __table_args__ = (
        UniqueConstraint("clinic_id", "phone", name="uq_patient_clinic_phone"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(50), nullable=False)
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    document_type: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    document_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    no_show_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_appointments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    no_show_probability: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    data_consent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    # Relationships
    clinic: Mapped["Clinic"] = relationship("Clinic", back_populates="patients")

    def __repr__(self) -> str:
        return f"<Patient(id={self.id}, name='{self.name}')>"


class Appointment(Base, TimestampMixin):
    """
    Appointment model.

    Half-open interval [starts_at, ends_at). A reschedule keeps the original
    row (status rescheduled, rescheduled_to_id set) and inserts a new
    confirmed row pointing back through rescheduled_from_id.

    Active = status in (confirmed, rescheduled) and not superseded. Active
    appointments of one doctor never overlap: see the exclusion constraint
    attached below the class.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointment_doctor_start", "clinic_id", "doctor_id", "starts_at"),
        Index("idx_appointment_patient", "clinic_id", "patient_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False
    )
    doctor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("doctors.id", ondelete="CASCADE"),
        nullable=False
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False
    )
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[AppointmentStatus] = mapped_column(
        _enum(AppointmentStatus, "appointment_status"),
        default=AppointmentStatus.CONFIRMED,
        nullable=False
    )
    source: Mapped[AppointmentSource] = mapped_column(
        _enum(AppointmentSource, "appointment_source"),
        default=AppointmentSource.WHATSAPP_AGENT,
        nullable=False
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reminder_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reminder_sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    reminder_confirmed: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rescheduled_from_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("appointments.id", ondelete="SET NULL"),
        nullable=True
    )
    # Deferred: the original is superseded before its replacement row exists
    rescheduled_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey(
            "appointments.id",
            ondelete="SET NULL",
            deferrable=True,
            initially="DEFERRED",
        ),
        nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<Appointment(id={self.id}, doctor_id={self.doctor_id}, "
            f"start={self.starts_at}, status={self.status.value})>"
        )


# Requires the btree_gist extension (created by init_db)
Appointment.__table__.append_constraint(
    ExcludeConstraint(
        (Appointment.__table__.c.doctor_id, "="),
        (
            func.tstzrange(
                Appointment.__table__.c.starts_at,
                Appointment.__table__.c.ends_at,
                literal_column("'[)'"),
            ),
            "&&",
        ),
        name="ex_appointment_doctor_overlap",
        using="gist",
        where=text(
            "status IN ('confirmed', 'rescheduled') AND rescheduled_to_id IS NULL"
        ),
    ).ddl_if(dialect="postgresql")
)


class WaitlistEntry(Base, TimestampMixin):
    """
    Waitlist entry.

    Served FIFO by created_at per doctor when an interval is freed.
    """

    __tablename__ = "waitlist_entries"
    __table_args__ = (
        Index("idx_waitlist_doctor_status", "clinic_id", "doctor_id", "status", "created_at"),
        Index("idx_waitlist_patient_status", "clinic_id", "patient_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False
    )
    doctor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("doctors.id", ondelete="CASCADE"),
        nullable=False
    )
    preferred_dates: Mapped[list] = mapped_column(JSON, default=list)
    preferred_time: Mapped[PreferredTime] = mapped_column(
        _enum(PreferredTime, "preferred_time"),
        default=PreferredTime.ANY,
        nullable=False
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[WaitlistStatus] = mapped_column(
        _enum(WaitlistStatus, "waitlist_status"),
        default=WaitlistStatus.WAITING,
        nullable=False
    )
    notified_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    def __repr__(self) -> str:
        return f"<WaitlistEntry(id={self.id}, doctor_id={self.doctor_id}, status={self.status.value})>"


class Conversation(Base, TimestampMixin):
    """
    Conversation model.

    One open (active or escalated) conversation per patient and clinic.
    """

    __tablename__ = "conversations"
    __table_args__ = (
        Index("idx_conversation_patient", "clinic_id", "patient_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False
    )
    channel_identity: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[ConversationStatus] = mapped_column(
        _enum(ConversationStatus, "conversation_status"),
        default=ConversationStatus.ACTIVE,
        nullable=False
    )
    escalated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    last_message_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    # Relationships
    messages: Mapped[List["Message"]] = relationship(
        "Message",
        back_populates="conversation",
        order_by="Message.created_at"
    )

    def __repr__(self) -> str:
        return f"<Conversation(id={self.id}, status={self.status.value})>"


class Message(Base):
    """Message model. Immutable once written."""

    __tablename__ = "messages"
    __table_args__ = (
        Index("idx_message_conversation_time", "conversation_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False
    )
    role: Mapped[MessageRole] = mapped_column(
        _enum(MessageRole, "message_role"),
        nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )

    # Relationships
    conversation: Mapped["Conversation"] = relationship(
        "Conversation",
        back_populates="messages"
    )

    def __repr__(self) -> str:
        return f"<Message(id={self.id}, role={self.role.value})>"


class AuditLog(Base):
    """
    Audit Log model.

    Append-only trail of scheduling actions. Read model for reporting.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_clinic_time", "clinic_id", "created_at"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_target", "target_type", "target_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False
    )
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_type: Mapped[ActorType] = mapped_column(
        _enum(ActorType, "actor_type"),
        nullable=False
    )
    target_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    target_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, action='{self.action}', created_at={self.created_at})>"
