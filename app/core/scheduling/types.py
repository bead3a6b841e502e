"""
Scheduling domain records.

Plain dataclasses passed across the storage boundary. The SQLAlchemy store
maps ORM rows to these, and tests build them directly.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4
from zoneinfo import ZoneInfo


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate a record identifier."""
    return str(uuid4())


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""
    CONFIRMED = "confirmed"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


ACTIVE_STATUSES = (AppointmentStatus.CONFIRMED, AppointmentStatus.RESCHEDULED)
PAST_STATUSES = (AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW)


class AppointmentSource(str, Enum):
    """Where an appointment was booked."""
    WHATSAPP_AGENT = "whatsapp_agent"
    MANUAL = "manual"
    DASHBOARD = "dashboard"


class WaitlistStatus(str, Enum):
    """Waitlist entry status enumeration."""
    WAITING = "waiting"
    NOTIFIED = "notified"
    CONVERTED = "converted"
    EXPIRED = "expired"


class PreferredTime(str, Enum):
    """Time-of-day preference for waitlist entries."""
    MORNING = "morning"
    AFTERNOON = "afternoon"
    ANY = "any"


class DocumentType(str, Enum):
    """Identity document types."""
    CC = "CC"  # Cédula de ciudadanía
    TI = "TI"  # Tarjeta de identidad
    CE = "CE"  # Cédula de extranjería
    PP = "PP"  # Pasaporte


# Index matches date.weekday()
WEEKDAYS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


@dataclass(frozen=True)
class WorkingDay:
    """Working window for one weekday."""

    start: time
    end: time
    active: bool = True

    @classmethod
    def from_dict(cls, data: dict) -> "WorkingDay":
        """Create from stored JSON, e.g. {"start": "08:00", "end": "18:00", "active": true}."""
        return cls(
            start=time.fromisoformat(data["start"]),
            end=time.fromisoformat(data["end"]),
            active=bool(data.get("active", True)),
        )

    def to_dict(self) -> dict:
        """Convert to JSON-compatible dict."""
        return {
            "start": self.start.strftime("%H:%M"),
            "end": self.end.strftime("%H:%M"),
            "active": self.active,
        }


def parse_working_hours(raw: Optional[dict]) -> Optional[dict[str, WorkingDay]]:
    """Parse a weekday -> window mapping. Returns None for a missing override."""
    if raw is None:
        return None
    return {day: WorkingDay.from_dict(value) for day, value in raw.items() if value}


@dataclass
class ClinicProfile:
    """Tenant root with its scheduling configuration."""

    id: str
    name: str
    working_hours: dict[str, WorkingDay] = field(default_factory=dict)
    appointment_duration_minutes: int = 30
    timezone: str = "America/Bogota"
    agent_name: str = "Sofía"
    address: Optional[str] = None
    welcome_message: Optional[str] = None

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def local_today(self, now: Optional[datetime] = None) -> date:
        """Current date in the clinic's timezone."""
        return (now or _utcnow()).astimezone(self.tz).date()


@dataclass
class DoctorProfile:
    """Doctor belonging to one clinic."""

    id: str
    clinic_id: str
    name: str
    specialty: Optional[str] = None
    phone: Optional[str] = None
    is_active: bool = True
    working_hours: Optional[dict[str, WorkingDay]] = None

    def hours_for(self, clinic: ClinicProfile) -> dict[str, WorkingDay]:
        """Doctor override when set, clinic hours otherwise."""
        if self.working_hours is not None:
            return self.working_hours
        return clinic.working_hours


@dataclass
class PatientRecord:
    """Patient keyed by normalized phone within a clinic."""

    clinic_id: str
    name: str
    phone: str
    id: str = field(default_factory=new_id)
    date_of_birth: Optional[date] = None
    document_type: Optional[str] = None
    document_number: Optional[str] = None
    no_show_count: int = 0
    total_appointments: int = 0
    no_show_probability: float = 0.0
    data_consent_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class AppointmentRecord:
    """Booked interval [starts_at, ends_at) for a doctor and patient."""

    clinic_id: str
    doctor_id: str
    patient_id: str
    starts_at: datetime
    ends_at: datetime
    id: str = field(default_factory=new_id)
    status: AppointmentStatus = AppointmentStatus.CONFIRMED
    source: AppointmentSource = AppointmentSource.WHATSAPP_AGENT
    reason: Optional[str] = None
    reminder_sent: bool = False
    reminder_sent_at: Optional[datetime] = None
    reminder_confirmed: Optional[bool] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    rescheduled_from_id: Optional[str] = None
    rescheduled_to_id: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def is_active(self) -> bool:
        """Holds its interval: confirmed/rescheduled and not superseded."""
        return self.status in ACTIVE_STATUSES and self.rescheduled_to_id is None


@dataclass
class WaitlistRecord:
    """Patient waiting for a freed interval with a doctor."""

    clinic_id: str
    patient_id: str
    doctor_id: str
    id: str = field(default_factory=new_id)
    preferred_dates: list[str] = field(default_factory=list)
    preferred_time: PreferredTime = PreferredTime.ANY
    reason: Optional[str] = None
    status: WaitlistStatus = WaitlistStatus.WAITING
    notified_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=_utcnow)


class ConversationStatus(str, Enum):
    """Conversation status enumeration."""
    ACTIVE = "active"
    RESOLVED = "resolved"
    ESCALATED = "escalated"


class MessageRole(str, Enum):
    """Author of a stored conversation message."""
    PATIENT = "patient"
    AGENT = "agent"
    STAFF = "staff"


@dataclass
class ConversationRecord:
    """Channel conversation between a patient and the clinic."""

    clinic_id: str
    patient_id: str
    channel_identity: str
    id: str = field(default_factory=new_id)
    status: ConversationStatus = ConversationStatus.ACTIVE
    escalated_at: Optional[datetime] = None
    last_message_at: Optional[datetime] = None

    @property
    def is_escalated(self) -> bool:
        return self.status == ConversationStatus.ESCALATED


@dataclass
class MessageRecord:
    """One stored message of a conversation."""

    conversation_id: str
    role: MessageRole
    content: str
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=_utcnow)
