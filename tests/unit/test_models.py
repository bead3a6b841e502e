"""Tests for the database models and row mappers."""

import uuid

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.schema import CreateTable

from app.core.scheduling.types import AppointmentSource, AppointmentStatus
from app.infra.store import _uuid, appointment_to_record, appointment_to_row
from app.models.database import Appointment, Clinic, Patient
from tests.fakes import CLINIC_ID, DOCTOR_ID, local, make_appointment


def ddl(table, dialect) -> str:
    return str(CreateTable(table).compile(dialect=dialect))


class TestAppointmentTable:
    """Test the appointment DDL."""

    def test_exclusion_constraint_on_postgresql(self):
        statement = ddl(Appointment.__table__, postgresql.dialect())

        assert "CONSTRAINT ex_appointment_doctor_overlap EXCLUDE USING gist" in statement
        assert "doctor_id WITH =" in statement
        assert "tstzrange(starts_at, ends_at, '[)') WITH &&" in statement
        assert "status IN ('confirmed', 'rescheduled') AND rescheduled_to_id IS NULL" in statement

    def test_exclusion_constraint_skipped_elsewhere(self):
        statement = ddl(Appointment.__table__, sqlite.dialect())

        assert "EXCLUDE" not in statement

    def test_rescheduled_to_is_deferrable(self):
        statement = ddl(Appointment.__table__, postgresql.dialect())

        assert "DEFERRABLE INITIALLY DEFERRED" in statement

    def test_enums_store_values(self):
        status = Appointment.__table__.c.status.type
        source = Appointment.__table__.c.source.type

        assert status.enums == ["confirmed", "rescheduled", "cancelled", "completed", "no_show"]
        assert source.enums == ["whatsapp_agent", "manual", "dashboard"]

    def test_times_are_timezone_aware(self):
        assert Appointment.__table__.c.starts_at.type.timezone is True
        assert Appointment.__table__.c.ends_at.type.timezone is True


class TestOtherTables:
    def test_patient_phone_unique_per_clinic(self):
        statement = ddl(Patient.__table__, postgresql.dialect())

        assert "CONSTRAINT uq_patient_clinic_phone UNIQUE (clinic_id, phone)" in statement

    def test_clinic_defaults(self):
        columns = Clinic.__table__.c

        assert columns.timezone.default.arg == "America/Bogota"
        assert columns.appointment_duration_minutes.default.arg == 30


class TestRowMapping:
    """Test conversions between records and rows."""

    def test_uuid_parsing(self):
        assert _uuid(CLINIC_ID) == uuid.UUID(CLINIC_ID)
        assert _uuid(uuid.UUID(CLINIC_ID)) == uuid.UUID(CLINIC_ID)
        assert _uuid("not-a-uuid") is None
        assert _uuid(None) is None

    def test_appointment_round_trip(self):
        patient_id = str(uuid.uuid4())
        record = make_appointment(
            patient_id,
            local(2026, 2, 16, 9, 0),
            reason="Control",
            source=AppointmentSource.MANUAL,
        )

        row = appointment_to_row(record)
        row.cancelled_at = None
        row.cancellation_reason = None
        row.rescheduled_to_id = None
        mapped = appointment_to_record(row)

        assert row.id == uuid.UUID(record.id)
        assert row.doctor_id == uuid.UUID(DOCTOR_ID)
        assert mapped.id == record.id
        assert mapped.patient_id == patient_id
        assert mapped.starts_at == record.starts_at
        assert mapped.ends_at == record.ends_at
        assert mapped.status == AppointmentStatus.CONFIRMED
        assert mapped.source == AppointmentSource.MANUAL
        assert mapped.reason == "Control"
        assert mapped.is_active
