"""
Shared test fixtures.

Clinic: America/Bogota (UTC-5), open Monday-Friday 08:00-12:00, 30 minute
appointments. The clock is fixed at Sunday 2026-02-15 07:00 local.
"""

from datetime import timedelta

import pytest

from app.core.scheduling.types import ClinicProfile, DoctorProfile, PatientRecord
from tests.fakes import (
    CLINIC_ID,
    DOCTOR_ID,
    NOW,
    WEEKDAY_HOURS,
    FakeClock,
    FakeConversationStore,
    FakeNotifier,
    FakeSchedulingStore,
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def clinic() -> ClinicProfile:
    return ClinicProfile(
        id=CLINIC_ID,
        name="Consultorio Dra. Pérez",
        working_hours=dict(WEEKDAY_HOURS),
        appointment_duration_minutes=30,
        timezone="America/Bogota",
        agent_name="Sofía",
        address="Calle 10 # 5-20, Bogotá",
    )


@pytest.fixture
def doctor() -> DoctorProfile:
    return DoctorProfile(
        id=DOCTOR_ID,
        clinic_id=CLINIC_ID,
        name="Dra. Pérez",
        specialty="Medicina general",
        phone="+573000000000",
    )


@pytest.fixture
def store(clinic, doctor) -> FakeSchedulingStore:
    store = FakeSchedulingStore()
    store.add_clinic(clinic)
    store.add_doctor(doctor)
    return store


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def conversations(clock) -> FakeConversationStore:
    return FakeConversationStore(clock)


@pytest.fixture
def patient(store) -> PatientRecord:
    return store.add_patient(PatientRecord(
        clinic_id=CLINIC_ID,
        name="Ana Gómez",
        phone="+573101112233",
        created_at=NOW - timedelta(days=30),
    ))

