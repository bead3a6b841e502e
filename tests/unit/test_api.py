"""
Tests for the HTTP routes.

The service graph is built around the in-memory fakes and injected through
a dependency override, so no database, Redis or outbound channel is used.
The lifespan does not run (TestClient is not used as a context manager).
"""

import pytest
from fastapi.testclient import TestClient

from app.api.deps import build_services, get_services
from app.core.scheduling.types import PatientRecord
from app.main import app
from tests.fakes import (
    CLINIC_ID,
    OTHER_CLINIC_ID,
    ScriptedDecisionMaker,
    final,
    local,
    make_appointment,
)


@pytest.fixture
def decision_maker():
    return ScriptedDecisionMaker([final("¿Para qué día quieres la cita?")])


@pytest.fixture
def client(store, conversations, notifier, decision_maker, clock):
    services = build_services(store, conversations, notifier, decision_maker, clock=clock)
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestMessages:
    """Test POST /v1/clinics/{clinic_id}/messages."""

    def test_first_contact(self, client):
        response = client.post(
            f"/v1/clinics/{CLINIC_ID}/messages",
            json={"phone": "310 555 0000", "text": "Hola", "profile_name": "Luis"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["handled_by"] == "welcome"
        assert "Ley 1581" in body["reply"]
        assert body["escalated"] is False
        assert body["conversation_id"]

    def test_agent_reply(self, client, patient):
        patient.data_consent_at = local(2026, 2, 1, 9, 0)

        response = client.post(
            f"/v1/clinics/{CLINIC_ID}/messages",
            json={"phone": "+573101112233", "text": "Quiero una cita"},
        )

        assert response.status_code == 200
        assert response.json() == {
            "conversation_id": response.json()["conversation_id"],
            "reply": "¿Para qué día quieres la cita?",
            "handled_by": "agent",
            "actions_used": [],
            "escalated": False,
        }

    def test_unknown_clinic(self, client):
        response = client.post(
            f"/v1/clinics/{OTHER_CLINIC_ID}/messages",
            json={"phone": "+573101112233", "text": "Hola"},
        )

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_unusable_phone(self, client):
        response = client.post(
            f"/v1/clinics/{CLINIC_ID}/messages",
            json={"phone": "sin número", "text": "Hola"},
        )

        assert response.status_code == 422
        assert response.json()["code"] == "invalid_phone"

    def test_empty_text(self, client):
        response = client.post(
            f"/v1/clinics/{CLINIC_ID}/messages",
            json={"phone": "+573101112233", "text": ""},
        )

        assert response.status_code == 422
        assert response.json()["error"] == "Validation error"


class TestReports:
    """Test GET /v1/clinics/{clinic_id}/reports/daily-risk."""

    def test_daily_risk(self, client, store, patient):
        patient.no_show_probability = 30.0
        store.add_appointment(make_appointment(patient.id, local(2026, 2, 16, 9, 0)))

        response = client.get(
            f"/v1/clinics/{CLINIC_ID}/reports/daily-risk", params={"date": "2026-02-16"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["date"] == "2026-02-16"
        assert body["total_appointments"] == 1
        assert body["expected_no_shows"] == 0.3
        assert body["recommend_overbooking"] is False
        assert body["patients"][0]["name"] == "Ana Gómez"

    def test_defaults_to_clinic_today(self, client):
        response = client.get(f"/v1/clinics/{CLINIC_ID}/reports/daily-risk")

        assert response.json()["date"] == "2026-02-15"

    def test_unknown_clinic(self, client):
        response = client.get(f"/v1/clinics/{OTHER_CLINIC_ID}/reports/daily-risk")

        assert response.status_code == 404


class TestJobs:
    """Test the scheduled job triggers."""

    def test_reminders(self, client, store, notifier, clock, patient):
        clock.advance(hours=1)
        store.add_appointment(make_appointment(patient.id, local(2026, 2, 16, 8, 0)))

        response = client.post(f"/v1/clinics/{CLINIC_ID}/jobs/reminders")

        assert response.status_code == 200
        assert response.json() == {"sent": 1, "failed": 0, "skipped": 0, "marked_unanswered": 0}
        assert notifier.sent[0][0] == "+573101112233"

    def test_morning_report(self, client, store, notifier):
        other = store.add_patient(PatientRecord(clinic_id=CLINIC_ID, name="Luis", phone="+573200000001"))
        store.add_appointment(make_appointment(other.id, local(2026, 2, 15, 10, 0)))

        response = client.post(f"/v1/clinics/{CLINIC_ID}/jobs/morning-report")

        body = response.json()
        assert response.status_code == 200
        assert body["sent"] is True
        assert body["report"]["total_appointments"] == 1
        assert notifier.sent == [("+573000000000", body["text"])]
        assert "Luis" in body["text"]

    def test_morning_report_unknown_clinic(self, client):
        response = client.post(f"/v1/clinics/{OTHER_CLINIC_ID}/jobs/morning-report")

        assert response.status_code == 404


class TestHealth:
    def test_liveness(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_root(self, client):
        assert client.get("/").json()["status"] == "running"
