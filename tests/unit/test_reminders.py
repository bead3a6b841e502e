"""Tests for appointment reminders."""

import pytest
from datetime import timedelta

from app.core.scheduling.reminders import ReminderService, parse_reminder_reply
from app.core.scheduling.risk import NoShowRiskModel
from app.core.scheduling.types import AppointmentStatus
from tests.fakes import FakeNotifier, local, make_appointment


class TestParseReminderReply:
    """Test yes/no classification."""

    @pytest.mark.parametrize("text", ["sí", "Si", " SI ", "yes", "confirmo", "dale", "ok", "Listo"])
    def test_confirm(self, text):
        assert parse_reminder_reply(text) is True

    @pytest.mark.parametrize("text", ["no", "NO", "cancelar", "no puedo"])
    def test_decline(self, text):
        assert parse_reminder_reply(text) is False

    @pytest.mark.parametrize("text", ["sí, pero a otra hora", "quiero agendar", "", "nop"])
    def test_other(self, text):
        assert parse_reminder_reply(text) is None


class TestReminderService:
    """Test sending, expiring and answering reminders."""

    @pytest.fixture
    def service(self, store, notifier, clock):
        # 08:00 Bogota: the window covers appointments tomorrow 07:00-09:00
        clock.advance(hours=1)
        return ReminderService(store, notifier, NoShowRiskModel(store, clock=clock), clock=clock)

    @pytest.mark.asyncio
    async def test_sends_due_reminder(self, service, store, notifier, clinic, patient, clock):
        due = store.add_appointment(make_appointment(patient.id, local(2026, 2, 16, 8, 30)))

        run = await service.send_due_reminders(clinic)

        assert run.sent == 1
        assert due.reminder_sent is True
        assert due.reminder_sent_at == clock.now
        phone, text = notifier.sent[0]
        assert phone == patient.phone
        assert "Hola Ana Gómez" in text
        assert "lunes 16 de febrero" in text
        assert "8:30 a. m." in text
        assert "Dra. Pérez" in text
        assert "Calle 10 # 5-20" in text

    @pytest.mark.asyncio
    async def test_skips_outside_window_and_inactive(self, service, store, notifier, clinic, patient):
        store.add_appointment(make_appointment(patient.id, local(2026, 2, 16, 11, 0)))
        store.add_appointment(make_appointment(
            patient.id, local(2026, 2, 16, 8, 0), status=AppointmentStatus.CANCELLED
        ))
        store.add_appointment(make_appointment(
            patient.id, local(2026, 2, 16, 7, 30), reminder_sent=True
        ))

        run = await service.send_due_reminders(clinic)

        assert run.sent == 0
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_failed_delivery_retried_next_run(self, store, clinic, patient, clock):
        clock.advance(hours=1)
        service = ReminderService(
            store, FakeNotifier(fail=True), NoShowRiskModel(store, clock=clock), clock=clock
        )
        due = store.add_appointment(make_appointment(patient.id, local(2026, 2, 16, 8, 30)))

        run = await service.send_due_reminders(clinic)

        assert run.failed == 1
        assert due.reminder_sent is False

    @pytest.mark.asyncio
    async def test_missing_patient_skipped(self, service, store, clinic):
        store.add_appointment(make_appointment("ghost", local(2026, 2, 16, 8, 30)))

        run = await service.send_due_reminders(clinic)

        assert run.skipped == 1

    @pytest.mark.asyncio
    async def test_mark_unanswered(self, service, store, clinic, patient, clock):
        """Test a reminder older than 12h counts as not confirmed."""
        stale = store.add_appointment(make_appointment(
            patient.id, local(2026, 2, 15, 20, 0),
            reminder_sent=True, reminder_sent_at=clock.now - timedelta(hours=13),
        ))
        fresh = store.add_appointment(make_appointment(
            patient.id, local(2026, 2, 16, 9, 0),
            reminder_sent=True, reminder_sent_at=clock.now - timedelta(hours=2),
        ))

        marked = await service.mark_unanswered(clinic)

        assert marked == 1
        assert stale.reminder_confirmed is False
        assert fresh.reminder_confirmed is None
        # Nearest upcoming appointment is now unconfirmed: penalty applied
        assert patient.no_show_probability == 30.0

    @pytest.mark.asyncio
    async def test_run_combines_both_passes(self, service, store, clinic, patient, clock):
        store.add_appointment(make_appointment(patient.id, local(2026, 2, 16, 8, 30)))

        run = await service.run(clinic)

        assert run.to_dict() == {"sent": 1, "failed": 0, "skipped": 0, "marked_unanswered": 0}

    @pytest.mark.asyncio
    async def test_record_confirmation(self, service, store, clinic, patient):
        pending = store.add_appointment(make_appointment(
            patient.id, local(2026, 2, 16, 8, 30), reminder_sent=True
        ))

        answered = await service.record_response(clinic, patient.id, True)

        assert answered.id == pending.id
        assert pending.reminder_confirmed is True
        assert patient.no_show_probability == 0.0

    @pytest.mark.asyncio
    async def test_record_decline_raises_risk(self, service, store, clinic, patient):
        store.add_appointment(make_appointment(
            patient.id, local(2026, 2, 16, 8, 30), reminder_sent=True
        ))

        await service.record_response(clinic, patient.id, False)

        assert patient.no_show_probability == 30.0

    @pytest.mark.asyncio
    async def test_record_without_pending_reminder(self, service, store, clinic, patient):
        store.add_appointment(make_appointment(patient.id, local(2026, 2, 16, 8, 30)))

        assert await service.record_response(clinic, patient.id, True) is None
