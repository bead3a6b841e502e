"""
Scheduled Job Endpoints

Triggered by an external scheduler (cron, Cloud Scheduler). Each call
handles one clinic and is safe to repeat: reminders already sent and
entries already answered are skipped.
"""

import logging

from fastapi import APIRouter, Depends

from app.api.deps import Services, get_services
from app.core.errors import NotFoundError
from app.core.scheduling.risk import format_morning_report
from app.core.scheduling.types import ClinicProfile

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/clinics/{clinic_id}/jobs", tags=["Jobs"])


async def _clinic(services: Services, clinic_id: str) -> ClinicProfile:
    clinic = await services.store.get_clinic(clinic_id)
    if clinic is None:
        raise NotFoundError("Clínica no encontrada")
    return clinic


@router.post(
    "/reminders",
    summary="Send due reminders",
    description="Sends reminders for appointments about 24h away and marks unanswered ones.",
)
async def run_reminders(
    clinic_id: str,
    services: Services = Depends(get_services),
) -> dict:
    clinic = await _clinic(services, clinic_id)
    run = await services.reminders.run(clinic)
    logger.info(f"Reminder job for clinic {clinic.id}: {run.to_dict()}")
    return run.to_dict()


@router.post(
    "/morning-report",
    summary="Send the doctor's morning report",
    description="Recomputes today's no-show risk and sends the summary to the doctor's phone.",
)
async def morning_report(
    clinic_id: str,
    services: Services = Depends(get_services),
) -> dict:
    clinic = await _clinic(services, clinic_id)
    doctor = await services.store.get_primary_doctor(clinic.id)
    if doctor is None:
        raise NotFoundError("La clínica no tiene doctores activos")

    today = clinic.local_today(services.engine.now())
    report = await services.risk.daily_risk(clinic, today, refresh=True)
    text = format_morning_report(report, clinic, doctor)

    sent = False
    if doctor.phone:
        sent = await services.notifier.send(doctor.phone, text)
    else:
        logger.warning(f"Doctor {doctor.id} has no phone, morning report not sent")

    return {"sent": sent, "text": text, "report": report.to_dict()}
