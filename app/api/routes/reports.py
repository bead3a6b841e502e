"""
Report Endpoints

Read-only views for clinic staff.
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.deps import Services, get_services
from app.core.errors import NotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/clinics/{clinic_id}/reports", tags=["Reports"])


@router.get(
    "/daily-risk",
    summary="Expected no-shows for a day",
    description="Active appointments of the clinic's local day with each patient's no-show probability.",
)
async def daily_risk(
    clinic_id: str,
    day: Optional[date] = Query(default=None, alias="date", description="Local date, defaults to today"),
    refresh: bool = Query(default=False, description="Recompute probabilities first"),
    services: Services = Depends(get_services),
) -> dict:
    clinic = await services.store.get_clinic(clinic_id)
    if clinic is None:
        raise NotFoundError("Clínica no encontrada")

    report = await services.risk.daily_risk(
        clinic,
        day or clinic.local_today(services.engine.now()),
        refresh=refresh,
    )
    return report.to_dict()
