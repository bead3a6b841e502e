"""
Inbound Message Endpoint

Entry point for patient messages arriving from the messaging channel.
The reply is returned to the caller, which delivers it.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from app.api.deps import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/clinics/{clinic_id}/messages", tags=["Messages"])


class InboundMessageRequest(BaseModel):
    """Inbound patient message."""

    phone: str = Field(
        ...,
        min_length=1,
        max_length=50,
        description="Sender phone in any common format",
        examples=["300 123 4567"],
    )
    text: str = Field(
        ...,
        min_length=1,
        max_length=4000,
        description="Message text",
        examples=["Hola, quiero agendar una cita para el lunes"],
    )
    profile_name: Optional[str] = Field(
        default=None,
        max_length=255,
        description="Channel profile name, used when registering a new patient",
    )


class InboundMessageResponse(BaseModel):
    """Reply for the patient plus what happened during the turn."""

    conversation_id: str
    reply: Optional[str] = Field(
        default=None,
        description="Text to send back. Null when staff handles the conversation.",
    )
    handled_by: str = Field(..., description="agent, reminder, welcome or human")
    actions_used: list[str] = Field(default_factory=list)
    escalated: bool = False


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    code: Optional[str] = None
    detail: Optional[str] = None


@router.post(
    "",
    response_model=InboundMessageResponse,
    status_code=status.HTTP_200_OK,
    summary="Process an inbound patient message",
    responses={
        404: {"model": ErrorResponse, "description": "Unknown clinic or no active doctor"},
        422: {"model": ErrorResponse, "description": "Invalid phone or payload"},
    },
)
async def inbound_message(
    clinic_id: str,
    request: InboundMessageRequest,
    services: Services = Depends(get_services),
) -> InboundMessageResponse:
    """
    Run one conversation turn.

    Scheduling errors map to 4xx through the application handlers.
    """
    outcome = await services.turns.handle_inbound(
        clinic_id=clinic_id,
        phone=request.phone,
        text=request.text,
        profile_name=request.profile_name,
    )
    return InboundMessageResponse(**outcome.to_dict())
