"""
Tool executor.

Runs one action requested by the decision-maker and turns the outcome into
a ToolResult. Nothing raised here reaches the decision-maker: domain errors
become structured failures with a code, anything else becomes a generic
internal failure that is logged with its traceback.

Every handler scopes storage access with the tenant context's clinic id.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import ValidationError

from app.config import get_settings
from app.core.errors import NotFoundError, SchedulingError, slot_conflict_error
from app.core.scheduling.dates import (
    format_for_patient,
    format_time_for_patient,
    mask_phone,
    normalize_phone,
    parse_date,
    parse_datetime,
    parse_time,
)
from app.core.scheduling.engine import NO_SLOTS_SUGGESTION, SchedulingEngine
from app.core.scheduling.store import SchedulingStore
from app.core.scheduling.types import (
    WEEKDAYS,
    ClinicProfile,
    DoctorProfile,
    PatientRecord,
)
from app.core.scheduling.waitlist import WaitlistCascade
from app.core.agent.tools import (
    ADD_TO_WAITLIST,
    CANCEL_APPOINTMENT,
    CHECK_AVAILABILITY,
    CREATE_APPOINTMENT,
    ESCALATE_TO_HUMAN,
    GET_PATIENT_APPOINTMENTS,
    RESCHEDULE_APPOINTMENT,
    AddToWaitlistParams,
    CancelAppointmentParams,
    CheckAvailabilityParams,
    CreateAppointmentParams,
    EscalateToHumanParams,
    GetPatientAppointmentsParams,
    RescheduleAppointmentParams,
    ToolRegistry,
)

logger = logging.getLogger(__name__)

INTERNAL_ERROR_TEXT = (
    "Ocurrió un error interno. Informa al paciente que hubo un problema "
    "y puede escribir \"hablar con humano\"."
)
EMERGENCY_ESCALATION_TEXT = (
    "Escalado como EMERGENCIA. Informar al paciente que alguien lo contactará pronto."
)
STANDARD_ESCALATION_TEXT = (
    "Escalado al equipo. Informar al paciente que alguien del consultorio "
    "lo contactará pronto."
)


@dataclass
class TenantContext:
    """Who the turn is for: clinic, its primary doctor and the patient."""

    clinic: ClinicProfile
    doctor: DoctorProfile
    patient_phone: Optional[str] = None
    patient_name: Optional[str] = None

    @property
    def clinic_id(self) -> str:
        return self.clinic.id


@dataclass
class ToolResult:
    """Outcome of one action, serialized into a tool_result block."""

    success: bool
    data: Optional[dict] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def ok(cls, data: dict) -> "ToolResult":
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: str, error_code: str) -> "ToolResult":
        return cls(success=False, error=error, error_code=error_code)

    def to_dict(self) -> dict:
        result: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            result["data"] = self.data
        if self.error is not None:
            result["error"] = self.error
        if self.error_code is not None:
            result["error_code"] = self.error_code
        return result


class ToolExecutor:
    """
    Executes scheduling actions against the engine and the store.

    Dispatch goes through a ToolRegistry; the registry also provides the
    tool definitions handed to the decision-maker.
    """

    def __init__(
        self,
        engine: SchedulingEngine,
        store: SchedulingStore,
        waitlist: WaitlistCascade,
    ):
        self.engine = engine
        self.store = store
        self.waitlist = waitlist
        self.registry = self._build_registry()

    def _build_registry(self) -> ToolRegistry:
        registry = ToolRegistry()
        registry.register(CHECK_AVAILABILITY, self._check_availability)
        registry.register(CREATE_APPOINTMENT, self._create_appointment)
        registry.register(GET_PATIENT_APPOINTMENTS, self._get_patient_appointments)
        registry.register(CANCEL_APPOINTMENT, self._cancel_appointment)
        registry.register(RESCHEDULE_APPOINTMENT, self._reschedule_appointment)
        registry.register(ESCALATE_TO_HUMAN, self._escalate_to_human)
        registry.register(ADD_TO_WAITLIST, self._add_to_waitlist)
        return registry

    def tool_definitions(self) -> list[dict]:
        return self.registry.anthropic_tools()

    async def execute(
        self,
        action_name: str,
        parameters: Optional[dict],
        context: TenantContext,
    ) -> ToolResult:
        """
        Execute one action.

        Args:
            action_name: Registered action name
            parameters: Raw parameters from the decision-maker
            context: Tenant context of the turn

        Returns:
            ToolResult (never raises)
        """
        tool = self.registry.get(action_name)
        if tool is None:
            logger.warning(f"Unknown action requested: {action_name}")
            return ToolResult.failure(
                f"Acción \"{action_name}\" no reconocida", "unknown_action"
            )

        try:
            params = tool.spec.params_model.model_validate(parameters or {})
        except ValidationError as e:
            fields = ", ".join(
                ".".join(str(part) for part in err["loc"]) for err in e.errors()
            )
            logger.info(f"Invalid parameters for {action_name}: {fields}")
            return ToolResult.failure(f"Parámetros inválidos: {fields}", "validation")

        logger.info(f"Executing tool: {action_name} (clinic={context.clinic_id})")
        try:
            data = await tool.handler(params, context)
        except SchedulingError as e:
            logger.info(f"Tool {action_name} failed: {e.category}/{e.code}")
            return ToolResult.failure(e.message, e.code)
        except Exception:
            logger.exception(f"Tool execution failed: {action_name}")
            return ToolResult.failure(INTERNAL_ERROR_TEXT, "internal")

        return ToolResult.ok(data)

    # === Handlers ===

    async def _check_availability(
        self, params: CheckAvailabilityParams, context: TenantContext
    ) -> dict:
        clinic = context.clinic
        doctor = await self._resolve_doctor(context, params.doctor_id)

        if params.preferred_date:
            day = parse_date(params.preferred_date)
        else:
            day = clinic.local_today(self.engine.now())
        preferred_time = parse_time(params.preferred_time) if params.preferred_time else None

        availability = await self.engine.check_availability(clinic, doctor, day, preferred_time)

        if availability.closed:
            return {
                "available": False,
                "date": day.isoformat(),
                "reason": availability.reason,
                "working_hours": {
                    name: window.to_dict()
                    for name, window in (availability.working_hours or {}).items()
                },
            }

        if not availability.available:
            return {
                "available": False,
                "date": day.isoformat(),
                "reason": availability.reason,
                "suggestion": NO_SLOTS_SUGGESTION,
            }

        def slot_view(slot) -> dict:
            return {
                "time": format_time_for_patient(slot.starts_at, clinic.tz),
                "starts_at": slot.starts_at.isoformat(),
            }

        data = {
            "available": True,
            "date": day.isoformat(),
            "weekday": WEEKDAYS[day.weekday()],
            "doctor_id": doctor.id,
            "doctor_name": doctor.name,
            "slots": [slot_view(s) for s in availability.slots],
            "total_available": len(availability.slots),
        }
        if preferred_time is not None:
            data["suggested"] = [slot_view(s) for s in availability.suggested]
        return data

    async def _create_appointment(
        self, params: CreateAppointmentParams, context: TenantContext
    ) -> dict:
        clinic = context.clinic
        phone = normalize_phone(params.patient_phone)
        starts_at = parse_datetime(params.starts_at, clinic.tz)
        date_of_birth = parse_date(params.date_of_birth)
        doctor = await self._resolve_doctor(context, params.doctor_id)

        # Fail fast before touching the patient record
        if not await self.engine.is_free(clinic, doctor.id, starts_at):
            raise slot_conflict_error()

        patient = await self.store.find_patient_by_phone(clinic.id, phone)
        if patient is None:
            patient = await self.store.create_patient(PatientRecord(
                clinic_id=clinic.id,
                name=params.patient_name,
                phone=phone,
                date_of_birth=date_of_birth,
                document_type=params.document_type.value,
                document_number=params.document_number,
            ))
            logger.info(f"Patient {patient.id} registered from booking ({mask_phone(phone)})")
        else:
            patient.name = params.patient_name
            patient.date_of_birth = date_of_birth
            patient.document_type = params.document_type.value
            patient.document_number = params.document_number
            patient = await self.store.update_patient(patient)

        appointment = await self.engine.book(
            clinic, doctor.id, patient.id, starts_at, reason=params.reason
        )

        try:
            await self.store.increment_patient_appointments(clinic.id, patient.id)
        except Exception as e:
            logger.warning(f"Appointment counter update failed for patient {patient.id}: {e}")

        await self._audit(
            clinic.id,
            "appointment_created",
            target_type="appointment",
            target_id=appointment.id,
            details={"patient_phone": phone, "starts_at": appointment.starts_at.isoformat()},
        )

        risk = patient.no_show_probability
        data = {
            "appointment_id": appointment.id,
            "starts_at": appointment.starts_at.isoformat(),
            "ends_at": appointment.ends_at.isoformat(),
            "formatted_date": format_for_patient(appointment.starts_at, clinic.tz),
            "no_show_probability": risk,
            "message": "Cita creada exitosamente",
        }
        if risk > get_settings().high_risk_threshold:
            data["confirm_attendance"] = True
            data["hint"] = (
                "Paciente con riesgo alto de inasistencia. "
                "Pídele que confirme que asistirá."
            )
        return data

    async def _get_patient_appointments(
        self, params: GetPatientAppointmentsParams, context: TenantContext
    ) -> dict:
        clinic = context.clinic
        phone = normalize_phone(params.patient_phone)

        patient = await self.store.find_patient_by_phone(clinic.id, phone)
        if patient is None:
            return {
                "appointments": [],
                "total": 0,
                "message": "No se encontró el paciente. Puede que sea nuevo.",
            }

        upcoming = await self.engine.upcoming_for_patient(clinic, patient.id)
        formatted = [
            {
                "appointment_id": a.id,
                "date": format_for_patient(a.starts_at, clinic.tz),
                "time": format_time_for_patient(a.starts_at, clinic.tz),
                "starts_at": a.starts_at.isoformat(),
                "status": a.status.value,
                "reason": a.reason,
            }
            for a in upcoming
        ]
        return {"appointments": formatted, "total": len(formatted)}

    async def _cancel_appointment(
        self, params: CancelAppointmentParams, context: TenantContext
    ) -> dict:
        clinic = context.clinic
        cancelled = await self.engine.cancel(clinic, params.appointment_id, params.reason)

        await self._audit(
            clinic.id,
            "appointment_cancelled",
            target_type="appointment",
            target_id=cancelled.id,
            details={"reason": params.reason},
        )
        return {
            "cancelled_appointment_id": cancelled.id,
            "message": "Cita cancelada exitosamente. Ofrece reagendar al paciente.",
        }

    async def _reschedule_appointment(
        self, params: RescheduleAppointmentParams, context: TenantContext
    ) -> dict:
        clinic = context.clinic
        new_starts_at = parse_datetime(params.new_starts_at, clinic.tz)
        outcome = await self.engine.reschedule(clinic, params.appointment_id, new_starts_at)

        await self._audit(
            clinic.id,
            "appointment_rescheduled",
            target_type="appointment",
            target_id=outcome.replacement.id,
            details={
                "old_appointment_id": outcome.original.id,
                "old_starts_at": outcome.original.starts_at.isoformat(),
                "new_starts_at": outcome.replacement.starts_at.isoformat(),
            },
        )
        return {
            "new_appointment_id": outcome.replacement.id,
            "new_date": format_for_patient(outcome.replacement.starts_at, clinic.tz),
            "message": "Cita reagendada exitosamente",
        }

    async def _escalate_to_human(
        self, params: EscalateToHumanParams, context: TenantContext
    ) -> dict:
        await self._audit(
            context.clinic_id,
            "conversation_escalated",
            details={"reason": params.reason, "urgency": params.urgency},
        )
        emergency = params.urgency == "emergency"
        return {
            "escalated": True,
            "urgency": params.urgency,
            "message": EMERGENCY_ESCALATION_TEXT if emergency else STANDARD_ESCALATION_TEXT,
        }

    async def _add_to_waitlist(
        self, params: AddToWaitlistParams, context: TenantContext
    ) -> dict:
        clinic = context.clinic
        phone = normalize_phone(params.patient_phone)
        preferred_dates = [parse_date(d).isoformat() for d in params.preferred_dates]

        patient = await self.store.find_patient_by_phone(clinic.id, phone)
        if patient is None:
            raise NotFoundError("Paciente no encontrado", code="patient_not_found")

        doctor = await self._resolve_doctor(context, params.doctor_id)
        entry, created = await self.waitlist.add_entry(
            clinic,
            doctor.id,
            patient.id,
            preferred_dates=preferred_dates,
            preferred_time=params.preferred_time,
            reason=params.reason,
        )
        if not created:
            return {
                "already_waiting": True,
                "message": "El paciente ya está en la lista de espera",
            }
        return {
            "added": True,
            "waitlist_id": entry.id,
            "message": (
                "Paciente agregado a la lista de espera. "
                "Se le notificará si se abre un espacio."
            ),
        }

    # === Helpers ===

    async def _resolve_doctor(
        self, context: TenantContext, doctor_id: Optional[str]
    ) -> DoctorProfile:
        if not doctor_id or doctor_id == context.doctor.id:
            return context.doctor
        return await self.engine.resolve_doctor(context.clinic, doctor_id)

    async def _audit(
        self,
        clinic_id: str,
        action: str,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        """Best-effort audit entry. Failures are logged, never raised."""
        try:
            await self.store.record_audit(
                clinic_id,
                action,
                actor_type="agent",
                target_type=target_type,
                target_id=target_id,
                details=details,
            )
        except Exception as e:
            logger.warning(f"Audit entry {action} failed: {e}")
