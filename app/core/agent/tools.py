"""
Action catalog for the scheduling agent.

Each action has a pydantic parameter model (validated before the handler
runs) and an Anthropic tool definition (what the model sees). The
ToolRegistry binds them to handlers; see executor.py.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.core.scheduling.types import DocumentType, PreferredTime


class ToolParams(BaseModel):
    """Base for action parameters. Unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class CheckAvailabilityParams(ToolParams):
    doctor_id: Optional[str] = None
    preferred_date: Optional[str] = None
    preferred_time: Optional[str] = None


class CreateAppointmentParams(ToolParams):
    doctor_id: str
    patient_name: str = Field(min_length=1)
    patient_phone: str
    starts_at: str
    date_of_birth: str
    document_type: DocumentType
    document_number: str = Field(min_length=1)
    reason: Optional[str] = None


class GetPatientAppointmentsParams(ToolParams):
    patient_phone: str


class CancelAppointmentParams(ToolParams):
    appointment_id: str
    reason: str


class RescheduleAppointmentParams(ToolParams):
    appointment_id: str
    new_starts_at: str


class EscalateToHumanParams(ToolParams):
    reason: str
    urgency: Literal["low", "medium", "high", "emergency"]


class AddToWaitlistParams(ToolParams):
    doctor_id: str
    patient_phone: str
    preferred_dates: list[str] = Field(default_factory=list)
    preferred_time: PreferredTime = PreferredTime.ANY
    reason: Optional[str] = None


@dataclass(frozen=True)
class ToolSpec:
    """Name, model-facing definition and parameter model of one action."""

    name: str
    description: str
    input_schema: dict
    params_model: type[ToolParams]

    def to_anthropic(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


ToolHandler = Callable[[Any, Any], Awaitable[dict]]


@dataclass(frozen=True)
class RegisteredTool:
    spec: ToolSpec
    handler: ToolHandler


class ToolRegistry:
    """Maps action names to their spec and handler, in registration order."""

    def __init__(self):
        self._tools: dict[str, RegisteredTool] = {}

    def register(self, spec: ToolSpec, handler: ToolHandler) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = RegisteredTool(spec=spec, handler=handler)

    def get(self, name: str) -> Optional[RegisteredTool]:
        return self._tools.get(name)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def anthropic_tools(self) -> list[dict]:
        """Tool definitions in Anthropic tool_use format."""
        return [tool.spec.to_anthropic() for tool in self._tools.values()]


_DOCTOR_ID = {"type": "string", "description": "ID UUID del doctor"}
_PATIENT_PHONE = {
    "type": "string",
    "description": "Teléfono del paciente con código de país (ej: +573101112233)",
}

CHECK_AVAILABILITY = ToolSpec(
    name="check_availability",
    description=(
        "Consulta los horarios disponibles de un doctor para una fecha específica. "
        "Úsala cuando el paciente quiere agendar y necesitas mostrarle opciones. "
        "Si no hay disponibilidad, sugiere al paciente unirse a la lista de espera."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "doctor_id": _DOCTOR_ID,
            "preferred_date": {
                "type": "string",
                "description": (
                    "Fecha preferida en formato YYYY-MM-DD. Si no la da, se usa la fecha de hoy."
                ),
            },
            "preferred_time": {
                "type": "string",
                "description": (
                    "Hora preferida en formato HH:MM (24h). Opcional. "
                    "Los horarios más cercanos se devuelven en 'suggested'."
                ),
            },
        },
        "required": ["doctor_id"],
    },
    params_model=CheckAvailabilityParams,
)

CREATE_APPOINTMENT = ToolSpec(
    name="create_appointment",
    description=(
        "Crea una cita nueva. SOLO usar DESPUÉS de que el paciente confirme fecha y hora "
        "y haya dado su nombre completo, fecha de nacimiento, tipo y número de documento. "
        "NUNCA agendar sin estos datos y sin confirmación explícita del paciente."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "doctor_id": _DOCTOR_ID,
            "patient_name": {"type": "string", "description": "Nombre completo del paciente"},
            "patient_phone": _PATIENT_PHONE,
            "starts_at": {
                "type": "string",
                "description": (
                    "Fecha y hora de inicio en ISO 8601 con zona horaria "
                    "(ej: 2026-02-15T14:00:00-05:00)"
                ),
            },
            "date_of_birth": {
                "type": "string",
                "description": "Fecha de nacimiento en formato YYYY-MM-DD (ej: 1990-03-15)",
            },
            "document_type": {
                "type": "string",
                "enum": [d.value for d in DocumentType],
                "description": (
                    "Tipo de documento: CC (Cédula), TI (Tarjeta de Identidad), "
                    "CE (Cédula de Extranjería), PP (Pasaporte)"
                ),
            },
            "document_number": {"type": "string", "description": "Número de documento"},
            "reason": {"type": "string", "description": "Motivo de la consulta (opcional)"},
        },
        "required": [
            "doctor_id",
            "patient_name",
            "patient_phone",
            "starts_at",
            "date_of_birth",
            "document_type",
            "document_number",
        ],
    },
    params_model=CreateAppointmentParams,
)

GET_PATIENT_APPOINTMENTS = ToolSpec(
    name="get_patient_appointments",
    description=(
        "Obtiene las citas futuras activas de un paciente. "
        "Úsala cuando el paciente pregunta por sus citas o quiere cancelar/reagendar."
    ),
    input_schema={
        "type": "object",
        "properties": {"patient_phone": _PATIENT_PHONE},
        "required": ["patient_phone"],
    },
    params_model=GetPatientAppointmentsParams,
)

CANCEL_APPOINTMENT = ToolSpec(
    name="cancel_appointment",
    description=(
        "Cancela una cita existente. Pedir confirmación al paciente antes de cancelar. "
        "Después de cancelar, ofrecer reagendar."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "appointment_id": {"type": "string", "description": "ID UUID de la cita a cancelar"},
            "reason": {"type": "string", "description": "Motivo de la cancelación"},
        },
        "required": ["appointment_id", "reason"],
    },
    params_model=CancelAppointmentParams,
)

RESCHEDULE_APPOINTMENT = ToolSpec(
    name="reschedule_appointment",
    description=(
        "Reagenda una cita a una nueva fecha/hora. La cita anterior queda marcada como "
        "reagendada. Confirmar la nueva fecha con el paciente antes de ejecutar."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "appointment_id": {"type": "string", "description": "ID UUID de la cita a reagendar"},
            "new_starts_at": {
                "type": "string",
                "description": (
                    "Nueva fecha y hora en ISO 8601 con zona horaria "
                    "(ej: 2026-02-16T10:00:00-05:00)"
                ),
            },
        },
        "required": ["appointment_id", "new_starts_at"],
    },
    params_model=RescheduleAppointmentParams,
)

ESCALATE_TO_HUMAN = ToolSpec(
    name="escalate_to_human",
    description=(
        "Escala la conversación a un humano del consultorio. Usar cuando el paciente pide "
        "hablar con alguien (después de un intento de ayudar), ante una emergencia médica, "
        "ideación suicida, o un tema que no puedes resolver."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "reason": {
                "type": "string",
                "description": "Por qué se escala (contexto para el humano)",
            },
            "urgency": {
                "type": "string",
                "enum": ["low", "medium", "high", "emergency"],
                "description": "Nivel de urgencia. emergency = riesgo de vida",
            },
        },
        "required": ["reason", "urgency"],
    },
    params_model=EscalateToHumanParams,
)

ADD_TO_WAITLIST = ToolSpec(
    name="add_to_waitlist",
    description=(
        "Agrega al paciente a la lista de espera cuando NO hay disponibilidad. "
        "Si se libera un espacio, el sistema notifica automáticamente al primero en la lista."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "doctor_id": _DOCTOR_ID,
            "patient_phone": _PATIENT_PHONE,
            "preferred_dates": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Fechas preferidas en formato YYYY-MM-DD",
            },
            "preferred_time": {
                "type": "string",
                "enum": [p.value for p in PreferredTime],
                "description": "Preferencia de horario: mañana, tarde o cualquiera",
            },
            "reason": {"type": "string", "description": "Motivo de consulta"},
        },
        "required": ["doctor_id", "patient_phone"],
    },
    params_model=AddToWaitlistParams,
)
