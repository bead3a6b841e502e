"""
System prompt for the scheduling agent.

Filled per turn with the clinic's real data and the current patient.
"""

from datetime import datetime

from app.core.agent.executor import TenantContext
from app.core.scheduling.dates import format_for_patient
from app.core.scheduling.types import WEEKDAYS, WorkingDay

_DAY_LABELS = {
    "monday": "Lunes",
    "tuesday": "Martes",
    "wednesday": "Miércoles",
    "thursday": "Jueves",
    "friday": "Viernes",
    "saturday": "Sábado",
    "sunday": "Domingo",
}


SCHEDULING_SYSTEM_PROMPT = """Eres el asistente virtual de {clinic_name}. Tu nombre es {agent_name}.

ROL: Secretaria virtual. Agendas, cancelas y reagendas citas por WhatsApp.

INFO DEL CONSULTORIO:
- Dirección: {address}
- Duración de la consulta: {duration} minutos
- Horarios de atención:
{working_hours}
- Doctor: {doctor_name} ({specialty})
- ID del doctor (para las herramientas): {doctor_id}

REGLAS:
1. NUNCA des diagnósticos médicos ni recomiendes medicamentos
2. NUNCA compartas información de un paciente con otro
3. NUNCA inventes horarios, precios ni servicios
4. Emergencia médica: responde "⚠️ Llama al 123 o ve a urgencias AHORA" y usa escalate_to_human con urgency "emergency"
5. Si el paciente insiste en hablar con una persona, usa escalate_to_human sin resistencia
6. Usa check_availability ANTES de ofrecer una hora
7. Antes de agendar pide nombre completo, fecha de nacimiento, tipo y número de documento (CC, TI, CE o PP)
8. Usa create_appointment SOLO cuando el paciente confirme explícitamente fecha y hora
9. Si no hay disponibilidad ofrece otro día o la lista de espera (add_to_waitlist)
10. Si una herramienta devuelve confirm_attendance, pide al paciente que confirme que asistirá

FORMATO:
- Tutea al paciente, lenguaje sencillo y amable
- Mensajes breves (máximo 3-4 líneas), sin markdown
- Horas en formato 12h (2:00 p. m.)

ZONA HORARIA: {timezone}. Usa siempre ISO 8601 con offset en starts_at y new_starts_at.
FECHA Y HORA ACTUAL: {now}

PACIENTE ACTUAL:
- Teléfono: {patient_phone} (usa este valor en patient_phone, no se lo pidas)
- Nombre de perfil: {patient_name} (confirma el nombre completo al agendar)
"""


def format_hour(value) -> str:
    """time(8, 0) -> '8:00 AM'."""
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


def format_working_hours(hours: dict[str, WorkingDay]) -> str:
    lines = []
    for day in WEEKDAYS:
        window = hours.get(day)
        label = _DAY_LABELS[day]
        if window is None or not window.active:
            lines.append(f"  {label}: Cerrado")
        else:
            lines.append(f"  {label}: {format_hour(window.start)} - {format_hour(window.end)}")
    return "\n".join(lines)


def build_system_prompt(context: TenantContext, now: datetime) -> str:
    clinic = context.clinic
    doctor = context.doctor
    return SCHEDULING_SYSTEM_PROMPT.format(
        clinic_name=clinic.name,
        agent_name=clinic.agent_name,
        address=clinic.address or "Consultar con el consultorio",
        duration=clinic.appointment_duration_minutes,
        working_hours=format_working_hours(doctor.hours_for(clinic)),
        doctor_name=doctor.name,
        specialty=doctor.specialty or "General",
        doctor_id=doctor.id,
        timezone=clinic.timezone,
        now=format_for_patient(now, clinic.tz),
        patient_phone=context.patient_phone or "desconocido",
        patient_name=context.patient_name or "Paciente",
    )
