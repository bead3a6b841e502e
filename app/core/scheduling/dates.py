"""
Date, time and phone helpers.

Rule: store UTC, show clinic-local time to the patient. Patient-facing text
is Spanish (e.g. "lunes 16 de febrero, 9:30 a. m.").
"""

import re
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Optional

from app.core.errors import InvalidInputError

_DAY_NAMES = ("lunes", "martes", "miércoles", "jueves", "viernes", "sábado", "domingo")
_MONTH_NAMES = (
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
)

_NON_DIGITS = re.compile(r"\D")


def parse_date(value: str) -> date:
    """Parse YYYY-MM-DD."""
    try:
        return date.fromisoformat(value.strip())
    except (AttributeError, ValueError) as e:
        raise InvalidInputError(
            "Fecha no válida. Formato esperado: YYYY-MM-DD",
            code="invalid_date",
        ) from e


def parse_time(value: str) -> time:
    """Parse HH:MM or H:MM (24h)."""
    try:
        return datetime.strptime(value.strip(), "%H:%M").time()
    except (AttributeError, ValueError) as e:
        raise InvalidInputError(
            "Hora no válida. Formato esperado: HH:MM",
            code="invalid_time",
        ) from e


def parse_datetime(value: str, tz: tzinfo) -> datetime:
    """Parse an ISO 8601 timestamp.

    A timestamp without offset is read as clinic-local time. The result is
    always timezone-aware.
    """
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except (AttributeError, ValueError) as e:
        raise InvalidInputError(
            "Fecha y hora no válidas. Formato esperado: ISO 8601 "
            "(ej: 2026-02-16T10:00:00-05:00)",
            code="invalid_datetime",
        ) from e

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def local_day_bounds(day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """Half-open [start, end) of a local calendar day."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    return start, start + timedelta(days=1)


def format_time_for_patient(moment: datetime, tz: tzinfo) -> str:
    """'9:30 a. m.' in clinic-local time."""
    local = moment.astimezone(tz)
    hour = local.hour % 12 or 12
    suffix = "a. m." if local.hour < 12 else "p. m."
    return f"{hour}:{local.minute:02d} {suffix}"


def format_date_for_patient(moment: datetime, tz: tzinfo) -> str:
    """'lunes 16 de febrero' in clinic-local time."""
    local = moment.astimezone(tz)
    return f"{_DAY_NAMES[local.weekday()]} {local.day} de {_MONTH_NAMES[local.month - 1]}"


def format_for_patient(moment: datetime, tz: tzinfo) -> str:
    """'lunes 16 de febrero, 9:30 a. m.' in clinic-local time."""
    return f"{format_date_for_patient(moment, tz)}, {format_time_for_patient(moment, tz)}"


def spanish_day_name(day: date) -> str:
    return _DAY_NAMES[day.weekday()]


def normalize_phone(phone: str) -> str:
    """Normalize to storage format (+57XXXXXXXXXX for Colombian mobiles).

    Accepts "3101112233", "573101112233", "+573101112233", "310 111 2233".
    """
    digits = _NON_DIGITS.sub("", phone or "")
    if not digits:
        raise InvalidInputError("Teléfono no válido", code="invalid_phone")

    # Colombian mobile without country code
    if len(digits) == 10 and digits.startswith("3"):
        return f"+57{digits}"

    return f"+{digits}"


def mask_phone(phone: Optional[str]) -> str:
    """Shorten a phone number for log lines."""
    if not phone:
        return "unknown"
    return f"{phone[:6]}***"
