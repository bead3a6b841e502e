"""
Inbound turn handling.

Resolves tenant, patient and conversation for an inbound channel message,
then decides who answers it:

1. Escalated conversation -> nobody (a human is handling it)
2. Reply to a pending reminder -> reminder service
3. First contact without consent -> privacy notice + welcome
4. Anything else -> conversation orchestrator, under a per-patient lock

Returns the reply text; delivering it is the caller's job.
"""

import logging
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncContextManager, Callable, Optional

from app.config import get_settings
from app.core.agent.executor import TenantContext
from app.core.agent.orchestrator import ConversationOrchestrator
from app.core.errors import DecisionMakerError, NotFoundError
from app.core.scheduling.dates import mask_phone, normalize_phone
from app.core.scheduling.reminders import (
    REMINDER_CONFIRMED_TEXT,
    REMINDER_DECLINED_TEXT,
    ReminderService,
    parse_reminder_reply,
)
from app.core.scheduling.store import ConversationStore, SchedulingStore
from app.core.scheduling.types import (
    ClinicProfile,
    MessageRole,
    PatientRecord,
)

logger = logging.getLogger(__name__)

TURN_FAILURE_TEXT = (
    "Disculpa, tuve un problema técnico. Intenta de nuevo en unos minutos "
    "o escribe \"hablar con humano\"."
)
PRIVACY_NOTICE_TEXT = (
    "📋 Antes de continuar, te informo que {clinic_name} tratará tus datos personales "
    "según la Ley 1581 de 2012. Al continuar esta conversación, autorizas el tratamiento "
    "de tus datos para agendar y gestionar tus citas. Si deseas conocer nuestra política "
    "completa o ejercer tus derechos, escribe \"privacidad\"."
)
WELCOME_TEXT = (
    "¡Hola! 👋 Soy {agent_name}, asistente virtual de {clinic_name}. "
    "¿En qué te puedo ayudar?"
)
DEFAULT_PATIENT_NAME = "Paciente"

TurnLock = Callable[[str, str], AsyncContextManager]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TurnOutcome:
    """Result of one inbound message."""

    conversation_id: str
    reply: Optional[str]
    handled_by: str
    actions_used: list[str] = field(default_factory=list)
    escalated: bool = False

    def to_dict(self) -> dict:
        return {
            "conversation_id": self.conversation_id,
            "reply": self.reply,
            "handled_by": self.handled_by,
            "actions_used": self.actions_used,
            "escalated": self.escalated,
        }


class TurnService:
    """Glue between the channel and the scheduling agent."""

    def __init__(
        self,
        store: SchedulingStore,
        conversations: ConversationStore,
        orchestrator: ConversationOrchestrator,
        reminders: ReminderService,
        lock: Optional[TurnLock] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.conversations = conversations
        self.orchestrator = orchestrator
        self.reminders = reminders
        self._lock = lock
        self._clock = clock or _utcnow
        self.history_limit = get_settings().history_limit

    async def handle_inbound(
        self,
        clinic_id: str,
        phone: str,
        text: str,
        profile_name: Optional[str] = None,
    ) -> TurnOutcome:
        """
        Process one inbound patient message.

        Args:
            clinic_id: Tenant the message was addressed to
            phone: Sender phone, any common format
            text: Message text
            profile_name: Channel profile name, used for new patients

        Returns:
            TurnOutcome. reply is None for escalated conversations.

        Raises:
            NotFoundError: unknown clinic or clinic without active doctor
            InvalidInputError: unusable phone number
        """
        clinic = await self.store.get_clinic(clinic_id)
        if clinic is None:
            raise NotFoundError("Clínica no encontrada", code="not_found")

        doctor = await self.store.get_primary_doctor(clinic.id)
        if doctor is None:
            raise NotFoundError("La clínica no tiene doctores activos", code="not_found")

        phone = normalize_phone(phone)
        patient = await self._find_or_create_patient(clinic, phone, profile_name)
        conversation = await self.conversations.get_or_create_conversation(
            clinic.id, patient.id, phone
        )

        # History is loaded before saving the inbound message so it is not sent twice
        history = await self.conversations.recent_messages(conversation.id, self.history_limit)
        await self.conversations.save_message(conversation.id, MessageRole.PATIENT, text)

        if conversation.is_escalated:
            logger.info(f"Conversation {conversation.id} is escalated, no automatic reply")
            return TurnOutcome(
                conversation_id=conversation.id,
                reply=None,
                handled_by="human",
                escalated=True,
            )

        answer = parse_reminder_reply(text)
        if answer is not None:
            appointment = await self.reminders.record_response(clinic, patient.id, answer)
            if appointment is not None:
                reply = REMINDER_CONFIRMED_TEXT if answer else REMINDER_DECLINED_TEXT
                await self.conversations.save_message(conversation.id, MessageRole.AGENT, reply)
                return TurnOutcome(
                    conversation_id=conversation.id,
                    reply=reply,
                    handled_by="reminder",
                )

        if patient.data_consent_at is None:
            reply = await self._welcome(clinic, patient)
            await self.conversations.save_message(conversation.id, MessageRole.AGENT, reply)
            return TurnOutcome(
                conversation_id=conversation.id,
                reply=reply,
                handled_by="welcome",
            )

        context = TenantContext(
            clinic=clinic,
            doctor=doctor,
            patient_phone=phone,
            patient_name=patient.name,
        )

        actions_used: list[str] = []
        escalated = False
        lock = self._lock(clinic.id, patient.id) if self._lock else nullcontext()
        async with lock:
            try:
                result = await self.orchestrator.run(text, history, context)
            except DecisionMakerError:
                logger.exception(f"Decision-maker failed for conversation {conversation.id}")
                reply = TURN_FAILURE_TEXT
            else:
                reply = result.text
                actions_used = result.actions_used
                escalated = result.escalated

        await self.conversations.save_message(conversation.id, MessageRole.AGENT, reply)

        if escalated:
            await self.conversations.mark_escalated(conversation.id, self._clock())
            logger.info(f"Conversation {conversation.id} escalated to staff")

        await self._audit(
            clinic.id,
            "message_processed",
            actor_type="agent",
            details={"tools_used": actions_used, "conversation_id": conversation.id},
        )

        return TurnOutcome(
            conversation_id=conversation.id,
            reply=reply,
            handled_by="agent",
            actions_used=actions_used,
            escalated=escalated,
        )

    async def _find_or_create_patient(
        self,
        clinic: ClinicProfile,
        phone: str,
        profile_name: Optional[str],
    ) -> PatientRecord:
        patient = await self.store.find_patient_by_phone(clinic.id, phone)
        if patient is not None:
            return patient

        patient = await self.store.create_patient(PatientRecord(
            clinic_id=clinic.id,
            name=(profile_name or "").strip() or DEFAULT_PATIENT_NAME,
            phone=phone,
            created_at=self._clock(),
        ))
        logger.info(f"Patient {patient.id} registered on first contact ({mask_phone(phone)})")

        await self._audit(
            clinic.id,
            "patient_registered",
            actor_type="system",
            target_type="patient",
            target_id=patient.id,
            details={"source": "whatsapp_auto"},
        )
        return patient

    async def _welcome(self, clinic: ClinicProfile, patient: PatientRecord) -> str:
        """Record consent and build the first-contact reply."""
        patient.data_consent_at = self._clock()
        await self.store.update_patient(patient)

        notice = PRIVACY_NOTICE_TEXT.format(clinic_name=clinic.name)
        welcome = clinic.welcome_message or WELCOME_TEXT.format(
            agent_name=clinic.agent_name, clinic_name=clinic.name
        )
        return f"{notice}\n\n{welcome}"

    async def _audit(self, clinic_id: str, action: str, **kwargs) -> None:
        try:
            await self.store.record_audit(clinic_id, action, **kwargs)
        except Exception as e:
            logger.warning(f"Audit entry {action} failed: {e}")
