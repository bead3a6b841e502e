"""
Service wiring.

Builds the scheduling and agent object graph once per process and hands it
to the routes through FastAPI dependencies. Tests swap the whole graph with
set_services().
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.agent.decision import ClaudeDecisionMaker, DecisionMaker
from app.core.agent.executor import ToolExecutor
from app.core.agent.orchestrator import ConversationOrchestrator
from app.core.agent.service import TurnService
from app.core.scheduling.engine import SchedulingEngine
from app.core.scheduling.reminders import ReminderService
from app.core.scheduling.risk import NoShowRiskModel
from app.core.scheduling.store import ConversationStore, SchedulingStore
from app.core.scheduling.waitlist import WaitlistCascade
from app.infra.notifications import Notifier, WhatsAppNotifier

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a route needs, built from one store and one notifier."""

    store: SchedulingStore
    conversations: ConversationStore
    notifier: Notifier
    engine: SchedulingEngine
    waitlist: WaitlistCascade
    risk: NoShowRiskModel
    reminders: ReminderService
    turns: TurnService


def build_services(
    store: SchedulingStore,
    conversations: ConversationStore,
    notifier: Notifier,
    decision_maker: DecisionMaker,
    lock=None,
    clock: Optional[Callable[[], datetime]] = None,
) -> Services:
    """Assemble the object graph around the given boundaries."""
    waitlist = WaitlistCascade(store, notifier, clock=clock)
    engine = SchedulingEngine(store, waitlist=waitlist, clock=clock)
    risk = NoShowRiskModel(store, clock=clock)
    reminders = ReminderService(store, notifier, risk, clock=clock)
    executor = ToolExecutor(engine, store, waitlist)
    orchestrator = ConversationOrchestrator(decision_maker, executor)
    turns = TurnService(
        store, conversations, orchestrator, reminders, lock=lock, clock=clock
    )
    return Services(
        store=store,
        conversations=conversations,
        notifier=notifier,
        engine=engine,
        waitlist=waitlist,
        risk=risk,
        reminders=reminders,
        turns=turns,
    )


_services: Optional[Services] = None


def build_default_services(session_factory: Optional[async_sessionmaker] = None) -> Services:
    """Production graph: PostgreSQL stores, WhatsApp, Claude, Redis lock."""
    # Imported here so unit tests never create the engine
    from app.infra.database import async_session_factory
    from app.infra.redis import turn_lock
    from app.infra.store import SqlConversationStore, SqlSchedulingStore

    factory = session_factory or async_session_factory
    return build_services(
        store=SqlSchedulingStore(factory),
        conversations=SqlConversationStore(factory),
        notifier=WhatsAppNotifier(),
        decision_maker=ClaudeDecisionMaker(),
        lock=turn_lock,
    )


def get_services() -> Services:
    """Get singleton Services."""
    global _services
    if _services is None:
        _services = build_default_services()
        logger.info("Scheduling services initialized")
    return _services


def set_services(services: Optional[Services]) -> None:
    """Replace the singleton. None resets it."""
    global _services
    _services = services


async def close_services() -> None:
    """Release outbound clients on shutdown."""
    global _services
    if _services is None:
        return
    close = getattr(_services.notifier, "close", None)
    if close is not None:
        await close()
    _services = None
