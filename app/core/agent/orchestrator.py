"""
Conversation orchestrator.

One inbound patient message = one turn. The turn is a small state machine:

    AWAITING_DECISION --final/other--> TERMINATED
    AWAITING_DECISION --action_request--> EXECUTING_ACTIONS
    EXECUTING_ACTIONS --results appended--> AWAITING_DECISION

The decision-maker is called at most max_rounds times per turn. When the
budget runs out the patient gets a fixed apology that points to a human.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from app.config import get_settings
from app.core.agent.decision import Decision, DecisionKind, DecisionMaker
from app.core.agent.executor import TenantContext, ToolExecutor
from app.core.agent.prompts import build_system_prompt
from app.core.scheduling.types import MessageRecord, MessageRole

logger = logging.getLogger(__name__)

EMPTY_FINAL_TEXT = (
    "Lo siento, tuve un problema. Escribe \"hablar con humano\" para asistencia."
)
UNEXPECTED_STOP_TEXT = (
    "Disculpa, tuve un problema técnico. Intenta de nuevo o escribe \"hablar con humano\"."
)
ITERATION_EXHAUSTED_TEXT = (
    "Disculpa, estoy teniendo dificultades. Escribe \"hablar con humano\" "
    "y alguien del consultorio te ayudará."
)

ESCALATION_ACTION = "escalate_to_human"

_ROLE_MAP = {
    MessageRole.PATIENT: "user",
    MessageRole.AGENT: "assistant",
    MessageRole.STAFF: "assistant",
}


class LoopState(str, Enum):
    AWAITING_DECISION = "awaiting_decision"
    EXECUTING_ACTIONS = "executing_actions"
    TERMINATED = "terminated"


@dataclass
class OrchestratorResult:
    """Final text of a turn plus every action executed, in order."""

    text: str
    actions_used: list[str] = field(default_factory=list)
    rounds: int = 0
    exhausted: bool = False

    @property
    def escalated(self) -> bool:
        return ESCALATION_ACTION in self.actions_used


def normalize_history(history: Iterable[MessageRecord], limit: int) -> list[dict]:
    """
    Convert stored messages into alternating Anthropic turns.

    Keeps the most recent `limit` messages, maps patient -> user and
    agent/staff -> assistant, merges consecutive same-role messages with a
    newline and drops a leading assistant turn.
    """
    recent = list(history)[-limit:] if limit > 0 else []

    turns: list[dict] = []
    for message in recent:
        role = _ROLE_MAP[MessageRole(message.role)]
        if turns and turns[-1]["role"] == role:
            turns[-1]["content"] += "\n" + message.content
        else:
            turns.append({"role": role, "content": message.content})

    if turns and turns[0]["role"] == "assistant":
        turns.pop(0)
    return turns


class ConversationOrchestrator:
    """Runs the bounded decide/execute loop for one turn."""

    def __init__(
        self,
        decision_maker: DecisionMaker,
        executor: ToolExecutor,
        max_rounds: Optional[int] = None,
        history_limit: Optional[int] = None,
    ):
        settings = get_settings()
        self.decision_maker = decision_maker
        self.executor = executor
        self.max_rounds = max_rounds or settings.max_tool_iterations
        self.history_limit = history_limit or settings.history_limit

    async def run(
        self,
        message: str,
        history: Iterable[MessageRecord],
        context: TenantContext,
    ) -> OrchestratorResult:
        """
        Process one inbound message.

        Args:
            message: Inbound patient text
            history: Prior stored messages, oldest first, excluding `message`
            context: Tenant context for prompt and actions

        Returns:
            OrchestratorResult

        Raises:
            DecisionMakerError: propagated from the decision-maker, not retried
        """
        system = build_system_prompt(context, self.executor.engine.now())
        tools = self.executor.tool_definitions()

        messages = normalize_history(history, self.history_limit)
        messages.append({"role": "user", "content": message})

        state = LoopState.AWAITING_DECISION
        rounds = 0
        actions_used: list[str] = []
        decision: Optional[Decision] = None
        result: Optional[OrchestratorResult] = None

        while state != LoopState.TERMINATED:
            if state == LoopState.AWAITING_DECISION:
                if rounds >= self.max_rounds:
                    logger.warning(
                        f"Decision budget exhausted after {rounds} rounds "
                        f"(clinic={context.clinic_id}, actions={actions_used})"
                    )
                    result = OrchestratorResult(
                        text=ITERATION_EXHAUSTED_TEXT,
                        actions_used=actions_used,
                        rounds=rounds,
                        exhausted=True,
                    )
                    state = LoopState.TERMINATED
                    continue

                rounds += 1
                decision = await self.decision_maker.decide(system, messages, tools)

                if decision.kind == DecisionKind.ACTION_REQUEST:
                    state = LoopState.EXECUTING_ACTIONS
                    continue

                if decision.kind == DecisionKind.FINAL:
                    text = decision.text or EMPTY_FINAL_TEXT
                else:
                    logger.warning(f"Unexpected stop reason: {decision.stop_reason}")
                    text = decision.text or UNEXPECTED_STOP_TEXT

                result = OrchestratorResult(text=text, actions_used=actions_used, rounds=rounds)
                state = LoopState.TERMINATED

            elif state == LoopState.EXECUTING_ACTIONS:
                tool_results = []
                for action in decision.actions:
                    actions_used.append(action.name)
                    outcome = await self.executor.execute(action.name, action.input, context)
                    tool_results.append({
                        "type": "tool_result",
                        "tool_use_id": action.id,
                        "content": json.dumps(outcome.to_dict(), ensure_ascii=False, default=str),
                    })

                messages.append({"role": "assistant", "content": decision.content})
                messages.append({"role": "user", "content": tool_results})
                state = LoopState.AWAITING_DECISION

        return result
