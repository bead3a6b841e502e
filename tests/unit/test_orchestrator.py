"""Tests for the conversation orchestrator."""

import json
from datetime import timedelta

import pytest

from app.core.agent.decision import Decision, DecisionKind
from app.core.agent.executor import TenantContext, ToolExecutor
from app.core.agent.orchestrator import (
    EMPTY_FINAL_TEXT,
    ITERATION_EXHAUSTED_TEXT,
    UNEXPECTED_STOP_TEXT,
    ConversationOrchestrator,
    OrchestratorResult,
    normalize_history,
)
from app.core.errors import DecisionMakerError
from app.core.scheduling.engine import SchedulingEngine
from app.core.scheduling.types import MessageRecord, MessageRole
from app.core.scheduling.waitlist import WaitlistCascade
from tests.fakes import (
    DOCTOR_ID,
    NOW,
    FailingDecisionMaker,
    ScriptedDecisionMaker,
    final,
    tool_call,
)


def message(role: MessageRole, content: str, seconds: int = 0) -> MessageRecord:
    return MessageRecord(
        conversation_id="conv",
        role=role,
        content=content,
        created_at=NOW + timedelta(seconds=seconds),
    )


class TestNormalizeHistory:
    """Test history conversion into alternating turns."""

    def test_maps_roles(self):
        history = [
            message(MessageRole.PATIENT, "Hola"),
            message(MessageRole.AGENT, "¡Hola! ¿En qué te ayudo?"),
            message(MessageRole.PATIENT, "Quiero una cita"),
        ]

        assert normalize_history(history, 20) == [
            {"role": "user", "content": "Hola"},
            {"role": "assistant", "content": "¡Hola! ¿En qué te ayudo?"},
            {"role": "user", "content": "Quiero una cita"},
        ]

    def test_merges_consecutive_same_role(self):
        history = [
            message(MessageRole.PATIENT, "Hola"),
            message(MessageRole.PATIENT, "Necesito cita"),
            message(MessageRole.AGENT, "Claro"),
            message(MessageRole.STAFF, "Te escribe la doctora"),
        ]

        turns = normalize_history(history, 20)

        assert turns == [
            {"role": "user", "content": "Hola\nNecesito cita"},
            {"role": "assistant", "content": "Claro\nTe escribe la doctora"},
        ]

    def test_drops_leading_assistant_turn(self):
        history = [
            message(MessageRole.AGENT, "Recordatorio de tu cita"),
            message(MessageRole.PATIENT, "Gracias"),
        ]

        assert normalize_history(history, 20) == [{"role": "user", "content": "Gracias"}]

    def test_keeps_only_most_recent(self):
        history = [message(MessageRole.PATIENT, f"m{i}", seconds=i) for i in range(5)]
        history[3] = message(MessageRole.AGENT, "m3", seconds=3)

        turns = normalize_history(history, 2)

        assert turns == [{"role": "user", "content": "m4"}]

    def test_empty(self):
        assert normalize_history([], 20) == []
        assert normalize_history([message(MessageRole.PATIENT, "x")], 0) == []


class TestOrchestratorResult:
    def test_escalated(self):
        assert OrchestratorResult(text="x", actions_used=["escalate_to_human"]).escalated
        assert not OrchestratorResult(text="x", actions_used=["check_availability"]).escalated


class TestConversationOrchestrator:
    """Test the bounded decide/execute loop."""

    @pytest.fixture
    def executor(self, store, notifier, clock):
        waitlist = WaitlistCascade(store, notifier, clock=clock)
        engine = SchedulingEngine(store, waitlist=waitlist, clock=clock)
        return ToolExecutor(engine, store, waitlist)

    @pytest.fixture
    def context(self, clinic, doctor):
        return TenantContext(
            clinic=clinic,
            doctor=doctor,
            patient_phone="+573101112233",
            patient_name="Ana",
        )

    def orchestrator(self, decision_maker, executor, max_rounds=5):
        return ConversationOrchestrator(
            decision_maker, executor, max_rounds=max_rounds, history_limit=20
        )

    @pytest.mark.asyncio
    async def test_final_answer(self, executor, context):
        maker = ScriptedDecisionMaker([final("¡Hola Ana!")])

        result = await self.orchestrator(maker, executor).run("Hola", [], context)

        assert result.text == "¡Hola Ana!"
        assert result.actions_used == []
        assert result.rounds == 1
        assert result.exhausted is False

        call = maker.calls[0]
        assert call["messages"] == [{"role": "user", "content": "Hola"}]
        assert "Consultorio Dra. Pérez" in call["system"]
        assert "Sofía" in call["system"]
        assert DOCTOR_ID in call["system"]
        assert "+573101112233" in call["system"]
        assert "Sábado: Cerrado" in call["system"]
        assert [t["name"] for t in call["tools"]][0] == "check_availability"

    @pytest.mark.asyncio
    async def test_history_precedes_inbound_message(self, executor, context):
        maker = ScriptedDecisionMaker([final("Listo")])
        history = [
            message(MessageRole.PATIENT, "Hola"),
            message(MessageRole.AGENT, "¿En qué te ayudo?"),
        ]

        await self.orchestrator(maker, executor).run("Quiero una cita", history, context)

        assert maker.calls[0]["messages"] == [
            {"role": "user", "content": "Hola"},
            {"role": "assistant", "content": "¿En qué te ayudo?"},
            {"role": "user", "content": "Quiero una cita"},
        ]

    @pytest.mark.asyncio
    async def test_action_round_trip(self, executor, context):
        maker = ScriptedDecisionMaker([
            tool_call(
                ("check_availability", {"doctor_id": DOCTOR_ID, "preferred_date": "2026-02-16"}),
                text="Déjame revisar",
            ),
            final("Tengo disponible el lunes a las 8:00 a. m."),
        ])

        result = await self.orchestrator(maker, executor).run("¿Hay cita el lunes?", [], context)

        assert result.text == "Tengo disponible el lunes a las 8:00 a. m."
        assert result.actions_used == ["check_availability"]
        assert result.rounds == 2

        messages = maker.calls[1]["messages"]
        assert len(messages) == 3
        assert messages[1]["role"] == "assistant"
        assert messages[1]["content"][0] == {"type": "text", "text": "Déjame revisar"}
        assert messages[1]["content"][1]["type"] == "tool_use"

        tool_result = messages[2]["content"][0]
        assert messages[2]["role"] == "user"
        assert tool_result["type"] == "tool_result"
        assert tool_result["tool_use_id"] == "tu_1"
        payload = json.loads(tool_result["content"])
        assert payload["success"] is True
        assert payload["data"]["total_available"] == 8

    @pytest.mark.asyncio
    async def test_multiple_actions_in_one_round(self, executor, context):
        maker = ScriptedDecisionMaker([
            tool_call(
                ("get_patient_appointments", {"patient_phone": "+573101112233"}),
                ("unknown_tool", {}),
            ),
            final("No tienes citas"),
        ])

        result = await self.orchestrator(maker, executor).run("¿Mis citas?", [], context)

        assert result.actions_used == ["get_patient_appointments", "unknown_tool"]
        results = maker.calls[1]["messages"][-1]["content"]
        assert [r["tool_use_id"] for r in results] == ["tu_1", "tu_2"]
        assert json.loads(results[1]["content"])["error_code"] == "unknown_action"

    @pytest.mark.asyncio
    async def test_budget_exhausted(self, executor, context):
        maker = ScriptedDecisionMaker([
            tool_call(("check_availability", {"doctor_id": DOCTOR_ID})) for _ in range(3)
        ])

        result = await self.orchestrator(maker, executor, max_rounds=3).run("Hola", [], context)

        assert result.text == ITERATION_EXHAUSTED_TEXT
        assert result.exhausted is True
        assert result.rounds == 3
        assert len(maker.calls) == 3
        assert result.actions_used == ["check_availability"] * 3

    @pytest.mark.asyncio
    async def test_empty_final_text(self, executor, context):
        maker = ScriptedDecisionMaker([final(None)])

        result = await self.orchestrator(maker, executor).run("Hola", [], context)

        assert result.text == EMPTY_FINAL_TEXT

    @pytest.mark.asyncio
    async def test_other_stop_reason(self, executor, context):
        maker = ScriptedDecisionMaker([
            Decision(kind=DecisionKind.OTHER, stop_reason="max_tokens"),
        ])

        result = await self.orchestrator(maker, executor).run("Hola", [], context)

        assert result.text == UNEXPECTED_STOP_TEXT

    @pytest.mark.asyncio
    async def test_other_stop_reason_keeps_partial_text(self, executor, context):
        maker = ScriptedDecisionMaker([
            Decision(kind=DecisionKind.OTHER, text="Tengo estos horarios", stop_reason="max_tokens"),
        ])

        result = await self.orchestrator(maker, executor).run("Hola", [], context)

        assert result.text == "Tengo estos horarios"

    @pytest.mark.asyncio
    async def test_escalation_is_reported(self, executor, context):
        maker = ScriptedDecisionMaker([
            tool_call(("escalate_to_human", {"reason": "Pide humano", "urgency": "low"})),
            final("Alguien del consultorio te escribirá pronto."),
        ])

        result = await self.orchestrator(maker, executor).run("Quiero un humano", [], context)

        assert result.escalated is True

    @pytest.mark.asyncio
    async def test_decision_maker_error_propagates(self, executor, context):
        with pytest.raises(DecisionMakerError):
            await self.orchestrator(FailingDecisionMaker(), executor).run("Hola", [], context)
