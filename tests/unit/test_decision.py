"""Tests for the Claude-backed decision-maker."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.agent.decision import (
    ClaudeDecisionMaker,
    DecisionKind,
    decision_from_blocks,
    serialize_content_blocks,
)
from app.core.errors import DecisionMakerError
from app.infra.claude import ClaudeClientError


def text_block(text):
    return SimpleNamespace(type="text", text=text)


def tool_use_block(id, name, input):
    return SimpleNamespace(type="tool_use", id=id, name=name, input=input)


class TestBlocks:
    """Test response classification."""

    def test_serialize_sdk_blocks(self):
        blocks = serialize_content_blocks([
            text_block("Reviso"),
            tool_use_block("tu_1", "check_availability", {"doctor_id": "d"}),
            {"type": "text", "text": "ya serializado"},
        ])

        assert blocks == [
            {"type": "text", "text": "Reviso"},
            {"type": "tool_use", "id": "tu_1", "name": "check_availability", "input": {"doctor_id": "d"}},
            {"type": "text", "text": "ya serializado"},
        ]

    def test_end_turn_is_final(self):
        decision = decision_from_blocks("end_turn", [{"type": "text", "text": "Hola"}])

        assert decision.kind == DecisionKind.FINAL
        assert decision.text == "Hola"
        assert decision.actions == []

    def test_tool_use_is_action_request(self):
        decision = decision_from_blocks("tool_use", [
            {"type": "text", "text": "Un momento"},
            {"type": "tool_use", "id": "tu_1", "name": "cancel_appointment", "input": {"reason": "x"}},
        ])

        assert decision.kind == DecisionKind.ACTION_REQUEST
        assert decision.text == "Un momento"
        assert decision.actions[0].id == "tu_1"
        assert decision.actions[0].input == {"reason": "x"}

    def test_tool_use_without_blocks_is_other(self):
        decision = decision_from_blocks("tool_use", [{"type": "text", "text": "?"}])

        assert decision.kind == DecisionKind.OTHER

    def test_max_tokens_is_other(self):
        decision = decision_from_blocks("max_tokens", [
            {"type": "tool_use", "id": "tu_1", "name": "x", "input": {}},
        ])

        assert decision.kind == DecisionKind.OTHER
        assert decision.actions == []
        assert decision.text is None

    def test_text_blocks_are_joined(self):
        decision = decision_from_blocks("end_turn", [
            {"type": "text", "text": "Primero"},
            {"type": "text", "text": ""},
            {"type": "text", "text": "Segundo"},
        ])

        assert decision.text == "Primero\nSegundo"


class TestClaudeDecisionMaker:
    """Test the Anthropic-backed implementation."""

    @pytest.fixture
    def mock_claude(self):
        client = AsyncMock()
        client.create_message = AsyncMock(return_value=MagicMock(
            stop_reason="end_turn",
            content=[text_block("Hola")],
        ))
        return client

    @pytest.mark.asyncio
    async def test_decide(self, mock_claude):
        maker = ClaudeDecisionMaker(claude_client=mock_claude, model="test-model")
        messages = [{"role": "user", "content": "Hola"}]

        decision = await maker.decide("system", messages, [])

        assert decision.kind == DecisionKind.FINAL
        assert decision.text == "Hola"
        mock_claude.create_message.assert_awaited_once_with(
            messages=messages,
            system="system",
            tools=[],
            model="test-model",
        )

    @pytest.mark.asyncio
    async def test_client_error_becomes_decision_maker_error(self, mock_claude):
        mock_claude.create_message.side_effect = ClaudeClientError("overloaded")
        maker = ClaudeDecisionMaker(claude_client=mock_claude)

        with pytest.raises(DecisionMakerError):
            await maker.decide("system", [], [])
