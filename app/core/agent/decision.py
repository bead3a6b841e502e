"""
Decision-maker boundary.

The orchestrator asks a DecisionMaker what to do next and gets back either
final text, a list of action requests, or something else (any other stop
reason). ClaudeDecisionMaker implements it over the Anthropic tool_use API.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from app.core.errors import DecisionMakerError
from app.infra.claude import ClaudeClient, ClaudeClientError

logger = logging.getLogger(__name__)


class DecisionKind(str, Enum):
    FINAL = "final"
    ACTION_REQUEST = "action_request"
    OTHER = "other"


@dataclass
class ActionRequest:
    """One requested action (an Anthropic tool_use block)."""

    id: str
    name: str
    input: dict = field(default_factory=dict)


@dataclass
class Decision:
    """
    What the decision-maker wants next.

    content holds the assistant turn in Anthropic block format so it can be
    appended to the conversation verbatim before the tool results.
    """

    kind: DecisionKind
    text: Optional[str] = None
    actions: list[ActionRequest] = field(default_factory=list)
    content: list[dict] = field(default_factory=list)
    stop_reason: Optional[str] = None


class DecisionMaker(ABC):
    """Chooses the next step of a turn."""

    @abstractmethod
    async def decide(
        self,
        system: str,
        messages: list[dict],
        tools: list[dict],
    ) -> Decision:
        """
        Args:
            system: System prompt
            messages: Conversation so far, starting with a user turn
            tools: Action catalog in Anthropic format

        Raises:
            DecisionMakerError: the decision-maker could not be reached
        """
        ...


def serialize_content_blocks(content: list) -> list[dict]:
    """
    Serialize Anthropic content blocks to dicts.

    Anthropic SDK returns objects, but we need dicts for follow-up calls.
    """
    serialized = []
    for block in content or []:
        if isinstance(block, dict):
            serialized.append(block)
        elif getattr(block, "type", None) == "text":
            serialized.append({"type": "text", "text": block.text})
        elif getattr(block, "type", None) == "tool_use":
            serialized.append({
                "type": "tool_use",
                "id": block.id,
                "name": block.name,
                "input": block.input,
            })
    return serialized


def decision_from_blocks(stop_reason: Optional[str], blocks: list[dict]) -> Decision:
    """Classify a serialized response."""
    texts = [b["text"] for b in blocks if b.get("type") == "text" and b.get("text")]
    text = "\n".join(texts) if texts else None
    actions = [
        ActionRequest(id=b["id"], name=b["name"], input=dict(b.get("input") or {}))
        for b in blocks
        if b.get("type") == "tool_use"
    ]

    if stop_reason == "end_turn":
        kind = DecisionKind.FINAL
    elif stop_reason == "tool_use" and actions:
        kind = DecisionKind.ACTION_REQUEST
    else:
        kind = DecisionKind.OTHER

    return Decision(
        kind=kind,
        text=text,
        actions=actions if kind == DecisionKind.ACTION_REQUEST else [],
        content=blocks,
        stop_reason=stop_reason,
    )


class ClaudeDecisionMaker(DecisionMaker):
    """DecisionMaker backed by Claude tool_use."""

    def __init__(
        self,
        claude_client: Optional[ClaudeClient] = None,
        model: Optional[str] = None,
    ):
        """
        Args:
            claude_client: Claude client instance. If None, uses singleton.
            model: Model override
        """
        self._client = claude_client
        self._model = model

    def _get_client(self) -> ClaudeClient:
        """Get Claude client, creating if necessary."""
        if self._client is None:
            self._client = ClaudeClient.get_instance()
        return self._client

    async def decide(
        self,
        system: str,
        messages: list[dict],
        tools: list[dict],
    ) -> Decision:
        try:
            response: Any = await self._get_client().create_message(
                messages=messages,
                system=system,
                tools=tools,
                model=self._model,
            )
        except (ClaudeClientError, ValueError) as e:
            raise DecisionMakerError(str(e)) from e

        return decision_from_blocks(
            response.stop_reason, serialize_content_blocks(response.content)
        )
