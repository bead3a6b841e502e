"""
Agent Module

Conversational layer of the clinic scheduler:
- Tools: action catalog (pydantic parameters + Anthropic tool definitions)
- Executor: runs actions against the scheduling engine, never raises
- Decision: decision-maker boundary and its Claude implementation
- Orchestrator: bounded decide/execute loop for one turn
- Service: inbound turn handling (tenant, patient, conversation, lock)
"""

from app.core.agent.tools import ToolRegistry, ToolSpec
from app.core.agent.executor import TenantContext, ToolExecutor, ToolResult
from app.core.agent.decision import (
    ActionRequest,
    ClaudeDecisionMaker,
    Decision,
    DecisionKind,
    DecisionMaker,
)
from app.core.agent.orchestrator import (
    ConversationOrchestrator,
    LoopState,
    OrchestratorResult,
    normalize_history,
)
from app.core.agent.service import TurnOutcome, TurnService

__all__ = [
    # Tools
    "ToolRegistry",
    "ToolSpec",
    # Executor
    "TenantContext",
    "ToolExecutor",
    "ToolResult",
    # Decision
    "ActionRequest",
    "ClaudeDecisionMaker",
    "Decision",
    "DecisionKind",
    "DecisionMaker",
    # Orchestrator
    "ConversationOrchestrator",
    "LoopState",
    "OrchestratorResult",
    "normalize_history",
    # Service
    "TurnOutcome",
    "TurnService",
]
