"""Orchestration core for Switchboard.

Routes prompts to agents (explicitly or by RoutingPolicy), runs the agent/tool
loop against the plugin manager, and fans prompts out for consensus.
"""

from switchboard.orchestrator.consensus import SYNTHESIZERS, concatenate, majority, synthesize
from switchboard.orchestrator.models import (
    AgentFailure,
    ConsensusEntry,
    ConsensusResult,
    OrchestratorResponse,
    ToolInvocation,
)
from switchboard.orchestrator.orchestrator import (
    TOOL_ROUNDS_EXHAUSTED,
    Orchestrator,
    PromptGateway,
)
from switchboard.orchestrator.routing import RoutingPolicy

__all__ = [
    "Orchestrator",
    "PromptGateway",
    "RoutingPolicy",
    "TOOL_ROUNDS_EXHAUSTED",
    # Models
    "AgentFailure",
    "ConsensusEntry",
    "ConsensusResult",
    "OrchestratorResponse",
    "ToolInvocation",
    # Synthesis
    "SYNTHESIZERS",
    "concatenate",
    "majority",
    "synthesize",
]
