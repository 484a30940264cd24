"""Result types returned by the orchestrator."""

from dataclasses import dataclass, field
from typing import Any

from switchboard.core.errors import SwitchboardError
from switchboard.core.types import JSONObject
from switchboard.providers.base import UsageInfo


@dataclass(frozen=True, slots=True)
class ToolInvocation:
    """One tool call made during a routed request.

    Attributes:
        tool: Tool name requested by the agent.
        plugin: Owning plugin, if the tool resolved to one.
        arguments: Arguments the agent supplied.
        output: Text handed back to the agent.
        is_error: Whether the call failed.
        error_kind: ``kind`` of the error when the call failed.
    """

    tool: str
    plugin: str | None
    arguments: JSONObject
    output: str
    is_error: bool = False
    error_kind: str | None = None


@dataclass(frozen=True, slots=True)
class OrchestratorResponse:
    """Final reply of a routed request.

    Attributes:
        content: Text of the agent's final reply.
        agent: Agent that produced it.
        model: Model reported by the provider.
        tool_invocations: Every tool call made, in order.
        usage: Token usage summed over every round.
        finish_reason: Provider finish reason, or ``tool_rounds_exhausted``.
        request_id: Identifier bound into the logs of this request.
    """

    content: str
    agent: str
    model: str
    tool_invocations: tuple[ToolInvocation, ...] = ()
    usage: UsageInfo = field(default_factory=UsageInfo)
    finish_reason: str = "stop"
    request_id: str = ""


@dataclass(frozen=True, slots=True)
class ConsensusEntry:
    """A successful participant's answer."""

    agent: str
    content: str
    model: str


@dataclass(frozen=True, slots=True)
class AgentFailure:
    """A participant that failed or timed out."""

    agent: str
    kind: str
    message: str

    @classmethod
    def from_error(cls, agent: str, error: SwitchboardError) -> "AgentFailure":
        return cls(agent=agent, kind=error.kind, message=error.message)

    def to_dict(self) -> dict[str, Any]:
        return {"agent": self.agent, "kind": self.kind, "message": self.message}


@dataclass(frozen=True, slots=True)
class ConsensusResult:
    """Synthesised answer of a consensus fan-out.

    Attributes:
        combined: The synthesised answer.
        strategy: Synthesis strategy used.
        entries: One entry per successful agent, in request order.
        failures: One entry per failed agent, in request order.
        agreement: Share of successful agents backing ``combined``
            (always 1.0 for concatenation).
    """

    combined: str
    strategy: str
    entries: tuple[ConsensusEntry, ...]
    failures: tuple[AgentFailure, ...] = ()
    agreement: float = 1.0

    @property
    def agents(self) -> tuple[str, ...]:
        return tuple(e.agent for e in self.entries)

    @property
    def is_partial(self) -> bool:
        return bool(self.failures)
