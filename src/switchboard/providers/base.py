"""Agent protocol and message models.

An agent is the uniform capability wrapper over one language-model provider.
The orchestrator only ever talks to this protocol and branches on capability
flags, never on which provider sits behind an agent.
"""

from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

from switchboard.core.errors import ProviderError
from switchboard.core.types import JSONObject, Result


class MessageRole(StrEnum):
    """Role of a message in the conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A tool invocation requested by a model.

    Attributes:
        id: Provider-assigned call identifier, echoed back with the result.
        name: Tool name.
        arguments: Decoded JSON arguments.
    """

    id: str
    name: str
    arguments: JSONObject = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Message:
    """A single message in a conversation.

    Attributes:
        role: The role of the message sender.
        content: Text content. For TOOL messages, the JSON-rendered tool result.
        tool_calls: Tool calls made by an ASSISTANT message.
        tool_call_id: For TOOL messages, the call being answered.
        name: For TOOL messages, the tool name.
        is_error: For TOOL messages, whether the tool failed.
    """

    role: MessageRole
    content: str
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None
    name: str | None = None
    is_error: bool = False

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def tool_result(
        cls,
        call: ToolCall,
        content: str,
        *,
        is_error: bool = False,
    ) -> "Message":
        return cls(
            role=MessageRole.TOOL,
            content=content,
            tool_call_id=call.id,
            name=call.name,
            is_error=is_error,
        )


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Provider-facing description of a tool.

    Attributes:
        name: Tool name.
        description: What the tool does, shown to the model.
        input_schema: JSON Schema object for the tool arguments.
    """

    name: str
    description: str
    input_schema: JSONObject


@dataclass(frozen=True, slots=True)
class UsageInfo:
    """Token usage information from a completion."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "UsageInfo") -> "UsageInfo":
        return UsageInfo(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


@dataclass(frozen=True, slots=True)
class CompletionResponse:
    """Response from a single agent call.

    Attributes:
        content: The generated text content.
        model: The model that generated the response.
        usage: Token usage information.
        finish_reason: Why generation stopped (``stop``, ``tool_calls``, ...).
        tool_calls: Tool calls requested by the model.
        raw_response: Raw provider payload, for debugging.
    """

    content: str
    model: str
    usage: UsageInfo = field(default_factory=UsageInfo)
    finish_reason: str = "stop"
    tool_calls: tuple[ToolCall, ...] = ()
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class AgentCapabilities:
    """Capability flags an agent declares."""

    supports_tools: bool = False
    supports_streaming: bool = False


@dataclass(frozen=True, slots=True)
class AgentDescriptor:
    """Descriptor of a configured agent.

    Attributes:
        name: Provider identity used in routing and error reports.
        backend: SDK family behind the agent.
        model: Model identifier.
        capabilities: Declared capability flags.
        has_credentials: Whether an API key was resolved at startup.
    """

    name: str
    backend: str
    model: str
    capabilities: AgentCapabilities
    has_credentials: bool


class Agent(Protocol):
    """Protocol every provider agent implements.

    Agents do not retry. Every expected failure is returned as
    ``Result.err(ProviderError)`` tagged with the agent's name; retry policy
    belongs to the orchestrator.

    Example:
        agent: Agent = AnthropicAgent(config)
        result = await agent.send([Message.user("Hello!")])
        if result.is_ok:
            print(result.value.content)
    """

    @property
    def name(self) -> str:
        """Provider identity."""
        ...

    @property
    def descriptor(self) -> AgentDescriptor:
        """Descriptor with capability flags and credential state."""
        ...

    def supports_tools(self) -> bool:
        """Return True if the agent can be offered tools."""
        ...

    async def send(
        self,
        messages: Sequence[Message],
        *,
        tools: Sequence[ToolSpec] = (),
    ) -> Result[CompletionResponse, ProviderError]:
        """Send a conversation and return the model's reply."""
        ...

    def stream(self, messages: Sequence[Message]) -> AsyncIterator[str]:
        """Stream text chunks of the reply.

        The iterator is finite and not restartable. Provider failures are
        raised as ProviderError during iteration.
        """
        ...

    async def aclose(self) -> None:
        """Release client connections."""
        ...
