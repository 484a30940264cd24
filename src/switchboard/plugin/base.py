"""Plugin protocol and tool types.

A plugin contributes a fixed set of tools. Tools are declared with
ToolDefinition (which renders the JSON Schema handed to providers) and bound
to an async handler; the plugin manager owns dispatch.
"""

from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
import json
from typing import TYPE_CHECKING, Any, Protocol

from switchboard.core.security import MAX_TOOL_OUTPUT_LENGTH, truncate_text
from switchboard.core.types import JSONObject
from switchboard.providers.base import ToolSpec

if TYPE_CHECKING:
    from switchboard.plugin.manifest import PluginManifest
    from switchboard.plugin.ratelimit import RateLimiterRegistry


class ToolInputType(StrEnum):
    """JSON Schema types for tool input parameters."""

    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


@dataclass(frozen=True, slots=True)
class ToolParameter:
    """A single parameter of a tool.

    Attributes:
        name: Parameter name.
        type: JSON Schema type of the parameter.
        description: Human-readable description.
        required: Whether the parameter is required.
        default: Default value if not provided.
        enum: Allowed values if restricted.
        items: Item schema for ARRAY parameters.
    """

    name: str
    type: ToolInputType
    description: str = ""
    required: bool = True
    default: Any = None
    enum: tuple[str, ...] | None = None
    items: JSONObject | None = None


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    """Definition of a tool.

    Attributes:
        name: Tool name, unique across every loaded plugin.
        description: Human-readable description shown to models.
        parameters: Declared parameters, rendered into the input schema.
        input_schema: Explicit JSON Schema; takes precedence over parameters.
    """

    name: str
    description: str
    parameters: tuple[ToolParameter, ...] = field(default_factory=tuple)
    input_schema: JSONObject | None = None

    def to_input_schema(self) -> JSONObject:
        """Convert to JSON Schema for tool input.

        Returns:
            A JSON Schema dict describing the tool's input parameters.
        """
        if self.input_schema is not None:
            return self.input_schema

        properties: dict[str, Any] = {}
        required: list[str] = []

        for param in self.parameters:
            prop: dict[str, Any] = {
                "type": param.type.value,
                "description": param.description,
            }
            if param.default is not None:
                prop["default"] = param.default
            if param.enum is not None:
                prop["enum"] = list(param.enum)
            if param.items is not None:
                prop["items"] = param.items
            properties[param.name] = prop
            if param.required:
                required.append(param.name)

        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }


@dataclass(frozen=True, slots=True)
class ToolResult:
    """JSON-serialisable result of a tool invocation.

    Attributes:
        content: Any JSON-compatible value.
        is_error: Whether the invocation failed.
    """

    content: Any = None
    is_error: bool = False

    def to_text(self) -> str:
        """Render the content as the text handed back to an agent."""
        if isinstance(self.content, str):
            text = self.content
        else:
            text = json.dumps(self.content, ensure_ascii=False, default=str)
        return truncate_text(text, MAX_TOOL_OUTPUT_LENGTH)


ToolHandler = Callable[[JSONObject], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class Tool:
    """A tool bound to its handler and owning plugin.

    Handlers receive the validated argument dict and return either a
    ToolResult or any JSON-compatible value.
    """

    definition: ToolDefinition
    handler: ToolHandler
    plugin: str = ""

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def description(self) -> str:
        return self.definition.description

    @property
    def input_schema(self) -> JSONObject:
        return self.definition.to_input_schema()

    def to_spec(self) -> ToolSpec:
        """Return the provider-facing view of this tool."""
        return ToolSpec(
            name=self.name,
            description=self.description,
            input_schema=self.input_schema,
        )


class PromptSubmitter(Protocol):
    """Narrow capability letting a plugin ask the orchestrator a question.

    The submitter routes the prompt without tools and returns the reply text.
    """

    async def submit(self, prompt: str, *, system: str | None = None) -> str:
        """Submit a prompt and return the reply text.

        Raises:
            ProviderError: If the routed agent fails.
        """
        ...


@dataclass(frozen=True, slots=True)
class PluginContext:
    """Everything a plugin receives at initialization.

    Attributes:
        manifest: The plugin's own manifest.
        settings: Resolved configuration values keyed by manifest key.
        rate_limiters: Registry of shared per-service rate limiters.
        submitter: Prompt submission capability, if the host provides one.
    """

    manifest: "PluginManifest"
    settings: Mapping[str, str]
    rate_limiters: "RateLimiterRegistry"
    submitter: PromptSubmitter | None = None

    def setting(self, key: str, default: str | None = None) -> str | None:
        return self.settings.get(key, default)


class Plugin(Protocol):
    """Protocol every plugin implements.

    Lifecycle: constructed from the plugin registry, ``initialize`` once,
    tools dispatched, ``shutdown`` once. ``tools()`` is only called after
    ``initialize`` succeeds and must return the same set every time.
    """

    @property
    def name(self) -> str:
        """Plugin name, matching its manifest."""
        ...

    async def initialize(self, context: PluginContext) -> None:
        """Open connections and bind configuration."""
        ...

    def tools(self) -> Sequence[Tool]:
        """Return the tools this plugin contributes."""
        ...

    async def shutdown(self) -> None:
        """Release connections. Must tolerate a failed initialize."""
        ...
