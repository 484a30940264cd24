"""Shared fixtures: scripted agents, in-memory plugins and fast configs."""

import asyncio
import os

# Use litellm's bundled model cost map instead of fetching it over the network at import.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

from collections.abc import AsyncIterator, Callable, Sequence
from typing import Any

import pytest

from switchboard.config.models import (
    AgentConfig,
    ConsensusConfig,
    RetryConfig,
    RoutingConfig,
    SwitchboardConfig,
)
from switchboard.core.errors import ProviderError
from switchboard.core.types import JSONObject, Result
from switchboard.plugin.base import (
    PluginContext,
    Tool,
    ToolDefinition,
    ToolInputType,
    ToolParameter,
)
from switchboard.plugin.manifest import PluginManifest
from switchboard.plugin.registry import PluginRegistry
from switchboard.providers.base import (
    AgentCapabilities,
    AgentDescriptor,
    CompletionResponse,
    Message,
    ToolSpec,
)

Reply = str | CompletionResponse | ProviderError


class ScriptedAgent:
    """Agent replaying scripted replies; the last reply repeats."""

    def __init__(
        self,
        name: str,
        replies: Sequence[Reply] = ("ok",),
        *,
        supports_tools: bool = True,
        supports_streaming: bool = True,
        delay: float = 0.0,
    ) -> None:
        self._name = name
        self._replies = list(replies)
        self._capabilities = AgentCapabilities(
            supports_tools=supports_tools,
            supports_streaming=supports_streaming,
        )
        self._delay = delay
        self.calls: list[tuple[tuple[Message, ...], tuple[ToolSpec, ...]]] = []
        self.closed = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def descriptor(self) -> AgentDescriptor:
        return AgentDescriptor(
            name=self._name,
            backend="scripted",
            model=f"{self._name}-model",
            capabilities=self._capabilities,
            has_credentials=True,
        )

    def supports_tools(self) -> bool:
        return self._capabilities.supports_tools

    def _next(self) -> Reply:
        if len(self._replies) > 1:
            return self._replies.pop(0)
        return self._replies[0]

    async def send(
        self,
        messages: Sequence[Message],
        *,
        tools: Sequence[ToolSpec] = (),
    ) -> Result[CompletionResponse, ProviderError]:
        self.calls.append((tuple(messages), tuple(tools)))
        if self._delay:
            await asyncio.sleep(self._delay)
        reply = self._next()
        if isinstance(reply, ProviderError):
            return Result.err(reply)
        if isinstance(reply, CompletionResponse):
            return Result.ok(reply)
        return Result.ok(CompletionResponse(content=reply, model=f"{self._name}-model"))

    async def stream(self, messages: Sequence[Message]) -> AsyncIterator[str]:
        reply = self._next()
        assert isinstance(reply, str)
        for word in reply.split(" "):
            yield word

    async def aclose(self) -> None:
        self.closed = True


class RecordingPlugin:
    """In-memory plugin whose tools echo their arguments."""

    def __init__(
        self,
        name: str,
        tool_names: Sequence[str] = ("fetch",),
        *,
        init_error: Exception | None = None,
        tool_error: Exception | None = None,
    ) -> None:
        self._name = name
        self._tool_names = tuple(tool_names)
        self._init_error = init_error
        self._tool_error = tool_error
        self.context: PluginContext | None = None
        self.calls: list[tuple[str, JSONObject]] = []
        self.shutdown_calls = 0

    @property
    def name(self) -> str:
        return self._name

    async def initialize(self, context: PluginContext) -> None:
        if self._init_error is not None:
            raise self._init_error
        self.context = context

    def tools(self) -> Sequence[Tool]:
        return [self._make_tool(name) for name in self._tool_names]

    def _make_tool(self, tool_name: str) -> Tool:
        async def handler(args: JSONObject) -> Any:
            self.calls.append((tool_name, args))
            if self._tool_error is not None:
                raise self._tool_error
            return {"plugin": self._name, "tool": tool_name, "query": args["query"]}

        return Tool(
            definition=ToolDefinition(
                name=tool_name,
                description=f"{tool_name} from {self._name}",
                parameters=(ToolParameter(name="query", type=ToolInputType.STRING),),
            ),
            handler=handler,
            plugin=self._name,
        )

    async def shutdown(self) -> None:
        self.shutdown_calls += 1


@pytest.fixture
def make_agent() -> Callable[..., ScriptedAgent]:
    """Factory for scripted agents."""
    return ScriptedAgent


@pytest.fixture
def make_plugin() -> Callable[..., RecordingPlugin]:
    """Factory for recording plugins."""
    return RecordingPlugin


@pytest.fixture
def make_manifest() -> Callable[..., PluginManifest]:
    """Factory for manifests whose entry equals the plugin name."""

    def _make(name: str, tools: Sequence[str] = (), **kwargs: Any) -> PluginManifest:
        return PluginManifest(name=name, entry=name, tools=list(tools), **kwargs)

    return _make


@pytest.fixture
def registry_for() -> Callable[..., PluginRegistry]:
    """Build a registry that hands out the given plugin instances."""

    def _make(*plugins: RecordingPlugin) -> PluginRegistry:
        return PluginRegistry({p.name: (lambda p=p: p) for p in plugins})

    return _make


@pytest.fixture
def fast_config() -> SwitchboardConfig:
    """Config with three agents and zero retry backoff."""
    return SwitchboardConfig(
        agents=[
            AgentConfig(name="a", model="m-a"),
            AgentConfig(name="b", model="m-b"),
            AgentConfig(name="c", model="m-c"),
        ],
        routing=RoutingConfig(default_agent="a", max_tool_rounds=3),
        consensus=ConsensusConfig(quorum=1, timeout=5.0),
        retry=RetryConfig(attempts=3, wait_initial=0.0, wait_max=0.0, wait_jitter=0.0),
    )
