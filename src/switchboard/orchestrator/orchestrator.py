"""Request routing, tool loop and consensus fan-out.

The orchestrator is the only component that talks to agents. It owns the
retry policy (agents never retry), resolves tool names against the plugin
manager's snapshot, and runs the agent/tool loop until the agent answers
without tool calls or the round limit is hit.

Precondition failures (unknown agent, unsupported capability, unknown tool)
are raised before any network call. Failures once a request is in flight
come back as ``Result.err``.
"""

import asyncio
from collections.abc import AsyncIterator, Sequence
import json
from typing import Literal
from uuid import uuid4
import weakref

import stamina
import structlog

from switchboard.config.models import SwitchboardConfig
from switchboard.core.errors import (
    ConfigError,
    DeadlineExceeded,
    ProviderError,
    QuorumNotMet,
    SwitchboardError,
    UnknownAgent,
    UnknownTool,
    UnsupportedCapability,
)
from switchboard.core.types import JSONObject, Result
from switchboard.orchestrator.consensus import SYNTHESIZERS, synthesize
from switchboard.orchestrator.models import (
    AgentFailure,
    ConsensusEntry,
    ConsensusResult,
    OrchestratorResponse,
    ToolInvocation,
)
from switchboard.orchestrator.routing import RoutingPolicy
from switchboard.plugin.base import ToolResult
from switchboard.plugin.manager import PluginManager
from switchboard.providers.base import (
    Agent,
    AgentDescriptor,
    CompletionResponse,
    Message,
    MessageRole,
    ToolCall,
    ToolSpec,
    UsageInfo,
)

log = structlog.get_logger(__name__)

ToolSelection = Sequence[str] | Literal["all"] | None

TOOL_ROUNDS_EXHAUSTED = "tool_rounds_exhausted"


class _TransientFailure(Exception):
    """Carries a retriable ProviderError through stamina."""

    def __init__(self, error: ProviderError) -> None:
        super().__init__(error.message)
        self.error = error


def _new_request_id() -> str:
    return f"req_{uuid4().hex[:12]}"


class Orchestrator:
    """Routes prompts to agents and dispatches their tool calls.

    Example:
        orchestrator = Orchestrator(create_agents(config.agents), plugins, config=config)
        result = await orchestrator.route("Summarise my tasks", tools=["list_records"])
        if result.is_ok:
            print(result.value.content)
    """

    def __init__(
        self,
        agents: Sequence[Agent],
        plugins: PluginManager | None = None,
        *,
        config: SwitchboardConfig | None = None,
        policy: RoutingPolicy | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            agents: Agents in configured order.
            plugins: Plugin manager providing tools. None disables tools.
            config: Routing, consensus and retry settings.
            policy: Routing policy override (defaults to ``config.routing``).

        Raises:
            ConfigError: If two agents share a name.
        """
        self._agents: dict[str, Agent] = {}
        for agent in agents:
            if agent.name in self._agents:
                raise ConfigError(f"Duplicate agent name: {agent.name}", config_key="agents")
            self._agents[agent.name] = agent
        self._plugins = plugins
        self._config = config or SwitchboardConfig()
        self._policy = policy or RoutingPolicy(self._config.routing)

    @property
    def plugins(self) -> PluginManager | None:
        return self._plugins

    @property
    def policy(self) -> RoutingPolicy:
        return self._policy

    def agents(self) -> list[AgentDescriptor]:
        """Return descriptors of every configured agent, in configured order."""
        return [a.descriptor for a in self._agents.values()]

    def get_agent(self, name: str) -> Agent:
        """Return an agent by name.

        Raises:
            UnknownAgent: If no agent has that name.
        """
        agent = self._agents.get(name)
        if agent is None:
            raise UnknownAgent(name, available=list(self._agents))
        return agent

    def submitter(self) -> "PromptGateway":
        """Return the narrow prompt capability handed to plugins."""
        return PromptGateway(self)

    # -- routing -----------------------------------------------------------

    def _resolve_tools(self, agent: Agent, tools: ToolSelection) -> list[ToolSpec]:
        if isinstance(tools, str) and tools != "all":
            tools = [tools]
        if not tools:
            return []
        if not agent.supports_tools():
            raise UnsupportedCapability(
                f"Agent '{agent.name}' does not support tool calling",
                provider=agent.name,
                capability="tools",
            )
        if self._plugins is None:
            if tools == "all":
                return []
            raise UnknownTool(tools[0])
        return self._plugins.tool_specs(tools)

    async def route(
        self,
        prompt: str,
        provider: str | None = None,
        tools: ToolSelection = None,
        *,
        system: str | None = None,
        deadline: float | None = None,
    ) -> Result[OrchestratorResponse, SwitchboardError]:
        """Send a prompt to one agent, running the tool loop if tools are exposed.

        Args:
            prompt: User prompt.
            provider: Agent name. None delegates to ``auto_route``.
            tools: Tool names to expose, or ``"all"`` for every loaded tool.
            system: Optional system prompt.
            deadline: Seconds allowed for the whole request.

        Returns:
            Result containing the final response, or the ProviderError /
            DeadlineExceeded that ended the request.

        Raises:
            UnknownAgent: If ``provider`` is not configured.
            UnsupportedCapability: If tools are requested from an agent
                without tool support.
            UnknownTool: If a requested tool is not loaded.
        """
        if provider is None:
            return await self.auto_route(prompt, tools, system=system, deadline=deadline)

        agent = self.get_agent(provider)
        specs = self._resolve_tools(agent, tools)
        return await self._run(agent, prompt, specs, system=system, deadline=deadline)

    async def auto_route(
        self,
        prompt: str,
        tools: ToolSelection = None,
        *,
        system: str | None = None,
        deadline: float | None = None,
    ) -> Result[OrchestratorResponse, SwitchboardError]:
        """Route to the agent chosen by the routing policy.

        Raises:
            UnsupportedCapability: If tools are requested and no agent supports them.
            UnknownTool: If a requested tool is not loaded.
        """
        if isinstance(tools, str) and tools != "all":
            tools = [tools]
        name = self._policy.select(self.agents(), needs_tools=bool(tools))
        log.debug("orchestrator.route.auto_selected", agent=name, needs_tools=bool(tools))
        agent = self._agents[name]
        specs = self._resolve_tools(agent, tools)
        return await self._run(agent, prompt, specs, system=system, deadline=deadline)

    async def _run(
        self,
        agent: Agent,
        prompt: str,
        specs: list[ToolSpec],
        *,
        system: str | None,
        deadline: float | None,
    ) -> Result[OrchestratorResponse, SwitchboardError]:
        request_id = _new_request_id()
        with structlog.contextvars.bound_contextvars(request_id=request_id):
            log.info(
                "orchestrator.route.started",
                agent=agent.name,
                tools=[s.name for s in specs],
            )
            messages: list[Message] = []
            if system:
                messages.append(Message.system(system))
            messages.append(Message.user(prompt))

            timeout = asyncio.timeout(deadline)
            try:
                async with timeout:
                    result = await self._conversation(agent, messages, specs, request_id)
            except TimeoutError:
                if not timeout.expired():
                    raise
                log.warning("orchestrator.route.deadline_exceeded", deadline=deadline)
                return Result.err(DeadlineExceeded(deadline or 0.0, operation="route"))

            if result.is_ok:
                log.info(
                    "orchestrator.route.completed",
                    agent=agent.name,
                    finish_reason=result.value.finish_reason,
                    tool_calls=len(result.value.tool_invocations),
                )
            else:
                log.warning("orchestrator.route.failed", agent=agent.name, kind=result.error.kind)
            return result

    async def _conversation(
        self,
        agent: Agent,
        messages: list[Message],
        specs: list[ToolSpec],
        request_id: str,
    ) -> Result[OrchestratorResponse, SwitchboardError]:
        allowed = {s.name for s in specs}
        invocations: list[ToolInvocation] = []
        usage = UsageInfo()
        rounds = 0
        max_rounds = self._config.routing.max_tool_rounds

        while True:
            result = await self._send(agent, messages, specs)
            if result.is_err:
                return Result.err(result.error)
            response = result.value
            usage = usage + response.usage

            if not response.tool_calls or not specs:
                return Result.ok(
                    self._response(agent, response, invocations, usage, request_id)
                )

            if rounds >= max_rounds:
                log.warning(
                    "orchestrator.tool_loop.exhausted",
                    agent=agent.name,
                    max_tool_rounds=max_rounds,
                )
                return Result.ok(
                    self._response(
                        agent,
                        response,
                        invocations,
                        usage,
                        request_id,
                        finish_reason=TOOL_ROUNDS_EXHAUSTED,
                    )
                )

            rounds += 1
            messages.append(
                Message(
                    role=MessageRole.ASSISTANT,
                    content=response.content,
                    tool_calls=response.tool_calls,
                )
            )
            for call in response.tool_calls:
                invocation = await self._invoke(call, allowed)
                invocations.append(invocation)
                messages.append(
                    Message.tool_result(call, invocation.output, is_error=invocation.is_error)
                )

    @staticmethod
    def _response(
        agent: Agent,
        response: CompletionResponse,
        invocations: list[ToolInvocation],
        usage: UsageInfo,
        request_id: str,
        *,
        finish_reason: str | None = None,
    ) -> OrchestratorResponse:
        return OrchestratorResponse(
            content=response.content,
            agent=agent.name,
            model=response.model,
            tool_invocations=tuple(invocations),
            usage=usage,
            finish_reason=finish_reason or response.finish_reason,
            request_id=request_id,
        )

    async def _invoke(self, call: ToolCall, allowed: set[str]) -> ToolInvocation:
        """Dispatch one tool call; failures become error tool results."""
        plugin: str | None = None
        if call.name not in allowed or self._plugins is None:
            outcome: Result[ToolResult, SwitchboardError] = Result.err(UnknownTool(call.name))
        else:
            tool = self._plugins.snapshot.tools.get(call.name)
            plugin = tool.plugin if tool is not None else None
            outcome = await self._plugins.dispatch(call.name, call.arguments)

        if outcome.is_ok:
            return ToolInvocation(
                tool=call.name,
                plugin=plugin,
                arguments=call.arguments,
                output=outcome.value.to_text(),
                is_error=outcome.value.is_error,
            )

        error = outcome.error
        log.info("orchestrator.tool.failed", tool=call.name, kind=error.kind)
        return ToolInvocation(
            tool=call.name,
            plugin=plugin,
            arguments=call.arguments,
            output=json.dumps({"error": error.to_dict()}, default=str),
            is_error=True,
            error_kind=error.kind,
        )

    async def _send(
        self,
        agent: Agent,
        messages: Sequence[Message],
        specs: Sequence[ToolSpec],
    ) -> Result[CompletionResponse, ProviderError]:
        """Call an agent, retrying retriable ProviderErrors with stamina."""
        retry = self._config.retry
        snapshot = tuple(messages)

        @stamina.retry(
            on=_TransientFailure,
            attempts=retry.attempts,
            wait_initial=retry.wait_initial,
            wait_max=retry.wait_max,
            wait_jitter=retry.wait_jitter,
        )
        async def _attempt() -> Result[CompletionResponse, ProviderError]:
            result = await agent.send(snapshot, tools=specs)
            if result.is_err and result.error.retriable:
                log.warning(
                    "orchestrator.agent.call_failed.retriable",
                    agent=agent.name,
                    status_code=result.error.status_code,
                )
                raise _TransientFailure(result.error)
            return result

        try:
            return await _attempt()
        except _TransientFailure as e:
            log.warning(
                "orchestrator.agent.retries_exhausted",
                agent=agent.name,
                attempts=retry.attempts,
            )
            return Result.err(e.error)

    # -- streaming ---------------------------------------------------------

    async def stream(
        self,
        prompt: str,
        provider: str | None = None,
        *,
        system: str | None = None,
    ) -> AsyncIterator[str]:
        """Stream the reply of one streaming-capable agent.

        Raises:
            UnknownAgent: If ``provider`` is not configured.
            UnsupportedCapability: If the agent (or every agent) cannot stream.
            ProviderError: If the provider fails mid-stream.
        """
        if provider is None:
            provider = self._policy.select_streaming(self.agents())
        agent = self.get_agent(provider)
        if not agent.descriptor.capabilities.supports_streaming:
            raise UnsupportedCapability(
                f"Agent '{agent.name}' does not support streaming",
                provider=agent.name,
                capability="streaming",
            )

        messages: list[Message] = []
        if system:
            messages.append(Message.system(system))
        messages.append(Message.user(prompt))

        log.info("orchestrator.stream.started", agent=agent.name)
        async for chunk in agent.stream(messages):
            yield chunk
        log.info("orchestrator.stream.completed", agent=agent.name)

    # -- tools -------------------------------------------------------------

    async def invoke_tool(
        self,
        name: str,
        arguments: JSONObject,
    ) -> Result[ToolResult, SwitchboardError]:
        """Dispatch a user-initiated tool call."""
        if self._plugins is None:
            return Result.err(UnknownTool(name))
        log.info("orchestrator.tool.invoked", tool=name)
        return await self._plugins.dispatch(name, arguments)

    # -- consensus ---------------------------------------------------------

    async def consensus(
        self,
        prompt: str,
        providers: Sequence[str],
        *,
        quorum: int | None = None,
        strategy: str | None = None,
        timeout: float | None = None,
        system: str | None = None,
        deadline: float | None = None,
    ) -> Result[ConsensusResult, SwitchboardError]:
        """Ask several agents concurrently and synthesise their answers.

        Every participant runs to completion or its timeout before synthesis.
        Failed participants are reported alongside the answer; the request
        fails only when fewer than ``quorum`` succeed.

        Args:
            prompt: User prompt.
            providers: Agent names; duplicates are collapsed.
            quorum: Minimum successes (defaults to ``consensus.quorum``).
            strategy: ``concatenate`` or ``majority`` (defaults to config).
            timeout: Per-agent timeout in seconds (defaults to config).
            system: Optional system prompt.
            deadline: Seconds allowed for the whole fan-out.

        Returns:
            Result containing the ConsensusResult, or QuorumNotMet /
            DeadlineExceeded.

        Raises:
            UnknownAgent: If any name is not configured (before any call).
            ValueError: If no agents are named, the quorum is larger than
                the participant count, or the strategy is unknown.
        """
        names = list(dict.fromkeys(providers))
        agents = [self.get_agent(n) for n in names]
        if not agents:
            msg = "consensus needs at least one agent"
            raise ValueError(msg)

        settings = self._config.consensus
        quorum = settings.quorum if quorum is None else quorum
        strategy = strategy or settings.strategy
        per_agent = settings.timeout if timeout is None else timeout
        if quorum < 1 or quorum > len(agents):
            msg = f"quorum must be between 1 and {len(agents)}, got {quorum}"
            raise ValueError(msg)
        if strategy not in SYNTHESIZERS:
            msg = f"Unknown synthesis strategy: {strategy}"
            raise ValueError(msg)

        messages: list[Message] = []
        if system:
            messages.append(Message.system(system))
        messages.append(Message.user(prompt))

        request_id = _new_request_id()
        with structlog.contextvars.bound_contextvars(request_id=request_id):
            log.info(
                "orchestrator.consensus.started",
                agents=names,
                quorum=quorum,
                strategy=strategy,
            )
            guard = asyncio.timeout(deadline)
            try:
                async with guard:
                    outcomes = await asyncio.gather(
                        *(self._ask(agent, messages, per_agent) for agent in agents),
                        return_exceptions=True,
                    )
            except TimeoutError:
                if not guard.expired():
                    raise
                log.warning("orchestrator.consensus.deadline_exceeded", deadline=deadline)
                return Result.err(DeadlineExceeded(deadline or 0.0, operation="consensus"))

            entries: list[ConsensusEntry] = []
            failures: list[AgentFailure] = []
            for agent, outcome in zip(agents, outcomes, strict=True):
                if isinstance(outcome, BaseException):
                    failures.append(
                        AgentFailure(
                            agent=agent.name,
                            kind="unexpected_error",
                            message=str(outcome),
                        )
                    )
                elif isinstance(outcome, AgentFailure):
                    failures.append(outcome)
                else:
                    entries.append(
                        ConsensusEntry(
                            agent=agent.name,
                            content=outcome.content,
                            model=outcome.model,
                        )
                    )

            if len(entries) < quorum:
                log.warning(
                    "orchestrator.consensus.quorum_not_met",
                    quorum=quorum,
                    succeeded=len(entries),
                )
                return Result.err(
                    QuorumNotMet(
                        quorum=quorum,
                        succeeded=len(entries),
                        failures=[f.to_dict() for f in failures],
                    )
                )

            combined, agreement = synthesize(strategy, entries)
            log.info(
                "orchestrator.consensus.completed",
                succeeded=len(entries),
                failed=[f.agent for f in failures],
                agreement=agreement,
            )
            return Result.ok(
                ConsensusResult(
                    combined=combined,
                    strategy=strategy,
                    entries=tuple(entries),
                    failures=tuple(failures),
                    agreement=agreement,
                )
            )

    async def _ask(
        self,
        agent: Agent,
        messages: Sequence[Message],
        timeout: float,
    ) -> CompletionResponse | AgentFailure:
        try:
            result = await asyncio.wait_for(self._send(agent, messages, ()), timeout=timeout)
        except TimeoutError:
            log.warning(
                "orchestrator.consensus.agent_timed_out",
                agent=agent.name,
                timeout=timeout,
            )
            return AgentFailure(
                agent=agent.name,
                kind="timeout",
                message=f"No answer within {timeout}s",
            )
        if result.is_err:
            return AgentFailure.from_error(agent.name, result.error)
        return result.value

    # -- lifecycle ---------------------------------------------------------

    async def aclose(self) -> None:
        """Close every agent's client connections."""
        for agent in self._agents.values():
            try:
                await agent.aclose()
            except Exception as e:
                log.warning("orchestrator.agent.close_failed", agent=agent.name, error=str(e))


class PromptGateway:
    """PromptSubmitter handed to plugins.

    Holds only a weak reference to the orchestrator, so plugins never keep it
    alive, and only exposes tool-free routing, so a plugin cannot trigger a
    tool loop through it.
    """

    def __init__(self, orchestrator: Orchestrator) -> None:
        self._ref = weakref.ref(orchestrator)

    async def submit(self, prompt: str, *, system: str | None = None) -> str:
        """Route a prompt without tools and return the reply text.

        Raises:
            SwitchboardError: If the orchestrator is gone or the request fails.
        """
        orchestrator = self._ref()
        if orchestrator is None:
            raise SwitchboardError("Orchestrator is no longer available")
        result = await orchestrator.route(prompt, system=system)
        if result.is_err:
            raise result.error
        return result.value.content
