"""Deterministic agent selection.

The policy is stateless: the same configuration and agent descriptors always
select the same agent.

Rules:
    - Tools requested: the first agent in ``routing.tool_preference``, then
      in configured order, that supports tools.
    - Otherwise: ``routing.default_agent``, or the first configured agent.
"""

from collections.abc import Sequence

import structlog

from switchboard.config.models import RoutingConfig
from switchboard.core.errors import ConfigError, UnsupportedCapability
from switchboard.providers.base import AgentDescriptor

log = structlog.get_logger(__name__)


class RoutingPolicy:
    """Selects the agent for requests that do not name one.

    Example:
        policy = RoutingPolicy(config.routing)
        name = policy.select(descriptors, needs_tools=True)
    """

    def __init__(self, config: RoutingConfig | None = None) -> None:
        self._config = config or RoutingConfig()

    def _candidates(self, agents: Sequence[AgentDescriptor]) -> list[AgentDescriptor]:
        by_name = {a.name: a for a in agents}
        ordered = [by_name[n] for n in self._config.tool_preference if n in by_name]
        ordered.extend(a for a in agents if a.name not in self._config.tool_preference)
        return ordered

    def select(self, agents: Sequence[AgentDescriptor], *, needs_tools: bool = False) -> str:
        """Select an agent name.

        Args:
            agents: Descriptors of the configured agents, in configured order.
            needs_tools: Whether the request exposes tools.

        Returns:
            Name of the selected agent.

        Raises:
            ConfigError: If no agents are configured.
            UnsupportedCapability: If tools are needed and no agent supports them.
        """
        if not agents:
            raise ConfigError("No agents configured", config_key="agents")

        if needs_tools:
            for agent in self._candidates(agents):
                if agent.capabilities.supports_tools:
                    return agent.name
            raise UnsupportedCapability(
                "No configured agent supports tool calling",
                capability="tools",
            )

        default = self._config.default_agent
        if default is not None and any(a.name == default for a in agents):
            return default
        return agents[0].name

    def select_streaming(self, agents: Sequence[AgentDescriptor]) -> str:
        """Select the first streaming-capable agent, default agent first.

        Raises:
            ConfigError: If no agents are configured.
            UnsupportedCapability: If no agent supports streaming.
        """
        if not agents:
            raise ConfigError("No agents configured", config_key="agents")

        default = self._config.default_agent
        ordered = sorted(agents, key=lambda a: a.name != default)
        for agent in ordered:
            if agent.capabilities.supports_streaming:
                return agent.name
        raise UnsupportedCapability(
            "No configured agent supports streaming",
            capability="streaming",
        )
