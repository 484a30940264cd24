"""Agent construction from configuration.

Backends are looked up in a static table; adding a provider family means
adding an entry here, never importing code by name at runtime.
"""

from collections.abc import Callable, Sequence

from switchboard.config.models import AgentConfig
from switchboard.core.errors import ConfigError
from switchboard.providers.anthropic_adapter import AnthropicAgent
from switchboard.providers.base import Agent
from switchboard.providers.litellm_adapter import LiteLLMAgent

AgentFactory = Callable[[AgentConfig], Agent]

BACKENDS: dict[str, AgentFactory] = {
    "anthropic": AnthropicAgent,
    "litellm": LiteLLMAgent,
}


def create_agent(config: AgentConfig) -> Agent:
    """Build the agent for one configured provider.

    Raises:
        ConfigError: If the backend has no entry in the backend table.
    """
    factory = BACKENDS.get(config.backend)
    if factory is None:
        raise ConfigError(
            f"Unknown agent backend: {config.backend}",
            config_key=f"agents.{config.name}.backend",
        )
    return factory(config)


def create_agents(configs: Sequence[AgentConfig]) -> list[Agent]:
    """Build agents in configuration order."""
    return [create_agent(c) for c in configs]
