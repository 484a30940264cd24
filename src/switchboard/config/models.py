"""Pydantic models for Switchboard configuration.

All configuration validation happens through these models (Pydantic v2,
frozen). Credentials never live in the config file: agents and plugins name
the environment variables that hold them.

Classes:
    AgentConfig: One language-model provider exposed as an agent
    RoutingConfig: Auto-routing policy and tool-loop bounds
    ConsensusConfig: Fan-out quorum, timeout, and synthesis strategy
    RetryConfig: Orchestrator retry policy for transient provider errors
    PluginsConfig: Plugin discovery root, allow list, and explicit settings
    LoggingConfig: Logging mode and level
    SwitchboardConfig: Top-level configuration combining all sections
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

BackendName = Literal["anthropic", "litellm"]
SynthesisStrategy = Literal["concatenate", "majority"]


class AgentConfig(BaseModel, frozen=True):
    """Configuration for a single agent.

    Attributes:
        name: Provider identity used in routing and error reports.
        backend: SDK used to reach the provider.
        model: Model identifier passed to the backend.
        api_key_env: Environment variable holding the API key.
        api_base: Optional custom endpoint.
        supports_tools: Override the backend's tool-calling default.
        supports_streaming: Override the backend's streaming default.
        temperature: Sampling temperature.
        max_tokens: Maximum tokens to generate per call.
        timeout: Per-call timeout in seconds.
    """

    name: str = Field(min_length=1)
    backend: BackendName = "litellm"
    model: str = Field(min_length=1)
    api_key_env: str | None = None
    api_base: str | None = None
    supports_tools: bool | None = None
    supports_streaming: bool | None = None
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=4096, ge=1)
    timeout: float = Field(default=60.0, gt=0)


class RoutingConfig(BaseModel, frozen=True):
    """Auto-routing policy.

    Attributes:
        default_agent: Agent used when no tools are requested.
            Defaults to the first configured agent.
        tool_preference: Agents tried first, in order, when tools are requested.
        max_tool_rounds: Upper bound on agent/tool round trips per request.
    """

    default_agent: str | None = None
    tool_preference: list[str] = Field(default_factory=list)
    max_tool_rounds: int = Field(default=8, ge=1)


class ConsensusConfig(BaseModel, frozen=True):
    """Consensus fan-out configuration.

    Attributes:
        quorum: Minimum successful agents for the consensus to succeed.
        timeout: Per-agent timeout in seconds.
        strategy: Synthesis strategy applied to the successful answers.
    """

    quorum: int = Field(default=1, ge=1)
    timeout: float = Field(default=60.0, gt=0)
    strategy: SynthesisStrategy = "concatenate"


class RetryConfig(BaseModel, frozen=True):
    """Retry policy for retriable provider errors.

    Attributes:
        attempts: Total attempts per agent call (1 disables retries).
        wait_initial: First backoff in seconds.
        wait_max: Backoff ceiling in seconds.
        wait_jitter: Maximum random jitter added to each backoff.
    """

    attempts: int = Field(default=3, ge=1)
    wait_initial: float = Field(default=1.0, ge=0.0)
    wait_max: float = Field(default=10.0, ge=0.0)
    wait_jitter: float = Field(default=1.0, ge=0.0)


class PluginsConfig(BaseModel, frozen=True):
    """Plugin discovery and loading configuration.

    Attributes:
        root: Directory scanned for ``*/plugin.yaml``. Defaults to the
            plugins bundled with the package.
        enabled: Optional allow list of plugin names.
        strict: Fail startup when any plugin fails to load.
        settings: Explicit per-plugin settings, taking precedence over
            environment variables.
    """

    root: Path | None = None
    enabled: list[str] | None = None
    strict: bool = False
    settings: dict[str, dict[str, str]] = Field(default_factory=dict)

    @field_validator("root")
    @classmethod
    def expand_root(cls, v: Path | None) -> Path | None:
        """Expand ~ in the plugin root."""
        if v is None:
            return None
        return v.expanduser()


class LoggingConfig(BaseModel, frozen=True):
    """Logging configuration.

    Attributes:
        mode: ``dev`` renders for the console, ``prod`` renders JSON.
        level: Minimum log level.
        log_file: Optional file receiving log lines instead of stderr.
    """

    mode: Literal["dev", "prod"] = "dev"
    level: Literal["debug", "info", "warning", "error"] = "info"
    log_file: Path | None = None


class SwitchboardConfig(BaseModel, frozen=True):
    """Top-level Switchboard configuration.

    Validates against ``config.yaml`` (see ``switchboard.config.loader``).
    """

    agents: list[AgentConfig] = Field(default_factory=list)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    consensus: ConsensusConfig = Field(default_factory=ConsensusConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    plugins: PluginsConfig = Field(default_factory=PluginsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def check_agent_references(self) -> "SwitchboardConfig":
        """Agent names are unique and routing only references configured agents."""
        names = [agent.name for agent in self.agents]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            msg = f"Duplicate agent names: {', '.join(duplicates)}"
            raise ValueError(msg)

        known = set(names)
        referenced = list(self.routing.tool_preference)
        if self.routing.default_agent is not None:
            referenced.append(self.routing.default_agent)
        unknown = [n for n in referenced if n not in known]
        if unknown:
            msg = f"Routing references unknown agents: {', '.join(unknown)}"
            raise ValueError(msg)
        return self


def get_default_config() -> SwitchboardConfig:
    """Return the default configuration: one Claude agent, one OpenAI agent."""
    return SwitchboardConfig(
        agents=[
            AgentConfig(
                name="claude",
                backend="anthropic",
                model="claude-sonnet-4-20250514",
                api_key_env="ANTHROPIC_API_KEY",
            ),
            AgentConfig(
                name="gpt",
                backend="litellm",
                model="openai/gpt-4o",
                api_key_env="OPENAI_API_KEY",
            ),
        ],
        routing=RoutingConfig(default_agent="claude", tool_preference=["claude", "gpt"]),
    )


def get_config_dir() -> Path:
    """Return the Switchboard configuration directory (``~/.switchboard``)."""
    return Path.home() / ".switchboard"
