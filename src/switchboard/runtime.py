"""Runtime wiring for Switchboard.

Builds every component from configuration and passes dependencies
explicitly; there is no process-wide instance.

Startup:
    1. Build agents from ``config.agents``
    2. Build the plugin manager and the orchestrator
    3. Hand the orchestrator's PromptGateway to the plugin manager
    4. Discover and load plugins

Shutdown closes plugins first, then agents.
"""

from collections.abc import Mapping, Sequence
from pathlib import Path
from types import TracebackType

import structlog

from switchboard.config.loader import load_config
from switchboard.config.models import SwitchboardConfig
from switchboard.core.errors import PluginLoadError
from switchboard.observability.logging import configure_logging
from switchboard.orchestrator.orchestrator import Orchestrator
from switchboard.plugin.manager import LoadReport, PluginManager
from switchboard.plugin.registry import PluginRegistry
from switchboard.providers.base import Agent
from switchboard.providers.factory import create_agents

log = structlog.get_logger(__name__)


class Runtime:
    """Owns the agents, the plugin manager and the orchestrator.

    Example:
        async with Runtime(load_config()) as rt:
            result = await rt.orchestrator.route("What is on my task list?", tools="all")
    """

    def __init__(
        self,
        config: SwitchboardConfig | None = None,
        *,
        agents: Sequence[Agent] | None = None,
        registry: PluginRegistry | None = None,
        environ: Mapping[str, str] | None = None,
        setup_logging: bool = False,
    ) -> None:
        """Initialize the runtime.

        Args:
            config: Configuration. Defaults to ``load_config()``.
            agents: Pre-built agents, replacing those built from config.
            registry: Plugin registry. Defaults to the bundled plugins.
            environ: Environment used for plugin settings. Defaults to os.environ.
            setup_logging: Configure structlog from ``config.logging`` on start.
        """
        self._config = config if config is not None else load_config()
        self._agents = agents
        self._registry = registry
        self._environ = environ
        self._setup_logging = setup_logging
        self._orchestrator: Orchestrator | None = None
        self._plugins: PluginManager | None = None
        self._report: LoadReport | None = None

    @classmethod
    def from_file(cls, path: Path | str) -> "Runtime":
        """Create a runtime from a YAML configuration file."""
        return cls(load_config(Path(path)))

    @property
    def config(self) -> SwitchboardConfig:
        return self._config

    @property
    def started(self) -> bool:
        return self._orchestrator is not None

    @property
    def orchestrator(self) -> Orchestrator:
        if self._orchestrator is None:
            msg = "Runtime is not started"
            raise RuntimeError(msg)
        return self._orchestrator

    @property
    def plugins(self) -> PluginManager:
        if self._plugins is None:
            msg = "Runtime is not started"
            raise RuntimeError(msg)
        return self._plugins

    @property
    def load_report(self) -> LoadReport | None:
        """Report of the startup plugin load."""
        return self._report

    async def start(self) -> "Runtime":
        """Build components and load plugins.

        Raises:
            ToolNameCollision: If two plugins claim the same tool name.
            PluginLoadError: In strict mode, if any plugin failed to load.
        """
        if self.started:
            return self
        if self._setup_logging:
            configure_logging(self._config.logging)

        agents = list(self._agents) if self._agents is not None else create_agents(
            self._config.agents
        )
        plugins = PluginManager(
            self._config.plugins,
            registry=self._registry,
            environ=self._environ,
        )
        orchestrator = Orchestrator(agents, plugins, config=self._config)
        plugins.attach_submitter(orchestrator.submitter())

        log.info("runtime.start.started", agents=[a.name for a in agents])
        report = await plugins.load_all()

        if report.collision is not None:
            log.error("runtime.start.failed.collision", tool=report.collision.tool)
            await plugins.shutdown()
            await orchestrator.aclose()
            raise report.collision

        if report.failures:
            if self._config.plugins.strict:
                log.error("runtime.start.failed.plugins", failures=len(report.failures))
                await plugins.shutdown()
                await orchestrator.aclose()
                raise PluginLoadError(
                    f"{len(report.failures)} plugin(s) failed to load",
                    failures=report.failures,
                )
            for failure in report.failures:
                log.warning("runtime.plugin.excluded", **failure.to_dict())

        self._plugins = plugins
        self._orchestrator = orchestrator
        self._report = report
        log.info(
            "runtime.start.completed",
            plugins=list(report.loaded),
            tools=len(plugins.snapshot.tools),
        )
        return self

    async def shutdown(self) -> None:
        """Shut plugins down, then close agents."""
        if self._plugins is not None:
            await self._plugins.shutdown()
        if self._orchestrator is not None:
            await self._orchestrator.aclose()
        self._plugins = None
        self._orchestrator = None
        log.info("runtime.shutdown.completed")

    async def __aenter__(self) -> "Runtime":
        return await self.start()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.shutdown()
