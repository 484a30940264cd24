"""Plugin manager: discovery, loading, tool aggregation and dispatch.

The manager owns every loaded plugin and publishes an immutable
ToolSnapshot. Loading, reloading and shutdown replace the snapshot wholesale
under an asyncio.Lock; dispatch takes one reference to the current snapshot
and never sees a half-built tool map.

Load pipeline for one manifest:
    1. Resolve configuration      -> ConfigMissing
    2. Look up the registry entry -> PluginLoadError
    3. initialize(context)        -> PluginLoadError (plugin shut down)
    4. Check the declared tools   -> PluginLoadError (plugin shut down)
    5. Check for name collisions  -> ToolNameCollision (plugin shut down)
    6. Publish a new snapshot
"""

import asyncio
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
import importlib.resources
from pathlib import Path
from types import MappingProxyType
from typing import Any, Literal

import structlog

from switchboard.config.models import PluginsConfig
from switchboard.core.errors import (
    ExternalServiceError,
    ManifestError,
    PluginLoadError,
    SchemaViolation,
    SwitchboardError,
    ToolExecutionError,
    ToolNameCollision,
    UnknownTool,
)
from switchboard.core.security import sanitize_for_logging
from switchboard.core.types import JSONObject, Result
from switchboard.plugin.base import Plugin, PluginContext, PromptSubmitter, Tool, ToolResult
from switchboard.plugin.manifest import (
    MANIFEST_FILENAME,
    PluginManifest,
    load_manifest,
    resolve_settings,
)
from switchboard.plugin.ratelimit import RateLimiterRegistry
from switchboard.plugin.registry import PluginRegistry, default_registry
from switchboard.plugin.schema import validate
from switchboard.providers.base import ToolSpec

log = structlog.get_logger(__name__)


def bundled_plugin_root() -> Path:
    """Return the directory of plugins shipped inside the package."""
    return Path(str(importlib.resources.files("switchboard.plugins")))


class CallTracker:
    """Counts tool calls currently running on one plugin."""

    def __init__(self) -> None:
        self._active = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def active(self) -> int:
        return self._active

    def enter(self) -> None:
        self._active += 1
        self._idle.clear()

    def leave(self) -> None:
        self._active -= 1
        if self._active == 0:
            self._idle.set()

    async def drained(self) -> None:
        """Wait until no call is running."""
        await self._idle.wait()


@dataclass(frozen=True, slots=True)
class LoadedPlugin:
    """An initialized plugin and the tools it contributes."""

    manifest: PluginManifest
    plugin: Plugin
    tools: tuple[Tool, ...]
    calls: CallTracker = field(default_factory=CallTracker, compare=False, repr=False)

    @property
    def name(self) -> str:
        return self.manifest.name


@dataclass(frozen=True, slots=True)
class ToolSnapshot:
    """Immutable view of the loaded plugins and the aggregated tool map."""

    plugins: Mapping[str, LoadedPlugin] = field(
        default_factory=lambda: MappingProxyType({})
    )
    tools: Mapping[str, Tool] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def build(cls, plugins: Iterable[LoadedPlugin]) -> "ToolSnapshot":
        """Build a snapshot, raising ToolNameCollision on duplicate tools."""
        plugin_map = {p.name: p for p in plugins}
        tools = merge_tools(plugin_map.values())
        return cls(plugins=MappingProxyType(plugin_map), tools=MappingProxyType(tools))


@dataclass(frozen=True, slots=True)
class ManifestProblem:
    """A manifest that discovery skipped."""

    path: Path
    error: ManifestError


@dataclass(frozen=True, slots=True)
class LoadReport:
    """Outcome of loading a set of manifests.

    Attributes:
        loaded: Names of plugins that initialized.
        failures: One error per plugin that did not.
        collision: Tool-name collision found at aggregation; when set, no
            tool map was published.
    """

    loaded: tuple[str, ...] = ()
    failures: tuple[SwitchboardError, ...] = ()
    collision: ToolNameCollision | None = None

    @property
    def ok(self) -> bool:
        return not self.failures and self.collision is None


def merge_tools(plugins: Iterable[LoadedPlugin]) -> dict[str, Tool]:
    """Merge tool sets of several plugins into one map.

    Raises:
        ToolNameCollision: If two plugins contribute the same tool name.
    """
    merged: dict[str, Tool] = {}
    for loaded in plugins:
        for tool in loaded.tools:
            existing = merged.get(tool.name)
            if existing is not None:
                raise ToolNameCollision(tool=tool.name, plugins=(existing.plugin, loaded.name))
            merged[tool.name] = tool
    return merged


class PluginManager:
    """Discovers, loads and dispatches to plugins.

    Example:
        manager = PluginManager(config.plugins)
        manager.attach_submitter(orchestrator.submitter())
        report = await manager.load_all()
        result = await manager.dispatch("list_records", {"table": "Tasks"})
    """

    def __init__(
        self,
        config: PluginsConfig | None = None,
        *,
        registry: PluginRegistry | None = None,
        rate_limiters: RateLimiterRegistry | None = None,
        submitter: PromptSubmitter | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._config = config or PluginsConfig()
        self._registry = registry if registry is not None else default_registry()
        self._rate_limiters = rate_limiters or RateLimiterRegistry()
        self._submitter = submitter
        self._environ = environ
        self._loaded: dict[str, LoadedPlugin] = {}
        self._snapshot = ToolSnapshot()
        self._problems: list[ManifestProblem] = []
        self._collision: ToolNameCollision | None = None
        self._lock = asyncio.Lock()

    @property
    def root(self) -> Path:
        return self._config.root or bundled_plugin_root()

    @property
    def snapshot(self) -> ToolSnapshot:
        """The currently published snapshot."""
        return self._snapshot

    @property
    def discovery_problems(self) -> Sequence[ManifestProblem]:
        """Manifests skipped by the last discovery."""
        return tuple(self._problems)

    @property
    def loaded_plugins(self) -> Sequence[str]:
        return tuple(self._loaded)

    @property
    def rate_limiters(self) -> RateLimiterRegistry:
        return self._rate_limiters

    def attach_submitter(self, submitter: PromptSubmitter | None) -> None:
        """Set the prompt capability handed to plugins loaded from now on."""
        self._submitter = submitter

    # -- discovery ---------------------------------------------------------

    def discover(self) -> list[PluginManifest]:
        """Scan the plugin root for ``*/plugin.yaml`` manifests.

        Malformed manifests are skipped and recorded in
        ``discovery_problems``. When ``enabled`` is configured, only the
        listed plugins are returned.

        Returns:
            Valid manifests sorted by name.
        """
        root = self.root
        self._problems = []

        if not root.is_dir():
            log.warning("plugin.discovery.root_not_found", path=str(root))
            return []

        log.info("plugin.discovery.started", path=str(root))

        manifests: dict[str, PluginManifest] = {}
        for path in sorted(root.glob(f"*/{MANIFEST_FILENAME}")):
            try:
                manifest = load_manifest(path)
            except ManifestError as e:
                log.warning("plugin.discovery.manifest_invalid", path=str(path), error=e.message)
                self._problems.append(ManifestProblem(path=path, error=e))
                continue
            if manifest.name in manifests:
                error = ManifestError(
                    f"Duplicate plugin name '{manifest.name}'", path=str(path)
                )
                log.warning("plugin.discovery.manifest_duplicate", path=str(path))
                self._problems.append(ManifestProblem(path=path, error=error))
                continue
            manifests[manifest.name] = manifest

        enabled = self._config.enabled
        if enabled is not None:
            manifests = {n: m for n, m in manifests.items() if n in enabled}

        log.info(
            "plugin.discovery.completed",
            count=len(manifests),
            problems=len(self._problems),
        )
        return [manifests[name] for name in sorted(manifests)]

    # -- loading -----------------------------------------------------------

    async def _instantiate(self, manifest: PluginManifest) -> LoadedPlugin:
        """Resolve config, construct, initialize and check one plugin."""
        settings = resolve_settings(
            manifest,
            self._config.settings.get(manifest.name),
            self._environ,
        )
        log.debug(
            "plugin.settings.resolved",
            plugin=manifest.name,
            settings=sanitize_for_logging(settings),
        )

        factory = self._registry.get(manifest.entry)
        if factory is None:
            raise PluginLoadError(
                f"Plugin '{manifest.name}' names unknown entry '{manifest.entry}'",
                plugin=manifest.name,
            )

        plugin = factory()
        context = PluginContext(
            manifest=manifest,
            settings=MappingProxyType(settings),
            rate_limiters=self._rate_limiters,
            submitter=self._submitter,
        )

        try:
            await plugin.initialize(context)
        except Exception as e:
            await self._safe_shutdown(manifest.name, plugin)
            raise PluginLoadError(
                f"Plugin '{manifest.name}' failed to initialize: {e}",
                plugin=manifest.name,
                details={"original_exception": type(e).__name__},
            ) from e

        tools = tuple(replace(t, plugin=manifest.name) for t in plugin.tools())
        names = [t.name for t in tools]
        problem: str | None = None
        if len(names) != len(set(names)):
            problem = "contributes the same tool name twice"
        elif manifest.tools and set(names) != set(manifest.tools):
            problem = (
                f"tools {sorted(names)} do not match the manifest's {sorted(manifest.tools)}"
            )
        if problem is not None:
            await self._safe_shutdown(manifest.name, plugin)
            raise PluginLoadError(f"Plugin '{manifest.name}' {problem}", plugin=manifest.name)

        return LoadedPlugin(manifest=manifest, plugin=plugin, tools=tools)

    async def load(self, manifest: PluginManifest) -> LoadedPlugin:
        """Load one plugin and publish its tools.

        Raises:
            ConfigMissing: If a required configuration key is absent.
            PluginLoadError: If the plugin cannot be constructed or initialized.
            ToolNameCollision: If a tool name is already taken.
        """
        async with self._lock:
            if manifest.name in self._loaded:
                raise PluginLoadError(
                    f"Plugin '{manifest.name}' is already loaded", plugin=manifest.name
                )

            loaded = await self._instantiate(manifest)
            try:
                snapshot = ToolSnapshot.build([*self._loaded.values(), loaded])
            except ToolNameCollision as e:
                log.error("plugin.load.collision", plugin=manifest.name, tool=e.tool)
                await self._safe_shutdown(manifest.name, loaded.plugin)
                raise

            self._loaded[manifest.name] = loaded
            self._snapshot = snapshot
            self._collision = None

        log.info("plugin.load.completed", plugin=manifest.name, tools=len(loaded.tools))
        return loaded

    async def _load_set(
        self, manifests: Sequence[PluginManifest]
    ) -> tuple[dict[str, LoadedPlugin], list[SwitchboardError]]:
        loaded: dict[str, LoadedPlugin] = {}
        failures: list[SwitchboardError] = []
        for manifest in manifests:
            try:
                loaded[manifest.name] = await self._instantiate(manifest)
            except SwitchboardError as e:
                log.warning("plugin.load.failed", plugin=manifest.name, error=e.message)
                failures.append(e)
            else:
                log.info(
                    "plugin.load.completed",
                    plugin=manifest.name,
                    tools=len(loaded[manifest.name].tools),
                )
        return loaded, failures

    async def load_all(self, manifests: Sequence[PluginManifest] | None = None) -> LoadReport:
        """Load every discovered manifest and aggregate once.

        A failing plugin never stops the others. If the aggregated set has a
        tool-name collision, the report records it, the newly loaded plugins
        are shut down and no tool map is published; ``aggregate_tools()``
        raises the same collision until a later load succeeds.

        Args:
            manifests: Manifests to load. Defaults to ``discover()``.
        """
        if manifests is None:
            manifests = self.discover()

        async with self._lock:
            pending = [m for m in manifests if m.name not in self._loaded]
            skipped: list[SwitchboardError] = [
                PluginLoadError(f"Plugin '{m.name}' is already loaded", plugin=m.name)
                for m in manifests
                if m.name in self._loaded
            ]
            fresh, failures = await self._load_set(pending)
            try:
                snapshot = ToolSnapshot.build([*self._loaded.values(), *fresh.values()])
            except ToolNameCollision as e:
                log.error("plugin.aggregate.collision", tool=e.tool, plugins=list(e.plugins))
                for name, loaded in fresh.items():
                    await self._safe_shutdown(name, loaded.plugin)
                self._collision = e
                return LoadReport(failures=tuple(skipped + failures), collision=e)

            self._loaded.update(fresh)
            self._snapshot = snapshot
            self._collision = None

        return LoadReport(loaded=tuple(fresh), failures=tuple(skipped + failures))

    async def reload(self) -> LoadReport:
        """Rediscover and load a fresh plugin set, then swap atomically.

        On success the old plugins are shut down after the swap, once the
        calls already running on them have finished. On a collision the old
        snapshot stays published and the new plugins are shut down.
        """
        manifests = self.discover()
        async with self._lock:
            fresh, failures = await self._load_set(manifests)
            try:
                snapshot = ToolSnapshot.build(fresh.values())
            except ToolNameCollision as e:
                log.error("plugin.reload.collision", tool=e.tool, plugins=list(e.plugins))
                for name, loaded in fresh.items():
                    await self._safe_shutdown(name, loaded.plugin)
                return LoadReport(failures=tuple(failures), collision=e)

            previous = self._loaded
            self._loaded = fresh
            self._snapshot = snapshot
            self._collision = None

        await self._retire(previous)

        log.info("plugin.reload.completed", plugins=len(fresh), failures=len(failures))
        return LoadReport(loaded=tuple(fresh), failures=tuple(failures))

    def aggregate_tools(self) -> Mapping[str, Tool]:
        """Merge the tools of every loaded plugin.

        Returns:
            Read-only mapping of tool name to tool.

        Raises:
            ToolNameCollision: Naming the tool and both plugins.
        """
        if self._collision is not None:
            raise self._collision
        return MappingProxyType(merge_tools(self._loaded.values()))

    # -- dispatch ----------------------------------------------------------

    def tool_names(self) -> list[str]:
        return list(self._snapshot.tools)

    def tool_specs(self, names: Sequence[str] | Literal["all"] | None) -> list[ToolSpec]:
        """Return provider-facing specs for tools in the current snapshot.

        Args:
            names: Tool names, ``"all"`` for every tool, or None for none.

        Raises:
            UnknownTool: For the first name not in the snapshot.
        """
        tools = self._snapshot.tools
        if names is None:
            return []
        if names == "all":
            return [t.to_spec() for t in tools.values()]

        specs: list[ToolSpec] = []
        seen: set[str] = set()
        for name in names:
            if name in seen:
                continue
            tool = tools.get(name)
            if tool is None:
                raise UnknownTool(name)
            seen.add(name)
            specs.append(tool.to_spec())
        return specs

    async def dispatch(
        self,
        tool_name: str,
        arguments: JSONObject,
    ) -> Result[ToolResult, SwitchboardError]:
        """Invoke a tool on its owning plugin.

        Args:
            tool_name: Name of the tool.
            arguments: JSON arguments, validated against the tool's schema.

        Returns:
            Result containing the tool result or the error that prevented it.
        """
        snapshot = self._snapshot
        tool = snapshot.tools.get(tool_name)
        if tool is None:
            log.warning("plugin.dispatch.unknown_tool", tool=tool_name)
            return Result.err(UnknownTool(tool_name))

        violations = validate(arguments, tool.input_schema)
        if violations:
            log.warning(
                "plugin.dispatch.schema_violation",
                plugin=tool.plugin,
                tool=tool_name,
                violations=violations,
            )
            return Result.err(
                SchemaViolation(tool=tool_name, violations=violations, plugin=tool.plugin)
            )

        calls = snapshot.plugins[tool.plugin].calls
        calls.enter()
        log.debug("plugin.dispatch.started", plugin=tool.plugin, tool=tool_name)
        try:
            output: Any = await tool.handler(dict(arguments))
        except (ExternalServiceError, ToolExecutionError) as e:
            e.plugin = e.plugin or tool.plugin
            e.tool = e.tool or tool_name
            log.warning(
                "plugin.dispatch.failed",
                plugin=tool.plugin,
                tool=tool_name,
                kind=e.kind,
                error=e.message,
            )
            return Result.err(e)
        except Exception as e:
            log.exception("plugin.dispatch.failed", plugin=tool.plugin, tool=tool_name)
            details: dict[str, Any] = {"original_exception": type(e).__name__}
            if isinstance(e, SwitchboardError):
                details["cause"] = e.to_dict()
            error = ToolExecutionError(
                f"Tool '{tool_name}' failed: {e}",
                plugin=tool.plugin,
                tool=tool_name,
                details=details,
            )
            error.__cause__ = e
            return Result.err(error)
        finally:
            calls.leave()

        log.debug("plugin.dispatch.completed", plugin=tool.plugin, tool=tool_name)
        if isinstance(output, ToolResult):
            return Result.ok(output)
        return Result.ok(ToolResult(content=output))

    # -- shutdown ----------------------------------------------------------

    async def _safe_shutdown(self, name: str, plugin: Plugin) -> None:
        try:
            await plugin.shutdown()
        except Exception as e:
            log.warning("plugin.shutdown.failed", plugin=name, error=str(e))

    async def _retire(self, plugins: Mapping[str, LoadedPlugin]) -> None:
        """Shut down unpublished plugins after their running calls finish."""
        for name, loaded in plugins.items():
            if loaded.calls.active:
                log.info("plugin.retire.waiting", plugin=name, calls=loaded.calls.active)
            await loaded.calls.drained()
            await self._safe_shutdown(name, loaded.plugin)

    async def shutdown(self) -> None:
        """Shut every loaded plugin down and publish an empty snapshot."""
        async with self._lock:
            loaded = self._loaded
            self._loaded = {}
            self._snapshot = ToolSnapshot()
            self._collision = None
            for name, item in loaded.items():
                await self._safe_shutdown(name, item.plugin)
        log.info("plugin.shutdown.completed", plugins=len(loaded))
