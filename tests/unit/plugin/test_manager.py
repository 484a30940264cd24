"""Unit tests for switchboard.plugin.manager module."""

import asyncio
from pathlib import Path
from typing import Any

import pytest

from switchboard.config.models import PluginsConfig
from switchboard.core.errors import (
    ConfigMissing,
    ExternalServiceError,
    PluginLoadError,
    SchemaViolation,
    ToolExecutionError,
    ToolNameCollision,
    UnknownTool,
)
from switchboard.plugin.base import PluginContext, Tool, ToolDefinition, ToolResult
from switchboard.plugin.manager import PluginManager, bundled_plugin_root
from switchboard.plugin.manifest import ConfigKey
from switchboard.plugin.registry import PluginRegistry


def write_manifest(root: Path, name: str, tools: list[str], extra: str = "") -> Path:
    directory = root / name
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "plugin.yaml"
    path.write_text(f"name: {name}\nentry: {name}\ntools: {tools}\n{extra}", encoding="utf-8")
    return path


class FakeSubmitter:
    async def submit(self, prompt: str, *, system: str | None = None) -> str:
        return "reply"



class GatedPlugin:
    """Plugin whose one tool blocks until released."""

    def __init__(self, events: list[str]) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self._events = events

    @property
    def name(self) -> str:
        return "gated"

    async def initialize(self, context: PluginContext) -> None:
        pass

    def tools(self) -> list[Tool]:
        async def handler(args: dict[str, Any]) -> Any:
            self.started.set()
            await self.release.wait()
            self._events.append("handler.finished")
            return {"done": True}

        return [
            Tool(
                definition=ToolDefinition(name="slow", description="Blocks until released"),
                handler=handler,
                plugin=self.name,
            )
        ]

    async def shutdown(self) -> None:
        self._events.append("shutdown")


class TestDiscovery:
    """Test manifest discovery."""

    def test_discovers_sorted_valid_manifests(self, tmp_path: Path) -> None:
        """Valid manifests are returned sorted by name."""
        write_manifest(tmp_path, "beta", ["search"])
        write_manifest(tmp_path, "alpha", ["fetch"])
        manager = PluginManager(PluginsConfig(root=tmp_path), registry=PluginRegistry())

        manifests = manager.discover()

        assert [m.name for m in manifests] == ["alpha", "beta"]
        assert manager.discovery_problems == ()

    def test_invalid_manifest_is_skipped(self, tmp_path: Path) -> None:
        """A malformed manifest is recorded as a problem, not raised."""
        write_manifest(tmp_path, "alpha", ["fetch"])
        broken = tmp_path / "broken"
        broken.mkdir()
        (broken / "plugin.yaml").write_text("name: [oops\n", encoding="utf-8")
        manager = PluginManager(PluginsConfig(root=tmp_path), registry=PluginRegistry())

        manifests = manager.discover()

        assert [m.name for m in manifests] == ["alpha"]
        assert len(manager.discovery_problems) == 1
        assert manager.discovery_problems[0].path == broken / "plugin.yaml"

    def test_duplicate_plugin_name_is_skipped(self, tmp_path: Path) -> None:
        """A second manifest claiming a taken name is a problem."""
        write_manifest(tmp_path, "alpha", ["fetch"])
        other = tmp_path / "zz_copy"
        other.mkdir()
        (other / "plugin.yaml").write_text("name: alpha\nentry: alpha\n", encoding="utf-8")
        manager = PluginManager(PluginsConfig(root=tmp_path), registry=PluginRegistry())

        manifests = manager.discover()

        assert len(manifests) == 1
        assert "Duplicate plugin name" in manager.discovery_problems[0].error.message

    def test_enabled_filter(self, tmp_path: Path) -> None:
        """Only enabled plugins are returned when an allow list is set."""
        write_manifest(tmp_path, "alpha", ["fetch"])
        write_manifest(tmp_path, "beta", ["search"])
        manager = PluginManager(
            PluginsConfig(root=tmp_path, enabled=["beta"]), registry=PluginRegistry()
        )

        assert [m.name for m in manager.discover()] == ["beta"]

    def test_missing_root(self, tmp_path: Path) -> None:
        """A missing root discovers nothing."""
        manager = PluginManager(
            PluginsConfig(root=tmp_path / "absent"), registry=PluginRegistry()
        )

        assert manager.discover() == []

    def test_bundled_root_holds_table_store(self) -> None:
        """The default root is the bundled plugins directory."""
        manager = PluginManager(registry=PluginRegistry())

        assert manager.root == bundled_plugin_root()
        assert [m.name for m in manager.discover()] == ["table_store"]


class TestLoading:
    """Test loading plugins and aggregating their tools."""

    async def test_load_all_publishes_tools(
        self, make_plugin: Any, make_manifest: Any, registry_for: Any
    ) -> None:
        """Every plugin's tools appear in the published snapshot."""
        alpha = make_plugin("alpha", ["fetch"])
        beta = make_plugin("beta", ["search", "count"])
        manager = PluginManager(registry=registry_for(alpha, beta))

        report = await manager.load_all([make_manifest("alpha"), make_manifest("beta")])

        assert report.ok
        assert report.loaded == ("alpha", "beta")
        assert sorted(manager.tool_names()) == ["count", "fetch", "search"]
        assert manager.snapshot.tools["search"].plugin == "beta"
        assert alpha.context is not None

    async def test_submitter_and_settings_reach_plugin(
        self, make_plugin: Any, make_manifest: Any, registry_for: Any
    ) -> None:
        """Plugins receive resolved settings and the attached submitter."""
        alpha = make_plugin("alpha")
        manager = PluginManager(
            PluginsConfig(settings={"alpha": {"token": "explicit"}}),
            registry=registry_for(alpha),
            environ={},
        )
        submitter = FakeSubmitter()
        manager.attach_submitter(submitter)
        manifest = make_manifest("alpha", config=[ConfigKey(key="token", env="ALPHA_TOKEN")])

        await manager.load(manifest)

        assert alpha.context.settings == {"token": "explicit"}
        assert alpha.context.submitter is submitter

    async def test_collision_publishes_nothing(
        self, make_plugin: Any, make_manifest: Any, registry_for: Any
    ) -> None:
        """Two plugins exposing the same tool leave no tool map published."""
        alpha = make_plugin("alpha", ["fetch"])
        beta = make_plugin("beta", ["fetch"])
        manager = PluginManager(registry=registry_for(alpha, beta))

        report = await manager.load_all([make_manifest("alpha"), make_manifest("beta")])

        assert not report.ok
        assert report.collision is not None
        assert report.collision.tool == "fetch"
        assert report.collision.plugins == ("alpha", "beta")
        assert manager.tool_names() == []
        with pytest.raises(ToolNameCollision) as exc_info:
            manager.aggregate_tools()
        assert exc_info.value.to_dict()["plugins"] == ["alpha", "beta"]

    async def test_collision_shuts_down_new_plugins_and_recovers(
        self, make_plugin: Any, make_manifest: Any, registry_for: Any
    ) -> None:
        """Colliding plugins are released and a later disjoint load succeeds."""
        alpha = make_plugin("alpha", ["fetch"])
        beta = make_plugin("beta", ["fetch"])
        gamma = make_plugin("gamma", ["search"])
        manager = PluginManager(registry=registry_for(alpha, beta, gamma))

        report = await manager.load_all([make_manifest("alpha"), make_manifest("beta")])

        assert report.loaded == ()
        assert alpha.shutdown_calls == beta.shutdown_calls == 1
        assert manager.loaded_plugins == ()

        await manager.load(make_manifest("gamma"))

        assert manager.tool_names() == ["search"]
        assert gamma.shutdown_calls == 0
        assert list(manager.aggregate_tools()) == ["search"]

    async def test_load_collision_keeps_previous_tools(
        self, make_plugin: Any, make_manifest: Any, registry_for: Any
    ) -> None:
        """Loading a colliding plugin fails and shuts that plugin down."""
        alpha = make_plugin("alpha", ["fetch"])
        beta = make_plugin("beta", ["fetch"])
        manager = PluginManager(registry=registry_for(alpha, beta))
        await manager.load(make_manifest("alpha"))

        with pytest.raises(ToolNameCollision):
            await manager.load(make_manifest("beta"))

        assert manager.tool_names() == ["fetch"]
        assert manager.snapshot.tools["fetch"].plugin == "alpha"
        assert beta.shutdown_calls == 1
        assert manager.loaded_plugins == ("alpha",)

    async def test_missing_config_excludes_only_that_plugin(
        self, make_plugin: Any, make_manifest: Any, registry_for: Any
    ) -> None:
        """A plugin without its required key fails; the others load."""
        alpha = make_plugin("alpha", ["fetch"])
        beta = make_plugin("beta", ["search"])
        manager = PluginManager(registry=registry_for(alpha, beta), environ={})
        needs_token = make_manifest("alpha", config=[ConfigKey(key="token", env="ALPHA_TOKEN")])

        report = await manager.load_all([needs_token, make_manifest("beta")])

        assert report.loaded == ("beta",)
        assert len(report.failures) == 1
        failure = report.failures[0]
        assert isinstance(failure, ConfigMissing)
        assert failure.env_var == "ALPHA_TOKEN"
        assert manager.tool_names() == ["search"]
        assert alpha.context is None

    async def test_initialize_failure_shuts_plugin_down(
        self, make_plugin: Any, make_manifest: Any, registry_for: Any
    ) -> None:
        """A failing initialize becomes PluginLoadError and shutdown still runs."""
        alpha = make_plugin("alpha", init_error=RuntimeError("no network"))
        manager = PluginManager(registry=registry_for(alpha))

        with pytest.raises(PluginLoadError) as exc_info:
            await manager.load(make_manifest("alpha"))

        assert exc_info.value.plugin == "alpha"
        assert "no network" in exc_info.value.message
        assert alpha.shutdown_calls == 1

    async def test_unknown_entry(self, make_manifest: Any) -> None:
        """A manifest naming an unregistered entry fails to load."""
        manager = PluginManager(registry=PluginRegistry())

        with pytest.raises(PluginLoadError, match="unknown entry"):
            await manager.load(make_manifest("ghost"))

    async def test_tools_must_match_manifest(
        self, make_plugin: Any, make_manifest: Any, registry_for: Any
    ) -> None:
        """Tools that differ from the manifest's declaration are rejected."""
        alpha = make_plugin("alpha", ["fetch"])
        manager = PluginManager(registry=registry_for(alpha))

        with pytest.raises(PluginLoadError, match="do not match"):
            await manager.load(make_manifest("alpha", tools=["other"]))

        assert alpha.shutdown_calls == 1

    async def test_duplicate_tool_within_plugin(
        self, make_plugin: Any, make_manifest: Any, registry_for: Any
    ) -> None:
        """A plugin contributing one name twice is rejected."""
        alpha = make_plugin("alpha", ["fetch", "fetch"])
        manager = PluginManager(registry=registry_for(alpha))

        with pytest.raises(PluginLoadError, match="same tool name twice"):
            await manager.load(make_manifest("alpha"))

    async def test_loading_twice_is_rejected(
        self, make_plugin: Any, make_manifest: Any, registry_for: Any
    ) -> None:
        """A plugin cannot be loaded while already loaded."""
        manager = PluginManager(registry=registry_for(make_plugin("alpha")))
        await manager.load(make_manifest("alpha"))

        with pytest.raises(PluginLoadError, match="already loaded"):
            await manager.load(make_manifest("alpha"))


class TestToolSpecs:
    """Test tool spec selection."""

    async def test_selection(
        self, make_plugin: Any, make_manifest: Any, registry_for: Any
    ) -> None:
        """Specs are returned for all, none, or named tools."""
        manager = PluginManager(registry=registry_for(make_plugin("alpha", ["fetch", "count"])))
        await manager.load(make_manifest("alpha"))

        assert {s.name for s in manager.tool_specs("all")} == {"fetch", "count"}
        assert manager.tool_specs(None) == []
        assert [s.name for s in manager.tool_specs(["count", "count"])] == ["count"]
        with pytest.raises(UnknownTool):
            manager.tool_specs(["missing"])


class TestDispatch:
    """Test tool dispatch."""

    async def _manager(
        self, plugin: Any, make_manifest: Any, registry_for: Any
    ) -> PluginManager:
        manager = PluginManager(registry=registry_for(plugin))
        await manager.load(make_manifest(plugin.name))
        return manager

    async def test_dispatch_routes_to_owner(
        self, make_plugin: Any, make_manifest: Any, registry_for: Any
    ) -> None:
        """The owning plugin's handler receives the arguments."""
        alpha = make_plugin("alpha", ["fetch"])
        manager = await self._manager(alpha, make_manifest, registry_for)

        result = await manager.dispatch("fetch", {"query": "q"})

        assert result.is_ok
        expected = {"plugin": "alpha", "tool": "fetch", "query": "q"}
        assert result.value == ToolResult(content=expected)
        assert alpha.calls == [("fetch", {"query": "q"})]

    async def test_unknown_tool_calls_nothing(
        self, make_plugin: Any, make_manifest: Any, registry_for: Any
    ) -> None:
        """Unknown tools fail without invoking any handler."""
        alpha = make_plugin("alpha", ["fetch"])
        manager = await self._manager(alpha, make_manifest, registry_for)

        result = await manager.dispatch("missing", {"query": "q"})

        assert isinstance(result.error, UnknownTool)
        assert alpha.calls == []

    async def test_schema_violation_calls_nothing(
        self, make_plugin: Any, make_manifest: Any, registry_for: Any
    ) -> None:
        """Arguments failing the input schema never reach the handler."""
        alpha = make_plugin("alpha", ["fetch"])
        manager = await self._manager(alpha, make_manifest, registry_for)

        result = await manager.dispatch("fetch", {"query": 42})

        assert isinstance(result.error, SchemaViolation)
        assert result.error.plugin == "alpha"
        assert result.error.violations == ("$.query: expected string, got integer",)
        assert alpha.calls == []

    async def test_external_service_error_is_tagged(
        self, make_plugin: Any, make_manifest: Any, registry_for: Any
    ) -> None:
        """Downstream failures keep their status and gain plugin and tool."""
        error = ExternalServiceError("down", service="svc", status_code=503)
        alpha = make_plugin("alpha", ["fetch"], tool_error=error)
        manager = await self._manager(alpha, make_manifest, registry_for)

        result = await manager.dispatch("fetch", {"query": "q"})

        assert result.error is error
        assert result.error.to_dict()["plugin"] == "alpha"
        assert result.error.to_dict()["tool"] == "fetch"
        assert result.error.status_code == 503

    async def test_unexpected_exception_becomes_tool_execution_error(
        self, make_plugin: Any, make_manifest: Any, registry_for: Any
    ) -> None:
        """Any other exception is wrapped in ToolExecutionError."""
        alpha = make_plugin("alpha", ["fetch"], tool_error=KeyError("field"))
        manager = await self._manager(alpha, make_manifest, registry_for)

        result = await manager.dispatch("fetch", {"query": "q"})

        assert isinstance(result.error, ToolExecutionError)
        assert result.error.plugin == "alpha"
        assert result.error.details["original_exception"] == "KeyError"


class TestReloadAndShutdown:
    """Test reload and shutdown."""

    def _fresh_registry(self, make_plugin: Any, created: list[Any], **tools: list[str]) -> Any:
        def factory_for(name: str, tool_names: list[str]) -> Any:
            def factory() -> Any:
                plugin = make_plugin(name, tool_names)
                created.append(plugin)
                return plugin

            return factory

        return PluginRegistry({n: factory_for(n, t) for n, t in tools.items()})

    async def test_reload_swaps_snapshot(self, tmp_path: Path, make_plugin: Any) -> None:
        """Reload publishes the new set and shuts down the old plugins."""
        created: list[Any] = []
        registry = self._fresh_registry(
            make_plugin, created, alpha=["fetch"], beta=["search"]
        )
        write_manifest(tmp_path, "alpha", ["fetch"])
        manager = PluginManager(PluginsConfig(root=tmp_path), registry=registry)
        await manager.load_all()
        before = manager.snapshot

        write_manifest(tmp_path, "beta", ["search"])
        report = await manager.reload()

        assert report.ok
        assert sorted(manager.tool_names()) == ["fetch", "search"]
        assert list(before.tools) == ["fetch"]
        assert created[0].shutdown_calls == 1
        assert all(p.shutdown_calls == 0 for p in created[1:])

    async def test_reload_collision_keeps_old_snapshot(
        self, tmp_path: Path, make_plugin: Any
    ) -> None:
        """A colliding reload keeps the old tools and shuts the new plugins down."""
        created: list[Any] = []
        registry = self._fresh_registry(make_plugin, created, alpha=["fetch"], beta=["fetch"])
        write_manifest(tmp_path, "alpha", ["fetch"])
        manager = PluginManager(PluginsConfig(root=tmp_path), registry=registry)
        await manager.load_all()
        before = manager.snapshot

        write_manifest(tmp_path, "beta", ["fetch"])
        report = await manager.reload()

        assert report.collision is not None
        assert manager.snapshot is before
        assert created[0].shutdown_calls == 0
        assert all(p.shutdown_calls == 1 for p in created[1:])

    async def test_reload_waits_for_running_calls(self, tmp_path: Path) -> None:
        """Old plugins are shut down only after their running calls finish."""
        events: list[str] = []
        created: list[GatedPlugin] = []

        def factory() -> GatedPlugin:
            plugin = GatedPlugin(events)
            created.append(plugin)
            return plugin

        write_manifest(tmp_path, "gated", ["slow"])
        manager = PluginManager(
            PluginsConfig(root=tmp_path), registry=PluginRegistry({"gated": factory})
        )
        await manager.load_all()
        old = created[0]

        call = asyncio.create_task(manager.dispatch("slow", {}))
        await old.started.wait()
        reload = asyncio.create_task(manager.reload())
        async with asyncio.timeout(1):
            while manager.snapshot.plugins["gated"].plugin is old:
                await asyncio.sleep(0)

        assert events == []
        assert not reload.done()

        old.release.set()
        result = await call
        report = await reload

        assert result.is_ok
        assert report.ok
        assert events == ["handler.finished", "shutdown"]

    async def test_shutdown_clears_everything(
        self, make_plugin: Any, make_manifest: Any, registry_for: Any
    ) -> None:
        """Shutdown closes every plugin and publishes an empty snapshot."""
        alpha = make_plugin("alpha", ["fetch"])
        beta = make_plugin("beta", ["search"])
        manager = PluginManager(registry=registry_for(alpha, beta))
        await manager.load_all([make_manifest("alpha"), make_manifest("beta")])

        await manager.shutdown()

        assert alpha.shutdown_calls == 1
        assert beta.shutdown_calls == 1
        assert manager.tool_names() == []
        assert not manager.snapshot.plugins
        assert manager.loaded_plugins == ()
