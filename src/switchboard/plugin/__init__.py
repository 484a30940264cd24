"""Plugin system for Switchboard.

Plugins are described by ``plugin.yaml`` manifests, constructed from a static
registry, and contribute tools that the PluginManager aggregates into one
collision-free tool map and dispatches.
"""

from switchboard.plugin.base import (
    Plugin,
    PluginContext,
    PromptSubmitter,
    Tool,
    ToolDefinition,
    ToolHandler,
    ToolInputType,
    ToolParameter,
    ToolResult,
)
from switchboard.plugin.manager import (
    LoadedPlugin,
    LoadReport,
    ManifestProblem,
    PluginManager,
    ToolSnapshot,
    bundled_plugin_root,
    merge_tools,
)
from switchboard.plugin.manifest import (
    ConfigKey,
    PluginManifest,
    load_manifest,
    resolve_settings,
)
from switchboard.plugin.ratelimit import RateLimiter, RateLimiterRegistry
from switchboard.plugin.registry import PluginFactory, PluginRegistry, default_registry

__all__ = [
    # Protocols
    "Plugin",
    "PromptSubmitter",
    # Tools
    "Tool",
    "ToolDefinition",
    "ToolHandler",
    "ToolInputType",
    "ToolParameter",
    "ToolResult",
    # Manifests
    "ConfigKey",
    "PluginManifest",
    "load_manifest",
    "resolve_settings",
    # Manager
    "LoadedPlugin",
    "LoadReport",
    "ManifestProblem",
    "PluginContext",
    "PluginManager",
    "ToolSnapshot",
    "bundled_plugin_root",
    "merge_tools",
    # Registry
    "PluginFactory",
    "PluginRegistry",
    "default_registry",
    # Rate limiting
    "RateLimiter",
    "RateLimiterRegistry",
]
