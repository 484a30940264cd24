"""Static plugin registry.

Manifests name an ``entry``; the registry maps entries to constructors that
were imported ahead of time. Nothing is imported by name at runtime.
"""

from collections.abc import Callable, Iterator

import structlog

from switchboard.plugin.base import Plugin

log = structlog.get_logger(__name__)

PluginFactory = Callable[[], Plugin]


class PluginRegistry:
    """Table of plugin constructors keyed by entry identifier.

    Example:
        registry = PluginRegistry()
        registry.register("table_store", TableStorePlugin)
        plugin = registry.get("table_store")()
    """

    def __init__(self, entries: dict[str, PluginFactory] | None = None) -> None:
        self._entries: dict[str, PluginFactory] = {}
        for entry, factory in (entries or {}).items():
            self.register(entry, factory)

    def register(self, entry: str, factory: PluginFactory) -> None:
        """Register a plugin constructor.

        Raises:
            ValueError: If the entry is already registered.
        """
        if entry in self._entries:
            msg = f"Plugin entry already registered: {entry}"
            raise ValueError(msg)
        self._entries[entry] = factory
        log.debug("plugin.registry.entry_registered", entry=entry)

    def get(self, entry: str) -> PluginFactory | None:
        return self._entries.get(entry)

    def __contains__(self, entry: object) -> bool:
        return entry in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


def default_registry() -> PluginRegistry:
    """Return a registry holding the plugins bundled with Switchboard."""
    from switchboard.plugins.table_store import TableStorePlugin

    return PluginRegistry({"table_store": TableStorePlugin})
