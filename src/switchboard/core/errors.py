"""Error hierarchy for Switchboard.

Every error carries a stable ``kind`` tag plus the identity fields needed to
diagnose it (provider, plugin, tool, configuration key), so callers branch on
``error.kind`` or ``error.to_dict()`` rather than on message text.

Exception Hierarchy:
    SwitchboardError (base)
    ├── ProviderError          - Upstream AI provider failure (auth, quota, malformed reply)
    ├── UnsupportedCapability  - Agent lacks tool calling / streaming
    ├── UnknownAgent           - Route or consensus names an unconfigured agent
    ├── QuorumNotMet           - Too few consensus participants succeeded
    ├── DeadlineExceeded       - Caller deadline expired mid-request
    ├── ConfigError            - Configuration file unreadable or invalid
    │   └── ConfigMissing      - Plugin configuration key absent
    ├── ManifestError          - Malformed plugin manifest
    ├── PluginLoadError        - Plugin could not be loaded or initialized
    ├── ToolNameCollision      - Two plugins claim the same tool name
    ├── UnknownTool            - Tool name not in the aggregated tool map
    ├── SchemaViolation        - Tool arguments do not match the input schema
    ├── ExternalServiceError   - Plugin downstream API failure
    └── ToolExecutionError     - Any other failure escaping a tool handler
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, ClassVar

RETRIABLE_STATUS_CODES = frozenset({408, 409, 425, 429, 500, 502, 503, 504, 529})


class SwitchboardError(Exception):
    """Base exception for all Switchboard errors.

    Attributes:
        kind: Stable machine-readable tag for the error class.
        message: Human-readable error description.
        details: Additional context for diagnosis.
    """

    kind: ClassVar[str] = "switchboard_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def identity(self) -> dict[str, Any]:
        """Return the identity fields of this error (provider, plugin, tool...)."""
        return {}

    def to_dict(self) -> dict[str, Any]:
        """Render the error as a JSON-compatible dict.

        Returns:
            Dict with ``kind``, ``message``, the identity fields that are set,
            and ``details`` when present.
        """
        data: dict[str, Any] = {"kind": self.kind, "message": self.message}
        data.update({k: v for k, v in self.identity().items() if v is not None})
        if self.details:
            data["details"] = self.details
        return data

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


class ProviderError(SwitchboardError):
    """Error from an upstream language-model provider.

    Attributes:
        provider: Name of the agent whose provider failed.
        status_code: HTTP status code if applicable.
        retriable: Whether the orchestrator may retry the call.
    """

    kind = "provider_error"

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
        retriable: bool | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.provider = provider
        self.status_code = status_code
        if retriable is None:
            retriable = status_code in RETRIABLE_STATUS_CODES
        self.retriable = retriable

    def identity(self) -> dict[str, Any]:
        return {"provider": self.provider, "status_code": self.status_code}

    @classmethod
    def from_exception(
        cls,
        exc: Exception,
        *,
        provider: str | None = None,
        retriable: bool | None = None,
    ) -> ProviderError:
        """Create a ProviderError from an SDK exception, keeping the traceback."""
        status_code = getattr(exc, "status_code", None)
        if not isinstance(status_code, int):
            status_code = None
        error = cls(
            str(exc),
            provider=provider,
            status_code=status_code,
            retriable=retriable,
            details={"original_exception": type(exc).__name__},
        )
        error.__cause__ = exc
        return error


class UnsupportedCapability(SwitchboardError):
    """An agent was asked for a capability it does not declare."""

    kind = "unsupported_capability"

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        capability: str = "tools",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.provider = provider
        self.capability = capability

    def identity(self) -> dict[str, Any]:
        return {"provider": self.provider, "capability": self.capability}


class UnknownAgent(SwitchboardError):
    """A request named an agent that is not configured."""

    kind = "unknown_agent"

    def __init__(self, provider: str, *, available: Sequence[str] = ()) -> None:
        super().__init__(
            f"Unknown agent: {provider}",
            details={"available": list(available)} if available else None,
        )
        self.provider = provider

    def identity(self) -> dict[str, Any]:
        return {"provider": self.provider}


class QuorumNotMet(SwitchboardError):
    """Fewer consensus participants succeeded than the configured quorum."""

    kind = "quorum_not_met"

    def __init__(
        self,
        *,
        quorum: int,
        succeeded: int,
        failures: Sequence[dict[str, Any]] = (),
    ) -> None:
        super().__init__(
            f"Consensus quorum not met: {succeeded}/{quorum} agents succeeded",
            details={"failures": list(failures)},
        )
        self.quorum = quorum
        self.succeeded = succeeded
        self.failures = tuple(failures)

    def identity(self) -> dict[str, Any]:
        return {"quorum": self.quorum, "succeeded": self.succeeded}


class DeadlineExceeded(SwitchboardError):
    """The caller's deadline expired while the request was in flight."""

    kind = "deadline_exceeded"

    def __init__(self, deadline: float, *, operation: str) -> None:
        super().__init__(f"{operation} exceeded its {deadline}s deadline")
        self.deadline = deadline
        self.operation = operation

    def identity(self) -> dict[str, Any]:
        return {"operation": self.operation, "deadline": self.deadline}


class ConfigError(SwitchboardError):
    """Configuration loading or validation failed.

    Attributes:
        config_key: The configuration key that caused the error.
        config_file: Path to the config file if applicable.
    """

    kind = "config_error"

    def __init__(
        self,
        message: str,
        *,
        config_key: str | None = None,
        config_file: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.config_key = config_key
        self.config_file = config_file

    def identity(self) -> dict[str, Any]:
        return {"config_key": self.config_key, "config_file": self.config_file}


class ConfigMissing(ConfigError):
    """A plugin's required configuration key could not be resolved."""

    kind = "config_missing"

    def __init__(self, *, plugin: str, key: str, env_var: str | None = None) -> None:
        where = f" (set {env_var})" if env_var else ""
        super().__init__(
            f"Plugin '{plugin}' requires configuration '{key}'{where}",
            config_key=key,
        )
        self.plugin = plugin
        self.key = key
        self.env_var = env_var

    def identity(self) -> dict[str, Any]:
        return {"plugin": self.plugin, "config_key": self.key, "env_var": self.env_var}


class ManifestError(SwitchboardError):
    """A plugin manifest could not be parsed or validated."""

    kind = "manifest_error"

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.path = path

    def identity(self) -> dict[str, Any]:
        return {"path": self.path}


class PluginLoadError(SwitchboardError):
    """A plugin could not be loaded.

    When raised for a whole startup (strict mode), ``failures`` holds the
    individual errors of every plugin that failed.
    """

    kind = "plugin_load_error"

    def __init__(
        self,
        message: str,
        *,
        plugin: str | None = None,
        failures: Sequence[SwitchboardError] = (),
        details: dict[str, Any] | None = None,
    ) -> None:
        if failures and details is None:
            details = {"failures": [f.to_dict() for f in failures]}
        super().__init__(message, details)
        self.plugin = plugin
        self.failures = tuple(failures)

    def identity(self) -> dict[str, Any]:
        return {"plugin": self.plugin}


class ToolNameCollision(SwitchboardError):
    """Two plugins registered the same tool name."""

    kind = "tool_name_collision"

    def __init__(self, *, tool: str, plugins: Sequence[str]) -> None:
        names = ", ".join(plugins)
        super().__init__(f"Tool '{tool}' is registered by more than one plugin: {names}")
        self.tool = tool
        self.plugins = tuple(plugins)

    def identity(self) -> dict[str, Any]:
        return {"tool": self.tool, "plugins": list(self.plugins)}


class UnknownTool(SwitchboardError):
    """A tool name is not present in the aggregated tool map."""

    kind = "unknown_tool"

    def __init__(self, tool: str) -> None:
        super().__init__(f"Unknown tool: {tool}")
        self.tool = tool

    def identity(self) -> dict[str, Any]:
        return {"tool": self.tool}


class SchemaViolation(SwitchboardError):
    """Tool arguments do not satisfy the tool's input schema.

    Attributes:
        tool: Name of the tool being invoked.
        plugin: Plugin owning the tool.
        violations: One ``"<path>: <problem>"`` string per violation.
    """

    kind = "schema_violation"

    def __init__(
        self,
        *,
        tool: str,
        violations: Sequence[str],
        plugin: str | None = None,
    ) -> None:
        super().__init__(
            f"Arguments for tool '{tool}' violate its input schema: {'; '.join(violations)}"
        )
        self.tool = tool
        self.plugin = plugin
        self.violations = tuple(violations)

    def identity(self) -> dict[str, Any]:
        return {"tool": self.tool, "plugin": self.plugin, "violations": list(self.violations)}


class ExternalServiceError(SwitchboardError):
    """A plugin's downstream API call failed.

    The plugin raises it with ``service`` and ``status_code``; the plugin
    manager fills in ``plugin`` and ``tool`` before handing it on.
    """

    kind = "external_service_error"

    def __init__(
        self,
        message: str,
        *,
        service: str,
        status_code: int | None = None,
        plugin: str | None = None,
        tool: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.service = service
        self.status_code = status_code
        self.plugin = plugin
        self.tool = tool

    def identity(self) -> dict[str, Any]:
        return {
            "plugin": self.plugin,
            "tool": self.tool,
            "service": self.service,
            "status_code": self.status_code,
        }


class ToolExecutionError(SwitchboardError):
    """A tool handler failed with an error other than a downstream API failure."""

    kind = "tool_execution_error"

    def __init__(
        self,
        message: str,
        *,
        plugin: str | None = None,
        tool: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.plugin = plugin
        self.tool = tool

    def identity(self) -> dict[str, Any]:
        return {"plugin": self.plugin, "tool": self.tool}
