"""Switchboard core module - shared types, errors, and masking helpers."""

from switchboard.core.errors import (
    ConfigError,
    ConfigMissing,
    DeadlineExceeded,
    ExternalServiceError,
    ManifestError,
    PluginLoadError,
    ProviderError,
    QuorumNotMet,
    SchemaViolation,
    SwitchboardError,
    ToolExecutionError,
    ToolNameCollision,
    UnknownAgent,
    UnknownTool,
    UnsupportedCapability,
)
from switchboard.core.security import mask_api_key, sanitize_for_logging
from switchboard.core.types import JSONObject, Result

__all__ = [
    # Types
    "Result",
    "JSONObject",
    # Errors
    "SwitchboardError",
    "ProviderError",
    "UnsupportedCapability",
    "UnknownAgent",
    "QuorumNotMet",
    "DeadlineExceeded",
    "ConfigError",
    "ConfigMissing",
    "ManifestError",
    "PluginLoadError",
    "ToolNameCollision",
    "UnknownTool",
    "SchemaViolation",
    "ExternalServiceError",
    "ToolExecutionError",
    # Security utilities
    "mask_api_key",
    "sanitize_for_logging",
]
