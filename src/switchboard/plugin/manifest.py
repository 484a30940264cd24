"""Plugin manifests.

Each plugin directory under the plugin root carries a ``plugin.yaml``:

    name: table_store
    version: 1.0.0
    entry: table_store
    description: CRUD and organize tools over a hosted table store
    config:
      - key: api_key
        env: TABLE_STORE_API_KEY
        secret: true
    tools: [list_records, create_record]

``entry`` names an entry in the static plugin registry; manifests never point
at importable code.
"""

from collections.abc import Mapping
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, model_validator
import yaml

from switchboard.core.errors import ConfigMissing, ManifestError

MANIFEST_FILENAME = "plugin.yaml"

NAME_PATTERN = r"^[a-z][a-z0-9_\-]*$"


class ConfigKey(BaseModel, frozen=True):
    """A configuration value a plugin needs.

    Attributes:
        key: Name the plugin reads the value under.
        env: Environment variable bound to the key.
        required: Whether loading fails when no value resolves.
        default: Fallback used when neither explicit setting nor env is set.
        secret: Whether the value must never be logged.
        description: Human-readable description.
    """

    key: str = Field(min_length=1)
    env: str | None = None
    required: bool = True
    default: str | None = None
    secret: bool = False
    description: str = ""


class PluginManifest(BaseModel, frozen=True):
    """Validated contents of a plugin.yaml file."""

    name: str = Field(pattern=NAME_PATTERN)
    version: str = "0.0.0"
    entry: str = Field(min_length=1)
    description: str = ""
    config: list[ConfigKey] = Field(default_factory=list)
    tools: list[str] = Field(default_factory=list)
    source: Path | None = None

    @model_validator(mode="after")
    def check_unique(self) -> "PluginManifest":
        """Configuration keys and declared tool names are unique."""
        keys = [c.key for c in self.config]
        if len(keys) != len(set(keys)):
            msg = "Duplicate configuration keys"
            raise ValueError(msg)
        if len(self.tools) != len(set(self.tools)):
            msg = "Duplicate tool names"
            raise ValueError(msg)
        return self


def load_manifest(path: Path) -> PluginManifest:
    """Read and validate one manifest file.

    Args:
        path: Path to a plugin.yaml file.

    Returns:
        The validated manifest with ``source`` set to ``path``.

    Raises:
        ManifestError: If the file cannot be read, parsed, or validated.
    """
    try:
        data: Any = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ManifestError(f"Cannot read manifest: {e}", path=str(path)) from e

    if not isinstance(data, dict):
        raise ManifestError("Manifest must be a mapping", path=str(path))

    try:
        return PluginManifest.model_validate({**data, "source": path})
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        ]
        raise ManifestError(
            f"Invalid manifest: {'; '.join(problems)}",
            path=str(path),
            details={"errors": problems},
        ) from e


def resolve_settings(
    manifest: PluginManifest,
    explicit: Mapping[str, str] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Resolve a plugin's configuration.

    Each key resolves from the explicit settings, then its environment
    variable, then the manifest default.

    Raises:
        ConfigMissing: For the first required key that resolves to nothing.
    """
    explicit = explicit or {}
    environ = os.environ if environ is None else environ
    settings: dict[str, str] = {}

    for item in manifest.config:
        value = explicit.get(item.key)
        if value is None and item.env:
            value = environ.get(item.env) or None
        if value is None:
            value = item.default
        if value is None:
            if item.required:
                raise ConfigMissing(plugin=manifest.name, key=item.key, env_var=item.env)
            continue
        settings[item.key] = value

    return settings
