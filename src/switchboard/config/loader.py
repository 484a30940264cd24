"""Configuration loading for Switchboard.

Functions:
    load_config: Load configuration from YAML (``$SWITCHBOARD_CONFIG`` or
        ``~/.switchboard/config.yaml``), falling back to defaults
    config_path: Resolve the configuration file location
"""

import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError
import yaml

# Credentials are read from the environment; .env files feed it.
load_dotenv()
load_dotenv(Path.home() / ".switchboard" / ".env")

from switchboard.config.models import (  # noqa: E402
    SwitchboardConfig,
    get_config_dir,
    get_default_config,
)
from switchboard.core.errors import ConfigError  # noqa: E402

CONFIG_ENV_VAR = "SWITCHBOARD_CONFIG"


def config_path() -> Path:
    """Return the configuration file path.

    ``SWITCHBOARD_CONFIG`` wins over ``~/.switchboard/config.yaml``.
    """
    env_path = os.environ.get(CONFIG_ENV_VAR, "").strip()
    if env_path:
        return Path(env_path).expanduser()
    return get_config_dir() / "config.yaml"


def _format_validation_errors(error: PydanticValidationError) -> str:
    lines = []
    for item in error.errors():
        loc = ".".join(str(x) for x in item["loc"]) or "<root>"
        lines.append(f"  - {loc}: {item['msg']}")
    return "\n".join(lines)


def parse_config(data: dict[str, Any] | None, *, source: str | None = None) -> SwitchboardConfig:
    """Validate a configuration mapping.

    Args:
        data: Parsed YAML mapping (``None`` means empty).
        source: File the mapping came from, for error reports.

    Raises:
        ConfigError: If validation fails.
    """
    try:
        return SwitchboardConfig.model_validate(data or {})
    except PydanticValidationError as e:
        raise ConfigError(
            "Configuration validation failed:\n" + _format_validation_errors(e),
            config_file=source,
            details={"validation_errors": e.errors(include_url=False)},
        ) from e


def load_config(path: Path | None = None) -> SwitchboardConfig:
    """Load and validate configuration.

    Args:
        path: Explicit config file. When omitted, the default location is
            used and a missing file yields the default configuration.

    Returns:
        Validated SwitchboardConfig.

    Raises:
        ConfigError: If an explicit file is missing, or any file is malformed
            or fails validation.
    """
    explicit = path is not None
    if path is None:
        path = config_path()

    if not path.exists():
        if explicit:
            raise ConfigError(
                f"Configuration file not found: {path}",
                config_file=str(path),
            )
        return get_default_config()

    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse configuration file: {e}",
            config_file=str(path),
            details={"yaml_error": str(e)},
        ) from e

    if data is not None and not isinstance(data, dict):
        raise ConfigError(
            "Configuration file must contain a mapping",
            config_file=str(path),
        )

    return parse_config(data, source=str(path))
