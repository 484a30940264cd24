"""Unit tests for switchboard.config.loader module."""

from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from switchboard.config.loader import CONFIG_ENV_VAR, config_path, load_config, parse_config
from switchboard.core.errors import ConfigError


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Write a valid configuration file."""
    path = tmp_path / "config.yaml"
    content = {
        "agents": [
            {"name": "claude", "backend": "anthropic", "model": "claude-sonnet-4-20250514"},
            {"name": "local", "model": "ollama/llama3", "supports_tools": False},
        ],
        "routing": {"default_agent": "local", "tool_preference": ["claude"]},
        "consensus": {"quorum": 2, "strategy": "majority"},
        "plugins": {"strict": True, "settings": {"table_store": {"base_id": "app1"}}},
    }
    with path.open("w") as f:
        yaml.dump(content, f)
    return path


class TestConfigPath:
    """Test config_path resolution."""

    def test_env_var_wins(self, tmp_path: Path) -> None:
        """SWITCHBOARD_CONFIG overrides the default location."""
        target = tmp_path / "custom.yaml"
        with patch.dict("os.environ", {CONFIG_ENV_VAR: str(target)}):
            assert config_path() == target

    def test_default_location(self) -> None:
        """Without the env var the file lives in ~/.switchboard."""
        with patch.dict("os.environ", {CONFIG_ENV_VAR: ""}):
            assert config_path() == Path.home() / ".switchboard" / "config.yaml"


class TestLoadConfig:
    """Test load_config."""

    def test_loads_valid_file(self, config_file: Path) -> None:
        """A valid file is parsed into SwitchboardConfig."""
        config = load_config(config_file)

        assert [a.name for a in config.agents] == ["claude", "local"]
        assert config.agents[1].supports_tools is False
        assert config.consensus.quorum == 2
        assert config.consensus.strategy == "majority"
        assert config.plugins.strict is True
        assert config.plugins.settings["table_store"]["base_id"] == "app1"

    def test_explicit_missing_file_raises(self, tmp_path: Path) -> None:
        """An explicitly named file must exist."""
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "missing.yaml")

    def test_missing_default_file_yields_defaults(self, tmp_path: Path) -> None:
        """A missing file at the default location yields the default config."""
        with patch.dict("os.environ", {CONFIG_ENV_VAR: str(tmp_path / "absent.yaml")}):
            config = load_config()

        assert [a.name for a in config.agents] == ["claude", "gpt"]

    def test_malformed_yaml_raises(self, tmp_path: Path) -> None:
        """Unparseable YAML raises ConfigError naming the file."""
        path = tmp_path / "bad.yaml"
        path.write_text("agents: [unclosed")

        with pytest.raises(ConfigError) as exc_info:
            load_config(path)

        assert exc_info.value.config_file == str(path)

    def test_non_mapping_raises(self, tmp_path: Path) -> None:
        """A YAML list at the top level is rejected."""
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigError, match="mapping"):
            load_config(path)

    def test_empty_file_yields_empty_config(self, tmp_path: Path) -> None:
        """An empty file validates to a config with no agents."""
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert load_config(path).agents == []


class TestParseConfig:
    """Test parse_config error formatting."""

    def test_validation_errors_listed(self) -> None:
        """Validation failures list the offending field path."""
        with pytest.raises(ConfigError) as exc_info:
            parse_config({"consensus": {"quorum": 0}}, source="inline")

        assert "consensus.quorum" in exc_info.value.message
        assert exc_info.value.config_file == "inline"
