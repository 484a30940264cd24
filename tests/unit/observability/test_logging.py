"""Unit tests for switchboard.observability.logging module."""

from collections.abc import Iterator
import json
from pathlib import Path

import pytest
import structlog

from switchboard.config.models import LoggingConfig
from switchboard.observability.logging import (
    bind_context,
    configure_logging,
    get_logger,
    mask_sensitive_data,
    reset_logging,
    unbind_context,
)


@pytest.fixture(autouse=True)
def _reset() -> Iterator[None]:
    reset_logging()
    yield
    reset_logging()


class TestMaskSensitiveData:
    """Test the masking processor."""

    def test_masks_sensitive_keys(self) -> None:
        """Values under secret-looking keys are redacted."""
        event = {"event": "x", "api_key": "abc", "table": "Tasks"}

        result = mask_sensitive_data(None, "info", event)

        assert result["api_key"] == "<REDACTED>"
        assert result["table"] == "Tasks"

    def test_masks_key_like_values(self) -> None:
        """Key-like values under innocent keys are masked."""
        result = mask_sensitive_data(None, "info", {"event": "x", "value": "sk-1234567890abcd"})

        assert result["value"] == "sk-...abcd"

    def test_event_name_untouched(self) -> None:
        """The event name is never masked."""
        result = mask_sensitive_data(None, "info", {"event": "token.refreshed"})

        assert result["event"] == "token.refreshed"

    def test_nested_dicts(self) -> None:
        """Nested dicts are walked."""
        result = mask_sensitive_data(None, "info", {"event": "x", "ctx": {"password": "p"}})

        assert result["ctx"] == {"password": "<REDACTED>"}


class TestConfigureLogging:
    """Test configure_logging."""

    def test_prod_mode_writes_json(self, tmp_path: Path) -> None:
        """With a log file, entries are JSON lines with masked secrets."""
        log_file = tmp_path / "logs" / "switchboard.log"
        configure_logging(LoggingConfig(mode="prod", log_file=log_file))

        log = get_logger("test")
        bind_context(request_id="req_1")
        log.info("orchestrator.route.completed", agent="claude", api_key="sk-secret")
        unbind_context("request_id")

        line = log_file.read_text().strip().splitlines()[-1]
        entry = json.loads(line)
        assert entry["event"] == "orchestrator.route.completed"
        assert entry["request_id"] == "req_1"
        assert entry["api_key"] == "<REDACTED>"
        assert entry["level"] == "info"
        assert "timestamp" in entry

    def test_level_filters(self, tmp_path: Path) -> None:
        """Entries below the configured level are dropped."""
        log_file = tmp_path / "switchboard.log"
        configure_logging(LoggingConfig(level="warning", log_file=log_file))

        log = get_logger("test")
        log.info("dropped.event")
        log.warning("kept.event")

        content = log_file.read_text()
        assert "dropped.event" not in content
        assert "kept.event" in content

    def test_get_logger_configures_lazily(self) -> None:
        """get_logger works before explicit configuration."""
        log = get_logger("lazy")

        assert log is not None
        assert structlog.is_configured()
