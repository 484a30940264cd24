"""Structured logging configuration for Switchboard.

Configures structlog once at startup. Development mode renders human-readable
console lines; production mode renders JSON. API keys and tokens are masked by
a processor before rendering.

Standard log keys:
- request_id: Orchestrator request identifier (bound per request)
- agent: Agent handling a call
- plugin / tool: Plugin and tool identity for dispatch logs

Event naming convention:
- dot.notation, ``domain.entity.verb_past_tense``
  (e.g. "orchestrator.route.completed", "plugin.load.failed")

Usage:
    from switchboard.observability import configure_logging, get_logger

    configure_logging(LoggingConfig(mode="prod"))
    log = get_logger(__name__)
    log.info("orchestrator.route.started", agent="claude")
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog

from switchboard.config.models import LoggingConfig
from switchboard.core.security import is_sensitive_field, is_sensitive_value, mask_api_key

LOG_MODE_ENV_VAR = "SWITCHBOARD_LOG_MODE"

_SKIP_KEYS = frozenset({"event", "level", "timestamp", "logger"})

_configured: bool = False


def _mask_value(key: str, value: Any) -> Any:
    if is_sensitive_field(key):
        return "<REDACTED>"
    if isinstance(value, str) and is_sensitive_value(value):
        return mask_api_key(value)
    if isinstance(value, dict):
        return {k: _mask_value(str(k), v) for k, v in value.items()}
    return value


def mask_sensitive_data(
    _logger: Any,
    _method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Structlog processor masking API keys and tokens in log entries."""
    for key, value in list(event_dict.items()):
        if key in _SKIP_KEYS:
            continue
        event_dict[key] = _mask_value(key, value)
    return event_dict


def _shared_processors() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        mask_sensitive_data,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def _mode_from_env() -> str:
    return "prod" if os.environ.get(LOG_MODE_ENV_VAR, "dev").lower() == "prod" else "dev"


def configure_logging(config: LoggingConfig | None = None) -> None:
    """Configure structlog for the process.

    Args:
        config: Logging configuration. If None, defaults are used with the
            mode taken from ``SWITCHBOARD_LOG_MODE``.
    """
    global _configured

    if config is None:
        config = LoggingConfig(mode=_mode_from_env())  # type: ignore[arg-type]

    processors = _shared_processors()
    if config.mode == "prod" or config.log_file is not None:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    if config.log_file is not None:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        factory: Any = structlog.WriteLoggerFactory(
            file=config.log_file.open("a", encoding="utf-8")
        )
    else:
        factory = structlog.PrintLoggerFactory(file=sys.stderr)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping()[config.level.upper()]
        ),
        context_class=dict,
        logger_factory=factory,
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str | None = None) -> Any:
    """Return a structlog logger, configuring defaults on first use."""
    if not _configured:
        configure_logging()
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind request-scoped keys (never secrets) into the logging context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove keys from the logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def reset_logging() -> None:
    """Reset logging state. Used by tests."""
    global _configured
    _configured = False
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()
