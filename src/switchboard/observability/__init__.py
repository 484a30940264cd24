"""Observability module for Switchboard: structured logging setup."""

from switchboard.observability.logging import (
    bind_context,
    configure_logging,
    get_logger,
    mask_sensitive_data,
    reset_logging,
    unbind_context,
)

__all__ = [
    "bind_context",
    "configure_logging",
    "get_logger",
    "mask_sensitive_data",
    "reset_logging",
    "unbind_context",
]
