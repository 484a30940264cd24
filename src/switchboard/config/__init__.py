"""Configuration module for Switchboard.

Usage:
    from switchboard.config import load_config

    config = load_config()
    quorum = config.consensus.quorum
"""

from switchboard.config.loader import config_path, load_config, parse_config
from switchboard.config.models import (
    AgentConfig,
    ConsensusConfig,
    LoggingConfig,
    PluginsConfig,
    RetryConfig,
    RoutingConfig,
    SwitchboardConfig,
    get_config_dir,
    get_default_config,
)

__all__ = [
    # Models
    "SwitchboardConfig",
    "AgentConfig",
    "RoutingConfig",
    "ConsensusConfig",
    "RetryConfig",
    "PluginsConfig",
    "LoggingConfig",
    # Loader functions
    "load_config",
    "parse_config",
    "config_path",
    # Model helpers
    "get_config_dir",
    "get_default_config",
]
