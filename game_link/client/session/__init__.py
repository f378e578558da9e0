"""Session settings for the game link client.

This package provides configuration and backoff utilities used by the
reconnection controller.
"""

from game_link.client.session.backoff import (
    BackoffPolicy,
    calculate_backoff,
)
from game_link.client.session.config import (
    BehaviorConfig,
    BotConfig,
    CommandConfig,
    ConnectionConfig,
    ControlConfig,
    Credentials,
    DEFAULT_CONFIG,
    Endpoint,
    LoggingConfig,
    ReconnectConfig,
)

__all__ = [
    # Configuration
    "BehaviorConfig",
    "BotConfig",
    "CommandConfig",
    "ConnectionConfig",
    "ControlConfig",
    "Credentials",
    "DEFAULT_CONFIG",
    "Endpoint",
    "LoggingConfig",
    "ReconnectConfig",
    # Backoff
    "BackoffPolicy",
    "calculate_backoff",
]
