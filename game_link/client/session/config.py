# Copyright 2025 The game_link Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Configuration for the game link bot.

Every concern gets its own frozen dataclass with a ``from_env`` constructor.
Values are replaced, never mutated: changing the server endpoint at runtime
builds a new ``Endpoint`` rather than editing the old one.

Durations read from the environment are in milliseconds, matching the
variables operators already use; they are stored in seconds.
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from game_link.client.errors import InvalidEndpointError

DEFAULT_SERVER_PORT = 25565
MIN_PORT = 1
MAX_PORT = 65535
MAX_HOST_LENGTH = 253


def _env_ms(name: str, default_ms: int) -> float:
  """Read a millisecond duration from the environment, in seconds."""
  raw = os.getenv(name)
  if not raw:
    return default_ms / 1000.0
  try:
    return int(raw) / 1000.0
  except ValueError:
    return default_ms / 1000.0


def _env_int(name: str, default: int) -> int:
  raw = os.getenv(name)
  if not raw:
    return default
  try:
    return int(raw)
  except ValueError:
    return default


def _env_bool(name: str, default: bool) -> bool:
  raw = os.getenv(name)
  if raw is None or raw == "":
    return default
  return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
  raw = os.getenv(name)
  if not raw:
    return default
  return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class Endpoint:
  """Remote game server address.

  Attributes:
      host: Server hostname or IP
      port: Server port
      version: Protocol version string; empty means auto-detect
  """
  host: str = "localhost"
  port: int = DEFAULT_SERVER_PORT
  version: str = ""

  def validate(self) -> None:
    """Check the endpoint is usable.

    Raises:
        InvalidEndpointError: If host or port are malformed.
    """
    if not isinstance(self.host, str) or not self.host.strip():
      raise InvalidEndpointError("Server host is required")
    if len(self.host) > MAX_HOST_LENGTH or any(c.isspace() for c in self.host):
      raise InvalidEndpointError(f"Invalid server host: {self.host!r}")
    if isinstance(self.port, bool) or not isinstance(self.port, int):
      raise InvalidEndpointError(f"Port must be an integer, got {self.port!r}")
    if not MIN_PORT <= self.port <= MAX_PORT:
      raise InvalidEndpointError(
          f"Invalid port number {self.port} ({MIN_PORT}-{MAX_PORT})"
      )
    if not isinstance(self.version, str):
      raise InvalidEndpointError("Version must be a string")

  def __str__(self) -> str:
    return f"{self.host}:{self.port}"

  @classmethod
  def from_env(cls) -> 'Endpoint':
    """Create endpoint from environment variables."""
    return cls(
        host=os.getenv('MC_SERVER_HOST', 'localhost'),
        port=_env_int('MC_SERVER_PORT', DEFAULT_SERVER_PORT),
        version=os.getenv('MC_VERSION', ''),
    )


@dataclass(frozen=True)
class Credentials:
  """Account used to join the server. The password never appears in repr."""
  username: str = "GameLinkBot"
  password: str = field(default="", repr=False)
  auth: str = "offline"  # 'offline', 'mojang' or 'microsoft'

  @classmethod
  def from_env(cls) -> 'Credentials':
    """Create credentials from environment variables."""
    return cls(
        username=os.getenv('MC_USERNAME', 'GameLinkBot'),
        password=os.getenv('MC_PASSWORD', ''),
        auth=os.getenv('MC_AUTH', 'offline'),
    )


@dataclass(frozen=True)
class ReconnectConfig:
  """Retry, cooldown and stability timing, in seconds."""
  max_reconnect_attempts: int = 5  # Failures tolerated before cooldown
  base_delay: float = 5.0  # Delay after the first failure
  max_delay: float = 30.0  # Backoff ceiling
  cooldown: float = 300.0  # Fixed pause once the budget is exhausted
  stability_window: float = 60.0  # Uptime needed to forgive past failures
  endpoint_change_delay: float = 1.0  # Pause before joining a new endpoint

  @classmethod
  def from_env(cls) -> 'ReconnectConfig':
    """Create configuration from environment variables."""
    return cls(
        max_reconnect_attempts=_env_int('MAX_RECONNECT_ATTEMPTS', 5),
        base_delay=_env_ms('RECONNECT_DELAY', 5000),
        max_delay=_env_ms('RECONNECT_MAX_DELAY', 30000),
        cooldown=_env_ms('RECONNECT_COOLDOWN', 300000),
        stability_window=_env_ms('STABILITY_WINDOW', 60000),
        endpoint_change_delay=_env_ms('ENDPOINT_CHANGE_DELAY', 1000),
    )


@dataclass(frozen=True)
class ConnectionConfig:
  """Websocket transport settings for a single connection attempt."""
  path: str = "/"  # Gateway path appended to ws://host:port
  connect_timeout: float = 10.0
  message_timeout: float = 30.0  # Outbound action send timeout
  close_timeout: float = 5.0
  ping_interval: Optional[float] = 20.0
  ping_timeout: Optional[float] = 20.0
  max_message_size: int = 5_000_000  # 5MB per frame
  max_json_depth: int = 100
  max_queue: int = 32

  @classmethod
  def from_env(cls) -> 'ConnectionConfig':
    """Create configuration from environment variables."""
    return cls(
        path=os.getenv('GATEWAY_PATH', '/'),
        connect_timeout=_env_ms('CONNECT_TIMEOUT', 10000),
        close_timeout=_env_ms('CLOSE_TIMEOUT', 5000),
    )


@dataclass(frozen=True)
class CommandConfig:
  """Who may issue chat commands, and how they are recognised."""
  prefix: str = "."
  allowed_users: Tuple[str, ...] = ()
  admin_users: Tuple[str, ...] = ()

  def is_allowed(self, username: str) -> bool:
    return username in self.allowed_users or username in self.admin_users

  @classmethod
  def from_env(cls) -> 'CommandConfig':
    """Create configuration from environment variables."""
    return cls(
        prefix=os.getenv('COMMAND_PREFIX', '.'),
        allowed_users=_env_list('ALLOWED_USERS', ()),
        admin_users=_env_list('ADMIN_USERS', ()),
    )


@dataclass(frozen=True)
class BehaviorConfig:
  """In-game reflexes that do not involve connection management."""
  auto_respawn: bool = True

  @classmethod
  def from_env(cls) -> 'BehaviorConfig':
    """Create configuration from environment variables."""
    return cls(auto_respawn=_env_bool('AUTO_RESPAWN', True))


@dataclass(frozen=True)
class ControlConfig:
  """HTTP control surface settings."""
  host: str = "0.0.0.0"
  port: int = 5000
  api_token: Optional[str] = field(default=None, repr=False)

  @classmethod
  def from_env(cls) -> 'ControlConfig':
    """Create configuration from environment variables."""
    return cls(
        host=os.getenv('CONTROL_HOST', '0.0.0.0'),
        port=_env_int('PORT', 5000),
        api_token=os.getenv('CONTROL_API_TOKEN') or None,
    )


@dataclass(frozen=True)
class LoggingConfig:
  """Log verbosity and optional file output."""
  level: str = "info"
  log_to_file: bool = False
  log_file: str = "bot.log"

  @classmethod
  def from_env(cls) -> 'LoggingConfig':
    """Create configuration from environment variables."""
    return cls(
        level=os.getenv('LOG_LEVEL', 'info'),
        log_to_file=_env_bool('LOG_TO_FILE', False),
        log_file=os.getenv('LOG_FILE', 'bot.log'),
    )


@dataclass(frozen=True)
class BotConfig:
  """Root configuration aggregating all sub-configurations."""
  endpoint: Endpoint = field(default_factory=Endpoint)
  credentials: Credentials = field(default_factory=Credentials)
  reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)
  connection: ConnectionConfig = field(default_factory=ConnectionConfig)
  commands: CommandConfig = field(default_factory=CommandConfig)
  behavior: BehaviorConfig = field(default_factory=BehaviorConfig)
  control: ControlConfig = field(default_factory=ControlConfig)
  logging: LoggingConfig = field(default_factory=LoggingConfig)

  @classmethod
  def from_env(cls) -> 'BotConfig':
    """Create complete configuration from environment variables.

    Returns:
        BotConfig with all sub-configs populated from environment.
    """
    return cls(
        endpoint=Endpoint.from_env(),
        credentials=Credentials.from_env(),
        reconnect=ReconnectConfig.from_env(),
        connection=ConnectionConfig.from_env(),
        commands=CommandConfig.from_env(),
        behavior=BehaviorConfig.from_env(),
        control=ControlConfig.from_env(),
        logging=LoggingConfig.from_env(),
    )

  def validate(self) -> None:
    """Validate configuration values are sensible.

    Raises:
        ValueError: If configuration contains invalid values.
    """
    self.endpoint.validate()

    if not self.credentials.username:
      raise ValueError("username is required")
    if self.credentials.auth not in ("offline", "mojang", "microsoft"):
      raise ValueError(f"unsupported auth mode: {self.credentials.auth}")

    if self.reconnect.max_reconnect_attempts < 0:
      raise ValueError("max_reconnect_attempts cannot be negative")
    if self.reconnect.base_delay < 0:
      raise ValueError("base_delay cannot be negative")
    if self.reconnect.max_delay < self.reconnect.base_delay:
      raise ValueError("max_delay must be >= base_delay")
    if self.reconnect.cooldown <= 0:
      raise ValueError("cooldown must be positive")
    if self.reconnect.stability_window <= 0:
      raise ValueError("stability_window must be positive")
    if self.reconnect.endpoint_change_delay < 0:
      raise ValueError("endpoint_change_delay cannot be negative")

    if self.connection.connect_timeout <= 0:
      raise ValueError("connect_timeout must be positive")
    if self.connection.max_message_size <= 0:
      raise ValueError("max_message_size must be positive")

    if not self.commands.prefix:
      raise ValueError("command prefix cannot be empty")

    if not MIN_PORT <= self.control.port <= MAX_PORT:
      raise ValueError(f"invalid control port {self.control.port}")


# Default configuration instance
DEFAULT_CONFIG = BotConfig()
