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

"""Game gateway WebSocket protocol models.

The gateway speaks JSON text frames, each an object with a ``type`` field:

    client -> server: login, action, pong
    server -> client: login_success, kicked, error, chat, whisper, health,
                      spawn, ping

Anything else the server sends is kept as a generic ``ServerMessage`` and
passed on to observers untouched.

Example usage:
    >>> from game_link.client.protocol_models import parse_server_message
    >>> msg = parse_server_message(safe_json_loads(frame))
    >>> if isinstance(msg, KickedMessage):
    ...     print(msg.reason)
"""

import json
import time
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from game_link.client.errors import ProtocolError

DEFAULT_MAX_JSON_SIZE = 5_000_000
DEFAULT_MAX_JSON_DEPTH = 100


# =============================================================================
# Frame decoding
# =============================================================================


def _json_depth(obj: Any, max_depth: int, depth: int = 0) -> int:
  """Maximum nesting depth of a decoded JSON value."""
  if depth > max_depth:
    raise ProtocolError(f"JSON depth exceeds maximum of {max_depth}")

  if isinstance(obj, dict):
    return max(
        (_json_depth(v, max_depth, depth + 1) for v in obj.values()),
        default=depth
    )
  elif isinstance(obj, list):
    return max(
        (_json_depth(item, max_depth, depth + 1) for item in obj),
        default=depth
    )
  return depth


def safe_json_loads(
    raw: str,
    max_size: int = DEFAULT_MAX_JSON_SIZE,
    max_depth: int = DEFAULT_MAX_JSON_DEPTH,
) -> Dict[str, Any]:
  """Decode a text frame with size and depth limits.

  Args:
      raw: Frame payload
      max_size: Maximum payload size in bytes
      max_depth: Maximum nesting depth

  Returns:
      Decoded JSON object

  Raises:
      ProtocolError: If the frame is too large, too deep, not JSON, or not
          an object at root level
  """
  if isinstance(raw, bytes):
    raw = raw.decode('utf-8', errors='replace')
  if not isinstance(raw, str):
    raise ProtocolError("Frame must be text")

  size = len(raw.encode('utf-8'))
  if size > max_size:
    raise ProtocolError(f"Frame size {size} exceeds maximum of {max_size}")

  try:
    data = json.loads(raw)
  except json.JSONDecodeError as e:
    raise ProtocolError(f"Invalid JSON frame: {e}") from e

  _json_depth(data, max_depth)

  if not isinstance(data, dict):
    raise ProtocolError("JSON must be an object at root level")

  return data


# =============================================================================
# Server -> client messages
# =============================================================================


class ServerMessage(BaseModel):
  """Base structure for all gateway messages."""

  type: str = Field(..., description="Message type identifier")
  timestamp: Optional[float] = Field(
      None, description="Unix timestamp of message creation"
  )

  class Config:
    extra = "allow"


class LoginSuccessMessage(ServerMessage):
  """Sent once the server has accepted the login and spawned the player."""

  type: str = Field(default="login_success", frozen=True)
  username: Optional[str] = Field(None, description="Name the server assigned")


class KickedMessage(ServerMessage):
  """Sent right before the server drops the connection."""

  type: str = Field(default="kicked", frozen=True)
  reason: str = Field("", description="Kick reason shown to the player")


class ErrorMessage(ServerMessage):
  """Server-side failure; the connection should be considered lost."""

  type: str = Field(default="error", frozen=True)
  message: str = Field(..., description="Human-readable error message")
  code: Optional[str] = Field(None, description="Error code")


class ChatMessage(ServerMessage):
  """Public chat line."""

  type: str = Field(default="chat", frozen=True)
  username: str = Field(..., description="Sender")
  message: str = Field(..., description="Chat text")


class WhisperMessage(ChatMessage):
  """Private message addressed to the bot."""

  type: str = Field(default="whisper", frozen=True)


class HealthMessage(ServerMessage):
  """Health and food levels after a change."""

  type: str = Field(default="health", frozen=True)
  health: float = Field(..., description="Current health (0-20)")
  food: Optional[float] = Field(None, description="Current food level (0-20)")


class Position(BaseModel):
  x: float
  y: float
  z: float


class SpawnMessage(ServerMessage):
  """The player entity (re)appeared in the world."""

  type: str = Field(default="spawn", frozen=True)
  position: Optional[Position] = Field(None, description="Spawn coordinates")


class PingMessage(ServerMessage):
  """Application-level keepalive; answered with a pong."""

  type: str = Field(default="ping", frozen=True)
  echo: Optional[str] = Field(None, description="Token to echo back")


_MESSAGE_TYPES = {
    "login_success": LoginSuccessMessage,
    "kicked": KickedMessage,
    "error": ErrorMessage,
    "chat": ChatMessage,
    "whisper": WhisperMessage,
    "health": HealthMessage,
    "spawn": SpawnMessage,
    "ping": PingMessage,
}


def parse_server_message(message: Dict[str, Any]) -> ServerMessage:
  """Parse any gateway message to the appropriate model.

  Args:
    message: Decoded frame

  Returns:
    ServerMessage subclass instance; unknown types return the base model

  Raises:
    ValidationError: If the message doesn't match its type's schema
  """
  model = _MESSAGE_TYPES.get(message.get("type"), ServerMessage)
  return model.model_validate(message)


# =============================================================================
# Client -> server messages
# =============================================================================


class LoginRequest(BaseModel):
  """First frame sent after the socket opens."""

  type: str = Field(default="login", frozen=True)
  username: str
  password: str = ""
  auth: str = "offline"
  version: str = ""
  timestamp: float = Field(default_factory=time.time)


class ActionRequest(BaseModel):
  """Outbound action wrapping an opaque payload."""

  type: str = Field(default="action", frozen=True)
  action: str = Field(..., description="Action name, e.g. chat or respawn")
  data: Dict[str, Any] = Field(default_factory=dict)
  timestamp: float = Field(default_factory=time.time)


def build_action_frame(action: Dict[str, Any]) -> str:
  """Serialize an action dict into an ``action`` frame.

  The dict's ``type`` names the action; remaining keys become its data.
  """
  payload = dict(action)
  name = payload.pop("type", None)
  if not name:
    raise ValueError("action requires a 'type'")
  return ActionRequest(action=name, data=payload).model_dump_json()
