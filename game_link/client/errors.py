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

"""Exception types raised by the game link client."""

from typing import Optional


class GameLinkError(Exception):
  """Base class for all game link errors."""


class InvalidEndpointError(GameLinkError, ValueError):
  """Raised when a server endpoint fails validation."""


class HandleClosedError(GameLinkError):
  """Raised when an action is sent through a handle that is not open."""


class ProtocolError(GameLinkError):
  """Raised when the gateway sends a frame that cannot be decoded."""


class GameServerError(GameLinkError):
  """Error reported by the game server over the wire."""

  def __init__(self, message: str, code: Optional[str] = None):
    super().__init__(f"[{code}] {message}" if code else message)
    self.code = code
    self.server_message = message


class TimerStateError(GameLinkError):
  """Raised when a second reconnect timer would be armed."""
