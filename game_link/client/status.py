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

"""Connection status snapshots and status-side observers.

``StatusSnapshot`` is immutable. The controller builds a new one after each
transition and swaps the reference, so readers on other threads or request
handlers always see a consistent picture without taking a lock.
"""

import asyncio
import logging
import threading
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from game_link.client.connection_handle import GameMessage
from game_link.client.event_router import EventObserver
from game_link.client.session.config import Endpoint

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
  """Connection state enumeration."""

  DISCONNECTED = "disconnected"
  CONNECTING = "connecting"
  CONNECTED = "connected"


@dataclass(frozen=True)
class StatusSnapshot:
  """Read-only view of the controller at one instant.

  Attributes:
      state: Current connection state
      attempt_count: Consecutive failures since the last reset
      last_error: Description of the most recent failure
      endpoint: Server the controller targets
      running: False after stop() until start()
      pending_timer: Kind of outstanding timer ("retry", "cooldown",
          "endpoint_change") or None
      next_attempt_at: Unix time the pending timer fires
      connected_since: Unix time the current connection was established
      handle_id: Id of the live handle
  """
  state: ConnectionState
  attempt_count: int
  last_error: Optional[str]
  endpoint: Endpoint
  running: bool = False
  pending_timer: Optional[str] = None
  next_attempt_at: Optional[float] = None
  connected_since: Optional[float] = None
  handle_id: Optional[int] = None

  @property
  def connected(self) -> bool:
    return self.state == ConnectionState.CONNECTED

  @property
  def in_cooldown(self) -> bool:
    return self.pending_timer == "cooldown"

  def to_dict(self) -> Dict[str, Any]:
    data = asdict(self)
    data["state"] = self.state.value
    data["endpoint"] = {
        "host": self.endpoint.host,
        "port": self.endpoint.port,
        "version": self.endpoint.version,
    }
    data["in_cooldown"] = self.in_cooldown
    return data


class StatusReporter(EventObserver):
  """Keeps the latest in-game facts reported by the current connection."""

  def __init__(self):
    self._lock = threading.Lock()
    self._facts: Dict[str, Any] = {}

  def on_message(self, event: GameMessage) -> None:
    payload = event.payload
    with self._lock:
      if event.kind == "health":
        self._facts["health"] = payload.get("health")
        if payload.get("food") is not None:
          self._facts["food"] = payload.get("food")
      elif event.kind == "spawn":
        self._facts["position"] = payload.get("position")
        self._facts["spawned"] = True
      elif event.kind in ("chat", "whisper"):
        self._facts["last_chat"] = {
            "username": payload.get("username"),
            "message": payload.get("message"),
            "whisper": event.kind == "whisper",
        }
      self._facts["handle_id"] = event.handle_id

  def on_detached(self, handle_id: int) -> None:
    with self._lock:
      self._facts.clear()

  def facts(self) -> Dict[str, Any]:
    with self._lock:
      return dict(self._facts)


ActionSender = Callable[[Dict[str, Any]], Awaitable[bool]]


class AutoRespawnObserver(EventObserver):
  """Sends a respawn action when the player dies."""

  def __init__(self, send_action: ActionSender, enabled: bool = True):
    self._send_action = send_action
    self.enabled = enabled
    self._pending: Set[asyncio.Task] = set()

  def on_message(self, event: GameMessage) -> None:
    if not self.enabled or event.kind != "health":
      return
    health = event.payload.get("health")
    if health is None or health > 0:
      return

    logger.warning("Bot died! Respawning...")
    task = asyncio.get_running_loop().create_task(self._respawn())
    self._pending.add(task)
    task.add_done_callback(self._pending.discard)

  def on_detached(self, handle_id: int) -> None:
    # A respawn queued for a torn-down handle must not reach its successor
    for task in list(self._pending):
      task.cancel()

  async def _respawn(self) -> None:
    sent = await self._send_action({"type": "respawn"})
    if not sent:
      logger.warning("Respawn not sent: no live connection")
