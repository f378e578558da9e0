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

"""Connection handles: one object per attempt to join the game server.

A handle reports its lifecycle through a typed event stream:

    Established       the server accepted the login
    Terminated        the connection ended (closed, kicked)
    Faulted           the attempt failed with an exception
    GameMessage       any other server message (chat, health, spawn, ...)

Terminated and Faulted are terminal. Once one of them has been emitted, or
the owner has called ``close()``, the handle emits nothing further.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from game_link.client.errors import GameServerError, HandleClosedError, ProtocolError
from game_link.client.protocol_models import (
    ErrorMessage,
    KickedMessage,
    LoginRequest,
    LoginSuccessMessage,
    PingMessage,
    build_action_frame,
    parse_server_message,
    safe_json_loads,
)
from game_link.client.session.config import ConnectionConfig, Credentials, Endpoint

logger = logging.getLogger(__name__)

# Websocket close reasons are limited to 123 bytes on the wire
MAX_CLOSE_REASON_LENGTH = 120


@dataclass(frozen=True)
class HandleEvent:
  """Base class for events emitted by a connection handle."""
  handle_id: int


@dataclass(frozen=True)
class Established(HandleEvent):
  """Login accepted; the connection is usable."""


@dataclass(frozen=True)
class Terminated(HandleEvent):
  """The connection ended without a local exception."""
  reason: str


@dataclass(frozen=True)
class Faulted(HandleEvent):
  """The connection attempt or session failed with an error."""
  error: BaseException


@dataclass(frozen=True)
class GameMessage(HandleEvent):
  """Domain message from the server, passed on to observers."""
  kind: str
  payload: Dict[str, Any] = field(default_factory=dict)


HandleListener = Callable[[HandleEvent], None]


class ConnectionHandle:
  """One attempt to join the remote game server.

  Subclasses implement ``open``, ``send_action`` and ``close`` and call
  ``_emit`` to report events. The base class enforces that nothing is
  delivered once the handle is finished.
  """

  def __init__(self, handle_id: int, endpoint: Endpoint):
    self.handle_id = handle_id
    self.endpoint = endpoint
    self._listeners: List[HandleListener] = []
    self._finished = False

  @property
  def finished(self) -> bool:
    """True once a terminal event was emitted or close() was called."""
    return self._finished

  @property
  def released(self) -> bool:
    """True once the resources freed by close() are gone."""
    return self._finished

  @property
  def listeners(self) -> List[HandleListener]:
    return list(self._listeners)

  def add_listener(self, listener: HandleListener) -> None:
    self._listeners.append(listener)

  def remove_listener(self, listener: HandleListener) -> None:
    try:
      self._listeners.remove(listener)
    except ValueError:
      pass

  def open(self) -> None:
    """Start connecting. Must not block."""
    raise NotImplementedError

  async def send_action(self, action: Dict[str, Any]) -> None:
    """Send an outbound action.

    Raises:
        HandleClosedError: If the handle is not established or already closed
    """
    raise NotImplementedError

  def close(self, reason: str = "client closing") -> None:
    """Stop the connection and silence the event stream. Must not block."""
    raise NotImplementedError

  async def wait_closed(self) -> None:
    """Wait until resources released by close() are gone."""

  def _emit(self, event: HandleEvent) -> None:
    if self._finished:
      logger.debug(
          f"Handle {self.handle_id} finished, dropping {type(event).__name__}"
      )
      return
    if isinstance(event, (Terminated, Faulted)):
      self._finished = True

    for listener in list(self._listeners):
      try:
        listener(event)
      except Exception:
        logger.exception(
            f"Listener failed on {type(event).__name__} from handle {self.handle_id}"
        )


HandleFactory = Callable[[Endpoint, Credentials, int], ConnectionHandle]


class WebSocketConnectionHandle(ConnectionHandle):
  """Handle speaking the JSON gateway protocol over a websocket."""

  def __init__(
      self,
      handle_id: int,
      endpoint: Endpoint,
      credentials: Credentials,
      config: Optional[ConnectionConfig] = None,
  ):
    """Initialize the handle. No I/O happens until open().

    Args:
        handle_id: Generation id assigned by the controller
        endpoint: Server to join
        credentials: Login account
        config: Transport settings (defaults to ConnectionConfig())
    """
    super().__init__(handle_id, endpoint)
    self.credentials = credentials
    self.config = config or ConnectionConfig()

    path = self.config.path if self.config.path.startswith("/") else f"/{self.config.path}"
    self.url = f"ws://{endpoint.host}:{endpoint.port}{path}"

    self._websocket = None
    self._task: Optional[asyncio.Task] = None
    self._closer: Optional[asyncio.Task] = None
    self._close_requested = False
    self._established = False

  @classmethod
  def factory(cls, config: Optional[ConnectionConfig] = None) -> HandleFactory:
    """Build a handle factory bound to the given transport settings."""
    def create(endpoint: Endpoint, credentials: Credentials, handle_id: int):
      return cls(handle_id, endpoint, credentials, config)
    return create

  @property
  def established(self) -> bool:
    return self._established and not self._finished

  @property
  def released(self) -> bool:
    if self._closer is not None:
      return self._closer.done()
    return self._task is None or self._task.done()

  def open(self) -> None:
    if self._task is not None:
      raise RuntimeError(f"Handle {self.handle_id} already opened")
    loop = asyncio.get_running_loop()
    self._task = loop.create_task(
        self._run(), name=f"game-link-handle-{self.handle_id}"
    )

  async def send_action(self, action: Dict[str, Any]) -> None:
    websocket = self._websocket
    if websocket is None or not self.established:
      raise HandleClosedError(f"Handle {self.handle_id} is not connected")

    frame = build_action_frame(action)
    try:
      await asyncio.wait_for(
          websocket.send(frame), timeout=self.config.message_timeout
      )
    except asyncio.TimeoutError as e:
      raise HandleClosedError(
          f"Send timed out on handle {self.handle_id} after "
          f"{self.config.message_timeout}s"
      ) from e
    except (ConnectionClosed, WebSocketException, OSError) as e:
      raise HandleClosedError(f"Send failed on handle {self.handle_id}: {e}") from e

  def close(self, reason: str = "client closing") -> None:
    if self._close_requested:
      return
    self._close_requested = True
    self._finished = True
    self._listeners.clear()

    if self._task is None:
      return
    self._closer = self._task.get_loop().create_task(self._shutdown(reason))

  async def wait_closed(self) -> None:
    if self._closer is not None:
      await self._closer
    elif self._task is not None:
      await asyncio.gather(self._task, return_exceptions=True)

  async def _run(self) -> None:
    """Connect, log in, and pump frames until the connection ends."""
    try:
      self._websocket = await asyncio.wait_for(
          websockets.connect(
              self.url,
              ping_interval=self.config.ping_interval,
              ping_timeout=self.config.ping_timeout,
              max_size=self.config.max_message_size,
              max_queue=self.config.max_queue,
              close_timeout=self.config.close_timeout,
          ),
          timeout=self.config.connect_timeout
      )

      # No logging of the login frame to avoid credential leakage
      logger.debug(
          f"Handle {self.handle_id}: socket open to {self.url}, "
          f"logging in as {self.credentials.username}"
      )
      login = LoginRequest(
          username=self.credentials.username,
          password=self.credentials.password,
          auth=self.credentials.auth,
          version=self.endpoint.version,
      )
      await self._websocket.send(login.model_dump_json())

      async for raw in self._websocket:
        await self._handle_frame(raw)
        if self._finished:
          break

      self._emit(Terminated(self.handle_id, "connection closed by server"))

    except asyncio.CancelledError:
      raise
    except ConnectionClosed as e:
      self._emit(Terminated(self.handle_id, f"connection closed: {e}"))
    except asyncio.TimeoutError:
      self._emit(Faulted(
          self.handle_id,
          asyncio.TimeoutError(
              f"Connection timeout after {self.config.connect_timeout}s"
          ),
      ))
    except (OSError, WebSocketException) as e:
      self._emit(Faulted(self.handle_id, e))
    except Exception as e:
      logger.exception(f"Handle {self.handle_id}: unexpected error")
      self._emit(Faulted(self.handle_id, e))
    finally:
      await self._close_socket("session ended")

  async def _handle_frame(self, raw: Any) -> None:
    try:
      data = safe_json_loads(
          raw,
          max_size=self.config.max_message_size,
          max_depth=self.config.max_json_depth,
      )
      message = parse_server_message(data)
    except (ProtocolError, ValidationError) as e:
      logger.warning(f"Handle {self.handle_id}: dropping malformed frame: {e}")
      return

    if isinstance(message, LoginSuccessMessage):
      if not self._established:
        self._established = True
        self._emit(Established(self.handle_id))
    elif isinstance(message, KickedMessage):
      self._emit(Terminated(self.handle_id, f"kicked: {message.reason}"))
    elif isinstance(message, ErrorMessage):
      self._emit(Faulted(
          self.handle_id, GameServerError(message.message, message.code)
      ))
    elif isinstance(message, PingMessage):
      pong = {"type": "pong"}
      if message.echo:
        pong["echo"] = message.echo
      await self._websocket.send(json.dumps(pong))
    else:
      self._emit(GameMessage(
          self.handle_id, message.type, message.model_dump(exclude_none=True)
      ))

  async def _close_socket(self, reason: str) -> None:
    websocket, self._websocket = self._websocket, None
    if websocket is None:
      return
    try:
      await asyncio.wait_for(
          websocket.close(code=1000, reason=reason[:MAX_CLOSE_REASON_LENGTH]),
          timeout=self.config.close_timeout
      )
    except asyncio.TimeoutError:
      logger.warning(
          f"Handle {self.handle_id}: close timed out after {self.config.close_timeout}s"
      )
    except (OSError, WebSocketException) as e:
      logger.warning(f"Handle {self.handle_id}: error closing websocket: {e}")

  async def _shutdown(self, reason: str) -> None:
    await self._close_socket(reason)
    if self._task is not None and not self._task.done():
      self._task.cancel()
    if self._task is not None:
      await asyncio.gather(self._task, return_exceptions=True)
    logger.debug(f"Handle {self.handle_id} closed: {reason}")
