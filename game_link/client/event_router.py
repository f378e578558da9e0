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

"""Routes events from the live connection handle.

Lifecycle events go to the controller's transition methods; domain messages
go to observers that know nothing about reconnection. The router subscribes
to one handle at a time and remembers only that handle's id. Anything
arriving from another id, including events queued before a detach, is
dropped.
"""

import logging
from typing import Callable, List, Optional

from game_link.client.connection_handle import (
    ConnectionHandle,
    Established,
    Faulted,
    GameMessage,
    HandleEvent,
    HandleListener,
    Terminated,
)

logger = logging.getLogger(__name__)


class EventObserver:
  """Receives domain messages from whichever handle is current."""

  def on_message(self, event: GameMessage) -> None:
    pass

  def on_detached(self, handle_id: int) -> None:
    """Called when the handle that produced earlier messages is gone."""


class EventRouter:
  """Single-subscription event router."""

  def __init__(
      self,
      on_established: Callable[[int], None],
      on_terminated: Callable[[int, str], None],
      on_faulted: Callable[[int, BaseException], None],
  ):
    """Initialize router.

    Args:
        on_established: Called with the handle id on Established
        on_terminated: Called with the handle id and reason on Terminated
        on_faulted: Called with the handle id and error on Faulted
    """
    self._on_established = on_established
    self._on_terminated = on_terminated
    self._on_faulted = on_faulted
    self._observers: List[EventObserver] = []

    self._handle: Optional[ConnectionHandle] = None
    self._listener: Optional[HandleListener] = None
    self._active_id: Optional[int] = None
    self.dropped_events = 0

  @property
  def active_id(self) -> Optional[int]:
    """Id of the subscribed handle, or None."""
    return self._active_id

  def add_observer(self, observer: EventObserver) -> None:
    self._observers.append(observer)

  def remove_observer(self, observer: EventObserver) -> None:
    if observer in self._observers:
      self._observers.remove(observer)

  def attach(self, handle: ConnectionHandle) -> int:
    """Subscribe to a handle.

    Returns:
        The registration token (the handle id)

    Raises:
        RuntimeError: If another handle is still attached
    """
    if self._handle is not None:
      raise RuntimeError(
          f"Router already attached to handle {self._active_id}; "
          f"detach before attaching handle {handle.handle_id}"
      )

    handle_id = handle.handle_id

    def listener(event: HandleEvent) -> None:
      self._dispatch(handle_id, event)

    self._handle = handle
    self._listener = listener
    self._active_id = handle_id
    handle.add_listener(listener)
    return handle_id

  def detach(self) -> Optional[int]:
    """Invalidate the subscription. Takes effect before this returns.

    Returns:
        Id of the handle that was detached, or None
    """
    handle, listener, handle_id = self._handle, self._listener, self._active_id
    self._handle = None
    self._listener = None
    self._active_id = None

    if handle is None:
      return None

    handle.remove_listener(listener)
    for observer in list(self._observers):
      try:
        observer.on_detached(handle_id)
      except Exception:
        logger.exception(f"Observer {type(observer).__name__} failed on detach")
    return handle_id

  def _dispatch(self, handle_id: int, event: HandleEvent) -> None:
    if handle_id != self._active_id or event.handle_id != handle_id:
      self.dropped_events += 1
      logger.debug(
          f"Dropping stale {type(event).__name__} from handle {event.handle_id} "
          f"(current: {self._active_id})"
      )
      return

    if isinstance(event, Established):
      self._on_established(handle_id)
    elif isinstance(event, Terminated):
      self._on_terminated(handle_id, event.reason)
    elif isinstance(event, Faulted):
      self._on_faulted(handle_id, event.error)
    elif isinstance(event, GameMessage):
      for observer in list(self._observers):
        try:
          observer.on_message(event)
        except Exception:
          logger.exception(
              f"Observer {type(observer).__name__} failed on {event.kind} message"
          )
    else:
      logger.warning(f"Unknown handle event type: {type(event).__name__}")
