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

"""Connection lifecycle and reconnection controller.

The controller owns at most one connection handle and keeps the bot joined
to the game server:

    DISCONNECTED --connect()--> CONNECTING --established--> CONNECTED
    CONNECTING/CONNECTED --terminated|faulted--> DISCONNECTED

Every failure, including a handle that cannot even be constructed, goes
through one path: detach the router, close and drop the handle, count the
failure, then schedule exactly one timer. Within the attempt budget the
timer uses capped backoff; past it, a single fixed cooldown timer resets the
counter and tries again. The controller never gives up unless stopped.

All methods run on the event loop thread. Timers capture an epoch when armed
and do nothing if the epoch moved on (stop, endpoint change, manual
cancellation). Status readers get an immutable snapshot.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

from game_link.client.connection_handle import (
    ConnectionHandle,
    HandleFactory,
    WebSocketConnectionHandle,
)
from game_link.client.errors import (
    HandleClosedError,
    InvalidEndpointError,
    TimerStateError,
)
from game_link.client.event_router import EventObserver, EventRouter
from game_link.client.session.backoff import BackoffPolicy
from game_link.client.session.config import (
    BotConfig,
    Credentials,
    Endpoint,
    ReconnectConfig,
)
from game_link.client.status import ConnectionState, StatusSnapshot

logger = logging.getLogger(__name__)

TIMER_RETRY = "retry"
TIMER_COOLDOWN = "cooldown"
TIMER_ENDPOINT_CHANGE = "endpoint_change"


class TimerHandle(Protocol):

  def cancel(self) -> None:
    ...


class Scheduler(Protocol):
  """Anything with asyncio's ``call_later``; the running loop by default."""

  def call_later(self, delay: float, callback: Callable[..., Any],
                 *args: Any) -> TimerHandle:
    ...


def _describe_error(error: BaseException) -> str:
  message = str(error)
  return f"{type(error).__name__}: {message}" if message else type(error).__name__


class ReconnectionController:
  """Keeps a single game connection alive across failures."""

  def __init__(
      self,
      endpoint: Endpoint,
      credentials: Credentials,
      handle_factory: HandleFactory,
      reconnect_config: Optional[ReconnectConfig] = None,
      observers: Iterable[EventObserver] = (),
      scheduler: Optional[Scheduler] = None,
      clock: Callable[[], float] = time.time,
  ):
    """Initialize the controller. Nothing connects until start().

    Args:
        endpoint: Initial server endpoint
        credentials: Login account
        handle_factory: Builds a ConnectionHandle for (endpoint,
            credentials, handle_id)
        reconnect_config: Retry timing (defaults to ReconnectConfig())
        observers: Domain event observers to register on the router
        scheduler: Timer source; the running event loop if None
        clock: Wall clock for snapshot timestamps
    """
    self._endpoint = endpoint
    self._credentials = credentials
    self._handle_factory = handle_factory
    self._config = reconnect_config or ReconnectConfig()
    self._backoff = BackoffPolicy(self._config.base_delay, self._config.max_delay)
    self._scheduler = scheduler
    self._clock = clock

    self._router = EventRouter(
        on_established=self.on_established,
        on_terminated=self.on_terminated,
        on_faulted=self.on_faulted,
    )
    for observer in observers:
      self._router.add_observer(observer)

    self._state = ConnectionState.DISCONNECTED
    self._attempts = 0
    self._last_error: Optional[str] = None
    self._running = False
    self._connected_since: Optional[float] = None

    self._handle: Optional[ConnectionHandle] = None
    self._next_handle_id = 0
    # Torn-down handles whose sockets may still be closing
    self._closing: List[ConnectionHandle] = []

    # The one outstanding retry/cooldown/endpoint-change timer
    self._epoch = 0
    self._timer: Optional[TimerHandle] = None
    self._timer_kind: Optional[str] = None
    self._timer_due: Optional[float] = None

    self._stability_timer: Optional[TimerHandle] = None

    self._snapshot = self._build_snapshot()

  @classmethod
  def from_config(
      cls,
      config: BotConfig,
      observers: Iterable[EventObserver] = (),
      handle_factory: Optional[HandleFactory] = None,
      scheduler: Optional[Scheduler] = None,
  ) -> 'ReconnectionController':
    """Build a controller using the websocket handle by default."""
    return cls(
        endpoint=config.endpoint,
        credentials=config.credentials,
        handle_factory=handle_factory or WebSocketConnectionHandle.factory(
            config.connection
        ),
        reconnect_config=config.reconnect,
        observers=observers,
        scheduler=scheduler,
    )

  # ---------------------------------------------------------------------------
  # Read-only accessors
  # ---------------------------------------------------------------------------

  @property
  def state(self) -> ConnectionState:
    return self._state

  @property
  def attempt_count(self) -> int:
    return self._attempts

  @property
  def endpoint(self) -> Endpoint:
    return self._endpoint

  @property
  def credentials(self) -> Credentials:
    return self._credentials

  @property
  def running(self) -> bool:
    return self._running

  @property
  def router(self) -> EventRouter:
    return self._router

  @property
  def current_handle(self) -> Optional[ConnectionHandle]:
    return self._handle

  @property
  def pending_timer(self) -> Optional[str]:
    return self._timer_kind

  def status(self) -> StatusSnapshot:
    """Latest snapshot. Never blocks and never changes state."""
    return self._snapshot

  # ---------------------------------------------------------------------------
  # Commands
  # ---------------------------------------------------------------------------

  def start(self) -> None:
    """Begin connecting unless an attempt is live or already scheduled."""
    if not self._running:
      self._running = True
      logger.info("Reconnection controller started")

    if self._state != ConnectionState.DISCONNECTED or self._handle is not None:
      logger.debug(f"start(): already {self._state.value}, nothing to do")
      self._publish()
      return
    if self._timer is not None:
      logger.debug(f"start(): {self._timer_kind} timer already pending")
      self._publish()
      return

    self.connect()

  def connect(self) -> None:
    """Create a handle for the current endpoint and start it."""
    if not self._running:
      logger.info("connect() skipped: controller is stopped")
      return
    if self._handle is not None:
      logger.warning(
          f"connect() ignored: handle {self._handle.handle_id} is still live"
      )
      return
    if self._timer is not None:
      self._cancel_timer()

    self._next_handle_id += 1
    handle_id = self._next_handle_id
    endpoint = self._endpoint

    logger.info(
        f"Attempting to connect to {endpoint} as {self._credentials.username} "
        f"(handle {handle_id})"
    )
    self._state = ConnectionState.CONNECTING
    self._publish()

    handle = None
    try:
      handle = self._handle_factory(endpoint, self._credentials, handle_id)
      self._handle = handle
      self._router.attach(handle)
      handle.open()
    except Exception as e:
      if handle is not None and self._handle is not handle:
        # A terminal event from open() already tore this handle down
        logger.debug(
            f"Handle {handle_id} raised after teardown: {_describe_error(e)}"
        )
        return
      logger.error(f"Connection error: {_describe_error(e)}")
      self._handle_failure(_describe_error(e))
      return

    self._publish()

  def change_endpoint(self, host: str, port: int, version: str = "") -> bool:
    """Switch to another server.

    The old handle is torn down without counting as a failure, the attempt
    counter resets, and exactly one connect() follows after a short delay.

    Returns:
        False if the endpoint is invalid; nothing is changed in that case
    """
    endpoint = Endpoint(host=host, port=port, version=version or "")
    try:
      endpoint.validate()
    except InvalidEndpointError as e:
      logger.warning(f"Rejected endpoint change: {e}")
      return False

    logger.info(f"Changing server from {self._endpoint} to {endpoint}")
    self._cancel_timer()
    if self._handle is not None:
      logger.info("Disconnecting from current server...")
    self._teardown("endpoint changed")

    self._endpoint = endpoint
    self._attempts = 0
    self._last_error = None
    self._running = True
    self._arm_timer(
        TIMER_ENDPOINT_CHANGE, self._config.endpoint_change_delay, self.connect
    )
    return True

  def stop(self) -> None:
    """Tear down the live handle and stay dormant until start()."""
    self._running = False
    self._cancel_timer()
    if self._handle is not None:
      logger.info("Stopping bot...")
    self._teardown("stopped")
    self._publish()

  async def send_action(self, action: Dict[str, Any]) -> bool:
    """Send an action through the live handle.

    Returns:
        False if there is no established connection or the send failed
    """
    handle = self._handle
    if handle is None or self._state != ConnectionState.CONNECTED:
      return False
    try:
      await handle.send_action(action)
      return True
    except HandleClosedError as e:
      logger.warning(f"Action {action.get('type')} not sent: {e}")
      return False

  async def wait_closed(self) -> None:
    """Wait for handles closed by teardown to release their resources."""
    handles = list(self._closing)
    self._closing.clear()
    results = await asyncio.gather(
        *(handle.wait_closed() for handle in handles), return_exceptions=True
    )
    for handle, result in zip(handles, results):
      if isinstance(result, Exception):
        logger.warning(f"Handle {handle.handle_id} failed to close: {result}")

  # ---------------------------------------------------------------------------
  # Transitions driven by the router
  # ---------------------------------------------------------------------------

  def on_established(self, handle_id: int) -> None:
    if not self._is_current(handle_id):
      return
    if self._state != ConnectionState.CONNECTING:
      logger.warning(f"Handle {handle_id} established while {self._state.value}")
      return

    self._state = ConnectionState.CONNECTED
    self._connected_since = self._clock()
    # The counter is forgiven only after the connection proves stable
    self._stability_timer = self._get_scheduler().call_later(
        self._config.stability_window, self._on_stable, handle_id
    )
    logger.info(
        f"Bot logged in successfully to {self._endpoint} (handle {handle_id})"
    )
    self._publish()

  def on_terminated(self, handle_id: int, reason: str) -> None:
    if not self._is_current(handle_id):
      return
    logger.warning(f"Bot disconnected: {reason}")
    self._handle_failure(reason)

  def on_faulted(self, handle_id: int, error: BaseException) -> None:
    if not self._is_current(handle_id):
      return
    description = _describe_error(error)
    logger.error(f"Bot error: {description}")
    self._handle_failure(description)

  def schedule_retry(self) -> None:
    """Arm the retry or cooldown timer for the current attempt count."""
    if not self._running:
      return
    if self._handle is not None or self._state != ConnectionState.DISCONNECTED:
      logger.warning("schedule_retry() ignored: a connection is live")
      return
    if self._timer is not None:
      if self._timer_kind == TIMER_COOLDOWN:
        logger.debug("Cooldown already pending")
      else:
        logger.warning(f"schedule_retry() ignored: {self._timer_kind} timer pending")
      return

    max_attempts = self._config.max_reconnect_attempts
    if self._attempts > max_attempts:
      logger.warning(
          f"Max reconnection attempts ({max_attempts}) exceeded. "
          f"Waiting {self._config.cooldown:.0f}s before trying again..."
      )
      self._arm_timer(TIMER_COOLDOWN, self._config.cooldown, self._end_cooldown)
      return

    delay = self._backoff.delay(max(1, self._attempts))
    logger.info(
        f"Attempting to reconnect in {delay:.1f}s... "
        f"({self._attempts}/{max_attempts})"
    )
    self._arm_timer(TIMER_RETRY, delay, self.connect)

  # ---------------------------------------------------------------------------
  # Internals
  # ---------------------------------------------------------------------------

  def _is_current(self, handle_id: int) -> bool:
    if self._handle is None or self._handle.handle_id != handle_id:
      logger.debug(f"Ignoring event from superseded handle {handle_id}")
      return False
    return True

  def _handle_failure(self, description: str) -> None:
    # Teardown strictly precedes retry scheduling
    self._teardown(description)
    self._attempts += 1
    self._last_error = description
    self._publish()
    self.schedule_retry()

  def _teardown(self, reason: str) -> None:
    self._router.detach()
    handle, self._handle = self._handle, None

    if self._stability_timer is not None:
      self._stability_timer.cancel()
      self._stability_timer = None
    self._state = ConnectionState.DISCONNECTED
    self._connected_since = None

    if handle is not None:
      try:
        handle.close(reason)
      except Exception:
        logger.exception(f"Error closing handle {handle.handle_id}")
      self._closing = [h for h in self._closing if not h.released]
      self._closing.append(handle)

  def _on_stable(self, handle_id: int) -> None:
    self._stability_timer = None
    if not self._is_current(handle_id) or self._state != ConnectionState.CONNECTED:
      return
    if self._attempts:
      logger.info(
          f"Connection stable for {self._config.stability_window:.0f}s, "
          f"resetting attempt counter (was {self._attempts})"
      )
    self._attempts = 0
    self._publish()

  def _end_cooldown(self) -> None:
    logger.info("Resetting reconnection attempts. Will try connecting again...")
    self._attempts = 0
    self._publish()
    self.connect()

  def _arm_timer(self, kind: str, delay: float, callback: Callable[[], None]) -> None:
    if self._timer is not None:
      raise TimerStateError(
          f"Cannot arm {kind} timer: {self._timer_kind} timer already pending"
      )

    epoch = self._epoch

    def fire() -> None:
      if epoch != self._epoch:
        logger.debug(f"Ignoring superseded {kind} timer")
        return
      self._timer = None
      self._timer_kind = None
      self._timer_due = None
      callback()

    self._timer = self._get_scheduler().call_later(delay, fire)
    self._timer_kind = kind
    self._timer_due = self._clock() + delay
    self._publish()

  def _cancel_timer(self) -> None:
    self._epoch += 1
    if self._timer is not None:
      logger.debug(f"Cancelling pending {self._timer_kind} timer")
      self._timer.cancel()
    self._timer = None
    self._timer_kind = None
    self._timer_due = None

  def _get_scheduler(self) -> Scheduler:
    return self._scheduler or asyncio.get_running_loop()

  def _build_snapshot(self) -> StatusSnapshot:
    return StatusSnapshot(
        state=self._state,
        attempt_count=self._attempts,
        last_error=self._last_error,
        endpoint=self._endpoint,
        running=self._running,
        pending_timer=self._timer_kind,
        next_attempt_at=self._timer_due,
        connected_since=self._connected_since,
        handle_id=self._handle.handle_id if self._handle is not None else None,
    )

  def _publish(self) -> None:
    self._snapshot = self._build_snapshot()
