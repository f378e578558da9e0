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

"""Command dispatch for chat users and the control surface.

Commands are opaque lines such as ``.say hello``. The first word selects a
registered handler; anything unknown is forwarded to the server as a
``{"type": "command"}`` action so the gateway can interpret it.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Set

from game_link.client.connection_handle import GameMessage
from game_link.client.event_router import EventObserver
from game_link.client.session.config import CommandConfig
from game_link.client.status import ActionSender

logger = logging.getLogger(__name__)

WEB_SOURCE = "WebInterface"


@dataclass(frozen=True)
class CommandResult:
  success: bool
  message: str


CommandHandler = Callable[[str, List[str]], Awaitable[CommandResult]]


class CommandDispatcher:
  """Routes command lines to handlers or forwards them to the server."""

  def __init__(self, send_action: ActionSender, prefix: str = "."):
    """Initialize dispatcher.

    Args:
        send_action: Coroutine sending an action dict; returns False when
            there is no live connection
        prefix: Command prefix; added to lines that lack it
    """
    if not prefix:
      raise ValueError("command prefix cannot be empty")
    self._send_action = send_action
    self.prefix = prefix
    self._handlers: Dict[str, CommandHandler] = {}

  @property
  def commands(self) -> List[str]:
    return sorted(self._handlers)

  def register(self, name: str, handler: CommandHandler) -> None:
    """Register a handler for the first word of a command line.

    Raises:
        ValueError: If the name is empty or already registered
    """
    key = name.strip().lower()
    if not key or any(c.isspace() for c in key):
      raise ValueError(f"Invalid command name: {name!r}")
    if key in self._handlers:
      raise ValueError(f"Command already registered: {key}")
    self._handlers[key] = handler

  def normalize(self, line: str) -> str:
    line = line.strip()
    return line if line.startswith(self.prefix) else self.prefix + line

  async def dispatch(self, source: str, line: str) -> CommandResult:
    """Execute a command line on behalf of ``source``.

    Args:
        source: Chat username or ``WebInterface``
        line: Command line, with or without the prefix

    Returns:
        CommandResult describing the outcome
    """
    if not line or not line.strip():
      return CommandResult(False, "Command is required")

    normalized = self.normalize(line)
    words = normalized[len(self.prefix):].split()
    if not words:
      return CommandResult(False, "Command is required")

    name, args = words[0].lower(), words[1:]
    logger.info(f"Command from {source}: {normalized}")

    handler = self._handlers.get(name)
    if handler is not None:
      try:
        return await handler(source, args)
      except Exception as e:
        logger.exception(f"Command {name} failed")
        return CommandResult(False, f"Command {name} failed: {e}")

    sent = await self._send_action({
        "type": "command",
        "command": normalized,
        "source": source,
    })
    if not sent:
      return CommandResult(False, "Bot not connected")
    return CommandResult(True, f"Command forwarded: {normalized}")


def say_handler(send_action: ActionSender) -> CommandHandler:
  """Build the ``say <text>`` handler, which sends a chat message."""

  async def say(source: str, args: List[str]) -> CommandResult:
    if not args:
      return CommandResult(False, "Usage: say <message>")
    message = " ".join(args)
    if not await send_action({"type": "chat", "message": message}):
      return CommandResult(False, "Bot not connected")
    return CommandResult(True, "Message sent successfully")

  return say


class ChatCommandObserver(EventObserver):
  """Dispatches prefixed chat and whisper lines from allowed users."""

  def __init__(self, dispatcher: CommandDispatcher, config: CommandConfig):
    self._dispatcher = dispatcher
    self._config = config
    self._pending: Set[asyncio.Task] = set()

  def on_message(self, event: GameMessage) -> None:
    if event.kind not in ("chat", "whisper"):
      return
    username = event.payload.get("username")
    message = event.payload.get("message") or ""
    if not username or not message.startswith(self._config.prefix):
      return
    if not self._config.is_allowed(username):
      logger.info(f"Ignoring command from unauthorized user {username}")
      return

    task = asyncio.get_running_loop().create_task(
        self._run(username, message)
    )
    self._pending.add(task)
    task.add_done_callback(self._pending.discard)

  def on_detached(self, handle_id: int) -> None:
    for task in list(self._pending):
      task.cancel()

  async def _run(self, username: str, message: str) -> None:
    result = await self._dispatcher.dispatch(username, message)
    if not result.success:
      logger.warning(f"Command from {username} failed: {result.message}")
