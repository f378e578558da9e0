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

"""HTTP control surface for the bot.

A thin aiohttp application over the reconnection controller, the command
dispatcher and the status reporter. It reads snapshots and issues commands;
it never drives connection logic itself.

Routes:
    GET  /health            liveness
    GET  /api/status        connection snapshot plus game facts
    GET  /api/server        current endpoint
    POST /api/server        switch endpoint and reconnect
    POST /api/bot/start     start (or resume) connecting
    POST /api/bot/stop      disconnect and stay dormant
    POST /api/command       run a command as ``WebInterface``
    POST /api/chat          send a chat message

Every failure is reported as ``{"success": false, "message": ...}``.
"""

import hmac
import json
import logging
from typing import Any, Callable, Dict, Optional

from aiohttp import web
from pydantic import BaseModel, Field, ValidationError, field_validator

from game_link.client.command_dispatcher import WEB_SOURCE, CommandDispatcher
from game_link.client.errors import InvalidEndpointError
from game_link.client.reconnection_controller import ReconnectionController
from game_link.client.session.config import (
    DEFAULT_SERVER_PORT,
    ControlConfig,
    Endpoint,
)
from game_link.client.status import ConnectionState, StatusReporter

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"
MAX_BODY_SIZE = 64 * 1024


class ServerChangeRequest(BaseModel):
  host: str = Field(min_length=1)
  port: int = DEFAULT_SERVER_PORT
  version: str = ""

  @field_validator("host", "version", mode="before")
  @classmethod
  def _strip(cls, value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value

  @field_validator("port", mode="before")
  @classmethod
  def _default_port(cls, value: Any) -> Any:
    # Missing, blank or zero ports fall back to the game's default port
    if value is None or value == "" or value == 0:
      return DEFAULT_SERVER_PORT
    return value

  @field_validator("version", mode="before")
  @classmethod
  def _default_version(cls, value: Any) -> Any:
    return "" if value is None else value


class CommandRequest(BaseModel):
  command: str = Field(min_length=1)


class ChatRequest(BaseModel):
  message: str = Field(min_length=1, max_length=256)


def _failure(message: str, status: int = 400) -> web.Response:
  return web.json_response({"success": False, "message": message}, status=status)


def _validation_message(error: ValidationError) -> str:
  first = error.errors()[0]
  location = ".".join(str(part) for part in first.get("loc", ()))
  return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


def api_key_middleware(api_token: Optional[str]) -> Callable:
  """Require a static ``X-API-Key`` on /api routes when a token is set."""

  @web.middleware
  async def middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
    if api_token and request.path.startswith("/api/"):
      supplied = request.headers.get(API_KEY_HEADER, "")
      if not hmac.compare_digest(supplied.encode(), api_token.encode()):
        logger.warning(f"Rejected {request.method} {request.path}: bad API key")
        return _failure("Unauthorized", status=401)
    return await handler(request)

  return middleware


@web.middleware
async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
  """Format every error as the JSON failure envelope."""
  try:
    return await handler(request)
  except web.HTTPException as e:
    if e.status < 400:
      raise
    return _failure(e.reason or "Request failed", status=e.status)
  except Exception:
    logger.exception(f"Unhandled error on {request.method} {request.path}")
    return _failure("Internal server error", status=500)


class ControlServer:
  """aiohttp application serving the control routes."""

  def __init__(
      self,
      controller: Optional[ReconnectionController],
      dispatcher: Optional[CommandDispatcher] = None,
      reporter: Optional[StatusReporter] = None,
      config: Optional[ControlConfig] = None,
  ):
    """Initialize the control server.

    Args:
        controller: Controller to query and command; requests fail with a
            JSON error while this is None
        dispatcher: Command dispatcher for /api/command
        reporter: Game facts source for /api/status
        config: Bind address and optional API token
    """
    self.controller = controller
    self.dispatcher = dispatcher
    self.reporter = reporter
    self.config = config or ControlConfig()

    self._runner: Optional[web.AppRunner] = None
    self._site: Optional[web.TCPSite] = None

  def create_app(self) -> web.Application:
    app = web.Application(
        middlewares=[error_middleware, api_key_middleware(self.config.api_token)],
        client_max_size=MAX_BODY_SIZE,
    )
    app.router.add_get("/health", self.health)
    app.router.add_get("/api/status", self.get_status)
    app.router.add_get("/api/server", self.get_server)
    app.router.add_post("/api/server", self.change_server)
    app.router.add_post("/api/bot/start", self.start_bot)
    app.router.add_post("/api/bot/stop", self.stop_bot)
    app.router.add_post("/api/command", self.run_command)
    app.router.add_post("/api/chat", self.send_chat)
    return app

  async def start(self) -> None:
    """Start serving (non-blocking)."""
    if self._runner is not None:
      logger.warning("Control server already running")
      return

    self._runner = web.AppRunner(self.create_app())
    await self._runner.setup()
    self._site = web.TCPSite(self._runner, self.config.host, self.config.port)
    await self._site.start()
    logger.info(
        f"Control server listening on http://{self.config.host}:{self.config.port}"
    )

  async def stop(self) -> None:
    if self._runner is None:
      return
    logger.info("Stopping control server...")
    await self._runner.cleanup()
    self._runner = None
    self._site = None

  @property
  def is_running(self) -> bool:
    return self._runner is not None

  # ---------------------------------------------------------------------------
  # Handlers
  # ---------------------------------------------------------------------------

  async def health(self, request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})

  async def get_status(self, request: web.Request) -> web.Response:
    if self.controller is None:
      return _failure("Bot instance not available", status=503)

    snapshot = self.controller.status()
    body: Dict[str, Any] = {
        "success": True,
        "status": "online" if snapshot.connected else "offline",
        "username": self.controller.credentials.username,
        "connection": snapshot.to_dict(),
    }
    if snapshot.state == ConnectionState.CONNECTED and self.reporter is not None:
      body["game"] = self.reporter.facts()
    return web.json_response(body)

  async def get_server(self, request: web.Request) -> web.Response:
    if self.controller is None:
      return _failure("Bot instance not available", status=503)
    endpoint = self.controller.endpoint
    return web.json_response({
        "success": True,
        "host": endpoint.host,
        "port": endpoint.port,
        "version": endpoint.version,
    })

  async def change_server(self, request: web.Request) -> web.Response:
    payload = await self._parse(request, ServerChangeRequest)
    if isinstance(payload, web.Response):
      return payload
    if self.controller is None:
      return _failure("Bot instance not available", status=503)

    try:
      Endpoint(payload.host, payload.port, payload.version).validate()
    except InvalidEndpointError as e:
      return _failure(str(e))

    if not self.controller.change_endpoint(payload.host, payload.port, payload.version):
      return _failure("Invalid server endpoint")

    logger.info(f"Server changed from control surface: {payload.host}:{payload.port}")
    return web.json_response({
        "success": True,
        "message": f"Server changed to {payload.host}:{payload.port}",
        "host": payload.host,
        "port": payload.port,
        "version": payload.version,
    })

  async def start_bot(self, request: web.Request) -> web.Response:
    if self.controller is None:
      return _failure("Bot instance not available", status=503)
    self.controller.start()
    return web.json_response({"success": True, "message": "Bot starting"})

  async def stop_bot(self, request: web.Request) -> web.Response:
    if self.controller is None:
      return _failure("Bot instance not available", status=503)
    self.controller.stop()
    return web.json_response({"success": True, "message": "Bot stopped"})

  async def run_command(self, request: web.Request) -> web.Response:
    payload = await self._parse(request, CommandRequest)
    if isinstance(payload, web.Response):
      return payload
    if self.controller is None or self.dispatcher is None:
      return _failure("Bot instance not available", status=503)
    if not self.controller.status().connected:
      return _failure("Bot not connected")

    result = await self.dispatcher.dispatch(WEB_SOURCE, payload.command)
    return web.json_response(
        {"success": result.success, "message": result.message},
        status=200 if result.success else 400,
    )

  async def send_chat(self, request: web.Request) -> web.Response:
    payload = await self._parse(request, ChatRequest)
    if isinstance(payload, web.Response):
      return payload
    if self.controller is None:
      return _failure("Bot instance not available", status=503)

    sent = await self.controller.send_action(
        {"type": "chat", "message": payload.message}
    )
    if not sent:
      return _failure("Bot not connected")
    return web.json_response({"success": True, "message": "Message sent successfully"})

  async def _parse(self, request: web.Request, model: type):
    """Decode and validate a JSON body, or return a failure response."""
    try:
      body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
      return _failure("Request body must be valid JSON")
    if not isinstance(body, dict):
      return _failure("Request body must be a JSON object")
    try:
      return model.model_validate(body)
    except ValidationError as e:
      return _failure(_validation_message(e))
