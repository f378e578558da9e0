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

"""Tests for the HTTP control surface."""

import unittest

from aiohttp import test_utils

from game_link.client.command_dispatcher import CommandDispatcher, say_handler
from game_link.client.control_server import ControlServer
from game_link.client.reconnection_controller import ReconnectionController
from game_link.client.session.config import (
    ControlConfig,
    Credentials,
    Endpoint,
    ReconnectConfig,
)
from game_link.client.status import StatusReporter
from game_link.client.tests.test_helpers import FakeHandleFactory, FakeScheduler


class ControlServerTestCase(unittest.IsolatedAsyncioTestCase):
  """Runs a ControlServer app against a controller with fake handles."""

  api_token = None

  async def asyncSetUp(self):
    self.scheduler = FakeScheduler()
    self.factory = FakeHandleFactory()
    self.reporter = StatusReporter()
    self.controller = ReconnectionController(
        endpoint=Endpoint("play.example.net", 25565),
        credentials=Credentials(username="Steve"),
        handle_factory=self.factory,
        reconnect_config=ReconnectConfig(),
        observers=[self.reporter],
        scheduler=self.scheduler,
        clock=self.scheduler.time,
    )
    self.dispatcher = CommandDispatcher(self.controller.send_action)
    self.dispatcher.register("say", say_handler(self.controller.send_action))

    self.server = ControlServer(
        self.controller,
        self.dispatcher,
        self.reporter,
        ControlConfig(api_token=self.api_token),
    )
    self.client = test_utils.TestClient(test_utils.TestServer(self.server.create_app()))
    await self.client.start_server()

  async def asyncTearDown(self):
    await self.client.close()

  def _connect(self):
    self.controller.start()
    self.factory.latest.establish()
    return self.factory.latest


class TestStatusRoutes(ControlServerTestCase):

  async def test_health(self):
    resp = await self.client.get("/health")
    self.assertEqual(resp.status, 200)
    self.assertEqual(await resp.json(), {"status": "ok"})

  async def test_status_offline(self):
    resp = await self.client.get("/api/status")
    data = await resp.json()

    self.assertEqual(resp.status, 200)
    self.assertEqual(data["status"], "offline")
    self.assertEqual(data["connection"]["state"], "disconnected")
    self.assertNotIn("game", data)

  async def test_status_online_includes_game_facts(self):
    handle = self._connect()
    handle.message("health", health=17, food=20)

    data = await (await self.client.get("/api/status")).json()
    self.assertEqual(data["status"], "online")
    self.assertEqual(data["username"], "Steve")
    self.assertEqual(data["connection"]["handle_id"], 1)
    self.assertEqual(data["game"]["health"], 17)

  async def test_status_reports_retry_timer(self):
    self.controller.start()
    self.factory.latest.fault(OSError("refused"))

    data = await (await self.client.get("/api/status")).json()
    self.assertEqual(data["connection"]["attempt_count"], 1)
    self.assertEqual(data["connection"]["pending_timer"], "retry")
    self.assertIn("refused", data["connection"]["last_error"])

  async def test_unknown_route_is_json_error(self):
    resp = await self.client.get("/api/nope")
    self.assertEqual(resp.status, 404)
    self.assertFalse((await resp.json())["success"])


class TestServerRoutes(ControlServerTestCase):

  async def test_get_server(self):
    data = await (await self.client.get("/api/server")).json()
    self.assertEqual(
        data,
        {"success": True, "host": "play.example.net", "port": 25565, "version": ""},
    )

  async def test_change_server(self):
    old = self._connect()
    resp = await self.client.post(
        "/api/server", json={"host": "other.example.net", "port": 25570}
    )
    data = await resp.json()

    self.assertEqual(resp.status, 200)
    self.assertTrue(data["success"])
    self.assertEqual(data["port"], 25570)
    self.assertEqual(old.close_reason, "endpoint changed")

    self.scheduler.advance(1)
    self.assertEqual(self.factory.latest.endpoint, Endpoint("other.example.net", 25570))

  async def test_change_server_defaults_port(self):
    resp = await self.client.post("/api/server", json={"host": "other.example.net"})
    data = await resp.json()
    self.assertTrue(data["success"])
    self.assertEqual(data["port"], 25565)
    self.assertEqual(self.controller.endpoint.port, 25565)

  async def test_change_server_accepts_string_port(self):
    resp = await self.client.post(
        "/api/server", json={"host": "other.example.net", "port": "25580"}
    )
    self.assertEqual(resp.status, 200)
    self.assertEqual(self.controller.endpoint.port, 25580)

  async def test_change_server_requires_host(self):
    resp = await self.client.post("/api/server", json={"port": 25565})
    self.assertEqual(resp.status, 400)
    self.assertFalse((await resp.json())["success"])
    self.assertEqual(self.controller.endpoint.host, "play.example.net")

  async def test_change_server_rejects_bad_port(self):
    resp = await self.client.post(
        "/api/server", json={"host": "other.example.net", "port": 70000}
    )
    data = await resp.json()
    self.assertEqual(resp.status, 400)
    self.assertIn("port", data["message"].lower())
    self.assertEqual(self.controller.endpoint.host, "play.example.net")
    self.assertEqual(self.scheduler.pending, [])

  async def test_change_server_rejects_invalid_json(self):
    resp = await self.client.post(
        "/api/server", data="{not json", headers={"Content-Type": "application/json"}
    )
    self.assertEqual(resp.status, 400)
    self.assertFalse((await resp.json())["success"])


class TestBotRoutes(ControlServerTestCase):

  async def test_start_and_stop(self):
    resp = await self.client.post("/api/bot/start")
    self.assertTrue((await resp.json())["success"])
    self.assertEqual(len(self.factory.handles), 1)

    resp = await self.client.post("/api/bot/stop")
    self.assertTrue((await resp.json())["success"])
    self.assertFalse(self.controller.running)
    self.assertEqual(self.factory.latest.close_reason, "stopped")

  async def test_command_requires_connection(self):
    resp = await self.client.post("/api/command", json={"command": "say hi"})
    data = await resp.json()
    self.assertEqual(resp.status, 400)
    self.assertEqual(data["message"], "Bot not connected")

  async def test_say_command(self):
    handle = self._connect()
    resp = await self.client.post("/api/command", json={"command": "say hello all"})
    data = await resp.json()

    self.assertTrue(data["success"])
    self.assertEqual(handle.sent, [{"type": "chat", "message": "hello all"}])

  async def test_unknown_command_is_forwarded(self):
    handle = self._connect()
    resp = await self.client.post("/api/command", json={"command": ".follow Alex"})

    self.assertTrue((await resp.json())["success"])
    self.assertEqual(
        handle.sent,
        [{"type": "command", "command": ".follow Alex", "source": "WebInterface"}],
    )

  async def test_chat(self):
    handle = self._connect()
    resp = await self.client.post("/api/chat", json={"message": "hello"})

    self.assertTrue((await resp.json())["success"])
    self.assertEqual(handle.sent, [{"type": "chat", "message": "hello"}])

  async def test_chat_offline(self):
    resp = await self.client.post("/api/chat", json={"message": "hello"})
    self.assertEqual(resp.status, 400)
    self.assertEqual((await resp.json())["message"], "Bot not connected")

  async def test_chat_requires_message(self):
    self._connect()
    resp = await self.client.post("/api/chat", json={})
    self.assertEqual(resp.status, 400)


class TestApiKey(ControlServerTestCase):

  api_token = "s3cret"

  async def test_missing_key_is_rejected(self):
    resp = await self.client.get("/api/status")
    self.assertEqual(resp.status, 401)
    self.assertEqual(await resp.json(), {"success": False, "message": "Unauthorized"})

  async def test_valid_key_is_accepted(self):
    resp = await self.client.get("/api/status", headers={"X-API-Key": "s3cret"})
    self.assertEqual(resp.status, 200)

  async def test_health_is_public(self):
    resp = await self.client.get("/health")
    self.assertEqual(resp.status, 200)


class TestMissingController(unittest.IsolatedAsyncioTestCase):

  async def asyncSetUp(self):
    self.client = test_utils.TestClient(test_utils.TestServer(ControlServer(None).create_app()))
    await self.client.start_server()

  async def asyncTearDown(self):
    await self.client.close()

  async def test_routes_fail_without_controller(self):
    for method, path, body in (
        ("GET", "/api/status", None),
        ("GET", "/api/server", None),
        ("POST", "/api/server", {"host": "mc.local"}),
        ("POST", "/api/bot/start", None),
        ("POST", "/api/bot/stop", None),
        ("POST", "/api/command", {"command": "say hi"}),
        ("POST", "/api/chat", {"message": "hi"}),
    ):
      resp = await self.client.request(method, path, json=body)
      data = await resp.json()
      self.assertEqual(resp.status, 503, path)
      self.assertFalse(data["success"], path)


if __name__ == "__main__":
  unittest.main()
