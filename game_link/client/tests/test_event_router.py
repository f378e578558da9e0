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

"""Tests for EventRouter subscription and stale event handling."""

import unittest
from unittest.mock import Mock

from game_link.client.connection_handle import Established, GameMessage
from game_link.client.event_router import EventObserver, EventRouter
from game_link.client.session.config import Endpoint
from game_link.client.tests.test_helpers import (
    FakeConnectionHandle,
    RecordingObserver,
)


class TestEventRouter(unittest.TestCase):

  def setUp(self):
    self.on_established = Mock()
    self.on_terminated = Mock()
    self.on_faulted = Mock()
    self.router = EventRouter(
        on_established=self.on_established,
        on_terminated=self.on_terminated,
        on_faulted=self.on_faulted,
    )
    self.observer = RecordingObserver()
    self.router.add_observer(self.observer)
    self.handle = FakeConnectionHandle(7, Endpoint())

  def test_attach_returns_handle_id(self):
    self.assertEqual(self.router.attach(self.handle), 7)
    self.assertEqual(self.router.active_id, 7)
    self.assertEqual(len(self.handle.listeners), 1)

  def test_attach_twice_raises(self):
    self.router.attach(self.handle)
    with self.assertRaises(RuntimeError):
      self.router.attach(FakeConnectionHandle(8, Endpoint()))

  def test_lifecycle_events_are_forwarded(self):
    self.router.attach(self.handle)
    self.handle.establish()
    self.on_established.assert_called_once_with(7)

    error = OSError("boom")
    self.handle.fault(error)
    self.on_faulted.assert_called_once_with(7, error)

  def test_terminated_is_forwarded_with_reason(self):
    self.router.attach(self.handle)
    self.handle.terminate("kicked: spam")
    self.on_terminated.assert_called_once_with(7, "kicked: spam")

  def test_messages_go_to_observers_only(self):
    self.router.attach(self.handle)
    self.handle.message("spawn", position={"x": 1, "y": 64, "z": 2})

    self.assertEqual([m.kind for m in self.observer.messages], ["spawn"])
    self.on_established.assert_not_called()

  def test_detach_removes_listener_and_notifies_observers(self):
    self.router.attach(self.handle)
    self.assertEqual(self.router.detach(), 7)

    self.assertIsNone(self.router.active_id)
    self.assertEqual(self.handle.listeners, [])
    self.assertEqual(self.observer.detached, [7])
    self.assertIsNone(self.router.detach())

  def test_stale_listener_events_are_dropped(self):
    self.router.attach(self.handle)
    listener = self.handle.listeners[0]
    self.router.detach()

    listener(Established(7))
    listener(GameMessage(7, "chat", {"message": "late"}))

    self.on_established.assert_not_called()
    self.assertEqual(self.observer.messages, [])
    self.assertEqual(self.router.dropped_events, 2)

  def test_old_listener_ignored_after_reattach(self):
    self.router.attach(self.handle)
    old_listener = self.handle.listeners[0]
    self.router.detach()

    replacement = FakeConnectionHandle(8, Endpoint())
    self.router.attach(replacement)
    old_listener(Established(7))
    replacement.establish()

    self.on_established.assert_called_once_with(8)
    self.assertEqual(self.router.dropped_events, 1)

  def test_late_event_after_kick_is_dropped(self):
    self.router.attach(self.handle)
    listener = self.handle.listeners[0]
    self.handle.terminate("kicked: afk")
    # The owner tears down on the terminal event
    self.router.detach()

    listener(GameMessage(7, "health", {"health": 0}))
    self.assertEqual(self.observer.messages, [])
    self.assertEqual(self.router.dropped_events, 1)

  def test_observer_errors_do_not_stop_dispatch(self):
    class Broken(EventObserver):

      def on_message(self, event):
        raise ValueError("observer bug")

    second = RecordingObserver()
    self.router.add_observer(Broken())
    self.router.add_observer(second)
    self.router.attach(self.handle)

    self.handle.message("chat", username="Alex", message="hello")
    self.assertEqual(len(self.observer.messages), 1)
    self.assertEqual(len(second.messages), 1)

  def test_remove_observer(self):
    self.router.remove_observer(self.observer)
    self.router.attach(self.handle)
    self.handle.message("chat", message="hi")
    self.assertEqual(self.observer.messages, [])


if __name__ == "__main__":
  unittest.main()
