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

"""Tests for command dispatch."""

import asyncio
from unittest import mock

from absl.testing import absltest

from game_link.client import command_dispatcher
from game_link.client.connection_handle import GameMessage
from game_link.client.session.config import CommandConfig


def _run(coro):
  return asyncio.run(coro)


class CommandDispatcherTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.send_action = mock.AsyncMock(return_value=True)
    self.dispatcher = command_dispatcher.CommandDispatcher(self.send_action)

  def test_normalize_adds_missing_prefix(self):
    self.assertEqual(self.dispatcher.normalize('follow Alex'), '.follow Alex')
    self.assertEqual(self.dispatcher.normalize('  .follow Alex '), '.follow Alex')

  def test_unknown_command_is_forwarded(self):
    result = _run(self.dispatcher.dispatch('WebInterface', 'mine stone'))

    self.assertTrue(result.success)
    self.send_action.assert_awaited_once_with({
        'type': 'command',
        'command': '.mine stone',
        'source': 'WebInterface',
    })

  def test_forward_fails_when_offline(self):
    self.send_action.return_value = False
    result = _run(self.dispatcher.dispatch('Alex', '.mine'))
    self.assertFalse(result.success)
    self.assertEqual(result.message, 'Bot not connected')

  def test_registered_handler_is_used(self):
    handler = mock.AsyncMock(
        return_value=command_dispatcher.CommandResult(True, 'done')
    )
    self.dispatcher.register('Ping', handler)

    result = _run(self.dispatcher.dispatch('Alex', '.PING now please'))

    self.assertEqual(result, command_dispatcher.CommandResult(True, 'done'))
    handler.assert_awaited_once_with('Alex', ['now', 'please'])
    self.send_action.assert_not_awaited()

  def test_handler_error_becomes_failure(self):
    handler = mock.AsyncMock(side_effect=RuntimeError('broken'))
    self.dispatcher.register('boom', handler)

    result = _run(self.dispatcher.dispatch('Alex', '.boom'))
    self.assertFalse(result.success)
    self.assertIn('broken', result.message)

  def test_empty_command_fails(self):
    self.assertFalse(_run(self.dispatcher.dispatch('Alex', '   ')).success)
    self.assertFalse(_run(self.dispatcher.dispatch('Alex', '.')).success)
    self.send_action.assert_not_awaited()

  def test_duplicate_registration_raises(self):
    handler = mock.AsyncMock()
    self.dispatcher.register('say', handler)
    with self.assertRaises(ValueError):
      self.dispatcher.register('SAY', handler)

  def test_commands_lists_registered_names(self):
    self.dispatcher.register('say', mock.AsyncMock())
    self.dispatcher.register('come', mock.AsyncMock())
    self.assertEqual(self.dispatcher.commands, ['come', 'say'])

  def test_empty_prefix_rejected(self):
    with self.assertRaises(ValueError):
      command_dispatcher.CommandDispatcher(self.send_action, prefix='')


class SayHandlerTest(absltest.TestCase):

  def test_say_sends_chat(self):
    send_action = mock.AsyncMock(return_value=True)
    dispatcher = command_dispatcher.CommandDispatcher(send_action)
    dispatcher.register('say', command_dispatcher.say_handler(send_action))

    result = _run(dispatcher.dispatch('WebInterface', 'say hello there'))

    self.assertTrue(result.success)
    send_action.assert_awaited_once_with({'type': 'chat', 'message': 'hello there'})

  def test_say_requires_text(self):
    send_action = mock.AsyncMock(return_value=True)
    say = command_dispatcher.say_handler(send_action)

    result = _run(say('Alex', []))
    self.assertFalse(result.success)
    send_action.assert_not_awaited()


class ChatCommandObserverTest(absltest.TestCase):

  def _deliver(self, observer, event):
    async def deliver():
      observer.on_message(event)
      # Let the dispatch task run
      for _ in range(3):
        await asyncio.sleep(0)
    asyncio.run(deliver())

  def setUp(self):
    super().setUp()
    self.dispatcher = mock.Mock()
    self.dispatcher.dispatch = mock.AsyncMock(
        return_value=command_dispatcher.CommandResult(True, 'ok')
    )
    self.observer = command_dispatcher.ChatCommandObserver(
        self.dispatcher,
        CommandConfig(prefix='.', allowed_users=('Alex',), admin_users=('Notch',)),
    )

  def test_allowed_user_command_is_dispatched(self):
    self._deliver(
        self.observer,
        GameMessage(1, 'chat', {'username': 'Alex', 'message': '.come here'}),
    )
    self.dispatcher.dispatch.assert_awaited_once_with('Alex', '.come here')

  def test_admin_whisper_is_dispatched(self):
    self._deliver(
        self.observer,
        GameMessage(1, 'whisper', {'username': 'Notch', 'message': '.stop'}),
    )
    self.dispatcher.dispatch.assert_awaited_once_with('Notch', '.stop')

  def test_unauthorized_user_is_ignored(self):
    self._deliver(
        self.observer,
        GameMessage(1, 'chat', {'username': 'Griefer', 'message': '.stop'}),
    )
    self.dispatcher.dispatch.assert_not_awaited()

  def test_plain_chat_is_ignored(self):
    self._deliver(
        self.observer,
        GameMessage(1, 'chat', {'username': 'Alex', 'message': 'hello bot'}),
    )
    self.dispatcher.dispatch.assert_not_awaited()

  def test_detach_cancels_queued_commands(self):
    async def deliver_then_detach():
      self.observer.on_message(
          GameMessage(1, 'chat', {'username': 'Alex', 'message': '.come here'})
      )
      self.observer.on_detached(1)
      for _ in range(3):
        await asyncio.sleep(0)
    asyncio.run(deliver_then_detach())

    self.dispatcher.dispatch.assert_not_awaited()

  def test_other_messages_are_ignored(self):
    self._deliver(self.observer, GameMessage(1, 'health', {'health': 20}))
    self.dispatcher.dispatch.assert_not_awaited()


if __name__ == '__main__':
  absltest.main()
