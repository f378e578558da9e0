#!/usr/bin/env python3
"""Run the game link bot with its HTTP control surface.

The bot joins the configured game server through the websocket gateway and
keeps reconnecting across kicks, crashes and network failures. The control
server exposes status and lets operators switch servers at runtime.

Configuration comes from the environment (or a .env file); flags override it.

Usage:
  python run_game_link.py
  python run_game_link.py --host=play.example.net --port=25565 --control_port=5000
"""

import asyncio
import dataclasses
import logging
import os
import signal
import sys

from absl import app, flags
import termcolor


def load_dotenv(path: str = '.env'):
    """Simple .env loader. Existing environment variables win."""
    try:
        with open(path, 'r') as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#') and '=' in line:
                    key, value = line.split('=', 1)
                    os.environ.setdefault(key.strip(), value.strip().strip('"\''))
    except FileNotFoundError:
        pass  # .env file doesn't exist, use existing environment


from game_link.client.command_dispatcher import (
    ChatCommandObserver,
    CommandDispatcher,
    say_handler,
)
from game_link.client.control_server import ControlServer
from game_link.client.reconnection_controller import ReconnectionController
from game_link.client.session import BotConfig
from game_link.client.status import AutoRespawnObserver, StatusReporter

colored = termcolor.colored

# Command line flags (unset flags keep the environment value)
_ENV_FILE = flags.DEFINE_string("env_file", ".env", "Path to a .env file")
_HOST = flags.DEFINE_string("host", None, "Game server host (MC_SERVER_HOST)")
_PORT = flags.DEFINE_integer("port", None, "Game server port (MC_SERVER_PORT)")
_VERSION = flags.DEFINE_string("version", None, "Game version (MC_VERSION)")
_USERNAME = flags.DEFINE_string("username", None, "Bot username (MC_USERNAME)")
_CONTROL_PORT = flags.DEFINE_integer(
    "control_port", None, "Control server port (PORT)"
)
_NO_CONTROL = flags.DEFINE_boolean(
    "no_control", False, "Do not start the HTTP control server"
)
_LOG_LEVEL = flags.DEFINE_enum(
    "log_level", None, ["debug", "info", "warning", "error"],
    "Log verbosity (LOG_LEVEL)"
)


def build_config() -> BotConfig:
    """Read the environment and apply flag overrides."""
    config = BotConfig.from_env()

    endpoint = config.endpoint
    if _HOST.value is not None:
        endpoint = dataclasses.replace(endpoint, host=_HOST.value)
    if _PORT.value is not None:
        endpoint = dataclasses.replace(endpoint, port=_PORT.value)
    if _VERSION.value is not None:
        endpoint = dataclasses.replace(endpoint, version=_VERSION.value)

    credentials = config.credentials
    if _USERNAME.value is not None:
        credentials = dataclasses.replace(credentials, username=_USERNAME.value)

    control = config.control
    if _CONTROL_PORT.value is not None:
        control = dataclasses.replace(control, port=_CONTROL_PORT.value)

    log_config = config.logging
    if _LOG_LEVEL.value is not None:
        log_config = dataclasses.replace(log_config, level=_LOG_LEVEL.value)

    config = dataclasses.replace(
        config,
        endpoint=endpoint,
        credentials=credentials,
        control=control,
        logging=log_config,
    )
    config.validate()
    return config


def setup_logging(config: BotConfig) -> None:
    level = getattr(logging, config.logging.level.upper(), logging.INFO)
    handlers = [logging.StreamHandler(sys.stdout)]
    if config.logging.log_to_file:
        handlers.append(logging.FileHandler(config.logging.log_file))
    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        handlers=handlers,
        force=True,
    )
    # websockets logs every frame at debug level
    logging.getLogger('websockets').setLevel(max(level, logging.INFO))


async def run_bot(config: BotConfig) -> None:
    """Wire the controller, observers and control server, then run until signalled."""
    reporter = StatusReporter()
    controller = ReconnectionController.from_config(config, observers=[reporter])

    dispatcher = CommandDispatcher(controller.send_action, prefix=config.commands.prefix)
    dispatcher.register("say", say_handler(controller.send_action))

    controller.router.add_observer(
        AutoRespawnObserver(controller.send_action, enabled=config.behavior.auto_respawn)
    )
    controller.router.add_observer(ChatCommandObserver(dispatcher, config.commands))

    server = None
    if not _NO_CONTROL.value:
        server = ControlServer(controller, dispatcher, reporter, config.control)
        await server.start()

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    print(colored(
        f"Connecting {config.credentials.username} to {config.endpoint}...", "blue"
    ))
    controller.start()

    try:
        await shutdown.wait()
    finally:
        print(colored("\nShutting down...", "yellow"))
        controller.stop()
        await controller.wait_closed()
        if server is not None:
            await server.stop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


def main(argv):
    """Main entry point."""
    if len(argv) > 1:
        print("Game Link Bot")
        print("Usage: python run_game_link.py [flags]")
        return

    load_dotenv(_ENV_FILE.value)

    try:
        config = build_config()
    except ValueError as e:
        print(colored(f"❌ Invalid configuration: {e}", "red"))
        sys.exit(1)

    setup_logging(config)

    print(colored("Game Link Bot", "green"))
    print("=" * 40)
    print(colored(f"  Server:  {config.endpoint}", "blue"))
    print(colored(f"  Account: {config.credentials.username} ({config.credentials.auth})", "blue"))
    if not _NO_CONTROL.value:
        print(colored(f"  Control: http://{config.control.host}:{config.control.port}", "blue"))

    asyncio.run(run_bot(config))
    print(colored("✅ Bot stopped cleanly", "green"))


if __name__ == "__main__":
    app.run(main)
