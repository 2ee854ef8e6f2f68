"""Command-line entry point: listen and print what the robot hears.

Usage:
    robo-listen --config config/my-robot.toml
    robo-listen --file recording.wav --language es-ES
"""

from __future__ import annotations

import argparse
import asyncio
import functools
import logging
import signal

from robo_listen.audio.file_source import FileSource
from robo_listen.config import AppConfig, load_app_config
from robo_listen.core.errors import ListenError
from robo_listen.core.events import SessionStateEvent
from robo_listen.core.models import ListenState
from robo_listen.listening.controller import MICROPHONE, ListenController
from robo_listen.logging_config import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="robo-listen",
        description="Continuous speech recognition for a robot microphone",
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to a robot TOML configuration file",
    )
    parser.add_argument(
        "--device",
        type=str,
        default=None,
        help="Microphone device (index, name such as plughw:1,0, or '' for default)",
    )
    parser.add_argument(
        "--language",
        type=str,
        default=None,
        help="Listen language (default: en-US)",
    )
    parser.add_argument(
        "--customization-id",
        type=str,
        default=None,
        help="Custom language model id",
    )
    parser.add_argument(
        "--file",
        type=str,
        default=None,
        help="Replay an audio file instead of reading the microphone",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: from config, INFO)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON lines",
    )
    return parser


def apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Apply command-line flags on top of the loaded configuration."""
    if args.device is not None:
        config.listen.device_id = args.device
    if args.language is not None:
        config.listen.language = args.language
    if args.customization_id is not None:
        config.listen.customization_id = args.customization_id
    if args.log_level is not None:
        config.log_level = args.log_level
    if args.file is not None and MICROPHONE not in config.hardware:
        # The file stands in for the microphone
        config.hardware = [*config.hardware, MICROPHONE]
    return config


def build_controller(config: AppConfig, args: argparse.Namespace) -> ListenController:
    kwargs = {}
    if args.file is not None:
        kwargs["source_factory"] = functools.partial(FileSource, file_path=args.file)
    return ListenController.from_app_config(config, **kwargs)


class ShutdownHandler:
    """Turns SIGINT/SIGTERM into a clean stop of the controller.

    Also cancels a start that is still waiting for the service.
    """

    def __init__(self, controller: ListenController) -> None:
        self.controller = controller
        self.requested = asyncio.Event()
        self._tasks: set[asyncio.Task[None]] = set()

    def request(self) -> None:
        self.requested.set()
        self._tasks.add(
            asyncio.create_task(self.controller.stop_listening(), name="stop-listening")
        )

    async def finish(self) -> None:
        """Wait for every stop started by a signal."""
        tasks, self._tasks = self._tasks, set()
        for task in tasks:
            try:
                await task
            except ListenError as exc:
                logger.error("Stopping after signal failed: %s", exc)


def print_transcript(text: str) -> None:
    print(text, flush=True)


async def async_main(args: argparse.Namespace) -> int:
    """Async entry point. Returns the process exit code."""
    config = apply_overrides(load_app_config(config_path=args.config), args)
    setup_logging(level=config.log_level, json_output=args.json_logs)
    logger.info("%s starting up", config.robot_name)

    controller = build_controller(config, args)
    shutdown = ShutdownHandler(controller)
    failed = False

    def _on_state(event: SessionStateEvent) -> None:
        nonlocal failed
        if event.state is ListenState.FAILED:
            failed = True
            shutdown.requested.set()

    controller.event_bus.subscribe(SessionStateEvent, _on_state)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.request)

    try:
        try:
            await controller.listen(print_transcript)
        except ListenError as exc:
            logger.error("Cannot listen: %s", exc)
            return 1
        await shutdown.requested.wait()
    finally:
        await shutdown.finish()
        if controller.session is not None:
            await controller.stop_listening()
        logger.info("%s stopped", config.robot_name)

    return 1 if failed else 0


def cli_main() -> None:
    """CLI entry point (used by pyproject.toml [project.scripts])."""
    parser = build_parser()
    args = parser.parse_args()
    try:
        code = asyncio.run(async_main(args))
    except KeyboardInterrupt:
        code = 130
    raise SystemExit(code)


if __name__ == "__main__":
    cli_main()
