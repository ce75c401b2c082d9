"""Command-line interface for alexa-ev3."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from . import constants
from .app import AlexaEv3App
from .config import ConfigurationError, load_config
from .decoder import decode
from .planner import ActuationPlanner

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="alexa-ev3", description="Drive a LEGO EV3 robot from SQS commands"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("start", help="Connect to the brick and process commands")

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    plan_parser = subparsers.add_parser(
        "plan", help="Decode a raw message body and print the resulting plan"
    )
    plan_parser.add_argument("payload", help="Raw queue message body (JSON)")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as exc:
        print(f"Invalid configuration in {args.config!s}: {exc}", file=sys.stderr)
        return 1

    if args.command == "start":
        return AlexaEv3App.start(config)

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                print(f"{key} = {value}")
            print()
        return 0

    if args.command == "plan":
        command = decode(args.payload)
        planner = ActuationPlanner(
            config.ev3.steps_per_degree_turn,
            drive_speed=config.ev3.drive_speed,
            turn_power=config.ev3.turn_power,
        )
        plan = planner.plan(command)
        magnitude = "default" if command.magnitude is None else command.magnitude
        print(f"action = {command.action.value}")
        print(f"magnitude = {magnitude}")
        if plan is None:
            print("plan = no-op")
            return 0
        print(
            f"left = {plan.left_polarity.name.lower()} {plan.left_steps} steps "
            f"(motor {config.ev3.left_motor})"
        )
        print(
            f"right = {plan.right_polarity.name.lower()} {plan.right_steps} steps "
            f"(motor {config.ev3.right_motor})"
        )
        print(f"drive = {plan.drive.value} {plan.output}")
        return 0

    LOGGER.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    sys.exit(main())
