"""Command-line interface for greenhouse-sync."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from . import constants
from .app import GreenhouseSyncApp, fetch_snapshot, run_command
from .config import ConfigurationError, load_config, save_config
from .core import AttemptState, PowerState, SyncError
from .logging import configure_logging
from .topology import DEFAULT_TOPOLOGY, find_greenhouse

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="greenhouse-sync",
        description="Device state synchronization and health for a greenhouse backend",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("start", help="Poll the backend until interrupted")

    subparsers.add_parser(
        "status", help="Poll every device and feed once and print the snapshot as JSON"
    )

    command_parser = subparsers.add_parser(
        "command", help="Switch a device and wait for the backend to confirm"
    )
    command_parser.add_argument("device", help="Device id, e.g. fan, pump or light")
    command_parser.add_argument(
        "state", choices=[PowerState.ON.value, PowerState.OFF.value]
    )

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    init_parser = subparsers.add_parser(
        "init-config", help="Write the resolved configuration to the config path"
    )
    init_parser.add_argument(
        "--greenhouse", help="Greenhouse id to store, e.g. gh-nye-003"
    )
    init_parser.add_argument(
        "--force", action="store_true", help="Overwrite an existing configuration file"
    )

    subparsers.add_parser(
        "list-greenhouses", help="Print the known farms and greenhouses"
    )

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as exc:
        LOGGER.error("Invalid configuration: %s", exc)
        return 2

    if args.command == "start":
        try:
            GreenhouseSyncApp.start(config)
        except ConfigurationError as exc:
            LOGGER.error("Invalid configuration: %s", exc)
            return 2
        return 0

    if args.command in ("status", "command"):
        configure_logging(config.logging)

    if args.command == "status":
        try:
            snapshot = asyncio.run(fetch_snapshot(config))
        except ConfigurationError as exc:
            LOGGER.error("Invalid configuration: %s", exc)
            return 2
        print(json.dumps(snapshot.as_dict(), indent=2))
        return 0 if snapshot.backend_reachable else 1

    if args.command == "command":
        try:
            command = asyncio.run(
                run_command(config, args.device.lower(), PowerState(args.state))
            )
        except ValueError as exc:
            LOGGER.error("%s", exc)
            return 2
        except SyncError as exc:
            LOGGER.error("Command rejected: %s", exc)
            return 1
        print(json.dumps(command.as_dict(), indent=2))
        return 0 if command.attempt_state is AttemptState.CONFIRMED else 1

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                print(f"{key} = {value}")
            print()
        return 0

    if args.command == "init-config":
        if config.path.exists() and not args.force:
            LOGGER.error("%s already exists; pass --force to overwrite it", config.path)
            return 1
        if args.greenhouse:
            if find_greenhouse(args.greenhouse) is None:
                LOGGER.error("Unknown greenhouse: %s", args.greenhouse)
                return 2
            config.raw.set("greenhouse", "greenhouse_id", args.greenhouse)
        save_config(config)
        print(f"Configuration written to {config.path!s}")
        return 0

    if args.command == "list-greenhouses":
        for farm in DEFAULT_TOPOLOGY:
            print(f"{farm.id}  {farm.name} ({farm.location})")
            for greenhouse in farm.greenhouses:
                print(f"  {greenhouse.id}  {greenhouse.name}")
        return 0

    LOGGER.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    sys.exit(main())
