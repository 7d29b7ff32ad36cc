#!/usr/bin/env python3
"""Command-line front end for the SILAR dip-coater controller."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from config.controller import ControllerConfig, load_controller_config
from hardware.connection import ConnectionEvent
from hardware.controller import SilarController
from hardware.errors import DeviceError, InvalidArgument
from hardware.port_discovery import detect_port, list_ports
from models.events import ParsedEvent

LOGGER = logging.getLogger("silar.cli")


def _configure_logging(verbose: bool) -> None:
    """Initialise the root logger once so child modules inherit the formatter."""

    if logging.getLogger().handlers:
        return
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    LOGGER.debug("Root logging configured")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Drive the SILAR dip coater over its serial link.")
    parser.add_argument("--port", default=None, help="Serial port (auto-detected when omitted).")
    parser.add_argument("--baud", type=int, default=None, help="Serial baud rate (default from config, 9600).")
    parser.add_argument("--config", type=Path, default=None, help="Path to a controller JSON config.")
    parser.add_argument("--simulate", action="store_true", help="Talk to the built-in simulated firmware.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log wire traffic.")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("ports", help="List serial ports and the detected controller.")
    commands.add_parser("status", help="Request and print the device status.")
    commands.add_parser("version", help="Request the firmware version.")
    commands.add_parser("home", help="Run the homing sequence.")
    commands.add_parser("stop", help="Trigger the emergency stop.")
    commands.add_parser("reset", help="Clear the emergency stop.")
    commands.add_parser("pause", help="Pause the automatic process.")
    commands.add_parser("resume", help="Resume the automatic process.")

    move = commands.add_parser("move", help="Jog one axis by a number of steps.")
    move.add_argument("axis", choices=["Y", "Z", "y", "z"])
    move.add_argument("steps", type=int)

    mode = commands.add_parser("mode", help="Switch operating mode.")
    mode.add_argument("mode", choices=["manual", "automatic"])

    recipe = commands.add_parser("recipe", help="Upload recipe parameters and start the process.")
    recipe.add_argument("--json", type=Path, default=None, help="JSON file with recipe parameters.")
    recipe.add_argument(
        "--set",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override one parameter (repeatable), e.g. --set cycles=3.",
    )

    monitor = commands.add_parser("monitor", help="Print decoded events as they arrive.")
    monitor.add_argument("--seconds", type=float, default=0.0, help="Stop after N seconds (0 = until Ctrl+C).")
    return parser


def parse_overrides(items: List[str]) -> Dict[str, Any]:
    """Turn ``key=value`` strings into a dict, values parsed as JSON when possible."""

    values: Dict[str, Any] = {}
    for item in items:
        key, sep, raw = item.partition("=")
        if not sep or not key.strip():
            raise InvalidArgument(f"Expected KEY=VALUE, got {item!r}")
        try:
            values[key.strip()] = json.loads(raw)
        except ValueError:
            values[key.strip()] = raw
    return values


def _format_event(event: ParsedEvent) -> str:
    fields = {k: v for k, v in event.to_mapping().items() if k not in ("type", "raw", "timestamp")}
    details = " ".join(f"{k}={v}" for k, v in fields.items())
    return f"[{event.kind.value}] {event.raw}" + (f"  ({details})" if details else "")


def _print_ports() -> int:
    ports = list_ports()
    if not ports:
        print("No serial ports found.")
        return 1
    for info in ports:
        ids = f"{info.vid:04X}:{info.pid:04X}" if info.vid is not None and info.pid is not None else "----:----"
        print(f"{info.device:<20} {ids}  {info.manufacturer or info.description or ''}")
    print(f"Detected: {detect_port(ports)}")
    return 0


def _load_recipe(args: argparse.Namespace) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    if args.json is not None:
        try:
            loaded = json.loads(args.json.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise InvalidArgument(f"Cannot read recipe file {args.json}: {exc}") from exc
        if not isinstance(loaded, dict):
            raise InvalidArgument(f"{args.json} must contain a JSON object")
        params.update(loaded)
    params.update(parse_overrides(args.set))
    return params


def run(args: argparse.Namespace, config: ControllerConfig) -> int:
    controller = SilarController(config)
    if args.verbose or args.command == "monitor":
        controller.subscribe_events(lambda event: print(_format_event(event), flush=True))

    def _on_connection(event: ConnectionEvent) -> None:
        LOGGER.info("Link %s (%s)%s", event.kind.value, event.port, f": {event.detail}" if event.detail else "")

    controller.subscribe_connection(_on_connection)

    with controller:
        handle = controller.connect(args.port, args.baud)
        print(f"Connected on {handle.port} at {handle.baud_rate} baud")

        if args.command == "status":
            controller.request_status()
            print(json.dumps(controller.get_state().to_mapping(), indent=2))
        elif args.command == "version":
            reply = controller.request_version()
            print(reply.raw if reply is not None else "(no reply)")
        elif args.command == "home":
            controller.execute_home()
        elif args.command == "stop":
            controller.emergency_stop()
        elif args.command == "reset":
            controller.reset()
        elif args.command == "pause":
            controller.pause_process()
        elif args.command == "resume":
            controller.resume_process()
        elif args.command == "move":
            controller.move_axis(args.axis, args.steps)
        elif args.command == "mode":
            if args.mode == "manual":
                controller.set_mode_manual()
            else:
                controller.set_mode_automatic()
        elif args.command == "recipe":
            recipe = controller.start_recipe(_load_recipe(args))
            print(json.dumps(recipe.to_wire_mapping(), indent=2))
        elif args.command == "monitor":
            deadline = time.monotonic() + args.seconds if args.seconds > 0 else None
            while deadline is None or time.monotonic() < deadline:
                time.sleep(0.1)

        # Give the reader a moment to print trailing replies.
        time.sleep(0.3)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if args.command == "ports":
        return _print_ports()

    config = load_controller_config(args.config)
    if args.simulate:
        config = replace(config, simulate=True, settle_delay_s=0.0)

    try:
        return run(args, config)
    except DeviceError as exc:
        print(f"error [{exc.code}]: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted by user.")
        return 0


if __name__ == "__main__":
    sys.exit(main())
