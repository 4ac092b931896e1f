"""
Command-line interface for raspi-io.

Usage:
    raspi-io [--config PATH] [--host H] [--port P] [--log-level L] COMMAND ...

Each invocation connects to the agent, runs one command and disconnects.
Errors are printed as ``error_code: message`` on stderr with exit status 1.
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence

import yaml
from pydantic import ValidationError

from raspi_io import __version__
from raspi_io.client import RaspiClient
from raspi_io.config import AgentConfig, build_arg_parser, load_config
from raspi_io.errors import RaspiError
from raspi_io.logging import get_logger, setup_logging

logger = get_logger(__name__)


# =============================================================================
# Command handlers
# =============================================================================


def _cmd_info(client: RaspiClient, args: argparse.Namespace) -> str:
    info = {
        "host": client.host,
        "port": client.port,
        "board_name": client.board_name,
        "agent_version": str(client.agent_version),
        "digital_pins": list(client.available_digital_pins),
        "leds": {
            name: client.get_led_configuration(name) for name in client.available_leds
        },
        "i2c_buses": list(client.available_i2c_buses),
        "i2c_bus_speed": client.i2c_bus_speed,
        "spi_channels": list(client.available_spi_channels),
    }
    return json.dumps(info, indent=2)


def _cmd_read_pin(client: RaspiClient, args: argparse.Namespace) -> str:
    return "1" if client.read_digital_pin(args.pin) else "0"


def _cmd_write_pin(client: RaspiClient, args: argparse.Namespace) -> None:
    client.write_digital_pin(args.pin, args.value)


def _cmd_configure_pin(client: RaspiClient, args: argparse.Namespace) -> str:
    return client.configure_pin(args.pin, args.mode)


def _cmd_led(client: RaspiClient, args: argparse.Namespace) -> None:
    client.write_led(args.led, args.value)


def _cmd_led_trigger(client: RaspiClient, args: argparse.Namespace) -> str:
    if args.trigger is None:
        current = client.get_led_configuration(args.led)
        available = client.get_available_led_configurations(args.led)
        return " ".join(f"[{t}]" if t == current else t for t in available)
    client.configure_led(args.led, args.trigger)
    return client.get_led_configuration(args.led)


def _cmd_scan_i2c(client: RaspiClient, args: argparse.Namespace) -> str:
    return "\n".join(client.scan_i2c_bus(args.bus))


def _cmd_popen(client: RaspiClient, args: argparse.Namespace) -> str:
    return client.popen(" ".join(args.cmd)).rstrip("\n")


# =============================================================================
# Parser
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    """Build the full command-line parser."""
    parser = argparse.ArgumentParser(
        prog="raspi-io",
        description="Control Raspberry Pi peripherals through the raspi-io agent",
        parents=[build_arg_parser()],
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    commands = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    info = commands.add_parser("info", help="Show board and peripheral information")
    info.set_defaults(handler=_cmd_info)

    read_pin = commands.add_parser("read-pin", help="Read a digital pin")
    read_pin.add_argument("pin", type=int)
    read_pin.set_defaults(handler=_cmd_read_pin)

    write_pin = commands.add_parser("write-pin", help="Write a digital pin")
    write_pin.add_argument("pin", type=int)
    write_pin.add_argument("value", type=int, choices=[0, 1])
    write_pin.set_defaults(handler=_cmd_write_pin)

    configure_pin = commands.add_parser("configure-pin", help="Set a pin's direction")
    configure_pin.add_argument("pin", type=int)
    configure_pin.add_argument("mode", choices=["input", "output"])
    configure_pin.set_defaults(handler=_cmd_configure_pin)

    led = commands.add_parser("led", help="Turn an LED on or off")
    led.add_argument("led")
    led.add_argument("value", type=int, choices=[0, 1])
    led.set_defaults(handler=_cmd_led)

    led_trigger = commands.add_parser(
        "led-trigger", help="Show or set the trigger driving an LED"
    )
    led_trigger.add_argument("led")
    led_trigger.add_argument("trigger", nargs="?")
    led_trigger.set_defaults(handler=_cmd_led_trigger)

    scan_i2c = commands.add_parser("scan-i2c", help="List devices on an I2C bus")
    scan_i2c.add_argument("bus", nargs="?")
    scan_i2c.set_defaults(handler=_cmd_scan_i2c)

    popen = commands.add_parser("popen", help="Run a command on the board")
    popen.add_argument("cmd", nargs=argparse.REMAINDER, metavar="CMD")
    popen.set_defaults(handler=_cmd_popen)

    return parser


def _connect(config: AgentConfig) -> RaspiClient:
    return RaspiClient.from_config(config)


# =============================================================================
# Entry point
# =============================================================================


def main(argv: Sequence[str] | None = None) -> int:
    """
    Run the raspi-io command line.

    Args:
        argv: Command-line arguments without the program name. If None,
            uses sys.argv.

    Returns:
        Process exit status.
    """
    argv = list(sys.argv[1:] if argv is None else argv)
    args = build_parser().parse_args(argv)

    try:
        config = load_config(cli_namespace=args)
    except (FileNotFoundError, ValidationError, yaml.YAMLError) as e:
        print(f"config_error: {e}", file=sys.stderr)
        return 1

    setup_logging(config.logging)

    try:
        with _connect(config.agent) as client:
            result = args.handler(client, args)
    except RaspiError as e:
        logger.debug(
            "Command failed",
            extra={"command": args.command, "error_code": e.error_code, "error": e.message},
        )
        print(f"{e.error_code}: {e.message}", file=sys.stderr)
        return 1

    if result is not None and result != "":
        print(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
