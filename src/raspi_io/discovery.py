"""
Capability discovery.

Discovery reconciles the static board catalog with live probes to compute the
peripherals actually usable on a connection:

1. Start from the board's full GPIO pin set.
2. Ask the agent which catalog I2C buses are enabled; each enabled bus
   reserves its pins.
3. Stat each catalog SPI channel's device file; each present channel
   reserves its pins.
4. Query the direction of every remaining pin; pins the board does not
   implement are dropped.
5. Read the current and supported triggers of every catalog LED.

A failed probe only excludes the resource it was probing. Transport errors
still propagate, since the connection is unusable after them.
"""

from __future__ import annotations

from collections.abc import Callable

from raspi_io.catalog import BoardModel, I2CBusInfo, LEDInfo, SPIChannelInfo
from raspi_io.errors import AgentError
from raspi_io.logging import get_logger
from raspi_io.protocol.correlator import SequenceCorrelator
from raspi_io.protocol.frames import RequestCode
from raspi_io.state import (
    GPIO_DIRECTION_NA,
    DiscoverySnapshot,
    I2CBusState,
    LEDRecord,
    PinDirection,
    PinRecord,
    SPIChannelState,
)

logger = get_logger(__name__)

I2C_SPEED_COMMAND = "sudo cat /sys/module/i2c_bcm2708/parameters/baudrate"

# Errors that only invalidate the resource being probed
_PROBE_ERRORS = (AgentError, ValueError, IndexError, UnicodeDecodeError)


def parse_led_triggers(payload: bytes) -> tuple[str, tuple[str, ...]]:
    """
    Parse the agent's LED trigger listing.

    The listing is the kernel's sysfs trigger file, e.g.
    ``"none [mmc0] timer heartbeat"``; the bracketed entry is active.

    Returns:
        Tuple of (current trigger, available triggers).

    Raises:
        ValueError: If no active trigger is marked.
    """
    text = payload.decode("utf-8").replace("\x00", "").strip()
    current: str | None = None
    available: list[str] = []
    for token in text.split():
        if token.startswith("[") and token.endswith("]"):
            token = token[1:-1]
            current = token
        if token:
            available.append(token)
    if current is None:
        raise ValueError(f"No active LED trigger in listing: {text!r}")
    return current, tuple(available)


class CapabilityDiscovery:
    """
    Computes the usable peripherals of a connected board.

    Attributes:
        board: The catalog entry of the connected board.
    """

    def __init__(
        self,
        board: BoardModel,
        correlator: SequenceCorrelator,
        run_command: Callable[[str], str],
    ) -> None:
        """
        Initialize the discovery.

        Args:
            board: Catalog entry of the connected board.
            correlator: Correlator of the live connection.
            run_command: Executes a command on the board and returns stdout;
                raises AgentError on failure.
        """
        self.board = board
        self._correlator = correlator
        self._run_command = run_command

    def run(self) -> DiscoverySnapshot:
        """Probe the board and return a fresh snapshot."""
        snapshot = DiscoverySnapshot()
        candidate_pins = set(self.board.gpio_pins)

        for bus in self.board.i2c_buses:
            if self._probe_i2c_bus(bus):
                snapshot.i2c_buses[bus.name] = I2CBusState(
                    name=bus.name,
                    number=bus.number,
                    reserved_pins=bus.reserved_pins,
                    verified_available=True,
                )
                candidate_pins -= bus.reserved_pins

        if snapshot.i2c_buses:
            snapshot.i2c_bus_speed = self._probe_i2c_speed()

        for channel in self.board.spi_channels:
            if self._probe_spi_channel(channel):
                snapshot.spi_channels[channel.name] = SPIChannelState(
                    name=channel.name,
                    bus_number=channel.bus_number,
                    number=channel.number,
                    reserved_pins=channel.reserved_pins,
                    verified_available=True,
                )
                candidate_pins -= channel.reserved_pins

        for pin in sorted(candidate_pins):
            direction = self._probe_pin_direction(pin)
            if direction is not None:
                snapshot.pins[pin] = PinRecord(pin=pin, opened=False, direction=direction)

        for number, led in enumerate(self.board.leds):
            record = self._probe_led(number, led)
            if record is not None:
                snapshot.leds[led.name] = record

        logger.info(
            "Capability discovery complete",
            extra={
                "board_name": self.board.name,
                "i2c_buses": list(snapshot.i2c_buses),
                "spi_channels": list(snapshot.spi_channels),
                "digital_pins": len(snapshot.pins),
                "leds": list(snapshot.leds),
            },
        )
        return snapshot

    # -------------------------------------------------------------------------
    # Probes
    # -------------------------------------------------------------------------

    def _probe_i2c_bus(self, bus: I2CBusInfo) -> bool:
        try:
            response = self._correlator.call(RequestCode.I2C_BUS_AVAILABLE, bus.number)
            return bool(response.payload) and response.payload[0] != 0
        except _PROBE_ERRORS as e:
            logger.warning(
                "I2C bus probe failed",
                extra={"bus": bus.name, "error": str(e)},
            )
            return False

    def _probe_i2c_speed(self) -> int | None:
        try:
            return int(float(self._run_command(I2C_SPEED_COMMAND).strip()))
        except _PROBE_ERRORS as e:
            logger.warning("Cannot get I2C bus speed", extra={"error": str(e)})
            return None

    def _probe_spi_channel(self, channel: SPIChannelInfo) -> bool:
        try:
            self._run_command(f"stat {channel.device_path}")
            return True
        except AgentError:
            return False

    def _probe_pin_direction(self, pin: int) -> PinDirection | None:
        try:
            response = self._correlator.call(RequestCode.GPIO_GET_DIRECTION, pin)
            status = response.payload[0]
        except _PROBE_ERRORS as e:
            logger.warning(
                "GPIO direction probe failed",
                extra={"pin": pin, "error": str(e)},
            )
            return None

        if status == GPIO_DIRECTION_NA:
            logger.debug("GPIO pin not implemented on board", extra={"pin": pin})
            return None
        try:
            return PinDirection(status)
        except ValueError:
            logger.warning(
                "Unexpected GPIO direction status",
                extra={"pin": pin, "status": status},
            )
            return None

    def _probe_led(self, number: int, led: LEDInfo) -> LEDRecord | None:
        try:
            response = self._correlator.call(RequestCode.LED_GET_TRIGGER, number)
            current, available = parse_led_triggers(response.payload)
        except _PROBE_ERRORS as e:
            logger.warning(
                "LED trigger probe failed",
                extra={"led": led.name, "error": str(e)},
            )
            return None
        return LEDRecord(
            name=led.name,
            number=number,
            color=led.color,
            current_trigger=current,
            available_triggers=available,
        )
