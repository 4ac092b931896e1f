"""
Client-side peripheral state cache.

The cache is the source of truth for validating operations before a request
is sent: which pins are available, whether they are open and in which
direction, and which trigger drives each LED.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum

from raspi_io.errors import InvalidParameterError, PinStateError

# Direction status reported for pins the board does not implement
GPIO_DIRECTION_NA = 255

LED_TRIGGER_NONE = "none"


class PinDirection(IntEnum):
    """GPIO pin directions as encoded on the wire."""

    INPUT = 0
    OUTPUT = 1
    UNSET = 2

    @property
    def mode(self) -> str:
        """Mode name of this direction ("input", "output", "unset")."""
        return self.name.lower()

    @classmethod
    def from_mode(cls, mode: str) -> PinDirection:
        """
        Parse a configurable pin mode.

        Accepts "input"/"output" and "DigitalInput"/"DigitalOutput",
        case-insensitively.

        Raises:
            InvalidParameterError: If the mode is not input or output.
        """
        normalized = str(mode).lower()
        if normalized.startswith("digital"):
            normalized = normalized[len("digital") :]
        if normalized == "input":
            return cls.INPUT
        if normalized == "output":
            return cls.OUTPUT
        raise InvalidParameterError(
            f"Invalid pin mode: {mode}. Must be one of: input, output",
            details={"parameter": "mode", "value": mode, "valid_values": ["input", "output"]},
        )


@dataclass
class PinRecord:
    """
    Cached state of one digital pin.

    Attributes:
        pin: BCM pin number.
        opened: Whether this client configured the pin.
        direction: Current direction.
    """

    pin: int
    opened: bool = False
    direction: PinDirection = PinDirection.UNSET


@dataclass
class LEDRecord:
    """
    Cached state of one LED.

    Attributes:
        name: LED name.
        number: LED number used on the wire.
        color: Color tag.
        current_trigger: Trigger currently driving the LED.
        available_triggers: Triggers the LED supports, in agent order.
    """

    name: str
    number: int
    color: str
    current_trigger: str
    available_triggers: tuple[str, ...] = ()


@dataclass
class I2CBusState:
    """Discovered state of an I2C bus."""

    name: str
    number: int
    reserved_pins: frozenset[int]
    verified_available: bool = False


@dataclass
class SPIChannelState:
    """Discovered state of an SPI channel."""

    name: str
    bus_number: int
    number: int
    reserved_pins: frozenset[int]
    verified_available: bool = False


@dataclass
class DiscoverySnapshot:
    """
    Result of one capability discovery run.

    Attributes:
        i2c_buses: Verified I2C buses keyed by name.
        spi_channels: Verified SPI channels keyed by name.
        pins: Pins free for digital I/O keyed by pin number.
        leds: LEDs keyed by name.
        i2c_bus_speed: I2C bus speed in Hz, None if unknown.
    """

    i2c_buses: dict[str, I2CBusState] = field(default_factory=dict)
    spi_channels: dict[str, SPIChannelState] = field(default_factory=dict)
    pins: dict[int, PinRecord] = field(default_factory=dict)
    leds: dict[str, LEDRecord] = field(default_factory=dict)
    i2c_bus_speed: int | None = None


class PeripheralStateCache:
    """
    Per-connection peripheral state.

    Mappings are ordered: pins ascending, buses, channels and LEDs in catalog
    order.
    """

    def __init__(self) -> None:
        self.pins: dict[int, PinRecord] = {}
        self.leds: dict[str, LEDRecord] = {}
        self.i2c_buses: dict[str, I2CBusState] = {}
        self.spi_channels: dict[str, SPIChannelState] = {}
        self.i2c_bus_speed: int | None = None

    # -------------------------------------------------------------------------
    # Discovery results
    # -------------------------------------------------------------------------

    def apply(self, snapshot: DiscoverySnapshot) -> None:
        """
        Replace the cached state with a discovery snapshot.

        A pin this client opened keeps its open state if the agent still
        reports the same direction for it.
        """
        pins: dict[int, PinRecord] = {}
        for number in sorted(snapshot.pins):
            record = snapshot.pins[number]
            previous = self.pins.get(number)
            if previous is not None and previous.opened and previous.direction == record.direction:
                record.opened = True
            pins[number] = record

        self.pins = pins
        self.leds = dict(snapshot.leds)
        self.i2c_buses = dict(snapshot.i2c_buses)
        self.spi_channels = dict(snapshot.spi_channels)
        self.i2c_bus_speed = snapshot.i2c_bus_speed

    @property
    def available_digital_pins(self) -> tuple[int, ...]:
        """Pins free for digital I/O, ascending."""
        return tuple(self.pins)

    @property
    def available_leds(self) -> tuple[str, ...]:
        return tuple(self.leds)

    @property
    def available_i2c_buses(self) -> tuple[str, ...]:
        return tuple(self.i2c_buses)

    @property
    def available_spi_channels(self) -> tuple[str, ...]:
        return tuple(self.spi_channels)

    def opened_pins(self) -> list[int]:
        """Pins this client has configured."""
        return [number for number, record in self.pins.items() if record.opened]

    # -------------------------------------------------------------------------
    # Lookups and validation
    # -------------------------------------------------------------------------

    def pin(self, pin: int) -> PinRecord:
        """
        Return the record of an available pin.

        Raises:
            InvalidParameterError: If the pin is not an available digital pin.
        """
        if isinstance(pin, bool) or not isinstance(pin, int):
            raise InvalidParameterError(
                f"Invalid pin number: {pin!r}",
                details={"parameter": "pin", "value": pin},
            )
        record = self.pins.get(pin)
        if record is None:
            raise InvalidParameterError(
                f"Pin {pin} is not an available digital pin",
                details={"pin": pin, "available_pins": list(self.pins)},
            )
        return record

    def led(self, name: str) -> LEDRecord:
        """
        Return the record of an LED, matched case-insensitively.

        Raises:
            InvalidParameterError: If there is no such LED.
        """
        if isinstance(name, str):
            record = self.leds.get(name)
            if record is not None:
                return record
            for key, record in self.leds.items():
                if key.lower() == name.lower():
                    return record
        raise InvalidParameterError(
            f"Invalid LED: {name!r}",
            details={"parameter": "led", "value": name, "available_leds": list(self.leds)},
        )

    def require_direction(self, pin: int, direction: PinDirection, operation: str) -> None:
        """
        Check that an opened pin is configured for ``direction``.

        Raises:
            PinStateError: If the cached direction differs.
        """
        record = self.pin(pin)
        if record.direction != direction:
            raise PinStateError(
                f"Cannot {operation} pin {pin}: it is configured as {record.direction.mode}",
                details={
                    "pin": pin,
                    "operation": operation,
                    "direction": record.direction.mode,
                    "required": direction.mode,
                },
            )

    def resolve_trigger(self, name: str, trigger: str) -> str:
        """
        Return the LED's matching trigger name (case-insensitive).

        Raises:
            InvalidParameterError: If the LED does not support the trigger.
        """
        record = self.led(name)
        if isinstance(trigger, str):
            for candidate in record.available_triggers:
                if candidate.lower() == trigger.lower():
                    return candidate
        raise InvalidParameterError(
            f"Invalid trigger {trigger!r} for LED {record.name}",
            details={
                "parameter": "trigger",
                "value": trigger,
                "led": record.name,
                "valid_values": list(record.available_triggers),
            },
        )

    # -------------------------------------------------------------------------
    # Mutations after successful requests
    # -------------------------------------------------------------------------

    def mark_opened(self, pin: int, direction: PinDirection) -> PinRecord:
        """Record that the pin was configured for ``direction``."""
        record = self.pin(pin)
        record.opened = True
        record.direction = direction
        return record

    def mark_closed(self, pin: int) -> None:
        """Record that the pin was released."""
        record = self.pins.get(pin)
        if record is not None:
            record.opened = False

    def set_trigger(self, name: str, trigger: str) -> None:
        """Record the LED's new trigger."""
        self.led(name).current_trigger = trigger
