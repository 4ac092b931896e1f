"""
Static peripheral catalog of supported Raspberry Pi board models.

Each BoardModel lists the BCM GPIO pins routed to the expansion header and the
I2C buses, SPI channels and LEDs the board offers. Capability discovery starts
from this catalog and narrows it down with live probes.

Pin numbers use BCM numbering throughout.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType


@dataclass(frozen=True)
class I2CBusInfo:
    """
    Catalog entry for an I2C bus.

    Attributes:
        name: Bus name (e.g., "i2c-1").
        number: Bus number, as in /dev/i2c-<number>.
        reserved_pins: GPIO pins used by the bus (SDA, SCL).
    """

    name: str
    number: int
    reserved_pins: frozenset[int]


@dataclass(frozen=True)
class SPIChannelInfo:
    """
    Catalog entry for an SPI channel.

    Attributes:
        name: Channel name (e.g., "CE0").
        bus_number: SPI controller number, as in /dev/spidev<bus>.<channel>.
        number: Chip-select channel number.
        reserved_pins: GPIO pins used by the channel (MOSI, MISO, SCLK, CE).
    """

    name: str
    bus_number: int
    number: int
    reserved_pins: frozenset[int]

    @property
    def device_path(self) -> str:
        """Device file exposing this channel on the board."""
        return f"/dev/spidev{self.bus_number}.{self.number}"


@dataclass(frozen=True)
class LEDInfo:
    """
    Catalog entry for a user-controllable LED.

    Attributes:
        name: LED name as exposed by the kernel (e.g., "led0").
        color: Color tag of the LED.
    """

    name: str
    color: str


@dataclass(frozen=True)
class BoardModel:
    """
    Immutable description of a board model's peripherals.

    Attributes:
        name: Board model name.
        gpio_pins: All GPIO pins routed to the header.
        i2c_buses: I2C buses in catalog order.
        spi_channels: SPI channels in catalog order.
        leds: User LEDs; an LED's number is its index in this tuple.
    """

    name: str
    gpio_pins: frozenset[int]
    i2c_buses: tuple[I2CBusInfo, ...] = ()
    spi_channels: tuple[SPIChannelInfo, ...] = ()
    leds: tuple[LEDInfo, ...] = ()

    @property
    def reserved_pins(self) -> frozenset[int]:
        """Pins reserved when every bus and channel is active."""
        pins: set[int] = set()
        for bus in self.i2c_buses:
            pins |= bus.reserved_pins
        for channel in self.spi_channels:
            pins |= channel.reserved_pins
        return frozenset(pins)


# =============================================================================
# Board Data
# =============================================================================

BOARD_PI_MODEL_B_REV1 = "Raspberry Pi Model B Rev 1"
BOARD_PI_MODEL_A_REV2 = "Raspberry Pi Model A Rev 2"
BOARD_PI_MODEL_B_REV2 = "Raspberry Pi Model B Rev 2"
BOARD_PI_MODEL_B_PLUS = "Raspberry Pi Model B+"
BOARD_PI_MODEL_A_PLUS = "Raspberry Pi Model A+"
BOARD_PI_COMPUTE_MODULE = "Raspberry Pi Compute Module"
BOARD_PI_2_MODEL_B = "Raspberry Pi 2 Model B"

# SPI0: MOSI=10, MISO=9, SCLK=11, CE0=8, CE1=7
_SPI0_CHANNELS = (
    SPIChannelInfo(name="CE0", bus_number=0, number=0, reserved_pins=frozenset({8, 9, 10, 11})),
    SPIChannelInfo(name="CE1", bus_number=0, number=1, reserved_pins=frozenset({7, 9, 10, 11})),
)

_I2C0_HEADER = I2CBusInfo(name="i2c-0", number=0, reserved_pins=frozenset({0, 1}))
_I2C1_HEADER = I2CBusInfo(name="i2c-1", number=1, reserved_pins=frozenset({2, 3}))

_ACT_LED = (LEDInfo(name="led0", color="green"),)

# 26-pin header, first revision
_REV1_PINS = frozenset({0, 1, 4, 7, 8, 9, 10, 11, 14, 15, 17, 18, 21, 22, 23, 24, 25})

# 26-pin header, second revision
_REV2_PINS = frozenset({2, 3, 4, 7, 8, 9, 10, 11, 14, 15, 17, 18, 22, 23, 24, 25, 27})

# 40-pin header
_PLUS_PINS = frozenset(range(2, 28))


def _model(
    name: str,
    gpio_pins: frozenset[int],
    i2c_buses: tuple[I2CBusInfo, ...],
) -> BoardModel:
    return BoardModel(
        name=name,
        gpio_pins=gpio_pins,
        i2c_buses=i2c_buses,
        spi_channels=_SPI0_CHANNELS,
        leds=_ACT_LED,
    )


PERIPHERAL_CATALOG: Mapping[str, BoardModel] = MappingProxyType(
    {
        model.name: model
        for model in (
            _model(BOARD_PI_MODEL_B_REV1, _REV1_PINS, (_I2C0_HEADER,)),
            _model(BOARD_PI_MODEL_A_REV2, _REV2_PINS, (_I2C1_HEADER,)),
            _model(BOARD_PI_MODEL_B_REV2, _REV2_PINS, (_I2C1_HEADER,)),
            _model(BOARD_PI_MODEL_B_PLUS, _PLUS_PINS, (_I2C1_HEADER,)),
            _model(BOARD_PI_MODEL_A_PLUS, _PLUS_PINS, (_I2C1_HEADER,)),
            _model(BOARD_PI_2_MODEL_B, _PLUS_PINS, (_I2C1_HEADER,)),
            _model(
                BOARD_PI_COMPUTE_MODULE,
                frozenset(range(0, 46)),
                (_I2C0_HEADER, _I2C1_HEADER),
            ),
        )
    }
)


def get_board_model(name: str) -> BoardModel | None:
    """Look up a board model by name; None if the board is not in the catalog."""
    return PERIPHERAL_CATALOG.get(name)
