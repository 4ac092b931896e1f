"""
Tests for the peripheral state cache.
"""

from __future__ import annotations

import pytest

from raspi_io.errors import InvalidParameterError, PinStateError
from raspi_io.state import (
    DiscoverySnapshot,
    I2CBusState,
    LEDRecord,
    PeripheralStateCache,
    PinDirection,
    PinRecord,
)


def _snapshot(*pins: tuple[int, PinDirection]) -> DiscoverySnapshot:
    snapshot = DiscoverySnapshot()
    for pin, direction in pins:
        snapshot.pins[pin] = PinRecord(pin=pin, direction=direction)
    snapshot.leds["led0"] = LEDRecord(
        name="led0",
        number=0,
        color="green",
        current_trigger="mmc0",
        available_triggers=("none", "mmc0", "heartbeat"),
    )
    snapshot.i2c_buses["i2c-1"] = I2CBusState(
        name="i2c-1", number=1, reserved_pins=frozenset({2, 3}), verified_available=True
    )
    snapshot.i2c_bus_speed = 400000
    return snapshot


@pytest.fixture
def cache() -> PeripheralStateCache:
    cache = PeripheralStateCache()
    cache.apply(
        _snapshot(
            (17, PinDirection.INPUT),
            (4, PinDirection.INPUT),
            (22, PinDirection.OUTPUT),
        )
    )
    return cache


# =============================================================================
# PinDirection
# =============================================================================


class TestPinDirection:
    """Tests for PinDirection."""

    def test_wire_values(self) -> None:
        """Test the direction codes sent to the agent."""
        assert PinDirection.INPUT == 0
        assert PinDirection.OUTPUT == 1

    @pytest.mark.parametrize(
        ("mode", "expected"),
        [
            ("input", PinDirection.INPUT),
            ("OUTPUT", PinDirection.OUTPUT),
            ("DigitalInput", PinDirection.INPUT),
            ("DigitalOutput", PinDirection.OUTPUT),
        ],
    )
    def test_from_mode(self, mode: str, expected: PinDirection) -> None:
        """Test accepted mode spellings."""
        assert PinDirection.from_mode(mode) is expected

    @pytest.mark.parametrize("mode", ["unset", "pwm", ""])
    def test_from_mode_invalid(self, mode: str) -> None:
        """Test that other modes are rejected."""
        with pytest.raises(InvalidParameterError) as exc_info:
            PinDirection.from_mode(mode)
        assert exc_info.value.details["valid_values"] == ["input", "output"]

    def test_mode_names(self) -> None:
        """Test mode strings."""
        assert PinDirection.UNSET.mode == "unset"
        assert PinDirection.OUTPUT.mode == "output"


# =============================================================================
# PeripheralStateCache
# =============================================================================


class TestPeripheralStateCache:
    """Tests for PeripheralStateCache."""

    def test_available_resources(self, cache: PeripheralStateCache) -> None:
        """Test ordered resource listings."""
        assert cache.available_digital_pins == (4, 17, 22)
        assert cache.available_leds == ("led0",)
        assert cache.available_i2c_buses == ("i2c-1",)
        assert cache.available_spi_channels == ()
        assert cache.i2c_bus_speed == 400000

    def test_pin_lookup(self, cache: PeripheralStateCache) -> None:
        """Test looking up an available pin."""
        record = cache.pin(17)
        assert record.opened is False
        assert record.direction is PinDirection.INPUT

    @pytest.mark.parametrize("pin", [2, 50, -1, True, "4", 4.0])
    def test_pin_lookup_invalid(self, cache: PeripheralStateCache, pin: object) -> None:
        """Test that unavailable or non-integer pins are rejected."""
        with pytest.raises(InvalidParameterError):
            cache.pin(pin)  # type: ignore[arg-type]

    def test_mark_opened_and_closed(self, cache: PeripheralStateCache) -> None:
        """Test opening and releasing a pin."""
        cache.mark_opened(17, PinDirection.OUTPUT)
        assert cache.opened_pins() == [17]
        assert cache.pin(17).direction is PinDirection.OUTPUT

        cache.mark_closed(17)
        assert cache.opened_pins() == []

    def test_require_direction(self, cache: PeripheralStateCache) -> None:
        """Test the direction precondition."""
        cache.require_direction(22, PinDirection.OUTPUT, "write")

        with pytest.raises(PinStateError) as exc_info:
            cache.require_direction(17, PinDirection.OUTPUT, "write")

        assert exc_info.value.error_code == "pin_state"
        assert exc_info.value.details["direction"] == "input"

    def test_apply_keeps_open_pins(self, cache: PeripheralStateCache) -> None:
        """Test that rediscovery keeps open pins with unchanged direction."""
        cache.mark_opened(4, PinDirection.INPUT)
        cache.mark_opened(22, PinDirection.OUTPUT)

        cache.apply(
            _snapshot(
                (4, PinDirection.INPUT),
                (22, PinDirection.INPUT),
                (17, PinDirection.INPUT),
            )
        )

        assert cache.opened_pins() == [4]
        assert cache.pin(22).direction is PinDirection.INPUT

    def test_apply_drops_reserved_pins(self, cache: PeripheralStateCache) -> None:
        """Test that pins missing from a new snapshot disappear."""
        cache.apply(_snapshot((4, PinDirection.INPUT)))
        assert cache.available_digital_pins == (4,)
        with pytest.raises(InvalidParameterError):
            cache.pin(17)

    def test_led_lookup_case_insensitive(self, cache: PeripheralStateCache) -> None:
        """Test LED name matching."""
        assert cache.led("LED0").name == "led0"
        with pytest.raises(InvalidParameterError):
            cache.led("led1")

    def test_resolve_trigger(self, cache: PeripheralStateCache) -> None:
        """Test trigger validation."""
        assert cache.resolve_trigger("led0", "Heartbeat") == "heartbeat"
        with pytest.raises(InvalidParameterError) as exc_info:
            cache.resolve_trigger("led0", "bogus")
        assert exc_info.value.details["valid_values"] == ["none", "mmc0", "heartbeat"]

    def test_set_trigger(self, cache: PeripheralStateCache) -> None:
        """Test recording a new trigger."""
        cache.set_trigger("led0", "none")
        assert cache.led("led0").current_trigger == "none"
