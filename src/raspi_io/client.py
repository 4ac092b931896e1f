"""
Client for Raspberry Pi hardware peripherals.

This module implements RaspiClient, which connects to the agent running on the
board and exposes GPIO, LED, I2C and SPI operations.

Connecting walks a fixed sequence of phases:
- connecting: reserve the host in the registry, open the TCP socket
- authorizing: send the one-time handshake token
- version_checking: compare the agent's protocol version with ours
- board_identifying: determine the board model from /proc/cpuinfo
- discovering_capabilities: probe buses, channels, pins and LEDs
- ready: the host is marked live in the registry

Any failure aborts construction: the socket is closed, the registry entry is
released and one exception naming the failed phase is raised.

The client is synchronous and not thread-safe; callers sharing one client
between threads must serialize access to it.
"""

from __future__ import annotations

import re
import secrets
import struct
import time
import weakref
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from raspi_io.board import identify_board
from raspi_io.catalog import BoardModel
from raspi_io.discovery import CapabilityDiscovery
from raspi_io.errors import (
    AgentConnectionError,
    AuthorizationError,
    ConnectPhaseError,
    InvalidParameterError,
    PeripheralError,
    PopenError,
    RaspiError,
    VersionMismatchError,
)
from raspi_io.logging import get_logger
from raspi_io.protocol.correlator import Channel, SequenceCorrelator
from raspi_io.protocol.frames import RequestCode
from raspi_io.protocol.transport import DEFAULT_PORT, Endpoint, TransportChannel
from raspi_io.registry import ConnectionRegistry, get_default_registry
from raspi_io.state import (
    LED_TRIGGER_NONE,
    PeripheralStateCache,
    PinDirection,
)

if TYPE_CHECKING:
    from raspi_io.config import AgentConfig

logger = get_logger(__name__)

EXPECTED_AGENT_VERSION = (15, 1, 0)
DEFAULT_TIMEOUT = 30.0
DEFAULT_I2C_SPEED = 100000

I2C_MODULE = "i2c_bcm2708"
SPI_MODULE = "spi_bcm2708"

_I2CDETECT_ROW_LABEL = re.compile(r"\d\d:")
_I2CDETECT_ADDRESS = re.compile(r"[a-fA-F0-9]{2}")


class Transport(Channel, Protocol):
    """A correlator channel that RaspiClient can also open and close."""

    def connect(self, endpoint: Endpoint) -> None: ...

    def close(self) -> None: ...


class ConnectionState(str, Enum):
    """Lifecycle states of a RaspiClient."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHORIZING = "authorizing"
    VERSION_CHECKING = "version_checking"
    BOARD_IDENTIFYING = "board_identifying"
    DISCOVERING_CAPABILITIES = "discovering_capabilities"
    READY = "ready"
    TERMINATING = "terminating"


@dataclass(frozen=True)
class PhaseOutcome:
    """
    Outcome of one connect phase.

    Attributes:
        phase: The phase that ran.
        error: The error that ended the phase, None on success.
    """

    phase: ConnectionState
    error: RaspiError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def cause(self) -> BaseException | None:
        """Lower-level cause wrapped by the phase error, if any."""
        if isinstance(self.error, ConnectPhaseError):
            return self.error.cause
        return None


@dataclass(frozen=True)
class AgentVersion:
    """Protocol version reported by the agent."""

    parts: tuple[int, ...]

    @classmethod
    def from_payload(cls, payload: bytes) -> AgentVersion:
        """Decode a version payload of consecutive u32 words."""
        count = len(payload) // 4
        return cls(parts=struct.unpack(f"<{count}I", payload[: count * 4]))

    def validate(self, expected: tuple[int, ...]) -> None:
        """
        Check that the version equals ``expected``.

        Raises:
            VersionMismatchError: If the versions differ.
        """
        if tuple(self.parts) != tuple(expected):
            raise VersionMismatchError(expected=tuple(expected), actual=tuple(self.parts))

    def __str__(self) -> str:
        return ".".join(str(part) for part in self.parts)


def _check_digital_value(value: Any, parameter: str = "value") -> bool:
    """
    Validate a digital value: a bool, or a number equal to 0 or 1.

    Raises:
        InvalidParameterError: If the value is not 0/1.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    raise InvalidParameterError(
        f"Invalid {parameter}: {value!r}. Must be 0, 1, True or False",
        details={"parameter": parameter, "value": value},
    )


class RaspiClient:
    """
    Connection to the agent on one Raspberry Pi board.

    Constructing a client runs the whole connect sequence; a client object
    is only ever returned in the ready state.

    Attributes:
        endpoint: The agent's address.
        state: Current lifecycle state.
        board: Catalog entry of the connected board.

    Example:
        >>> with RaspiClient("192.168.0.10") as rpi:
        ...     rpi.write_digital_pin(17, 1)
        ...     rpi.read_digital_pin(4)
        True
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        *,
        timeout: float | None = DEFAULT_TIMEOUT,
        expected_version: tuple[int, ...] = EXPECTED_AGENT_VERSION,
        module_settle_seconds: float = 1.0,
        registry: ConnectionRegistry | None = None,
        transport_factory: Callable[[float | None], Transport] | None = None,
    ) -> None:
        """
        Connect to the agent.

        Args:
            host: Board hostname or IP address.
            port: Agent TCP port.
            timeout: Socket read timeout in seconds; None blocks indefinitely.
            expected_version: Agent protocol version this client requires.
            module_settle_seconds: Delay between loading a kernel module and
                verifying it.
            registry: Registry enforcing one client per host. Defaults to the
                process-wide registry.
            transport_factory: Builds the transport from the timeout.
                Defaults to TransportChannel.

        Raises:
            InvalidParameterError: If host or port are invalid.
            ConnectionExistsError: If a client for the host already exists.
            AgentConnectionError: If the socket cannot be connected.
            AuthorizationError: If the agent refuses the handshake.
            VersionMismatchError: If the agent version differs.
            UnknownBoardError: If the board cannot be identified.
        """
        if not isinstance(host, str) or not host.strip():
            raise InvalidParameterError(
                "Device address must be a non-empty string",
                details={"parameter": "host", "value": host},
            )
        if isinstance(port, bool) or not isinstance(port, int) or not 1 <= port <= 65535:
            raise InvalidParameterError(
                f"Invalid port: {port!r}",
                details={"parameter": "port", "value": port},
            )

        self.endpoint = Endpoint(host=host.strip(), port=port)
        self.expected_version = tuple(expected_version)
        self.module_settle_seconds = module_settle_seconds
        self.state = ConnectionState.DISCONNECTED
        self.board: BoardModel | None = None
        self.agent_version: AgentVersion | None = None

        self._registry = registry if registry is not None else get_default_registry()
        factory = transport_factory or TransportChannel
        self._transport = factory(timeout)
        self._correlator = SequenceCorrelator(self._transport)
        self._cache = PeripheralStateCache()
        self._finalizer: weakref.finalize | None = None

        self._connect()

    @classmethod
    def from_config(
        cls,
        config: AgentConfig,
        *,
        registry: ConnectionRegistry | None = None,
        transport_factory: Callable[[float | None], Transport] | None = None,
    ) -> RaspiClient:
        """
        Create a client from configuration.

        Raises:
            InvalidParameterError: If the configuration has no host.
        """
        if not config.host:
            raise InvalidParameterError(
                "No device address configured",
                details={"parameter": "host"},
            )
        return cls(
            config.host,
            config.port,
            timeout=config.timeout_seconds,
            expected_version=config.expected_version,
            module_settle_seconds=config.module_settle_seconds,
            registry=registry,
            transport_factory=transport_factory,
        )

    # =========================================================================
    # Connect sequence
    # =========================================================================

    def _connect(self) -> None:
        self.state = ConnectionState.CONNECTING
        try:
            self._registry.reserve(self.host)
        except RaspiError:
            self.state = ConnectionState.DISCONNECTED
            raise

        phases: list[tuple[ConnectionState, Callable[[], None]]] = [
            (ConnectionState.CONNECTING, self._open_transport),
            (ConnectionState.AUTHORIZING, self._authorize),
            (ConnectionState.VERSION_CHECKING, self._check_version),
            (ConnectionState.BOARD_IDENTIFYING, self._identify_board),
            (ConnectionState.DISCOVERING_CAPABILITIES, self.refresh_capabilities),
        ]
        try:
            for phase, step in phases:
                outcome = self._run_phase(phase, step)
                if not outcome.ok:
                    logger.error(
                        "Connection failed",
                        extra={
                            "host": self.host,
                            "phase": outcome.phase.value,
                            "error": outcome.error.message,
                        },
                    )
                    if outcome.cause is not None:
                        raise outcome.error from outcome.cause
                    raise outcome.error
        except BaseException:
            self._abort_connect()
            raise

        self._registry.activate(self.host)
        self._finalizer = weakref.finalize(
            self,
            _release_connection,
            self.host,
            self._correlator,
            self._cache,
            self._transport,
            self._registry,
        )
        self.state = ConnectionState.READY
        logger.info(
            "Connected to agent",
            extra={
                "host": self.host,
                "port": self.port,
                "board_name": self.board_name,
                "agent_version": str(self.agent_version),
            },
        )

    def _run_phase(
        self, phase: ConnectionState, step: Callable[[], None]
    ) -> PhaseOutcome:
        self.state = phase
        logger.info("Connect phase", extra={"host": self.host, "phase": phase.value})
        try:
            step()
        except RaspiError as e:
            return PhaseOutcome(phase=phase, error=self._phase_error(phase, e))
        return PhaseOutcome(phase=phase)

    def _phase_error(self, phase: ConnectionState, error: RaspiError) -> RaspiError:
        if phase is ConnectionState.AUTHORIZING and not isinstance(error, AuthorizationError):
            return AuthorizationError(
                f"Not authorized to access the agent at {self.host}",
                details={"host": self.host, "error": error.message},
                phase=phase.value,
                cause=error,
            )
        if isinstance(error, ConnectPhaseError) and error.phase is None:
            error.phase = phase.value
        error.details.setdefault("phase", phase.value)
        return error

    def _abort_connect(self) -> None:
        self._transport.close()
        self._registry.release(self.host)
        self.state = ConnectionState.DISCONNECTED

    def _open_transport(self) -> None:
        self._transport.connect(self.endpoint)

    def _authorize(self) -> None:
        token = secrets.token_hex(8)
        self._correlator.call(RequestCode.AUTHORIZATION, token.encode("ascii") + b"\x00")

    def _check_version(self) -> None:
        response = self._correlator.call(RequestCode.VERSION)
        self.agent_version = AgentVersion.from_payload(response.payload)
        self.agent_version.validate(self.expected_version)

    def _identify_board(self) -> None:
        self.board = identify_board(self.popen)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def host(self) -> str:
        return self.endpoint.host

    @property
    def port(self) -> int:
        return self.endpoint.port

    @property
    def board_name(self) -> str | None:
        return self.board.name if self.board else None

    @property
    def available_digital_pins(self) -> tuple[int, ...]:
        return self._cache.available_digital_pins

    @property
    def available_leds(self) -> tuple[str, ...]:
        return self._cache.available_leds

    @property
    def available_i2c_buses(self) -> tuple[str, ...]:
        return self._cache.available_i2c_buses

    @property
    def available_spi_channels(self) -> tuple[str, ...]:
        return self._cache.available_spi_channels

    @property
    def i2c_bus_speed(self) -> int | None:
        return self._cache.i2c_bus_speed

    @property
    def peripherals(self) -> PeripheralStateCache:
        """The cached peripheral state (read-only use)."""
        return self._cache

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(host={self.host!r}, port={self.port}, "
            f"board_name={self.board_name!r}, state={self.state.value!r})"
        )

    # =========================================================================
    # Agent requests
    # =========================================================================

    def _require_ready(self) -> None:
        if self.state is ConnectionState.DISCONNECTED:
            raise AgentConnectionError(
                f"Client for {self.host} is closed",
                details={"host": self.host, "state": self.state.value},
            )

    def echo(self, data: bytes | str) -> bytes:
        """Send data to the agent and return what it echoes back."""
        self._require_ready()
        return self._correlator.call(RequestCode.ECHO, data).payload

    def system(self, command: str) -> None:
        """
        Run a command on the board without capturing its output.

        Raises:
            InvalidParameterError: If the command is empty.
            AgentError: If the agent reports an error.
        """
        self._require_ready()
        self._validate_command(command)
        self._correlator.call(RequestCode.SYSTEM_SYSTEM, command)

    def popen(self, command: str) -> str:
        """
        Run a command on the board and return its standard output.

        Raises:
            InvalidParameterError: If the command is empty.
            PopenError: If the agent reports an error running the command.
        """
        self._validate_command(command)
        response = self._correlator.call(
            RequestCode.SYSTEM_POPEN, command, raise_on_error=False
        )
        if not response.is_success:
            raise PopenError(response.error_code, command)
        return response.payload.decode("utf-8", errors="replace").replace("\x00", "")

    @staticmethod
    def _validate_command(command: Any) -> None:
        if not isinstance(command, str) or not command.strip():
            raise InvalidParameterError(
                "Command must be a non-empty string",
                details={"parameter": "command", "value": command},
            )

    # =========================================================================
    # GPIO
    # =========================================================================

    def configure_pin(self, pin: int, mode: str | None = None) -> str:
        """
        Configure a digital pin, or return its mode when ``mode`` is omitted.

        Args:
            pin: BCM pin number.
            mode: "input" or "output" ("DigitalInput"/"DigitalOutput" also
                accepted).

        Returns:
            The pin's mode after the call ("input", "output" or "unset").

        Raises:
            InvalidParameterError: If the pin or mode is invalid.
            AgentError: If the agent cannot configure the pin.
        """
        self._require_ready()
        record = self._cache.pin(pin)
        if mode is None:
            return record.direction.mode

        direction = PinDirection.from_mode(mode)
        self._correlator.call(RequestCode.GPIO_INIT, pin, (int(direction), "B"))
        self._cache.mark_opened(pin, direction)
        logger.debug("GPIO pin configured", extra={"pin": pin, "mode": direction.mode})
        return direction.mode

    def get_pin_configuration(self, pin: int) -> str:
        """Return the cached mode of a digital pin."""
        self._require_ready()
        return self._cache.pin(pin).direction.mode

    def read_digital_pin(self, pin: int) -> bool:
        """
        Read the logical state of a digital pin.

        An unopened pin is configured as input first.

        Raises:
            InvalidParameterError: If the pin is not available.
            PinStateError: If the pin is configured as output.
        """
        self._require_ready()
        record = self._cache.pin(pin)
        if not record.opened:
            self.configure_pin(pin, PinDirection.INPUT.mode)
        self._cache.require_direction(pin, PinDirection.INPUT, "read")

        response = self._correlator.call(RequestCode.GPIO_READ, pin)
        return bool(response.payload) and response.payload[0] != 0

    def write_digital_pin(self, pin: int, value: bool | int) -> None:
        """
        Set the state of a digital pin.

        An unopened pin is configured as output first.

        Raises:
            InvalidParameterError: If the pin is not available or the value is
                not 0/1.
            PinStateError: If the pin is configured as input.
        """
        self._require_ready()
        record = self._cache.pin(pin)
        level = _check_digital_value(value)
        if not record.opened:
            self.configure_pin(pin, PinDirection.OUTPUT.mode)
        self._cache.require_direction(pin, PinDirection.OUTPUT, "write")

        self._correlator.call(RequestCode.GPIO_WRITE, pin, level)

    # =========================================================================
    # LEDs
    # =========================================================================

    def write_led(self, led: str, value: bool | int) -> None:
        """
        Turn an LED on or off.

        If a trigger other than "none" drives the LED it is detached first.

        Raises:
            InvalidParameterError: If the LED or value is invalid.
        """
        self._require_ready()
        record = self._cache.led(led)
        level = _check_digital_value(value)
        if record.current_trigger != LED_TRIGGER_NONE:
            self.configure_led(record.name, LED_TRIGGER_NONE)

        self._correlator.call(RequestCode.LED_WRITE, record.number, level)

    def configure_led(self, led: str, trigger: str) -> None:
        """
        Select the trigger that drives an LED.

        Raises:
            InvalidParameterError: If the LED does not support the trigger.
        """
        self._require_ready()
        record = self._cache.led(led)
        trigger = self._cache.resolve_trigger(record.name, trigger)

        self._correlator.call(RequestCode.LED_SET_TRIGGER, record.number, trigger)
        self._cache.set_trigger(record.name, trigger)
        logger.debug("LED trigger set", extra={"led": record.name, "trigger": trigger})

    def get_led_configuration(self, led: str) -> str:
        """Return the trigger currently driving an LED."""
        return self._cache.led(led).current_trigger

    def get_available_led_configurations(self, led: str) -> tuple[str, ...]:
        """Return the triggers an LED supports."""
        return self._cache.led(led).available_triggers

    # =========================================================================
    # I2C / SPI
    # =========================================================================

    def refresh_capabilities(self) -> None:
        """Re-run capability discovery and refresh the cached state."""
        if self.board is None:
            raise InvalidParameterError("Board has not been identified")
        discovery = CapabilityDiscovery(self.board, self._correlator, self.popen)
        self._cache.apply(discovery.run())

    def enable_i2c(self, speed: int | float = DEFAULT_I2C_SPEED) -> None:
        """
        Load the I2C kernel modules at the given bus speed.

        Raises:
            InvalidParameterError: If speed is not a positive number.
            PeripheralError: If the modules cannot be loaded.
        """
        self._require_ready()
        if isinstance(speed, bool) or not isinstance(speed, (int, float)) or not speed > 0:
            raise InvalidParameterError(
                f"Invalid I2C speed: {speed!r}",
                details={"parameter": "speed", "value": speed},
            )
        self._change_modules(
            [
                "sudo modprobe i2c_dev",
                f"sudo modprobe {I2C_MODULE} baudrate={int(speed)}",
            ],
            module=I2C_MODULE,
            loaded=True,
            failure="Cannot enable I2C",
        )

    def disable_i2c(self) -> None:
        """Unload the I2C kernel modules."""
        self._require_ready()
        self._change_modules(
            ["sudo modprobe -r i2c_dev", f"sudo modprobe -r {I2C_MODULE}"],
            module=I2C_MODULE,
            loaded=False,
            failure="Cannot disable I2C",
        )

    def enable_spi(self) -> None:
        """Load the SPI kernel modules."""
        self._require_ready()
        self._change_modules(
            ["sudo modprobe spidev", f"sudo modprobe {SPI_MODULE}"],
            module=SPI_MODULE,
            loaded=True,
            failure="Cannot enable SPI",
        )

    def disable_spi(self) -> None:
        """Unload the SPI kernel module."""
        self._require_ready()
        self._change_modules(
            [f"sudo modprobe -r {SPI_MODULE}"],
            module=SPI_MODULE,
            loaded=False,
            failure="Cannot disable SPI",
        )

    def _change_modules(
        self, commands: list[str], *, module: str, loaded: bool, failure: str
    ) -> None:
        try:
            for command in commands:
                self.popen(command)
            if self.module_settle_seconds:
                time.sleep(self.module_settle_seconds)
            modules = self.popen("cat /proc/modules")
        except PopenError as e:
            raise PeripheralError(failure, details={"module": module, "error": e.message}) from e

        if (module in modules) != loaded:
            raise PeripheralError(failure, details={"module": module})

        logger.info(
            "Kernel module state changed",
            extra={"module": module, "loaded": loaded},
        )
        self.refresh_capabilities()

    def scan_i2c_bus(self, bus: str | None = None) -> list[str]:
        """
        List the addresses of devices found on an I2C bus.

        Args:
            bus: Bus name (e.g., "i2c-1"). May be omitted when exactly one bus
                is available.

        Returns:
            Addresses as strings such as "0x48".

        Raises:
            InvalidParameterError: If the bus is not available.
        """
        self._require_ready()
        buses = self._cache.i2c_buses
        if bus is None and len(buses) == 1:
            bus = next(iter(buses))

        state = None
        if isinstance(bus, str):
            state = next(
                (candidate for name, candidate in buses.items() if name.lower() == bus.lower()),
                None,
            )
        if state is None:
            raise InvalidParameterError(
                f"Invalid I2C bus: {bus!r}",
                details={"parameter": "bus", "value": bus, "available_buses": list(buses)},
            )

        output = self.popen(f"sudo i2cdetect -y {state.number}")
        output = _I2CDETECT_ROW_LABEL.sub("", output)
        return [f"0x{address.upper()}" for address in _I2CDETECT_ADDRESS.findall(output)]

    # =========================================================================
    # Teardown
    # =========================================================================

    def close(self) -> None:
        """
        Release opened pins, close the socket and free the host.

        Never raises; cleanup failures are logged as warnings. A client that
        is garbage collected without being closed is released the same way.
        """
        if self.state is ConnectionState.DISCONNECTED:
            return

        self.state = ConnectionState.TERMINATING
        if self._finalizer is not None:
            self._finalizer()
        self.state = ConnectionState.DISCONNECTED
        logger.info("Disconnected from agent", extra={"host": self.host})

    def __enter__(self) -> RaspiClient:
        """Context manager entry."""
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: Exception | None,
        exc_tb: Any,
    ) -> None:
        """Context manager exit."""
        self.close()


def _release_connection(
    host: str,
    correlator: SequenceCorrelator,
    cache: PeripheralStateCache,
    transport: Transport,
    registry: ConnectionRegistry,
) -> None:
    """
    Terminate opened pins, close the transport and free the host.

    Runs at most once per client, either from close() or when the client is
    garbage collected. Must not reference the client itself.
    """
    try:
        for pin in cache.opened_pins():
            try:
                correlator.call(RequestCode.GPIO_TERMINATE, pin)
                cache.mark_closed(pin)
            except RaspiError as e:
                logger.warning(
                    "Failed to release GPIO pin",
                    extra={"host": host, "pin": pin, "error": e.message},
                )
    except Exception as e:
        logger.warning(
            "Error releasing pins during close (ignored)",
            extra={"host": host, "error": str(e)},
        )
    finally:
        transport.close()
        registry.release(host)
