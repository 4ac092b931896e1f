"""
Pytest configuration for the raspi-io tests.

Provides FakeAgent, an in-memory stand-in for the on-board agent that speaks
the wire protocol. It is injected into RaspiClient through
``transport_factory``, so every byte the client sends is decoded as a real
request frame and every answer is encoded as a real response frame.
"""

from __future__ import annotations

import errno
import logging
import struct
from collections.abc import Callable, Iterator

import pytest

from raspi_io.client import RaspiClient
from raspi_io.errors import AgentConnectionError
from raspi_io.logging import ROOT_LOGGER_NAME
from raspi_io.protocol.frames import Request, RequestCode, Response
from raspi_io.protocol.transport import Endpoint
from raspi_io.registry import ConnectionRegistry

CPUINFO_PI2 = """processor\t: 0
model name\t: ARMv7 Processor rev 5 (v7l)
BogoMIPS\t: 38.40
Features\t: half thumb fastmult vfp edsp neon vfpv3 tls vfpv4 idiva idivt vfpd32 lpae evtstrm
CPU implementer\t: 0x41
CPU architecture: 7

Hardware\t: BCM2709
Revision\t: a01041
Serial\t\t: 00000000deadbeef
"""

CPUINFO_MODEL_B_REV2 = """processor\t: 0
model name\t: ARMv6-compatible processor rev 7 (v6l)
Features\t: half thumb fastmult vfp edsp java tls
CPU architecture: 7

Hardware\t: BCM2708
Revision\t: 000e
Serial\t\t: 00000000cafef00d
"""

I2CDETECT_OUTPUT = """     0  1  2  3  4  5  6  7  8  9  a  b  c  d  e  f
00:          -- -- -- -- -- -- -- -- -- -- -- -- --
10: -- -- -- -- -- -- -- -- -- -- -- -- -- -- -- --
20: -- -- -- -- -- -- -- -- -- -- -- -- -- -- -- --
30: -- -- -- -- -- -- -- -- -- -- -- -- -- -- -- --
40: -- -- -- -- -- -- -- -- 48 -- -- -- -- -- -- --
50: -- -- -- -- -- -- -- -- -- -- -- -- -- -- -- --
60: -- -- -- -- -- -- -- -- 68 -- -- -- -- -- -- --
70: -- -- -- -- -- -- -- 7a
"""

Frame = tuple[int, bytes]


class FakeAgent:
    """
    Scripted agent that answers request frames from in-memory state.

    Attributes:
        requests: Every request received, in order.
        connects: Number of connect() calls.
        close_calls: Number of close() calls.
        handlers: Per-request-code overrides returning (error_code, payload).
        stale: Responses queued in front of the next real answer.
    """

    def __init__(self, cpuinfo: str = CPUINFO_PI2) -> None:
        self.cpuinfo = cpuinfo
        self.version = (15, 1, 0)
        self.auth_error = 0
        self.refuse_connection = False
        self.enabled_i2c_buses: set[int] = {1}
        self.spi_devices: set[str] = set()
        self.default_direction = 0
        self.pin_directions: dict[int, int] = {}
        self.pin_levels: dict[int, bool] = {}
        self.led_triggers = "none [mmc0] timer oneshot heartbeat"
        self.led_levels: dict[int, bool] = {}
        self.loaded_modules: set[str] = {"i2c_bcm2708", "snd_bcm2835"}
        self.i2c_baudrate = 100000
        self.commands: dict[str, Frame] = {}

        self.handlers: dict[int, Callable[[Request], Frame]] = {}
        self.stale: list[Response] = []
        self.requests: list[Request] = []
        self.connects = 0
        self.close_calls = 0
        self.timeout: float | None = None
        self.endpoint: Endpoint | None = None
        self._inbound = bytearray()

    # -------------------------------------------------------------------------
    # Transport interface
    # -------------------------------------------------------------------------

    def factory(self, timeout: float | None) -> FakeAgent:
        self.timeout = timeout
        return self

    def connect(self, endpoint: Endpoint) -> None:
        self.connects += 1
        if self.refuse_connection:
            raise AgentConnectionError(
                f"Failed to connect to agent at {endpoint}: Connection refused",
                details={"endpoint": str(endpoint)},
            )
        self.endpoint = endpoint

    def send(self, data: bytes) -> None:
        request = Request.decode(data)
        self.requests.append(request)
        error_code, payload = self.handle(request)
        for frame in self.stale:
            self._inbound += frame.encode()
        self.stale.clear()
        self._inbound += Response(error_code, request.sequence, payload).encode()

    def receive(self, count: int, element_type: str = "uint8") -> bytes | tuple[int, ...]:
        size = count * (4 if element_type == "uint32" else 1)
        if len(self._inbound) < size:
            raise AgentConnectionError("Agent closed the connection")
        data = bytes(self._inbound[:size])
        del self._inbound[:size]
        if element_type == "uint8":
            return data
        return struct.unpack(f"<{count}I", data)

    def close(self) -> None:
        self.close_calls += 1

    @property
    def socket_operations(self) -> int:
        return self.connects + len(self.requests)

    def requests_of(self, code: RequestCode) -> list[Request]:
        return [r for r in self.requests if r.request_id == code]

    # -------------------------------------------------------------------------
    # Request handling
    # -------------------------------------------------------------------------

    def handle(self, request: Request) -> Frame:
        if request.request_id in self.handlers:
            return self.handlers[request.request_id](request)

        code = request.request_id
        payload = request.payload
        if code == RequestCode.ECHO:
            return 0, payload
        if code == RequestCode.VERSION:
            return 0, struct.pack(f"<{len(self.version)}I", *self.version)
        if code == RequestCode.AUTHORIZATION:
            return self.auth_error, b""
        if code == RequestCode.SYSTEM_POPEN:
            return self.run(payload.decode())
        if code == RequestCode.SYSTEM_SYSTEM:
            return self.run(payload.decode())[0], b""
        if code == RequestCode.I2C_BUS_AVAILABLE:
            (bus,) = struct.unpack("<I", payload)
            return 0, bytes([bus in self.enabled_i2c_buses])
        if code == RequestCode.GPIO_GET_DIRECTION:
            (pin,) = struct.unpack("<I", payload)
            return 0, bytes([self.pin_directions.get(pin, self.default_direction)])
        if code == RequestCode.GPIO_INIT:
            pin, direction = struct.unpack("<IB", payload)
            self.pin_directions[pin] = direction
            return 0, b""
        if code == RequestCode.GPIO_READ:
            (pin,) = struct.unpack("<I", payload)
            return 0, bytes([self.pin_levels.get(pin, False)])
        if code == RequestCode.GPIO_WRITE:
            pin, value = struct.unpack("<I?", payload)
            self.pin_levels[pin] = value
            return 0, b""
        if code == RequestCode.GPIO_TERMINATE:
            return 0, b""
        if code == RequestCode.LED_GET_TRIGGER:
            return 0, self.led_triggers.encode() + b"\n"
        if code == RequestCode.LED_SET_TRIGGER:
            trigger = payload[4:].decode()
            names = [t.strip("[]") for t in self.led_triggers.split()]
            self.led_triggers = " ".join(f"[{t}]" if t == trigger else t for t in names)
            return 0, b""
        if code == RequestCode.LED_WRITE:
            number, value = struct.unpack("<I?", payload)
            self.led_levels[number] = value
            return 0, b""
        return errno.ENOSYS, b""

    def run(self, command: str) -> Frame:
        """Emulate the board's shell for popen/system requests."""
        if command in self.commands:
            return self.commands[command]
        if command == "cat /proc/cpuinfo":
            return 0, self.cpuinfo.encode()
        if command.startswith("stat "):
            path = command.split(" ", 1)[1]
            if path in self.spi_devices:
                return 0, f"  File: {path}\n".encode()
            return errno.ENOENT, b""
        if command == "sudo cat /sys/module/i2c_bcm2708/parameters/baudrate":
            return 0, f"{self.i2c_baudrate}\n".encode()
        if command == "cat /proc/modules":
            lines = "".join(
                f"{name} 16384 0 - Live 0x00000000\n" for name in sorted(self.loaded_modules)
            )
            return 0, lines.encode()
        if command.startswith("sudo modprobe -r "):
            self.loaded_modules.discard(command.split()[3])
            return 0, b""
        if command.startswith("sudo modprobe "):
            self.loaded_modules.add(command.split()[2])
            return 0, b""
        if command.startswith("sudo i2cdetect -y "):
            return 0, I2CDETECT_OUTPUT.encode()
        return 0, b""


# =============================================================================
# Fixtures
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )


@pytest.fixture(autouse=True)
def reset_package_logger() -> Iterator[None]:
    """Undo setup_logging() so caplog sees package records in every test."""
    yield
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def agent() -> FakeAgent:
    """A fake agent on a Raspberry Pi 2 Model B."""
    return FakeAgent()


@pytest.fixture
def registry() -> ConnectionRegistry:
    """An isolated connection registry."""
    return ConnectionRegistry()


@pytest.fixture
def connect(agent: FakeAgent, registry: ConnectionRegistry) -> Callable[..., RaspiClient]:
    """Factory connecting a RaspiClient to the fake agent."""

    def _connect(host: str = "raspberrypi.local", **kwargs: object) -> RaspiClient:
        kwargs.setdefault("module_settle_seconds", 0)
        return RaspiClient(
            host,
            registry=registry,
            transport_factory=agent.factory,
            **kwargs,
        )

    return _connect


@pytest.fixture
def client(connect: Callable[..., RaspiClient]) -> Iterator[RaspiClient]:
    """A ready client connected to the fake agent."""
    rpi = connect()
    yield rpi
    rpi.close()
