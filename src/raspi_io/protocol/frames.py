"""
Frame codec for the raspi-io agent protocol.

Every message on the socket is a fixed 12-byte header of three unsigned 32-bit
little-endian integers followed by a variable-length payload.

Protocol Format:
- Request:  [request_id, sequence, payload_length] + payload
- Response: [error_code, sequence, payload_length] + payload
- A response payload is only present when error_code == 0.

Payload arguments are packed in order: booleans as one byte (0/1), strings and
bytes as their raw bytes without terminator, integers as u32 unless packed
explicitly with one of the fixed-width helpers below.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum

from raspi_io.errors import FrameError

# =============================================================================
# Protocol Constants
# =============================================================================

HEADER_FORMAT = "<III"
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)

# Conventional request payload limit; the agent enforces it, not the codec.
REQUEST_MAX_PAYLOAD_SIZE = 1024

# One raw 2000x1080 YUV420 video frame
RESPONSE_MAX_PAYLOAD_SIZE = (2000 * 1080 * 3) // 2

UINT32_MAX = 0xFFFFFFFF


class RequestCode(IntEnum):
    """Request identifiers understood by the agent."""

    # Reserved
    ECHO = 0
    VERSION = 1
    AUTHORIZATION = 2

    # LED requests
    LED_GET_TRIGGER = 1000
    LED_SET_TRIGGER = 1001
    LED_WRITE = 1002

    # GPIO requests
    GPIO_INIT = 2000
    GPIO_TERMINATE = 2001
    GPIO_READ = 2002
    GPIO_WRITE = 2003
    GPIO_GET_DIRECTION = 2004

    # I2C requests
    I2C_BUS_AVAILABLE = 3000

    # System requests
    SYSTEM_SYSTEM = 10000
    SYSTEM_POPEN = 10001


# =============================================================================
# Payload Packing
# =============================================================================

PayloadArg = bool | int | str | bytes | bytearray | tuple[int, str]


def u8(value: int) -> bytes:
    """Pack an integer as a single unsigned byte."""
    return struct.pack("<B", value)


def u32(value: int) -> bytes:
    """Pack an integer as an unsigned 32-bit little-endian word."""
    return struct.pack("<I", value)


def _pack_fixed(value: int, struct_format: str) -> bytes:
    try:
        return struct.pack("<" + struct_format, value)
    except struct.error as e:
        raise FrameError(
            f"Cannot pack {value!r} as {struct_format!r}: {e}",
            details={"value": value, "format": struct_format},
        ) from e


def pack_payload(*args: PayloadArg) -> bytes:
    """
    Pack request arguments into a payload in argument order.

    Args:
        *args: Payload arguments. ``bool`` packs as one byte, ``str`` as its
            UTF-8 bytes, ``bytes`` as-is and ``int`` as u32. A
            ``(value, struct_format)`` tuple packs an integer at a fixed
            width, e.g. ``(1, "B")`` for a single byte.

    Returns:
        The concatenated payload bytes.

    Raises:
        FrameError: If an argument has an unsupported type or an integer does
            not fit its width.
    """
    parts: list[bytes] = []
    for arg in args:
        if isinstance(arg, bool):
            parts.append(b"\x01" if arg else b"\x00")
        elif isinstance(arg, int):
            if not 0 <= arg <= UINT32_MAX:
                raise FrameError(
                    f"Integer payload argument out of u32 range: {arg}",
                    details={"value": arg},
                )
            parts.append(u32(arg))
        elif isinstance(arg, tuple) and len(arg) == 2:
            parts.append(_pack_fixed(*arg))
        elif isinstance(arg, str):
            parts.append(arg.encode("utf-8"))
        elif isinstance(arg, (bytes, bytearray)):
            parts.append(bytes(arg))
        else:
            raise FrameError(
                f"Unsupported payload argument type: {type(arg).__name__}",
                details={"type": type(arg).__name__},
            )
    return b"".join(parts)


# =============================================================================
# Messages
# =============================================================================


@dataclass(frozen=True)
class Request:
    """
    A request frame sent from the client to the agent.

    Attributes:
        request_id: Request code (see RequestCode).
        sequence: Per-connection sequence number.
        payload: Raw payload bytes.
    """

    request_id: int
    sequence: int
    payload: bytes = b""

    @classmethod
    def create(cls, request_id: int, sequence: int, *args: PayloadArg) -> Request:
        """Build a request, packing the payload arguments in order."""
        return cls(request_id=request_id, sequence=sequence, payload=pack_payload(*args))

    def encode(self) -> bytes:
        """Serialize to header + payload bytes."""
        header = struct.pack(
            HEADER_FORMAT, self.request_id, self.sequence, len(self.payload)
        )
        return header + self.payload

    @classmethod
    def decode(cls, data: bytes) -> Request:
        """
        Parse a request frame.

        Raises:
            FrameError: If the buffer is shorter than the header or the
                declared payload length.
        """
        request_id, sequence, length = _unpack_header(data)
        payload = data[HEADER_SIZE : HEADER_SIZE + length]
        if len(payload) != length:
            raise FrameError(
                "Truncated request payload",
                details={"expected": length, "actual": len(payload)},
            )
        return cls(request_id=request_id, sequence=sequence, payload=payload)


@dataclass(frozen=True)
class ResponseHeader:
    """
    Decoded response header.

    Attributes:
        error_code: 0 on success, otherwise an agent errno.
        sequence: Sequence number of the request being answered.
        payload_length: Number of payload bytes that follow.
    """

    error_code: int
    sequence: int
    payload_length: int

    @property
    def has_payload(self) -> bool:
        """Whether payload bytes follow this header on the wire."""
        return self.error_code == 0

    @classmethod
    def from_words(cls, words: tuple[int, ...]) -> ResponseHeader:
        """
        Build a header from three decoded u32 words.

        Raises:
            FrameError: If the declared payload exceeds the response ceiling.
        """
        error_code, sequence, payload_length = words
        if payload_length > RESPONSE_MAX_PAYLOAD_SIZE:
            raise FrameError(
                f"Response payload too large: {payload_length} bytes",
                details={"max_size": RESPONSE_MAX_PAYLOAD_SIZE, "sequence": sequence},
            )
        return cls(error_code=error_code, sequence=sequence, payload_length=payload_length)

    @classmethod
    def decode(cls, data: bytes) -> ResponseHeader:
        """Parse a 12-byte response header."""
        return cls.from_words(_unpack_header(data))


@dataclass(frozen=True)
class Response:
    """
    A response frame sent from the agent to the client.

    Attributes:
        error_code: 0 on success, otherwise an agent errno.
        sequence: Sequence number of the request being answered.
        payload: Raw payload bytes (empty on error).
    """

    error_code: int
    sequence: int
    payload: bytes = field(default=b"")

    @property
    def is_success(self) -> bool:
        """Check if the response indicates success."""
        return self.error_code == 0

    def encode(self) -> bytes:
        """Serialize to header + payload bytes."""
        payload = self.payload if self.is_success else b""
        return struct.pack(HEADER_FORMAT, self.error_code, self.sequence, len(payload)) + payload


def _unpack_header(data: bytes) -> tuple[int, int, int]:
    if len(data) < HEADER_SIZE:
        raise FrameError(
            f"Frame header too short: {len(data)} bytes",
            details={"expected": HEADER_SIZE, "actual": len(data)},
        )
    return struct.unpack_from(HEADER_FORMAT, data)
