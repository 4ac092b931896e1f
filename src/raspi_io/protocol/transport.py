"""
TCP transport channel to the on-board agent.

The channel owns exactly one socket. It exposes blocking ``send`` and
``receive`` primitives; framing and correlation live in the layers above.
"""

from __future__ import annotations

import socket
import struct
from dataclasses import dataclass

from raspi_io.errors import AgentConnectionError, AgentTimeoutError
from raspi_io.logging import get_logger

logger = get_logger(__name__)

DEFAULT_PORT = 18726

# Fixed-width element types understood by receive()
ELEMENT_FORMATS: dict[str, str] = {
    "uint8": "B",
    "int8": "b",
    "uint16": "H",
    "int16": "h",
    "uint32": "I",
    "int32": "i",
}


@dataclass(frozen=True)
class Endpoint:
    """
    Address of the agent's listening socket.

    Attributes:
        host: Hostname or IP address of the board.
        port: TCP port of the agent.
    """

    host: str
    port: int = DEFAULT_PORT

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


class TransportChannel:
    """
    Blocking TCP channel to the agent.

    Attributes:
        timeout: Read timeout in seconds, or None to block indefinitely.
        endpoint: The endpoint once connected.
    """

    def __init__(self, timeout: float | None = None) -> None:
        """
        Initialize the channel.

        Args:
            timeout: Read timeout in seconds. None blocks indefinitely.
        """
        self.timeout = timeout
        self.endpoint: Endpoint | None = None
        self._sock: socket.socket | None = None

    @property
    def is_open(self) -> bool:
        """Whether the socket is open."""
        return self._sock is not None

    def connect(self, endpoint: Endpoint) -> None:
        """
        Open the TCP connection.

        Raises:
            AgentConnectionError: If the socket cannot be connected.
        """
        if self._sock is not None:
            raise AgentConnectionError(
                "Transport channel is already connected",
                details={"endpoint": str(self.endpoint)},
            )
        try:
            sock = socket.create_connection((endpoint.host, endpoint.port), timeout=self.timeout)
        except OSError as e:
            raise AgentConnectionError(
                f"Cannot connect to agent at {endpoint}: {e}",
                details={"host": endpoint.host, "port": endpoint.port},
            ) from e

        sock.settimeout(self.timeout)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        self._sock = sock
        self.endpoint = endpoint
        logger.debug("Transport connected", extra={"endpoint": str(endpoint)})

    def send(self, data: bytes) -> None:
        """
        Write the full buffer to the socket.

        Raises:
            AgentConnectionError: If not connected or the write fails.
        """
        sock = self._require_socket()
        try:
            sock.sendall(data)
        except TimeoutError as e:
            raise AgentTimeoutError(
                f"Timed out sending to agent after {self.timeout}s",
                details={"endpoint": str(self.endpoint)},
            ) from e
        except OSError as e:
            raise AgentConnectionError(
                f"Failed to send to agent: {e}",
                details={"endpoint": str(self.endpoint)},
            ) from e

    def receive(self, count: int, element_type: str = "uint8") -> bytes | tuple[int, ...]:
        """
        Read exactly ``count`` elements of a fixed-width type.

        Args:
            count: Number of elements to read.
            element_type: One of ELEMENT_FORMATS (e.g., "uint8", "uint32").

        Returns:
            Raw bytes for "uint8", otherwise a tuple of little-endian integers.

        Raises:
            AgentTimeoutError: If the read timeout expires.
            AgentConnectionError: If the peer closes the connection.
        """
        try:
            fmt = ELEMENT_FORMATS[element_type]
        except KeyError:
            raise ValueError(f"Unsupported element type: {element_type}") from None

        size = struct.calcsize(fmt) * count
        data = self._read_exactly(size)
        if element_type == "uint8":
            return data
        return struct.unpack(f"<{count}{fmt}", data)

    def close(self) -> None:
        """Close the socket. Safe to call more than once."""
        if self._sock is None:
            return
        try:
            self._sock.close()
        except OSError as e:
            logger.warning("Error closing agent socket", extra={"error": str(e)})
        finally:
            self._sock = None
            logger.debug("Transport closed", extra={"endpoint": str(self.endpoint)})

    def _require_socket(self) -> socket.socket:
        if self._sock is None:
            raise AgentConnectionError("Not connected to agent")
        return self._sock

    def _read_exactly(self, size: int) -> bytes:
        sock = self._require_socket()
        buf = bytearray()
        while len(buf) < size:
            try:
                chunk = sock.recv(size - len(buf))
            except TimeoutError as e:
                raise AgentTimeoutError(
                    f"Timed out waiting for agent after {self.timeout}s",
                    details={"endpoint": str(self.endpoint), "pending_bytes": size - len(buf)},
                ) from e
            except OSError as e:
                raise AgentConnectionError(
                    f"Failed to receive from agent: {e}",
                    details={"endpoint": str(self.endpoint)},
                ) from e
            if not chunk:
                raise AgentConnectionError(
                    "Agent closed the connection",
                    details={"endpoint": str(self.endpoint), "pending_bytes": size - len(buf)},
                )
            buf.extend(chunk)
        return bytes(buf)
