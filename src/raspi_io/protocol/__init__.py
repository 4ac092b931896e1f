"""
Wire protocol for communication with the on-board agent.

This package provides the TCP transport, the binary frame codec and the
sequence correlator used by RaspiClient.
"""

from raspi_io.protocol.correlator import SequenceCorrelator
from raspi_io.protocol.frames import (
    HEADER_SIZE,
    RESPONSE_MAX_PAYLOAD_SIZE,
    Request,
    RequestCode,
    Response,
    ResponseHeader,
    pack_payload,
    u8,
    u32,
)
from raspi_io.protocol.transport import DEFAULT_PORT, Endpoint, TransportChannel

__all__ = [
    "DEFAULT_PORT",
    "HEADER_SIZE",
    "RESPONSE_MAX_PAYLOAD_SIZE",
    "Endpoint",
    "Request",
    "RequestCode",
    "Response",
    "ResponseHeader",
    "SequenceCorrelator",
    "TransportChannel",
    "pack_payload",
    "u8",
    "u32",
]
