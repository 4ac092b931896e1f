"""
Sequence correlation for request/response exchanges.

Only one request is ever outstanding on a connection. Frames answering older
requests (late replies after a timeout, duplicates) are read and dropped until
the response carrying the expected sequence number arrives.
"""

from __future__ import annotations

from typing import Protocol

from raspi_io.errors import AgentError
from raspi_io.logging import get_logger
from raspi_io.protocol.frames import (
    HEADER_SIZE,
    UINT32_MAX,
    PayloadArg,
    Request,
    Response,
    ResponseHeader,
)

logger = get_logger(__name__)


class Channel(Protocol):
    """The transport operations the correlator relies on."""

    def send(self, data: bytes) -> None: ...

    def receive(self, count: int, element_type: str = "uint8") -> bytes | tuple[int, ...]: ...


class SequenceCorrelator:
    """
    Issues sequence numbers and matches responses to the last request.

    Attributes:
        sequence: The sequence number of the most recently sent request.
        discarded_frames: Number of stale frames dropped so far.
    """

    def __init__(self, channel: Channel) -> None:
        self._channel = channel
        self.sequence = 0
        self.discarded_frames = 0

    def next_sequence(self) -> int:
        """Advance and return the per-connection sequence counter."""
        self.sequence = (self.sequence + 1) & UINT32_MAX
        if self.sequence == 0:
            self.sequence = 1
        return self.sequence

    def send(self, request_id: int, *args: PayloadArg) -> Request:
        """
        Encode and send a request with a fresh sequence number.

        Returns:
            The request that was sent.
        """
        request = Request.create(request_id, self.next_sequence(), *args)
        self._channel.send(request.encode())
        logger.debug(
            "Request sent",
            extra={
                "request_id": request.request_id,
                "sequence": request.sequence,
                "size": len(request.payload),
            },
        )
        return request

    def await_match(self, expected: int, *, raise_on_error: bool = True) -> Response:
        """
        Read frames until the one answering ``expected`` arrives.

        Args:
            expected: Sequence number of the outstanding request.
            raise_on_error: Raise AgentError for a nonzero error code instead
                of returning the response.

        Returns:
            The matching response.

        Raises:
            AgentError: If the agent reported an error and raise_on_error is set.
            AgentConnectionError: If the transport fails.
            FrameError: If a header is malformed.
        """
        while True:
            header = ResponseHeader.from_words(
                tuple(self._channel.receive(HEADER_SIZE // 4, "uint32"))
            )
            payload = b""
            if header.has_payload and header.payload_length:
                payload = bytes(self._channel.receive(header.payload_length, "uint8"))

            if header.sequence == expected:
                break

            self.discarded_frames += 1
            logger.debug(
                "Discarding stale response",
                extra={
                    "expected_sequence": expected,
                    "sequence": header.sequence,
                    "error_code": header.error_code,
                },
            )

        response = Response(
            error_code=header.error_code, sequence=header.sequence, payload=payload
        )
        logger.debug(
            "Response received",
            extra={
                "sequence": response.sequence,
                "error_code": response.error_code,
                "size": len(payload),
            },
        )
        if not response.is_success and raise_on_error:
            raise AgentError(response.error_code, details={"sequence": expected})
        return response

    def call(
        self, request_id: int, *args: PayloadArg, raise_on_error: bool = True
    ) -> Response:
        """Send a request and wait for its matching response."""
        request = self.send(request_id, *args)
        try:
            return self.await_match(request.sequence, raise_on_error=raise_on_error)
        except AgentError as e:
            e.details.setdefault("request_id", request_id)
            raise
