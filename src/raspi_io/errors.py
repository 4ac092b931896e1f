"""
Error types for the raspi-io client.

This module defines the RaspiError base class and the subclasses raised by the
transport, the connect sequence and the peripheral operations. Every error
carries a machine-readable error code, a human-readable message and optional
structured details, so callers (and the CLI) can report them uniformly.

Connect-sequence errors additionally carry the phase of the state machine in
which they occurred and the lower-level cause, if any.
"""

from __future__ import annotations

import errno as errno_codes
from typing import Any


class RaspiError(Exception):
    """
    Base exception class for raspi-io errors.

    Attributes:
        error_code: Internal error code string (e.g., "invalid_parameter",
            "pin_state", "agent_error", "connection").
        message: Human-readable error message.
        details: Optional structured details (e.g., pin number, errno).

    Example:
        >>> raise RaspiError(
        ...     error_code="invalid_parameter",
        ...     message="Pin 50 is not an available digital pin",
        ...     details={"pin": 50},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize a RaspiError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# Transport Errors
# =============================================================================


class AgentConnectionError(RaspiError):
    """Raised when the TCP connection to the agent fails or is lost."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an AgentConnectionError."""
        super().__init__(error_code="connection", message=message, details=details)


class AgentTimeoutError(AgentConnectionError):
    """Raised when the agent does not answer within the configured timeout."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an AgentTimeoutError."""
        super().__init__(message, details)
        self.error_code = "timeout"


class FrameError(RaspiError):
    """Raised when a frame on the wire violates the framing rules."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a FrameError."""
        super().__init__(error_code="protocol", message=message, details=details)


# =============================================================================
# Connect Sequence Errors
# =============================================================================


class ConnectPhaseError(RaspiError):
    """
    Base class for fatal errors raised while establishing a connection.

    Attributes:
        phase: Name of the connect phase that failed (e.g., "authorizing").
        cause: The lower-level exception that triggered the failure, if any.
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        phase: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        """Initialize a ConnectPhaseError."""
        super().__init__(error_code=error_code, message=message, details=details)
        self.phase = phase
        self.cause = cause
        if phase is not None:
            self.details.setdefault("phase", phase)


class ConnectionExistsError(ConnectPhaseError):
    """Raised when a live client already exists for the target host."""

    def __init__(self, host: str) -> None:
        """Initialize a ConnectionExistsError."""
        super().__init__(
            error_code="connection_exists",
            message=f"A connection to {host} already exists",
            details={"host": host},
            phase="connecting",
        )


class AuthorizationError(ConnectPhaseError):
    """Raised when the agent rejects the authorization handshake."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        phase: str | None = "authorizing",
        cause: BaseException | None = None,
    ) -> None:
        """Initialize an AuthorizationError."""
        super().__init__(
            error_code="not_authorized",
            message=message,
            details=details,
            phase=phase,
            cause=cause,
        )


class VersionMismatchError(ConnectPhaseError):
    """Raised when the agent protocol version differs from the expected one."""

    def __init__(
        self,
        expected: tuple[int, ...],
        actual: tuple[int, ...],
        *,
        phase: str | None = "version_checking",
    ) -> None:
        """Initialize a VersionMismatchError."""
        expected_str = ".".join(str(part) for part in expected)
        actual_str = ".".join(str(part) for part in actual)
        super().__init__(
            error_code="version_mismatch",
            message=(
                f"Unexpected agent version {actual_str}; "
                f"this client requires version {expected_str}"
            ),
            details={"expected": list(expected), "actual": list(actual)},
            phase=phase,
        )
        self.expected = expected
        self.actual = actual


class UnknownBoardError(ConnectPhaseError):
    """Raised when the board model cannot be determined or is not supported."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        phase: str | None = "board_identifying",
        cause: BaseException | None = None,
    ) -> None:
        """Initialize an UnknownBoardError."""
        super().__init__(
            error_code="unknown_board",
            message=message,
            details=details,
            phase=phase,
            cause=cause,
        )


class BoardRevisionError(UnknownBoardError):
    """Raised when the hardware revision cannot be parsed from cpuinfo."""


# =============================================================================
# Operation Errors
# =============================================================================


class InvalidParameterError(RaspiError):
    """
    Raised when an operation receives an invalid argument.

    Validation happens client-side, before any request is sent to the agent.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InvalidParameterError."""
        super().__init__(
            error_code="invalid_parameter", message=message, details=details
        )


class PinStateError(RaspiError):
    """Raised when a pin's cached direction does not permit the operation."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a PinStateError."""
        super().__init__(error_code="pin_state", message=message, details=details)


class PeripheralError(RaspiError):
    """Raised when enabling or disabling an I2C/SPI peripheral fails."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a PeripheralError."""
        super().__init__(error_code="peripheral", message=message, details=details)


# =============================================================================
# Agent-reported Errors
# =============================================================================

# Error numbers the agent reports are Linux errno values from the board.
AGENT_ERRNO_MESSAGES: dict[int, str] = {
    errno_codes.EPERM: "Operation not permitted on the hardware",
    errno_codes.ENOENT: "No such file or device on the hardware",
    errno_codes.EIO: "Input/output error while accessing the peripheral",
    errno_codes.ENXIO: "No such device or address",
    errno_codes.EBADF: "Peripheral is not open",
    errno_codes.EAGAIN: "Resource temporarily unavailable; try again",
    errno_codes.ENOMEM: "Agent ran out of memory",
    errno_codes.EACCES: "Permission denied by the agent",
    errno_codes.EBUSY: "Peripheral is busy or in use by another process",
    errno_codes.ENODEV: "Peripheral is not available on this board",
    errno_codes.EINVAL: "Invalid argument passed to the agent",
    errno_codes.ENOSYS: "Request not implemented by the agent",
    errno_codes.EMSGSIZE: "Request payload is too large",
    errno_codes.EPROTO: "Agent protocol error",
}

GENERIC_AGENT_ERROR_MESSAGE = "The agent reported an error"


def agent_error_message(errno: int) -> str:
    """Return the catalog message for an agent error number."""
    return AGENT_ERRNO_MESSAGES.get(errno, GENERIC_AGENT_ERROR_MESSAGE)


class AgentError(RaspiError):
    """
    Raised when the agent answers a request with a nonzero error number.

    Attributes:
        errno: The error number reported by the agent.
    """

    def __init__(self, errno: int, details: dict[str, Any] | None = None) -> None:
        """Initialize an AgentError from the reported error number."""
        merged = {"errno": errno, **(details or {})}
        super().__init__(
            error_code="agent_error",
            message=f"{agent_error_message(errno)} (errno {errno})",
            details=merged,
        )
        self.errno = errno


class PopenError(AgentError):
    """Raised when a remote command run through popen fails."""

    def __init__(self, errno: int, command: str) -> None:
        """Initialize a PopenError."""
        super().__init__(errno, details={"command": command})
        self.message = f"Remote command failed with errno {errno}: {command}"
        self.args = (self.message,)
