"""
Board identification from /proc/cpuinfo.

The board name is derived from two fields of the board's cpuinfo:
- Hardware: a BCM2709 SoC identifies a Raspberry Pi 2 Model B directly.
- Revision: otherwise the last four hex digits select the model. A leading
  "1000" (overvolting flag) is ignored by only looking at the tail.

Revision codes follow http://elinux.org/RPi_HardwareHistory. Codes not in the
table are early beta boards and map to Model B Rev 1.
"""

from __future__ import annotations

import re
from collections.abc import Callable

from raspi_io.catalog import (
    BOARD_PI_2_MODEL_B,
    BOARD_PI_COMPUTE_MODULE,
    BOARD_PI_MODEL_A_PLUS,
    BOARD_PI_MODEL_A_REV2,
    BOARD_PI_MODEL_B_PLUS,
    BOARD_PI_MODEL_B_REV1,
    BOARD_PI_MODEL_B_REV2,
    BoardModel,
    get_board_model,
)
from raspi_io.errors import BoardRevisionError, RaspiError, UnknownBoardError
from raspi_io.logging import get_logger

logger = get_logger(__name__)

CPUINFO_COMMAND = "cat /proc/cpuinfo"

_HARDWARE_RE = re.compile(r"Hardware\s+:\s+BCM(\d+)\b")
_REVISION_RE = re.compile(r"Revision\s+:\s+([0-9a-fA-F]+)")

HARDWARE_BOARDS: dict[str, str] = {
    "2709": BOARD_PI_2_MODEL_B,
}

REVISION_BOARDS: dict[str, str] = {
    "0002": BOARD_PI_MODEL_B_REV1,
    "0003": BOARD_PI_MODEL_B_REV1,
    "0007": BOARD_PI_MODEL_A_REV2,
    "0008": BOARD_PI_MODEL_A_REV2,
    "0004": BOARD_PI_MODEL_B_REV2,
    "0005": BOARD_PI_MODEL_B_REV2,
    "0006": BOARD_PI_MODEL_B_REV2,
    "0009": BOARD_PI_MODEL_B_REV2,
    "000d": BOARD_PI_MODEL_B_REV2,
    "000e": BOARD_PI_MODEL_B_REV2,
    "000f": BOARD_PI_MODEL_B_REV2,
    "0010": BOARD_PI_MODEL_B_PLUS,
    "0013": BOARD_PI_MODEL_B_PLUS,
    "0011": BOARD_PI_COMPUTE_MODULE,
    "0012": BOARD_PI_MODEL_A_PLUS,
}

# Early beta boards report codes outside the table
UNKNOWN_REVISION_BOARD = BOARD_PI_MODEL_B_REV1


def parse_board_name(cpuinfo: str) -> str:
    """
    Determine the board name from cpuinfo text.

    The hardware identifier is checked before the revision table.

    Args:
        cpuinfo: Contents of /proc/cpuinfo.

    Returns:
        The board model name.

    Raises:
        BoardRevisionError: If no usable revision can be parsed.
    """
    hardware = _HARDWARE_RE.search(cpuinfo)
    if hardware and hardware.group(1) in HARDWARE_BOARDS:
        return HARDWARE_BOARDS[hardware.group(1)]

    revision = _REVISION_RE.search(cpuinfo)
    if revision is None or len(revision.group(1)) < 4:
        raise BoardRevisionError(
            "Cannot determine the board revision from /proc/cpuinfo",
            details={"hardware": hardware.group(1) if hardware else None},
        )

    code = revision.group(1)[-4:].lower()
    return REVISION_BOARDS.get(code, UNKNOWN_REVISION_BOARD)


def identify_board(run_command: Callable[[str], str]) -> BoardModel:
    """
    Identify the connected board and return its catalog entry.

    Args:
        run_command: Executes a command on the board and returns its stdout.

    Returns:
        The catalog BoardModel for the board.

    Raises:
        BoardRevisionError: If the revision cannot be read or parsed.
        UnknownBoardError: If the board has no catalog entry.
    """
    try:
        cpuinfo = run_command(CPUINFO_COMMAND)
    except RaspiError as e:
        raise BoardRevisionError(
            "Cannot read /proc/cpuinfo from the board",
            details={"error": e.message},
            cause=e,
        ) from e

    name = parse_board_name(cpuinfo)
    model = get_board_model(name)
    if model is None:
        raise UnknownBoardError(
            f"Unsupported board: {name}",
            details={"board_name": name},
        )

    logger.info("Board identified", extra={"board_name": name})
    return model
